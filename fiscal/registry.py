"""
Client do registro externo de auditoria (ledger de transações assinadas).

O gerador de Z-report depende apenas de TransactionRegistryProtocol;
HttpTransactionRegistry é a implementação padrão via HTTP.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Protocol

import requests
from django.conf import settings


class TransactionRegistryError(Exception):
    """Falha ao consultar o registro de auditoria."""


@dataclass(frozen=True)
class RegistryTransaction:
    transaction_id: str
    transaction_type: str
    gross_amount: Decimal
    tax_amounts: Dict[str, Decimal] = field(default_factory=dict)
    net_amounts: Dict[str, Decimal] = field(default_factory=dict)
    payment_types: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def is_void(self) -> bool:
        return self.transaction_type.strip().lower() == "void"


class TransactionRegistryProtocol(Protocol):
    def get_transaction_ids(
        self,
        org_id,
        site_id,
        start_date: date,
        end_date: date,
        filter: Optional[str] = None,
    ) -> List[str]:
        ...

    def get_transaction(self, org_id, site_id, transaction_id: str) -> RegistryTransaction:
        ...


def _decimal(value) -> Decimal:
    try:
        return Decimal(str(value if value is not None else "0"))
    except InvalidOperation as exc:
        raise TransactionRegistryError(f"Valor monetário inválido: {value!r}") from exc


def _decimal_map(raw) -> Dict[str, Decimal]:
    return {str(k): _decimal(v) for k, v in (raw or {}).items()}


def parse_registry_transaction(payload: dict) -> RegistryTransaction:
    """
    Converte o JSON do registro em RegistryTransaction.

    Aceita chaves snake_case ou camelCase (grossAmount, taxAmounts, ...).
    """
    if not isinstance(payload, dict):
        raise TransactionRegistryError("Transação do registro não é um objeto JSON.")

    def pick(snake, camel, default=None):
        if snake in payload:
            return payload[snake]
        return payload.get(camel, default)

    return RegistryTransaction(
        transaction_id=str(pick("transaction_id", "transactionId", payload.get("id", ""))),
        transaction_type=str(pick("transaction_type", "type", "Receipt")),
        gross_amount=_decimal(pick("gross_amount", "grossAmount", "0")),
        tax_amounts=_decimal_map(pick("tax_amounts", "taxAmounts")),
        net_amounts=_decimal_map(pick("net_amounts", "netAmounts")),
        payment_types=_decimal_map(pick("payment_types", "paymentTypes")),
    )


class HttpTransactionRegistry:
    """
    Settings (FISCAL_REGISTRY):
      - BASE_URL: raiz da API do registro.
      - TOKEN: bearer token (opcional).
      - TIMEOUT: segundos.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        conf = getattr(settings, "FISCAL_REGISTRY", {}) or {}
        self.base_url = (base_url or conf.get("BASE_URL") or "").rstrip("/")
        self.token = token if token is not None else conf.get("TOKEN")
        self.timeout = timeout or conf.get("TIMEOUT") or 30
        self.session = session or requests.Session()

    def _get(self, path: str, params: dict | None = None):
        if not self.base_url:
            raise TransactionRegistryError("FISCAL_REGISTRY.BASE_URL não configurado.")

        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            resp = self.session.get(
                f"{self.base_url}{path}",
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise TransactionRegistryError(f"Erro ao consultar registro de auditoria: {exc}") from exc

        try:
            return resp.json()
        except ValueError as exc:
            raise TransactionRegistryError("Resposta do registro não é um JSON válido.") from exc

    def get_transaction_ids(self, org_id, site_id, start_date, end_date, filter=None) -> List[str]:
        params = {
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        }
        if filter:
            params["filter"] = filter

        payload = self._get(f"/orgs/{org_id}/sites/{site_id}/transactions", params=params)
        if isinstance(payload, dict):
            payload = payload.get("transaction_ids") or payload.get("transactionIds") or []
        if not isinstance(payload, list):
            raise TransactionRegistryError("Lista de transações inesperada no registro.")
        return [str(item) for item in payload]

    def get_transaction(self, org_id, site_id, transaction_id) -> RegistryTransaction:
        payload = self._get(f"/orgs/{org_id}/sites/{site_id}/transactions/{transaction_id}")
        return parse_registry_transaction(payload)


def get_transaction_registry() -> TransactionRegistryProtocol:
    return HttpTransactionRegistry()
