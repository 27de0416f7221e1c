"""
Camada de dispositivos de assinatura fiscal (TSE / cloud signing).

Este módulo define:

- Contrato único (SigningDeviceProtocol) que o Router usa para assinar
  transações, exportar dados de auditoria e consultar a saúde do dispositivo.
- DTOs de resposta (início/fim de transação, self-test, device info).
- SigningDeviceError, usada para falhas técnicas (conexão, HTTP, estado).
- BaseSigningDevice, com o que é comum a todos os providers: sessão HTTP,
  timeout, contexto de transações ativas em memória.

Cada provider concreto (cloud com bearer token, hardware em rede local,
USB atrás de daemon local) vive em seu próprio módulo; o Router nunca
decide nada com base no tipo de provider.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, Mapping, Optional, Protocol

import requests
from django.conf import settings as django_settings
from django.utils import timezone


# ---------------------------------------------------------------------------
# Exceções específicas
# ---------------------------------------------------------------------------


class SigningDeviceError(Exception):
    """
    Erros técnicos na comunicação com o dispositivo de assinatura
    (não conectado, timeout, HTTP de erro, resposta inválida).

    O Router e o Job Runner capturam essa exceção e a convertem em
    resultado estruturado (success=False + mensagem); ela nunca
    derruba o estado fiscal do site.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        raw: Dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.raw: Dict[str, Any] = raw or {}


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StartTransactionResult:
    transaction_number: int
    start_time: Optional[datetime]
    client_id: Optional[str]
    success: bool
    error_message: Optional[str] = None


@dataclass(frozen=True)
class SignedTransactionResult:
    """
    Resultado imutável da finalização (assinatura) de uma transação.

    signature_counter é monotônico por dispositivo; qr_code_data traz os
    dados necessários para o código de verificação impresso no cupom.
    """

    transaction_number: int
    signature_counter: int
    signature: str
    signature_algorithm: str
    public_key: str
    certificate_serial: str
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    qr_code_data: str
    success: bool
    error_message: Optional[str] = None

    @classmethod
    def failed(
        cls,
        transaction_number: int,
        message: str,
        *,
        start_time: Optional[datetime] = None,
    ) -> "SignedTransactionResult":
        return cls(
            transaction_number=transaction_number,
            signature_counter=0,
            signature="",
            signature_algorithm="",
            public_key="",
            certificate_serial="",
            start_time=start_time,
            end_time=timezone.now() if start_time else None,
            qr_code_data="",
            success=False,
            error_message=message,
        )


@dataclass(frozen=True)
class SelfTestResult:
    passed: bool
    error_message: Optional[str]
    performed_at: datetime


@dataclass(frozen=True)
class DeviceInfo:
    serial_number: str
    firmware_version: str
    certificate_serial: str
    public_key: str
    certificate_expiry_date: Optional[datetime]
    transaction_counter: int
    signature_counter: int
    state: str
    remaining_signatures: Optional[int] = None


@dataclass(frozen=True)
class TransactionContext:
    """
    Contexto efêmero de uma transação iniciada e ainda não finalizada.

    Vive apenas no mapa em memória do adapter; se o processo reiniciar,
    a transação fica órfã (resolvida por self-test/reconciliação).
    """

    transaction_number: int
    start_time: datetime
    process_type: str
    process_data: str
    client_id: Optional[str]
    external_tx_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Contrato do dispositivo
# ---------------------------------------------------------------------------


class SigningDeviceProtocol(Protocol):
    """
    Contrato mínimo que um dispositivo de assinatura deve cumprir.

    Regras:
      1) is_connected reflete a vivacidade real do token/sessão,
         não apenas "connect() foi chamado".
      2) start/finish não levantam exceção para falhas do provider:
         devolvem resultado com success=False.
      3) get_device_info/export_audit_data levantam SigningDeviceError.
    """

    device_type: str

    @property
    def is_connected(self) -> bool:
        ...

    def connect(self) -> bool:
        ...

    def disconnect(self) -> None:
        ...

    def start_transaction(
        self,
        process_type: str,
        process_data: str,
        client_id: str | None = None,
    ) -> StartTransactionResult:
        ...

    def update_transaction(self, transaction_number: int, process_data: str) -> bool:
        ...

    def finish_transaction(
        self,
        transaction_number: int,
        process_type: str,
        process_data: str,
    ) -> SignedTransactionResult:
        ...

    def self_test(self) -> SelfTestResult:
        ...

    def get_device_info(self) -> DeviceInfo:
        ...

    def export_audit_data(self, start: datetime, end: datetime) -> bytes:
        ...

    def register_client(self, client_id: str) -> bool:
        ...

    def deregister_client(self, client_id: str) -> bool:
        ...


# ---------------------------------------------------------------------------
# Base comum
# ---------------------------------------------------------------------------


def _parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=dt_timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if timezone.is_naive(parsed):
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return parsed


class BaseSigningDevice:
    """
    Implementação base compartilhada pelos providers HTTP.

    Settings reconhecidos (country_settings do site):
      - api_endpoint, api_key, api_secret, tss_id, client_id,
        device_serial, timeout_ms.
    """

    device_type = ""
    REQUIRED_SETTINGS: tuple[str, ...] = ()
    # settings inteiros -> valor mínimo aceito (None = sem mínimo)
    INTEGER_SETTINGS: Dict[str, int | None] = {"timeout_ms": 1}
    DEFAULT_ENDPOINT: str | None = None

    def __init__(
        self,
        *,
        settings: Mapping[str, str] | None = None,
        session: requests.Session | None = None,
    ):
        self.settings: Dict[str, str] = dict(settings or {})
        self.session = session or requests.Session()

        timeout_ms = self.settings.get("timeout_ms") or django_settings.FISCAL_DEVICE_DEFAULT_TIMEOUT_MS
        self.timeout = int(timeout_ms) / 1000

        self.endpoint = (self.settings.get("api_endpoint") or self.DEFAULT_ENDPOINT or "").rstrip("/")
        self.client_id = self.settings.get("client_id")

        self.active_transactions: Dict[int, TransactionContext] = {}
        self.transaction_counter = 0
        self.signature_counter = 0

    # -- helpers ---------------------------------------------------------

    def _now(self) -> datetime:
        return timezone.now()

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        return self.session.request(method, f"{self.endpoint}{path}", **kwargs)

    @staticmethod
    def _error_text(response: requests.Response) -> str:
        text = (response.text or "").strip()
        return text or f"Status: {response.status_code}"

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _ensure_ok(self, response: requests.Response, operation: str) -> None:
        if not response.ok:
            raise SigningDeviceError(
                f"{self.device_type}: {operation} falhou ({response.status_code}).",
                code=str(response.status_code),
                raw={"body": (response.text or "")[:500]},
            )

    def _require_connected(self) -> None:
        if not self.is_connected:
            raise SigningDeviceError(
                f"{self.device_type}: dispositivo não conectado.",
                code="NOT_CONNECTED",
            )

    # -- contrato comum ------------------------------------------------

    @property
    def is_connected(self) -> bool:
        raise NotImplementedError

    def update_transaction(self, transaction_number: int, process_data: str) -> bool:
        context = self.active_transactions.get(transaction_number)
        if context is None:
            return False
        self.active_transactions[transaction_number] = replace(context, process_data=process_data)
        return True

    def _remember_transaction(
        self,
        transaction_number: int,
        *,
        process_type: str,
        process_data: str,
        client_id: str | None,
        external_tx_id: str | None = None,
    ) -> TransactionContext:
        context = TransactionContext(
            transaction_number=transaction_number,
            start_time=self._now(),
            process_type=process_type,
            process_data=process_data,
            client_id=client_id,
            external_tx_id=external_tx_id,
        )
        self.active_transactions[transaction_number] = context
        return context

    @staticmethod
    def parse_datetime(value) -> Optional[datetime]:
        return _parse_datetime(value)
