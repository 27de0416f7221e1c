# tests/fiscal/services/test_http_transaction_registry.py

from datetime import date
from decimal import Decimal

import pytest
import requests

from fiscal.registry import (
    HttpTransactionRegistry,
    TransactionRegistryError,
    parse_registry_transaction,
)


class FakeResponse:
    def __init__(self, data, status_code=200):
        self._data = data
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _registry(response, **kwargs):
    session = FakeSession(response)
    registry = HttpTransactionRegistry(
        base_url="https://registry.example.test/api/",
        token=kwargs.get("token", "T0KEN"),
        timeout=5,
        session=session,
    )
    return registry, session


def test_lista_ids_do_dia_com_filtro():
    registry, session = _registry(FakeResponse({"transaction_ids": ["a", "b"]}))

    ids = registry.get_transaction_ids("org-1", "site-1", date(2024, 3, 1), date(2024, 3, 1), "Receipt")

    assert ids == ["a", "b"]
    call = session.calls[0]
    assert call["url"] == "https://registry.example.test/api/orgs/org-1/sites/site-1/transactions"
    assert call["params"] == {"start_date": "2024-03-01", "end_date": "2024-03-01", "filter": "Receipt"}
    assert call["headers"]["Authorization"] == "Bearer T0KEN"
    assert call["timeout"] == 5


def test_lista_ids_aceita_array_puro_e_sem_token():
    registry, session = _registry(FakeResponse([1, 2]), token="")

    assert registry.get_transaction_ids("o", "s", date(2024, 3, 1), date(2024, 3, 2)) == ["1", "2"]
    assert "Authorization" not in session.calls[0]["headers"]
    assert "filter" not in session.calls[0]["params"]


def test_le_transacao_em_camel_case():
    registry, session = _registry(
        FakeResponse(
            {
                "transactionId": "tx-1",
                "type": "Void",
                "grossAmount": "-5.00",
                "taxAmounts": {"10%": "-0.50"},
                "netAmounts": {"10%": "-4.50"},
                "paymentTypes": {},
            }
        )
    )

    tx = registry.get_transaction("o", "s", "tx-1")

    assert session.calls[0]["url"].endswith("/orgs/o/sites/s/transactions/tx-1")
    assert tx.transaction_id == "tx-1"
    assert tx.is_void is True
    assert tx.gross_amount == Decimal("-5.00")
    assert tx.tax_amounts == {"10%": Decimal("-0.50")}


def test_parse_snake_case_com_valor_invalido():
    with pytest.raises(TransactionRegistryError):
        parse_registry_transaction({"transaction_id": "x", "gross_amount": "dez reais"})

    with pytest.raises(TransactionRegistryError):
        parse_registry_transaction(["nao", "e", "objeto"])


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse({}, status_code=503),
        requests.ConnectionError("registry down"),
        FakeResponse(ValueError("html em vez de json")),
    ],
)
def test_falhas_http_viram_erro_do_registro(response):
    registry, _ = _registry(response)

    with pytest.raises(TransactionRegistryError):
        registry.get_transaction("o", "s", "tx-1")


def test_base_url_vazia(settings):
    settings.FISCAL_REGISTRY = {"BASE_URL": "", "TOKEN": "", "TIMEOUT": 1}
    registry = HttpTransactionRegistry(session=FakeSession(FakeResponse([])))

    with pytest.raises(TransactionRegistryError):
        registry.get_transaction_ids("o", "s", date(2024, 3, 1), date(2024, 3, 1))
