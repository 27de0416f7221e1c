# conftest.py (na raiz do projeto)

import uuid
from datetime import date
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from fiscal.registry import RegistryTransaction, TransactionRegistryError
from fiscal.services import router_service
from fiscal.services.dto import ConfigureSiteFiscalCommand, FiscalTransactionData


# =============================================================================
# REGISTRY DE DISPOSITIVOS / IDENTIFICADORES
# =============================================================================

@pytest.fixture(autouse=True)
def _reset_live_devices():
    """
    O registry de dispositivos ativos é global do processo; cada teste
    começa "como após um restart".
    """
    router_service.reset_live_devices()
    yield
    router_service.reset_live_devices()


@pytest.fixture
def org_id():
    return uuid.uuid4()


@pytest.fixture
def site_id():
    return uuid.uuid4()


# =============================================================================
# REGISTRO DE AUDITORIA FAKE
# =============================================================================

class FakeRegistry:
    """
    Registro de auditoria em memória.

    transactions: {business_date: [RegistryTransaction | Exception, ...]}
    Um item Exception simula transação corrompida/inacessível.
    """

    def __init__(self):
        self.transactions = {}
        self.calls = []

    def add(self, business_date, tx_type="Receipt", gross="0.00", tax=None, net=None, payments=None):
        items = self.transactions.setdefault(business_date, [])
        tx = RegistryTransaction(
            transaction_id=str(uuid.uuid4()),
            transaction_type=tx_type,
            gross_amount=Decimal(gross),
            tax_amounts={k: Decimal(v) for k, v in (tax or {}).items()},
            net_amounts={k: Decimal(v) for k, v in (net or {}).items()},
            payment_types={k: Decimal(v) for k, v in (payments or {}).items()},
        )
        items.append(tx)
        return tx

    def add_broken(self, business_date):
        items = self.transactions.setdefault(business_date, [])
        items.append(TransactionRegistryError("registro corrompido"))

    def get_transaction_ids(self, org_id, site_id, start_date, end_date, filter=None):
        self.calls.append(("ids", start_date, end_date))
        items = self.transactions.get(start_date, [])
        return [f"{start_date.isoformat()}:{index}" for index in range(len(items))]

    def get_transaction(self, org_id, site_id, transaction_id):
        self.calls.append(("tx", transaction_id))
        day, index = transaction_id.split(":")
        item = self.transactions[date.fromisoformat(day)][int(index)]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def fake_registry(monkeypatch):
    registry = FakeRegistry()
    monkeypatch.setattr(
        "fiscal.services.zreport_service.get_transaction_registry",
        lambda: registry,
    )
    return registry


# =============================================================================
# HELPERS FISCAIS
# =============================================================================

@pytest.fixture
def configure_site(org_id, site_id):
    """
    Configura o site com um dispositivo (mock por padrão) e devolve o snapshot.
    """

    def _configure(country="DE", enabled=True, device_type="mock", settings=None, site=None):
        return router_service.configure_site_fiscal(
            org_id=org_id,
            site_id=site or site_id,
            command=ConfigureSiteFiscalCommand(
                country=country,
                enabled=enabled,
                device_id="device-1",
                device_type=device_type,
                country_settings=settings if settings is not None else {"tax_number": "DE123456789"},
            ),
        )

    return _configure


@pytest.fixture
def make_transaction(site_id):
    def _make(gross="11.90", net=None, tax=None, payments=None, tx_type="Receipt", site=None):
        return FiscalTransactionData(
            transaction_id=uuid.uuid4(),
            site_id=site or site_id,
            timestamp=timezone.now(),
            transaction_type=tx_type,
            gross_amount=Decimal(gross),
            net_amounts={k: Decimal(v) for k, v in (net or {"19%": "10.00"}).items()},
            tax_amounts={k: Decimal(v) for k, v in (tax or {"19%": "1.90"}).items()},
            payment_types={k: Decimal(v) for k, v in (payments or {"cash": gross}).items()},
        )

    return _make


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def api_user(db):
    User = get_user_model()
    return User.objects.create_user(username="operador.fiscal", password="senha-forte-123")


@pytest.fixture
def api_client(api_user):
    client = APIClient()
    token = RefreshToken.for_user(api_user).access_token
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
    return client
