# tests/fiscal/api/test_fiscal_zreport_api.py

from datetime import date

import pytest
from django.urls import reverse
from rest_framework.test import APIClient

from fiscal.registry import TransactionRegistryError

pytestmark = pytest.mark.django_db


def _url(name, org_id, site_id, **kwargs):
    return reverse(f"fiscal:{name}", kwargs={"org_id": org_id, "site_id": site_id, **kwargs})


def _generate(api_client, org_id, site_id, business_date="2024-03-01"):
    return api_client.post(
        _url("site-zreport-generate", org_id, site_id), {"business_date": business_date}, format="json"
    )


def test_zreport_exige_autenticacao(org_id, site_id):
    client = APIClient()

    assert client.get(_url("site-zreport-latest", org_id, site_id)).status_code == 401


def test_gera_e_consulta_zreport(api_client, fake_registry, org_id, site_id):
    fake_registry.add(date(2024, 3, 1), gross="10.00", tax={"10%": "1.00"}, net={"10%": "9.00"}, payments={"cash": "10.00"})
    fake_registry.add(date(2024, 3, 1), tx_type="Void", gross="5.00")

    resp = _generate(api_client, org_id, site_id)

    assert resp.status_code == 201
    body = resp.json()
    assert body["report_number"] == 1
    assert body["gross_sales"] == "10.00"
    assert body["total_tax"] == "1.00"
    assert body["void_count"] == 1
    assert body["void_total"] == "5.00"
    assert body["sales_by_vat_rate"] == {"10%": "9.00"}

    detail = api_client.get(_url("site-zreport-detail", org_id, site_id, report_number=1))
    assert detail.status_code == 200
    assert detail.json()["business_date"] == "2024-03-01"

    latest = api_client.get(_url("site-zreport-latest", org_id, site_id))
    assert latest.json()["report_number"] == 1


def test_zreport_duplicado_retorna_409(api_client, fake_registry, org_id, site_id):
    _generate(api_client, org_id, site_id)

    resp = _generate(api_client, org_id, site_id)

    assert resp.status_code == 409
    assert resp.json()["code"] == "ALREADY_EXISTS"


def test_registro_indisponivel_retorna_502(api_client, monkeypatch, org_id, site_id):
    class DownRegistry:
        def get_transaction_ids(self, *args, **kwargs):
            raise TransactionRegistryError("timeout")

    monkeypatch.setattr("fiscal.services.zreport_service.get_transaction_registry", lambda: DownRegistry())

    resp = _generate(api_client, org_id, site_id)

    assert resp.status_code == 502
    assert resp.json()["code"] == "REGISTRY_UNAVAILABLE"


def test_zreport_inexistente(api_client, org_id, site_id):
    assert api_client.get(_url("site-zreport-detail", org_id, site_id, report_number=9)).status_code == 404
    assert api_client.get(_url("site-zreport-latest", org_id, site_id)).status_code == 404


def test_lista_zreports_por_periodo(api_client, fake_registry, org_id, site_id):
    for day in ("2024-03-01", "2024-03-02", "2024-03-05"):
        _generate(api_client, org_id, site_id, day)

    resp = api_client.get(
        _url("site-zreport-list", org_id, site_id), {"start_date": "2024-03-01", "end_date": "2024-03-03"}
    )

    assert resp.status_code == 200
    assert [r["report_number"] for r in resp.json()] == [1, 2]

    inverted = api_client.get(
        _url("site-zreport-list", org_id, site_id), {"start_date": "2024-03-03", "end_date": "2024-03-01"}
    )
    assert inverted.status_code == 400
    assert inverted.json()["code"] == "INVALID_DATE_RANGE"
