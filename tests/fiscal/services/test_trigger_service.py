# tests/fiscal/services/test_trigger_service.py

from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

from fiscal.models import FiscalJobTrigger, SiteFiscalJobConfig
from fiscal.services import trigger_service

NOW = datetime(2024, 3, 2, 10, 0, tzinfo=dt_timezone.utc)


def test_proximo_vencimento_pula_periodos_perdidos():
    due = NOW - timedelta(minutes=150)

    assert trigger_service.next_due_after(due, 60, NOW) == NOW + timedelta(minutes=30)
    assert trigger_service.next_due_after(NOW, 60, NOW) == NOW + timedelta(minutes=60)
    assert trigger_service.next_due_after(NOW + timedelta(minutes=5), 60, NOW) == NOW + timedelta(minutes=5)


@pytest.mark.django_db
def test_triggers_da_organizacao_sao_idempotentes(org_id, settings):
    settings.FISCAL_DAILY_JOBS_INITIAL_DELAY_MINUTES = 1
    settings.FISCAL_FREQUENT_JOBS_INITIAL_DELAY_MINUTES = 5

    trigger_service.ensure_organization_triggers(org_id, now=NOW)
    trigger_service.ensure_organization_triggers(org_id, now=NOW + timedelta(hours=1))

    triggers = {t.name: t for t in FiscalJobTrigger.objects.filter(org_id=org_id)}
    assert set(triggers) == {"daily_jobs", "frequent_jobs"}
    assert triggers["daily_jobs"].next_due_at == NOW + timedelta(minutes=1)
    assert triggers["frequent_jobs"].next_due_at == NOW + timedelta(minutes=5)


@pytest.mark.django_db
def test_intervalo_alterado_nos_settings_e_aplicado(org_id, settings):
    trigger_service.ensure_organization_triggers(org_id, now=NOW)
    settings.FISCAL_FREQUENT_JOBS_INTERVAL_MINUTES = 10

    trigger_service.ensure_organization_triggers(org_id, now=NOW)

    assert FiscalJobTrigger.objects.get(org_id=org_id, name="frequent_jobs").interval_minutes == 10


@pytest.mark.django_db
def test_claim_grava_proximo_vencimento_antes_de_executar(org_id, monkeypatch):
    trigger_service.ensure_organization_triggers(org_id, now=NOW - timedelta(hours=5))
    dispatched = []

    def fake_dispatch(trigger, now):
        stored = FiscalJobTrigger.objects.get(pk=trigger.pk)
        dispatched.append((trigger.name, stored.next_due_at, stored.last_fired_at))

    monkeypatch.setattr(trigger_service, "_dispatch", fake_dispatch)

    fired = trigger_service.run_due_triggers(NOW)

    assert fired == 2
    for name, next_due_at, last_fired_at in dispatched:
        assert next_due_at > NOW
        assert last_fired_at == NOW

    assert trigger_service.run_due_triggers(NOW) == 0


@pytest.mark.django_db
def test_erro_no_job_nao_derruba_os_outros_triggers(org_id, monkeypatch):
    trigger_service.ensure_organization_triggers(org_id, now=NOW - timedelta(hours=1))
    calls = []

    def boom(*, org_id, now):
        calls.append("daily")
        raise RuntimeError("falhou")

    def ok(*, org_id, now):
        calls.append("frequent")
        return []

    monkeypatch.setattr("fiscal.services.job_scheduler_service.process_daily_jobs", boom)
    monkeypatch.setattr("fiscal.services.job_scheduler_service.process_frequent_jobs", ok)

    assert trigger_service.run_due_triggers(NOW) == 2
    assert sorted(calls) == ["daily", "frequent"]


@pytest.mark.django_db
def test_recuperacao_registra_triggers_e_dispara_uma_vez(org_id, site_id, monkeypatch, settings):
    """
    Cenário: organização com agenda, mas sem triggers (ex.: banco restaurado).
    A recuperação cria os triggers e dispara o que já venceu.
    """
    settings.FISCAL_DAILY_JOBS_INITIAL_DELAY_MINUTES = 0
    settings.FISCAL_FREQUENT_JOBS_INITIAL_DELAY_MINUTES = 0
    SiteFiscalJobConfig.objects.create(org_id=org_id, site_id=site_id)
    fired_orgs = []

    monkeypatch.setattr(
        trigger_service,
        "_dispatch",
        lambda trigger, now: fired_orgs.append((trigger.org_id, trigger.name)),
    )

    assert trigger_service.recover_missed_triggers(NOW) == 2
    assert sorted(name for _, name in fired_orgs) == ["daily_jobs", "frequent_jobs"]
    assert all(org == org_id for org, _ in fired_orgs)
    assert trigger_service.recover_missed_triggers(NOW) == 0
