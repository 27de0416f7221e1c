# tests/fiscal/services/test_job_scheduler_service.py

import logging
import uuid
from datetime import date, datetime, time, timezone as dt_timezone

import pytest

from fiscal.models import FiscalJobHistoryEntry, FiscalJobRun, FiscalJobTrigger, SiteFiscalJobConfig, ZReport
from fiscal.services import job_scheduler_service as jobs
from fiscal.services.exceptions import (
    ERR_INVALID_DATE_RANGE,
    ERR_INVALID_TIME_ZONE,
    ERR_NOT_CONFIGURED,
    FiscalServiceError,
)


def _utc(*args):
    return datetime(*args, tzinfo=dt_timezone.utc)


# ---------------------------------------------------------------------------
# Janela / data de negócio
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "local, scheduled, expected",
    [
        (time(3, 10), time(3, 0), True),
        (time(2, 30), time(3, 0), True),
        (time(3, 31), time(3, 0), False),
        (time(23, 50), time(0, 10), True),
        (time(0, 5), time(23, 45), True),
        (time(12, 0), time(0, 0), False),
    ],
)
def test_janela_de_execucao_circular(local, scheduled, expected):
    assert jobs.is_time_for_job(local, scheduled, window_minutes=30) is expected


def test_janela_padrao_vem_dos_settings(settings):
    settings.FISCAL_JOB_WINDOW_MINUTES = 5

    assert jobs.is_time_for_job(time(3, 4), time(3, 0)) is True
    assert jobs.is_time_for_job(time(3, 6), time(3, 0)) is False


def test_data_de_negocio_nao_muda_ao_cruzar_meia_noite():
    """
    Job agendado para 00:10: um disparo às 23:50 e outro às 00:20 do dia
    seguinte fecham a mesma data de negócio.
    """
    before = jobs.business_date_for(datetime(2024, 3, 1, 23, 50), time(0, 10))
    after = jobs.business_date_for(datetime(2024, 3, 2, 0, 20), time(0, 10))

    assert before == after == date(2024, 3, 1)
    assert jobs.business_date_for(datetime(2024, 3, 2, 3, 5), time(3, 0)) == date(2024, 3, 1)


# ---------------------------------------------------------------------------
# Configuração
# ---------------------------------------------------------------------------


@pytest.mark.django_db
def test_configurar_jobs_registra_triggers_da_organizacao(org_id, site_id):
    config = jobs.configure_site_jobs(
        org_id=org_id, site_id=site_id, daily_close_time=time(2, 0), time_zone="Europe/Berlin"
    )

    assert config.daily_close_time == time(2, 0)
    assert config.archive_enabled is False
    assert set(FiscalJobTrigger.objects.filter(org_id=org_id).values_list("name", flat=True)) == {
        FiscalJobTrigger.DAILY_JOBS,
        FiscalJobTrigger.FREQUENT_JOBS,
    }

    updated = jobs.configure_site_jobs(org_id=org_id, site_id=site_id, archive_enabled=True)
    assert updated.daily_close_time == time(2, 0)
    assert updated.archive_enabled is True
    assert SiteFiscalJobConfig.objects.filter(org_id=org_id).count() == 1


@pytest.mark.django_db
def test_configurar_jobs_com_fuso_invalido(org_id, site_id):
    with pytest.raises(FiscalServiceError) as exc:
        jobs.configure_site_jobs(org_id=org_id, site_id=site_id, time_zone="Marte/Olympus")

    assert exc.value.code == ERR_INVALID_TIME_ZONE
    assert not SiteFiscalJobConfig.objects.exists()


@pytest.mark.django_db
def test_configurar_jobs_com_campo_desconhecido(org_id, site_id):
    with pytest.raises(TypeError):
        jobs.configure_site_jobs(org_id=org_id, site_id=site_id, cron="* * * * *")


@pytest.mark.django_db
def test_remover_jobs_do_site(org_id, site_id):
    jobs.configure_site_jobs(org_id=org_id, site_id=site_id)

    assert jobs.remove_site_jobs(org_id=org_id, site_id=site_id) is True
    assert jobs.remove_site_jobs(org_id=org_id, site_id=site_id) is False
    assert jobs.get_site_job_configs(org_id=org_id) == []


# ---------------------------------------------------------------------------
# Jobs manuais
# ---------------------------------------------------------------------------


@pytest.mark.django_db
def test_fechamento_manual_em_site_nao_configurado(org_id, site_id):
    with pytest.raises(FiscalServiceError) as exc:
        jobs.trigger_daily_close(org_id=org_id, site_id=site_id, business_date=date(2024, 3, 1))

    assert exc.value.code == ERR_NOT_CONFIGURED
    assert not FiscalJobHistoryEntry.objects.exists()


@pytest.mark.django_db
def test_fechamento_manual_gera_z_report(configure_site, fake_registry, org_id, site_id):
    configure_site()
    fake_registry.add(date(2024, 3, 1), gross="11.90", tax={"19%": "1.90"}, net={"19%": "10.00"}, payments={"cash": "11.90"})

    entry = jobs.trigger_daily_close(org_id=org_id, site_id=site_id, business_date=date(2024, 3, 1))

    assert entry.success is True
    assert entry.triggered_by == "manual"
    assert entry.metadata["zreport_status"] == "generated"
    assert entry.metadata["zreport_number"] == "1"
    assert entry.metadata["business_date"] == "2024-03-01"
    assert ZReport.objects.get(org_id=org_id, site_id=site_id).transaction_count == 1

    again = jobs.trigger_daily_close(org_id=org_id, site_id=site_id, business_date=date(2024, 3, 1))
    assert again.success is True
    assert again.metadata["zreport_status"] == "already_exists"
    assert ZReport.objects.filter(org_id=org_id, site_id=site_id).count() == 1


@pytest.mark.django_db
def test_fechamento_com_falha_no_dispositivo_nao_gera_z_report(configure_site, fake_registry, org_id, site_id):
    configure_site(device_type="mock_always_fail")

    entry = jobs.trigger_daily_close(org_id=org_id, site_id=site_id, business_date=date(2024, 3, 1))

    assert entry.success is False
    assert entry.error_message
    assert "zreport_status" not in entry.metadata
    assert not ZReport.objects.exists()
    assert FiscalJobHistoryEntry.objects.filter(org_id=org_id).count() == 1


@pytest.mark.django_db
def test_arquivo_de_auditoria_vai_para_o_storage(configure_site, org_id, site_id, settings, tmp_path):
    settings.MEDIA_ROOT = str(tmp_path)
    configure_site()

    entry = jobs.trigger_archive_generation(
        org_id=org_id, site_id=site_id, start_date=date(2024, 3, 1), end_date=date(2024, 3, 7)
    )

    assert entry.success is True
    path = entry.metadata["archive_path"]
    assert path.startswith(f"fiscal-archives/{org_id}/{site_id}/de-audit-")
    stored = tmp_path / path
    assert stored.read_bytes().startswith(b"MOCK-EXPORT;")
    assert entry.metadata["archive_size_bytes"] == str(stored.stat().st_size)


@pytest.mark.django_db
def test_arquivo_com_intervalo_invertido(configure_site, org_id, site_id):
    configure_site()

    with pytest.raises(FiscalServiceError) as exc:
        jobs.trigger_archive_generation(
            org_id=org_id, site_id=site_id, start_date=date(2024, 3, 2), end_date=date(2024, 3, 1)
        )

    assert exc.value.code == ERR_INVALID_DATE_RANGE


@pytest.mark.django_db
def test_arquivo_com_falha_no_dispositivo(configure_site, org_id, site_id):
    configure_site(device_type="mock_always_fail")

    entry = jobs.trigger_archive_generation(
        org_id=org_id, site_id=site_id, start_date=date(2024, 3, 1), end_date=date(2024, 3, 1)
    )

    assert entry.success is False
    assert entry.metadata["error_code"] == "EXPORT_FAILED"


# ---------------------------------------------------------------------------
# Histórico
# ---------------------------------------------------------------------------


@pytest.mark.django_db
def test_historico_limitado_descarta_os_mais_antigos(configure_site, fake_registry, org_id, site_id, settings):
    settings.FISCAL_JOB_HISTORY_MAX_ENTRIES = 3
    configure_site()

    for day in range(1, 6):
        jobs.trigger_daily_close(org_id=org_id, site_id=site_id, business_date=date(2024, 3, day))

    history = jobs.get_job_history(org_id=org_id)
    assert len(history) == 3
    assert [h.metadata["business_date"] for h in history] == ["2024-03-05", "2024-03-04", "2024-03-03"]
    assert len(jobs.get_job_history(org_id=org_id, limit=2)) == 2


@pytest.mark.django_db
def test_historico_e_imutavel(configure_site, fake_registry, org_id, site_id):
    configure_site()
    entry = jobs.trigger_daily_close(org_id=org_id, site_id=site_id, business_date=date(2024, 3, 1))

    entry.success = False
    with pytest.raises(ValueError):
        entry.save()


# ---------------------------------------------------------------------------
# Disparo agendado
# ---------------------------------------------------------------------------


@pytest.mark.django_db
def test_fechamento_agendado_roda_uma_vez_por_data(configure_site, fake_registry, org_id, site_id):
    """
    Cenário:
      - Site em Europe/Berlin com fechamento às 03:00.
      - Dois disparos do agendador dentro da janela (03:10 e 03:20 locais).
      - Esperado: um único fechamento para 2024-03-01.
    """
    configure_site()
    jobs.configure_site_jobs(org_id=org_id, site_id=site_id, daily_close_time=time(3, 0), time_zone="Europe/Berlin")

    first = jobs.process_daily_jobs(org_id=org_id, now=_utc(2024, 3, 2, 2, 10))
    second = jobs.process_daily_jobs(org_id=org_id, now=_utc(2024, 3, 2, 2, 20))

    assert len(first) == 1
    assert second == []
    assert first[0].triggered_by == "scheduler"
    assert first[0].metadata["business_date"] == "2024-03-01"
    assert FiscalJobRun.objects.filter(org_id=org_id, site_id=site_id, job_type="DailyClose").count() == 1


@pytest.mark.django_db
def test_agendador_fora_da_janela_nao_roda(configure_site, org_id, site_id):
    configure_site()
    jobs.configure_site_jobs(org_id=org_id, site_id=site_id, daily_close_time=time(3, 0))

    assert jobs.process_daily_jobs(org_id=org_id, now=_utc(2024, 3, 2, 12, 0)) == []
    assert not FiscalJobHistoryEntry.objects.exists()


@pytest.mark.django_db
def test_agendador_roda_arquivo_do_dia_anterior(configure_site, org_id, site_id, settings, tmp_path):
    settings.MEDIA_ROOT = str(tmp_path)
    configure_site()
    jobs.configure_site_jobs(
        org_id=org_id,
        site_id=site_id,
        daily_close_enabled=False,
        archive_enabled=True,
        archive_time=time(4, 0),
    )

    entries = jobs.process_daily_jobs(org_id=org_id, now=_utc(2024, 3, 2, 4, 5))

    assert len(entries) == 1
    assert entries[0].job_type == "ArchiveGeneration"
    assert entries[0].metadata["start_date"] == entries[0].metadata["end_date"] == "2024-03-01"


@pytest.mark.django_db
def test_falha_de_um_site_nao_impede_os_demais(configure_site, fake_registry, org_id):
    site_broken = uuid.uuid4()
    site_ok = uuid.uuid4()
    configure_site(site=site_ok)
    jobs.configure_site_jobs(org_id=org_id, site_id=site_ok, daily_close_time=time(3, 0))
    jobs.configure_site_jobs(org_id=org_id, site_id=site_broken, daily_close_time=time(3, 0))
    SiteFiscalJobConfig.objects.filter(site_id=site_broken).update(time_zone="Fuso/Quebrado")

    entries = jobs.process_daily_jobs(org_id=org_id, now=_utc(2024, 3, 2, 3, 0))

    assert [e.site_id for e in entries] == [site_ok]
    assert entries[0].success is True


# ---------------------------------------------------------------------------
# Certificados
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "days, expected",
    [(3, "Critical"), (7, "Critical"), (8, "Warning"), (30, "Warning"), (45, "Info"), (61, None)],
)
def test_severidade_por_dias_restantes(days, expected):
    assert jobs.classify_expiry_severity(days) == expected


@pytest.mark.django_db
def test_certificado_a_5_dias_gera_alerta_critico(configure_site, org_id, site_id, caplog):
    configure_site(settings={"tax_number": "DE1", "certificate_expiry_days": "5", "device_serial": "MOCK-5"})
    jobs.configure_site_jobs(org_id=org_id, site_id=site_id, certificate_expiry_warning_days=30)

    with caplog.at_level(logging.WARNING, logger="compliance.fiscal"):
        warnings = jobs.process_frequent_jobs(org_id=org_id)

    assert len(warnings) == 1
    assert warnings[0].severity == "Critical"
    assert warnings[0].days_until_expiry == 5
    assert warnings[0].device_serial == "MOCK-5"
    alerts = [r for r in caplog.records if r.getMessage() == "fiscal_certificate_expiry_alert"]
    assert len(alerts) == 1
    assert alerts[0].event == "fiscal_certificate_expiry_alert"


@pytest.mark.django_db
def test_certificado_a_45_dias_com_limite_30_nao_gera_aviso(configure_site, org_id, site_id):
    configure_site(settings={"tax_number": "DE1", "certificate_expiry_days": "45"})
    jobs.configure_site_jobs(org_id=org_id, site_id=site_id, certificate_expiry_warning_days=30)

    assert jobs.check_certificate_expiry(org_id=org_id) == []


@pytest.mark.django_db
def test_monitoramento_desligado_ignora_site(configure_site, org_id, site_id):
    configure_site(settings={"tax_number": "DE1", "certificate_expiry_days": "2"})
    jobs.configure_site_jobs(org_id=org_id, site_id=site_id, certificate_monitoring_enabled=False)

    assert jobs.check_certificate_expiry(org_id=org_id) == []
