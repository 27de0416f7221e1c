# fiscal/services/job_scheduler_service.py
"""
Job Runner fiscal por organização.

Responsabilidades:
  - Guardar a agenda de jobs de cada site (fechamento diário, arquivo de
    auditoria, monitoramento de certificado).
  - Disparar os jobs agendados (process_daily_jobs / process_frequent_jobs,
    chamados pelos triggers duráveis) e os manuais (API).
  - Manter o histórico append-only das execuções, limitado por organização.

Regras gerais:
  1) Um job agendado roda no máximo uma vez por (site, tipo, data de
     negócio): FiscalJobRun é "reivindicado" antes da execução.
  2) Falha de um site nunca interrompe o processamento dos demais.
  3) Toda execução (sucesso ou falha) gera exatamente uma entrada de
     histórico; exceções viram success=False + error_message.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.db import transaction
from django.utils import timezone

from fiscal.models import (
    FiscalJobHistoryEntry,
    FiscalJobRun,
    FiscalJobTriggeredBy,
    FiscalJobType,
    SiteFiscalJobConfig,
    ZReport,
)
from fiscal.services import router_service, zreport_service
from fiscal.services.dto import CertificateExpiryWarning
from fiscal.services.exceptions import (
    ERR_ALREADY_EXISTS,
    ERR_INVALID_DATE_RANGE,
    ERR_INVALID_TIME_ZONE,
    FiscalServiceError,
)
from fiscal.services.trigger_service import ensure_organization_triggers

logger = logging.getLogger("compliance.fiscal")

SEVERITY_CRITICAL = "Critical"
SEVERITY_WARNING = "Warning"
SEVERITY_INFO = "Info"

SITE_JOB_CONFIG_FIELDS = (
    "daily_close_enabled",
    "daily_close_time",
    "archive_enabled",
    "archive_time",
    "certificate_monitoring_enabled",
    "certificate_expiry_warning_days",
    "time_zone",
)

MINUTES_PER_DAY = 24 * 60


# ---------------------------------------------------------------------------
# Helpers de tempo
# ---------------------------------------------------------------------------


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise FiscalServiceError(ERR_INVALID_TIME_ZONE, f"Fuso horário inválido: {name!r}.") from exc


def _minutes(value: time) -> float:
    return value.hour * 60 + value.minute + value.second / 60


def is_time_for_job(local_time: time, scheduled_time: time, window_minutes: Optional[int] = None) -> bool:
    """
    True se local_time está a até window_minutes do horário agendado.

    A diferença é circular (23:50 vs 00:10 = 20 minutos).
    """
    if window_minutes is None:
        window_minutes = settings.FISCAL_JOB_WINDOW_MINUTES
    diff = abs(_minutes(local_time) - _minutes(scheduled_time)) % MINUTES_PER_DAY
    return min(diff, MINUTES_PER_DAY - diff) <= window_minutes


def business_date_for(local_now: datetime, scheduled_time: time) -> date:
    """
    Data de negócio fechada por um disparo em local_now.

    É o dia anterior à ocorrência do horário agendado mais próxima de
    local_now; assim um disparo às 23:50 para um job das 00:10 fecha o
    mesmo dia que um disparo às 00:20.
    """
    today = local_now.replace(tzinfo=None)
    candidates = [
        datetime.combine(today.date() + timedelta(days=offset), scheduled_time)
        for offset in (-1, 0, 1)
    ]
    nearest = min(candidates, key=lambda candidate: abs(candidate - today))
    return nearest.date() - timedelta(days=1)


def _local_day_bounds(zone: ZoneInfo, start_date: date, end_date: date) -> tuple[datetime, datetime]:
    start = datetime.combine(start_date, time.min, tzinfo=zone)
    end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=zone) - timedelta(microseconds=1)
    return start, end


def _site_zone(org_id, site_id) -> ZoneInfo:
    config = SiteFiscalJobConfig.objects.filter(org_id=org_id, site_id=site_id).first()
    if config is None:
        return ZoneInfo("UTC")
    return _zone(config.time_zone)


# ---------------------------------------------------------------------------
# Configuração de jobs por site
# ---------------------------------------------------------------------------


def configure_site_jobs(*, org_id, site_id, **fields) -> SiteFiscalJobConfig:
    """
    Cria/atualiza a agenda de jobs do site e garante os triggers da
    organização. Campos não informados mantêm o valor atual (ou o default).
    """
    unknown = set(fields) - set(SITE_JOB_CONFIG_FIELDS)
    if unknown:
        raise TypeError(f"Campos de configuração desconhecidos: {sorted(unknown)}")

    if "time_zone" in fields:
        _zone(fields["time_zone"])

    with transaction.atomic():
        config = (
            SiteFiscalJobConfig.objects.select_for_update()
            .filter(org_id=org_id, site_id=site_id)
            .first()
        )
        if config is None:
            config = SiteFiscalJobConfig(org_id=org_id, site_id=site_id)

        for name, value in fields.items():
            setattr(config, name, value)
        config.save()

        ensure_organization_triggers(org_id)

    logger.info(
        "fiscal_site_jobs_configured",
        extra={
            "event": "fiscal_jobs_configure",
            "org_id": str(org_id),
            "site_id": str(site_id),
            "daily_close_enabled": config.daily_close_enabled,
            "archive_enabled": config.archive_enabled,
            "time_zone": config.time_zone,
        },
    )
    return config


def remove_site_jobs(*, org_id, site_id) -> bool:
    deleted, _ = SiteFiscalJobConfig.objects.filter(org_id=org_id, site_id=site_id).delete()
    logger.info(
        "fiscal_site_jobs_removed",
        extra={
            "event": "fiscal_jobs_remove",
            "org_id": str(org_id),
            "site_id": str(site_id),
            "removed": bool(deleted),
        },
    )
    return bool(deleted)


def get_site_job_configs(*, org_id) -> List[SiteFiscalJobConfig]:
    return list(SiteFiscalJobConfig.objects.filter(org_id=org_id).order_by("site_id"))


# ---------------------------------------------------------------------------
# Histórico
# ---------------------------------------------------------------------------


def _trim_history(org_id) -> int:
    max_entries = settings.FISCAL_JOB_HISTORY_MAX_ENTRIES
    cutoff = (
        FiscalJobHistoryEntry.objects.filter(org_id=org_id)
        .order_by("-id")
        .values_list("id", flat=True)[max_entries : max_entries + 1]
    )
    cutoff = list(cutoff)
    if not cutoff:
        return 0
    deleted, _ = FiscalJobHistoryEntry.objects.filter(org_id=org_id, id__lte=cutoff[0]).delete()
    return deleted


def _record_history(
    *,
    org_id,
    site_id,
    job_type: str,
    triggered_by: str,
    started_at: datetime,
    success: bool,
    error_message: Optional[str],
    metadata: dict,
) -> FiscalJobHistoryEntry:
    with transaction.atomic():
        entry = FiscalJobHistoryEntry.objects.create(
            org_id=org_id,
            site_id=site_id,
            job_type=job_type,
            triggered_by=triggered_by,
            started_at=started_at,
            completed_at=timezone.now(),
            success=success,
            error_message=error_message,
            metadata={key: str(value) for key, value in metadata.items()},
        )
        _trim_history(org_id)
    return entry


def get_job_history(*, org_id, limit: int = 100) -> List[FiscalJobHistoryEntry]:
    return list(FiscalJobHistoryEntry.objects.filter(org_id=org_id).order_by("-id")[:limit])


# ---------------------------------------------------------------------------
# Execução dos jobs
# ---------------------------------------------------------------------------


def _generate_zreport(org_id, site_id, business_date: date, metadata: dict, registry=None) -> None:
    try:
        report = zreport_service.generate_report(
            org_id=org_id,
            site_id=site_id,
            business_date=business_date,
            registry=registry,
        )
        metadata["zreport_status"] = "generated"
    except FiscalServiceError as exc:
        if exc.code != ERR_ALREADY_EXISTS:
            raise
        report = ZReport.objects.get(org_id=org_id, site_id=site_id, business_date=business_date)
        metadata["zreport_status"] = "already_exists"
    metadata["zreport_number"] = report.report_number


def trigger_daily_close(
    *,
    org_id,
    site_id,
    business_date: date,
    triggered_by: str = FiscalJobTriggeredBy.MANUAL,
    registry=None,
) -> FiscalJobHistoryEntry:
    """
    Fechamento diário: Router.perform_daily_close + Z-report da data.

    Regras:
      1) Disparo manual exige site com fiscal ativo (NOT_CONFIGURED).
      2) O Z-report só é gerado se o fechamento no dispositivo passou;
         relatório já existente para a data não é falha.
      3) Qualquer exceção vira entrada de histórico com success=False.
    """
    if triggered_by == FiscalJobTriggeredBy.MANUAL:
        router_service.require_active_site(org_id=org_id, site_id=site_id)

    started_at = timezone.now()
    metadata = {"business_date": business_date.isoformat(), "triggered_by": str(triggered_by)}
    error_message = None

    try:
        result = router_service.perform_daily_close(
            org_id=org_id,
            site_id=site_id,
            business_date=business_date,
        )
        metadata.update(result.metadata)
        success = result.success
        error_message = result.error_message
        if success:
            _generate_zreport(org_id, site_id, business_date, metadata, registry=registry)
    except Exception as exc:
        logger.exception(
            "fiscal_daily_close_job_error",
            extra={
                "event": "fiscal_job_daily_close",
                "org_id": str(org_id),
                "site_id": str(site_id),
                "business_date": business_date.isoformat(),
            },
        )
        success = False
        error_message = str(exc) or exc.__class__.__name__

    entry = _record_history(
        org_id=org_id,
        site_id=site_id,
        job_type=FiscalJobType.DAILY_CLOSE,
        triggered_by=triggered_by,
        started_at=started_at,
        success=success,
        error_message=error_message,
        metadata=metadata,
    )

    logger.info(
        "fiscal_daily_close_job",
        extra={
            "event": "fiscal_job_daily_close",
            "org_id": str(org_id),
            "site_id": str(site_id),
            "business_date": business_date.isoformat(),
            "triggered_by": str(triggered_by),
            "job_id": str(entry.job_id),
            "outcome": "success" if success else "failure",
        },
    )
    return entry


def trigger_archive_generation(
    *,
    org_id,
    site_id,
    start_date: date,
    end_date: date,
    triggered_by: str = FiscalJobTriggeredBy.MANUAL,
) -> FiscalJobHistoryEntry:
    """
    Gera o arquivo de auditoria do período (dias locais do site, inclusivos)
    e grava no storage padrão em FISCAL_ARCHIVE_PREFIX/<org>/<site>/.
    """
    if start_date > end_date:
        raise FiscalServiceError(ERR_INVALID_DATE_RANGE, "Data inicial deve ser menor ou igual à data final.")
    if triggered_by == FiscalJobTriggeredBy.MANUAL:
        router_service.require_active_site(org_id=org_id, site_id=site_id)

    started_at = timezone.now()
    metadata = {
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "triggered_by": str(triggered_by),
    }
    error_message = None

    try:
        start, end = _local_day_bounds(_site_zone(org_id, site_id), start_date, end_date)
        result = router_service.generate_audit_export(org_id=org_id, site_id=site_id, start=start, end=end)
        success = result.success
        if success:
            path = default_storage.save(
                f"{settings.FISCAL_ARCHIVE_PREFIX}/{org_id}/{site_id}/{result.file_name}",
                ContentFile(result.content),
            )
            metadata["archive_path"] = path
            metadata["archive_size_bytes"] = result.size_bytes
        else:
            error_message = result.error_message
            metadata["error_code"] = result.error_code
    except Exception as exc:
        logger.exception(
            "fiscal_archive_job_error",
            extra={"event": "fiscal_job_archive", "org_id": str(org_id), "site_id": str(site_id)},
        )
        success = False
        error_message = str(exc) or exc.__class__.__name__

    entry = _record_history(
        org_id=org_id,
        site_id=site_id,
        job_type=FiscalJobType.ARCHIVE_GENERATION,
        triggered_by=triggered_by,
        started_at=started_at,
        success=success,
        error_message=error_message,
        metadata=metadata,
    )

    logger.info(
        "fiscal_archive_job",
        extra={
            "event": "fiscal_job_archive",
            "org_id": str(org_id),
            "site_id": str(site_id),
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "job_id": str(entry.job_id),
            "outcome": "success" if success else "failure",
        },
    )
    return entry


def _claim_job_run(org_id, site_id, job_type: str, business_date: date) -> bool:
    _, created = FiscalJobRun.objects.get_or_create(
        org_id=org_id,
        site_id=site_id,
        job_type=job_type,
        business_date=business_date,
    )
    return created


def process_daily_jobs(*, org_id, now: Optional[datetime] = None) -> List[FiscalJobHistoryEntry]:
    """
    Disparo periódico (trigger daily_jobs): roda fechamento diário e
    arquivo de auditoria dos sites cuja hora local está dentro da janela.
    """
    now = now or timezone.now()
    entries: List[FiscalJobHistoryEntry] = []

    for config in SiteFiscalJobConfig.objects.filter(org_id=org_id):
        try:
            local_now = now.astimezone(_zone(config.time_zone))
            local_time = local_now.time()

            if config.daily_close_enabled and is_time_for_job(local_time, config.daily_close_time):
                business_date = business_date_for(local_now, config.daily_close_time)
                if _claim_job_run(org_id, config.site_id, FiscalJobType.DAILY_CLOSE, business_date):
                    entries.append(
                        trigger_daily_close(
                            org_id=org_id,
                            site_id=config.site_id,
                            business_date=business_date,
                            triggered_by=FiscalJobTriggeredBy.SCHEDULER,
                        )
                    )

            if config.archive_enabled and is_time_for_job(local_time, config.archive_time):
                archive_date = business_date_for(local_now, config.archive_time)
                if _claim_job_run(org_id, config.site_id, FiscalJobType.ARCHIVE_GENERATION, archive_date):
                    entries.append(
                        trigger_archive_generation(
                            org_id=org_id,
                            site_id=config.site_id,
                            start_date=archive_date,
                            end_date=archive_date,
                            triggered_by=FiscalJobTriggeredBy.SCHEDULER,
                        )
                    )
        except Exception:
            logger.exception(
                "fiscal_daily_jobs_site_error",
                extra={"event": "fiscal_daily_jobs", "org_id": str(org_id), "site_id": str(config.site_id)},
            )

    return entries


# ---------------------------------------------------------------------------
# Monitoramento de certificados
# ---------------------------------------------------------------------------


def classify_expiry_severity(days: int) -> Optional[str]:
    if days <= 7:
        return SEVERITY_CRITICAL
    if days <= 30:
        return SEVERITY_WARNING
    if days <= 60:
        return SEVERITY_INFO
    return None


def check_certificate_expiry(*, org_id, now: Optional[datetime] = None) -> List[CertificateExpiryWarning]:
    now = now or timezone.now()
    warnings: List[CertificateExpiryWarning] = []

    for config in SiteFiscalJobConfig.objects.filter(org_id=org_id, certificate_monitoring_enabled=True):
        try:
            health = router_service.get_health_status(org_id=org_id, site_id=config.site_id, now=now)
            days = health.days_until_certificate_expiry
            if days is None:
                continue

            severity = classify_expiry_severity(days)
            if severity and days <= config.certificate_expiry_warning_days:
                warnings.append(
                    CertificateExpiryWarning(
                        site_id=config.site_id,
                        device_serial=health.device_serial or health.device_id or "",
                        expiry_date=health.certificate_expiry_date or now + timedelta(days=days),
                        days_until_expiry=days,
                        severity=severity,
                    )
                )
        except Exception:
            logger.warning(
                "fiscal_certificate_check_error",
                extra={"event": "fiscal_certificate_check", "org_id": str(org_id), "site_id": str(config.site_id)},
                exc_info=True,
            )

    return warnings


def process_frequent_jobs(*, org_id, now: Optional[datetime] = None) -> List[CertificateExpiryWarning]:
    """
    Disparo periódico (trigger frequent_jobs): varredura de certificados.
    Avisos Critical viram registros de alerta no log; a entrega da
    notificação fica com quem consome esses registros.
    """
    warnings = check_certificate_expiry(org_id=org_id, now=now)
    for warning in warnings:
        if warning.severity != SEVERITY_CRITICAL:
            continue
        logger.warning(
            "fiscal_certificate_expiry_alert",
            extra={
                "event": "fiscal_certificate_expiry_alert",
                "org_id": str(org_id),
                "site_id": str(warning.site_id),
                "device_serial": warning.device_serial,
                "days_until_expiry": warning.days_until_expiry,
                "severity": warning.severity,
            },
        )
    return warnings
