import uuid
from datetime import time

from django.db import models


class FiscalJobType(models.TextChoices):
    DAILY_CLOSE = "DailyClose", "Fechamento diário"
    ARCHIVE_GENERATION = "ArchiveGeneration", "Geração de arquivo de auditoria"


class FiscalJobTriggeredBy(models.TextChoices):
    SCHEDULER = "scheduler", "Agendador"
    MANUAL = "manual", "Manual (API)"


class SiteFiscalJobConfig(models.Model):
    """
    Agenda dos jobs fiscais de um site, dentro do Job Runner da organização.

    Os horários são locais do site (time_zone IANA, ex.: 'Europe/Berlin').
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    org_id = models.UUIDField(db_index=True)
    site_id = models.UUIDField()

    daily_close_enabled = models.BooleanField(default=True)
    daily_close_time = models.TimeField(default=time(3, 0))

    archive_enabled = models.BooleanField(default=False)
    archive_time = models.TimeField(default=time(4, 0))

    certificate_monitoring_enabled = models.BooleanField(default=True)
    certificate_expiry_warning_days = models.PositiveIntegerField(default=30)

    time_zone = models.CharField(max_length=64, default="UTC")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "fiscal_site_job_config"
        ordering = ["org_id", "site_id"]
        constraints = [
            models.UniqueConstraint(
                fields=["org_id", "site_id"],
                name="uniq_fiscal_job_config_org_site",
            ),
        ]

    def __str__(self):
        return f"{self.org_id}/{self.site_id} ({self.time_zone})"


class FiscalJobRun(models.Model):
    """
    Registro de "job já executado" por data de negócio.

    A chave é (org, site, job_type, business_date): disparos repetidos do
    agendador dentro da janela não executam o mesmo job duas vezes.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    org_id = models.UUIDField()
    site_id = models.UUIDField()
    job_type = models.CharField(max_length=32, choices=FiscalJobType.choices)
    business_date = models.DateField()

    ran_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "fiscal_job_run"
        constraints = [
            models.UniqueConstraint(
                fields=["org_id", "site_id", "job_type", "business_date"],
                name="uniq_fiscal_job_run_key",
            ),
        ]


class FiscalJobHistoryEntry(models.Model):
    """
    Histórico append-only das execuções de jobs fiscais (manuais e agendadas).

    O id auto-incremental define a ordem de inserção, usada tanto para
    listar (mais recentes primeiro) quanto para descartar os mais antigos
    quando o limite por organização é atingido.
    """

    job_id = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)

    org_id = models.UUIDField(db_index=True)
    site_id = models.UUIDField()
    job_type = models.CharField(max_length=32, choices=FiscalJobType.choices)
    triggered_by = models.CharField(
        max_length=16,
        choices=FiscalJobTriggeredBy.choices,
        default=FiscalJobTriggeredBy.SCHEDULER,
    )

    started_at = models.DateTimeField()
    completed_at = models.DateTimeField(null=True, blank=True)
    success = models.BooleanField(default=False)
    error_message = models.TextField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "fiscal_job_history"
        ordering = ["-id"]
        indexes = [
            models.Index(fields=["org_id", "id"], name="idx_fiscal_job_hist_org"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Entradas de histórico de jobs fiscais são imutáveis.")
        super().save(*args, **kwargs)


class FiscalJobTrigger(models.Model):
    """
    Timer durável por organização (daily_jobs / frequent_jobs).

    next_due_at é persistido ANTES da execução: se o processo cair no meio,
    o disparo seguinte acontece normalmente e a idempotência por data de
    negócio (FiscalJobRun) evita trabalho duplicado.
    """

    DAILY_JOBS = "daily_jobs"
    FREQUENT_JOBS = "frequent_jobs"
    NAME_CHOICES = (
        (DAILY_JOBS, "Jobs diários (checagem horária)"),
        (FREQUENT_JOBS, "Jobs frequentes (certificados)"),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    org_id = models.UUIDField()
    name = models.CharField(max_length=32, choices=NAME_CHOICES)
    interval_minutes = models.PositiveIntegerField()
    next_due_at = models.DateTimeField(db_index=True)
    last_fired_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "fiscal_job_trigger"
        constraints = [
            models.UniqueConstraint(
                fields=["org_id", "name"],
                name="uniq_fiscal_job_trigger_org_name",
            ),
        ]

    def __str__(self):
        return f"{self.org_id}:{self.name} next={self.next_due_at:%Y-%m-%d %H:%M}"
