# fiscal/services/trigger_service.py
"""
Triggers duráveis do Job Runner (substituem timers em memória).

Cada organização com agenda fiscal tem duas linhas em FiscalJobTrigger:
  - daily_jobs: a cada FISCAL_DAILY_JOBS_INTERVAL_MINUTES (checa janelas de
    fechamento/arquivo).
  - frequent_jobs: a cada FISCAL_FREQUENT_JOBS_INTERVAL_MINUTES (certificados).

Regras:
  1) claim_due_triggers trava as linhas vencidas com
     select_for_update(skip_locked=True): dois schedulers nunca disparam o
     mesmo trigger.
  2) next_due_at é gravado ANTES de executar o job.
  3) Vários períodos perdidos (processo parado) viram UM único disparo.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from fiscal.models import FiscalJobTrigger, SiteFiscalJobConfig

logger = logging.getLogger("compliance.fiscal")


def _trigger_specs() -> Dict[str, Tuple[int, int]]:
    """name -> (intervalo em minutos, atraso inicial em minutos)"""
    return {
        FiscalJobTrigger.DAILY_JOBS: (
            settings.FISCAL_DAILY_JOBS_INTERVAL_MINUTES,
            settings.FISCAL_DAILY_JOBS_INITIAL_DELAY_MINUTES,
        ),
        FiscalJobTrigger.FREQUENT_JOBS: (
            settings.FISCAL_FREQUENT_JOBS_INTERVAL_MINUTES,
            settings.FISCAL_FREQUENT_JOBS_INITIAL_DELAY_MINUTES,
        ),
    }


def ensure_organization_triggers(org_id, *, now: Optional[datetime] = None) -> List[FiscalJobTrigger]:
    now = now or timezone.now()
    triggers = []

    for name, (interval, initial_delay) in _trigger_specs().items():
        trigger, created = FiscalJobTrigger.objects.get_or_create(
            org_id=org_id,
            name=name,
            defaults={
                "interval_minutes": interval,
                "next_due_at": now + timedelta(minutes=initial_delay),
            },
        )
        if not created and trigger.interval_minutes != interval:
            trigger.interval_minutes = interval
            trigger.save(update_fields=["interval_minutes"])
        if created:
            logger.info(
                "fiscal_trigger_registered",
                extra={
                    "event": "fiscal_trigger_register",
                    "org_id": str(org_id),
                    "trigger": name,
                    "next_due_at": trigger.next_due_at.isoformat(),
                },
            )
        triggers.append(trigger)

    return triggers


def next_due_after(next_due_at: datetime, interval_minutes: int, now: datetime) -> datetime:
    """
    Próximo vencimento estritamente depois de now, pulando os períodos
    perdidos.
    """
    interval = timedelta(minutes=interval_minutes)
    if next_due_at > now:
        return next_due_at
    missed = (now - next_due_at) // interval
    return next_due_at + (missed + 1) * interval


def claim_due_triggers(now: Optional[datetime] = None) -> List[FiscalJobTrigger]:
    now = now or timezone.now()

    with transaction.atomic():
        due = list(
            FiscalJobTrigger.objects.select_for_update(skip_locked=True)
            .filter(next_due_at__lte=now)
            .order_by("next_due_at")
        )
        for trigger in due:
            trigger.last_fired_at = now
            trigger.next_due_at = next_due_after(trigger.next_due_at, trigger.interval_minutes, now)
            trigger.save(update_fields=["last_fired_at", "next_due_at"])

    return due


def _dispatch(trigger: FiscalJobTrigger, now: datetime) -> None:
    from fiscal.services import job_scheduler_service

    if trigger.name == FiscalJobTrigger.DAILY_JOBS:
        job_scheduler_service.process_daily_jobs(org_id=trigger.org_id, now=now)
    elif trigger.name == FiscalJobTrigger.FREQUENT_JOBS:
        job_scheduler_service.process_frequent_jobs(org_id=trigger.org_id, now=now)
    else:
        logger.warning(
            "fiscal_trigger_unknown",
            extra={"event": "fiscal_trigger_fire", "org_id": str(trigger.org_id), "trigger": trigger.name},
        )


def run_due_triggers(now: Optional[datetime] = None) -> int:
    now = now or timezone.now()
    fired = 0

    for trigger in claim_due_triggers(now):
        fired += 1
        try:
            _dispatch(trigger, now)
        except Exception:
            logger.exception(
                "fiscal_trigger_error",
                extra={"event": "fiscal_trigger_fire", "org_id": str(trigger.org_id), "trigger": trigger.name},
            )
        else:
            logger.debug(
                "fiscal_trigger_fired",
                extra={
                    "event": "fiscal_trigger_fire",
                    "org_id": str(trigger.org_id),
                    "trigger": trigger.name,
                    "next_due_at": trigger.next_due_at.isoformat(),
                },
            )

    return fired


def recover_missed_triggers(now: Optional[datetime] = None) -> int:
    """
    Executado na subida do scheduler: garante os triggers de toda
    organização com agenda e dispara (uma vez) os que venceram enquanto o
    processo estava parado.
    """
    now = now or timezone.now()
    org_ids = SiteFiscalJobConfig.objects.values_list("org_id", flat=True).distinct()
    for org_id in org_ids:
        ensure_organization_triggers(org_id, now=now)

    fired = run_due_triggers(now)
    logger.info("fiscal_triggers_recovered", extra={"event": "fiscal_trigger_recover", "fired": fired})
    return fired
