# fiscal/services/zreport_service.py
"""
Geração e consulta de Z-reports (fechamento de dia) por site.

Regras principais:
  1) No máximo um Z-report por (site, data de negócio).
  2) Numeração estritamente crescente por site, sem lacunas e sem reuso:
     o ZReportCounter é travado (select_for_update), incrementado e o
     relatório gravado no mesmo transaction.atomic().
  3) Falha ao ler UMA transação do registro de auditoria não aborta o
     relatório: ela é logada, contada em skipped_transactions e ignorada.
  4) Relatórios são imutáveis; a retenção descarta os mais antigos acima
     de FISCAL_ZREPORT_MAX_RETAINED, sem nunca mexer no contador.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from fiscal.models import ZReport, ZReportCounter
from fiscal.registry import TransactionRegistryProtocol, get_transaction_registry
from fiscal.services.dto import ZReportTotals
from fiscal.services.exceptions import (
    ERR_ALREADY_EXISTS,
    ERR_INVALID_DATE_RANGE,
    ERR_NOT_FOUND,
    FiscalServiceError,
)
from fiscal.services.router_service import get_health_status

logger = logging.getLogger("compliance.fiscal")

CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT)


def _decimal_json(values: dict) -> dict:
    return {key: str(_money(amount)) for key, amount in sorted(values.items())}


# ---------------------------------------------------------------------------
# Agregação
# ---------------------------------------------------------------------------


def _add(bucket: dict, key: str, amount: Decimal) -> None:
    bucket[key] = bucket.get(key, Decimal("0")) + amount


def _accumulate(totals: ZReportTotals, tx) -> None:
    if tx.is_void:
        totals.void_count += 1
        totals.void_total += abs(tx.gross_amount)
        return

    totals.gross_sales += tx.gross_amount
    totals.transaction_count += 1

    for rate, tax in tx.tax_amounts.items():
        totals.total_tax += tax
        _add(totals.sales_by_vat_rate, rate, tx.net_amounts.get(rate, Decimal("0")))

    for payment_type, amount in tx.payment_types.items():
        _add(totals.sales_by_payment_type, payment_type, amount)


def aggregate_transactions(
    registry: TransactionRegistryProtocol,
    *,
    org_id,
    site_id,
    business_date: date,
) -> ZReportTotals:
    totals = ZReportTotals()
    transaction_ids = registry.get_transaction_ids(org_id, site_id, business_date, business_date, None)

    for transaction_id in transaction_ids:
        try:
            tx = registry.get_transaction(org_id, site_id, transaction_id)
        except Exception:
            totals.skipped += 1
            logger.warning(
                "fiscal_zreport_transaction_skipped",
                extra={
                    "event": "fiscal_zreport_generate",
                    "org_id": str(org_id),
                    "site_id": str(site_id),
                    "business_date": business_date.isoformat(),
                    "transaction_id": str(transaction_id),
                },
                exc_info=True,
            )
            continue
        _accumulate(totals, tx)

    return totals


# ---------------------------------------------------------------------------
# Geração
# ---------------------------------------------------------------------------


def _apply_retention(org_id, site_id) -> int:
    max_retained = settings.FISCAL_ZREPORT_MAX_RETAINED
    cutoff = list(
        ZReport.objects.filter(org_id=org_id, site_id=site_id)
        .order_by("-report_number")
        .values_list("report_number", flat=True)[max_retained : max_retained + 1]
    )
    if not cutoff:
        return 0
    deleted, _ = ZReport.objects.filter(
        org_id=org_id, site_id=site_id, report_number__lte=cutoff[0]
    ).delete()
    return deleted


def generate_report(
    *,
    org_id,
    site_id,
    business_date: date,
    registry: Optional[TransactionRegistryProtocol] = None,
    now: Optional[datetime] = None,
) -> ZReport:
    """
    Gera o Z-report do site para a data de negócio.

    Levanta:
      - FiscalServiceError(ALREADY_EXISTS) se já houver relatório para a data
        (nada é alterado nesse caso).
      - Exceções do registro ao listar as transações do dia (o relatório
        inteiro depende dessa lista).
    """
    registry = registry or get_transaction_registry()
    now = now or timezone.now()

    with transaction.atomic():
        counter, _ = ZReportCounter.objects.select_for_update().get_or_create(
            org_id=org_id,
            site_id=site_id,
        )

        if ZReport.objects.filter(org_id=org_id, site_id=site_id, business_date=business_date).exists():
            raise FiscalServiceError(
                ERR_ALREADY_EXISTS,
                f"Já existe Z-report para {business_date.isoformat()} neste site.",
            )

        totals = aggregate_transactions(
            registry,
            org_id=org_id,
            site_id=site_id,
            business_date=business_date,
        )

        health = get_health_status(org_id=org_id, site_id=site_id)
        device_serial = health.device_serial or health.device_id

        counter.last_report_number += 1
        counter.save(update_fields=["last_report_number"])

        report = ZReport.objects.create(
            org_id=org_id,
            site_id=site_id,
            report_number=counter.last_report_number,
            business_date=business_date,
            generated_at=now,
            gross_sales=_money(totals.gross_sales),
            net_sales=_money(totals.net_sales),
            total_tax=_money(totals.total_tax),
            transaction_count=totals.transaction_count,
            sales_by_vat_rate=_decimal_json(totals.sales_by_vat_rate),
            sales_by_payment_type=_decimal_json(totals.sales_by_payment_type),
            void_count=totals.void_count,
            void_total=_money(totals.void_total),
            skipped_transactions=totals.skipped,
            signature=None,
            device_serial=device_serial,
        )

        discarded = _apply_retention(org_id, site_id)

    logger.info(
        "fiscal_zreport_generated",
        extra={
            "event": "fiscal_zreport_generate",
            "org_id": str(org_id),
            "site_id": str(site_id),
            "business_date": business_date.isoformat(),
            "report_number": report.report_number,
            "transaction_count": report.transaction_count,
            "gross_sales": str(report.gross_sales),
            "skipped_transactions": report.skipped_transactions,
            "discarded_reports": discarded,
        },
    )
    return report


# ---------------------------------------------------------------------------
# Consultas
# ---------------------------------------------------------------------------


def get_report(*, org_id, site_id, report_number: int) -> ZReport:
    report = ZReport.objects.filter(org_id=org_id, site_id=site_id, report_number=report_number).first()
    if report is None:
        raise FiscalServiceError(ERR_NOT_FOUND, f"Z-report #{report_number} não encontrado.")
    return report


def get_reports(*, org_id, site_id, start_date: date, end_date: date) -> List[ZReport]:
    if start_date > end_date:
        raise FiscalServiceError(ERR_INVALID_DATE_RANGE, "Data inicial deve ser menor ou igual à data final.")
    return list(
        ZReport.objects.filter(
            org_id=org_id,
            site_id=site_id,
            business_date__gte=start_date,
            business_date__lte=end_date,
        ).order_by("business_date")
    )


def get_latest_report(*, org_id, site_id) -> Optional[ZReport]:
    return ZReport.objects.filter(org_id=org_id, site_id=site_id).order_by("-report_number").first()
