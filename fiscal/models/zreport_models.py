import uuid

from django.db import models


class ZReportCounter(models.Model):
    """
    Contador de numeração de Z-reports por site.

    Regras:
      - Estritamente crescente, nunca decrementado nem reutilizado
        (nem quando relatórios antigos são descartados pela retenção).
      - Incrementado na mesma transação que grava o ZReport.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    org_id = models.UUIDField()
    site_id = models.UUIDField()
    last_report_number = models.PositiveBigIntegerField(default=0)

    class Meta:
        db_table = "fiscal_zreport_counter"
        constraints = [
            models.UniqueConstraint(
                fields=["org_id", "site_id"],
                name="uniq_fiscal_zreport_counter_org_site",
            ),
        ]


class ZReport(models.Model):
    """
    Relatório Z (fechamento de dia) de um site. Imutável após criado.

    Valores monetários agregados por alíquota/forma de pagamento ficam em
    JSON como strings decimais ("40.50"), para não perder precisão.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    org_id = models.UUIDField(db_index=True)
    site_id = models.UUIDField()

    report_number = models.PositiveBigIntegerField()
    business_date = models.DateField()
    generated_at = models.DateTimeField()

    gross_sales = models.DecimalField(max_digits=14, decimal_places=2)
    net_sales = models.DecimalField(max_digits=14, decimal_places=2)
    total_tax = models.DecimalField(max_digits=14, decimal_places=2)
    transaction_count = models.PositiveIntegerField(default=0)

    sales_by_vat_rate = models.JSONField(default=dict, blank=True)
    sales_by_payment_type = models.JSONField(default=dict, blank=True)

    void_count = models.PositiveIntegerField(default=0)
    void_total = models.DecimalField(max_digits=14, decimal_places=2)

    skipped_transactions = models.PositiveIntegerField(
        default=0,
        help_text="Transações que não puderam ser lidas do registro e ficaram fora dos totais.",
    )

    signature = models.TextField(null=True, blank=True)
    device_serial = models.CharField(max_length=100, null=True, blank=True)

    class Meta:
        db_table = "fiscal_zreport"
        ordering = ["business_date"]
        constraints = [
            models.UniqueConstraint(
                fields=["org_id", "site_id", "business_date"],
                name="uniq_fiscal_zreport_site_date",
            ),
            models.UniqueConstraint(
                fields=["org_id", "site_id", "report_number"],
                name="uniq_fiscal_zreport_site_number",
            ),
        ]
        indexes = [
            models.Index(fields=["org_id", "site_id", "report_number"], name="idx_fiscal_zreport_number"),
        ]

    def __str__(self):
        return f"Z#{self.report_number} {self.business_date} ({self.site_id})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Z-reports são imutáveis após a geração.")
        super().save(*args, **kwargs)
