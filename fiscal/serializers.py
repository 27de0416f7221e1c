# fiscal/serializers.py
from rest_framework import serializers

from fiscal.models import FiscalJobHistoryEntry, SiteFiscalJobConfig, ZReport


# ---------------------------------------------------------------------------
# Catálogo / configuração fiscal do site
# ---------------------------------------------------------------------------


class CountryComplianceSerializer(serializers.Serializer):
    country = serializers.CharField()
    name = serializers.CharField()
    compliance_standard = serializers.CharField()
    supported_features = serializers.ListField(child=serializers.CharField())
    certified_device_types = serializers.ListField(child=serializers.CharField())


class SiteFiscalConfigurationInputSerializer(serializers.Serializer):
    country = serializers.CharField(max_length=2, min_length=2)
    enabled = serializers.BooleanField(default=False)
    device_id = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=100)
    device_type = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=32)
    # valores sempre texto; segredos podem vir como alias de variável de ambiente
    country_settings = serializers.DictField(
        child=serializers.CharField(allow_blank=True),
        required=False,
        default=dict,
    )


class SiteFiscalSnapshotSerializer(serializers.Serializer):
    org_id = serializers.UUIDField()
    site_id = serializers.UUIDField()
    country = serializers.CharField(allow_null=True)
    compliance_standard = serializers.CharField(allow_null=True)
    enabled = serializers.BooleanField()
    device_id = serializers.CharField(allow_null=True)
    device_type = serializers.CharField(allow_null=True)
    transaction_count = serializers.IntegerField()
    last_transaction_at = serializers.DateTimeField(allow_null=True)
    last_error = serializers.CharField(allow_null=True)
    version = serializers.IntegerField()
    status = serializers.DictField(child=serializers.CharField())


class FiscalConfigValidationSerializer(serializers.Serializer):
    is_valid = serializers.BooleanField()
    errors = serializers.ListField(child=serializers.CharField())
    warnings = serializers.ListField(child=serializers.CharField())
    metadata = serializers.DictField(child=serializers.CharField())


class FiscalDeviceHealthSerializer(serializers.Serializer):
    device_id = serializers.CharField(allow_null=True)
    device_serial = serializers.CharField(allow_null=True)
    status = serializers.CharField()
    is_online = serializers.BooleanField()
    certificate_valid = serializers.BooleanField()
    days_until_certificate_expiry = serializers.IntegerField(allow_null=True)
    certificate_expiry_date = serializers.DateTimeField(allow_null=True)
    last_sync_at = serializers.DateTimeField(allow_null=True)
    last_transaction_at = serializers.DateTimeField(allow_null=True)
    total_transactions = serializers.IntegerField()
    last_error = serializers.CharField(allow_null=True)


# ---------------------------------------------------------------------------
# Transações / exportação
# ---------------------------------------------------------------------------


class FiscalTransactionInputSerializer(serializers.Serializer):
    """
    Venda concluída a ser certificada.

    net_amounts / tax_amounts por alíquota ("19%"), payment_types por forma
    de pagamento ("cash", "card").
    """

    transaction_id = serializers.UUIDField()
    timestamp = serializers.DateTimeField(required=False)
    transaction_type = serializers.CharField(default="Receipt", max_length=32)
    gross_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    net_amounts = serializers.DictField(
        child=serializers.DecimalField(max_digits=14, decimal_places=2),
        required=False,
        default=dict,
    )
    tax_amounts = serializers.DictField(
        child=serializers.DecimalField(max_digits=14, decimal_places=2),
        required=False,
        default=dict,
    )
    payment_types = serializers.DictField(
        child=serializers.DecimalField(max_digits=14, decimal_places=2),
        required=False,
        default=dict,
    )
    source_type = serializers.CharField(default="Order", max_length=32)
    source_id = serializers.UUIDField(required=False, allow_null=True)
    operator_id = serializers.UUIDField(required=False, allow_null=True)
    client_id = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=100)
    additional_data = serializers.DictField(
        child=serializers.CharField(allow_blank=True),
        required=False,
        default=dict,
    )


class FiscalResultSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    transaction_id = serializers.UUIDField(allow_null=True)
    signature = serializers.CharField(allow_null=True)
    signature_counter = serializers.IntegerField(allow_null=True)
    certificate_serial = serializers.CharField(allow_null=True)
    qr_code_data = serializers.CharField(allow_null=True)
    error_code = serializers.CharField(allow_null=True)
    error_message = serializers.CharField(allow_null=True)
    metadata = serializers.DictField(child=serializers.CharField())


class DateTimeRangeInputSerializer(serializers.Serializer):
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()


class DateRangeInputSerializer(serializers.Serializer):
    start_date = serializers.DateField()
    end_date = serializers.DateField()


class BusinessDateInputSerializer(serializers.Serializer):
    business_date = serializers.DateField()


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class SiteFiscalJobConfigInputSerializer(serializers.Serializer):
    daily_close_enabled = serializers.BooleanField(default=True)
    daily_close_time = serializers.TimeField(required=False)
    archive_enabled = serializers.BooleanField(default=False)
    archive_time = serializers.TimeField(required=False)
    certificate_monitoring_enabled = serializers.BooleanField(default=True)
    certificate_expiry_warning_days = serializers.IntegerField(min_value=1, max_value=365, default=30)
    time_zone = serializers.CharField(default="UTC", max_length=64)


class SiteFiscalJobConfigSerializer(serializers.ModelSerializer):
    class Meta:
        model = SiteFiscalJobConfig
        fields = [
            "site_id",
            "daily_close_enabled",
            "daily_close_time",
            "archive_enabled",
            "archive_time",
            "certificate_monitoring_enabled",
            "certificate_expiry_warning_days",
            "time_zone",
            "updated_at",
        ]


class FiscalJobHistoryEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = FiscalJobHistoryEntry
        fields = [
            "job_id",
            "job_type",
            "site_id",
            "triggered_by",
            "started_at",
            "completed_at",
            "success",
            "error_message",
            "metadata",
        ]


class CertificateExpiryWarningSerializer(serializers.Serializer):
    site_id = serializers.UUIDField()
    device_serial = serializers.CharField()
    expiry_date = serializers.DateTimeField()
    days_until_expiry = serializers.IntegerField()
    severity = serializers.CharField()


# ---------------------------------------------------------------------------
# Z-report
# ---------------------------------------------------------------------------


class ZReportSerializer(serializers.ModelSerializer):
    class Meta:
        model = ZReport
        fields = [
            "report_number",
            "business_date",
            "generated_at",
            "gross_sales",
            "net_sales",
            "total_tax",
            "transaction_count",
            "sales_by_vat_rate",
            "sales_by_payment_type",
            "void_count",
            "void_total",
            "skipped_transactions",
            "signature",
            "device_serial",
        ]
