# fiscal/countries/at.py
from __future__ import annotations

from .base import CountryComplianceConfig, FiscalFeature


CONFIG = CountryComplianceConfig(
    country="AT",
    name="Austria",
    compliance_standard="RKSV",
    supported_features=(
        FiscalFeature.CLOUD_TSE,
        FiscalFeature.REAL_TIME_SIGNING,
        FiscalFeature.CUMULATIVE_TOTALS,
        FiscalFeature.QR_CODE_GENERATION,
        FiscalFeature.CERTIFICATE_SIGNING,
    ),
    certified_device_types=("swissbit_cloud", "fiskaly_cloud"),
    required_settings=("cash_register_id",),
    process_type="RKSV-Beleg",
)
