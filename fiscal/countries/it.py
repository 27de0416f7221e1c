# fiscal/countries/it.py
from __future__ import annotations

from .base import CountryComplianceConfig, FiscalFeature


CONFIG = CountryComplianceConfig(
    country="IT",
    name="Italy",
    compliance_standard="RT",
    supported_features=(
        FiscalFeature.HARDWARE_TSE,
        FiscalFeature.REAL_TIME_SIGNING,
        FiscalFeature.ELECTRONIC_JOURNAL,
        FiscalFeature.BATCH_SUBMISSION,
    ),
    certified_device_types=("diebold_nixdorf",),
    required_settings=("vat_number",),
    process_type="RT-Documento",
)
