# fiscal/countries/fr.py
from __future__ import annotations

from .base import CountryComplianceConfig, FiscalFeature


CONFIG = CountryComplianceConfig(
    country="FR",
    name="France",
    compliance_standard="NF 525",
    supported_features=(
        FiscalFeature.CUMULATIVE_TOTALS,
        FiscalFeature.ELECTRONIC_JOURNAL,
        FiscalFeature.CERTIFICATE_SIGNING,
        FiscalFeature.QR_CODE_GENERATION,
        FiscalFeature.REAL_TIME_SIGNING,
    ),
    certified_device_types=("fiskaly_cloud",),
    required_settings=(
        "nf525_certification_number",
        "siren",
        "software_name",
        "software_version",
    ),
    process_type="NF525-Ticket",
)
