# fiscal/countries/pl.py
from __future__ import annotations

from .base import CountryComplianceConfig, FiscalFeature


CONFIG = CountryComplianceConfig(
    country="PL",
    name="Poland",
    compliance_standard="JPK/KSeF",
    supported_features=(
        FiscalFeature.VAT_REGISTER_EXPORT,
        FiscalFeature.INVOICE_VERIFICATION,
        FiscalFeature.BATCH_SUBMISSION,
        FiscalFeature.ELECTRONIC_JOURNAL,
    ),
    certified_device_types=("diebold_nixdorf", "swissbit_usb"),
    required_settings=("nip",),
    process_type="JPK-Paragon",
)
