# fiscal/countries/base.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Mapping, Tuple


class FiscalFeature(str, Enum):
    """
    Capacidades fiscais que um país pode exigir/suportar.
    """

    HARDWARE_TSE = "HardwareTse"
    CLOUD_TSE = "CloudTse"
    REAL_TIME_SIGNING = "RealTimeSigning"
    BATCH_SUBMISSION = "BatchSubmission"
    CUMULATIVE_TOTALS = "CumulativeTotals"
    ELECTRONIC_JOURNAL = "ElectronicJournal"
    INVOICE_VERIFICATION = "InvoiceVerification"
    VAT_REGISTER_EXPORT = "VatRegisterExport"
    QR_CODE_GENERATION = "QrCodeGeneration"
    CERTIFICATE_SIGNING = "CertificateSigning"


def _fmt(value) -> str:
    return f"{Decimal(value):.2f}"


def build_json_process_data(transaction) -> str:
    """
    Formato genérico de process data: JSON canônico (chaves ordenadas),
    com valores monetários sempre em 2 casas decimais.
    """
    payload = {
        "transaction_id": str(transaction.transaction_id),
        "type": transaction.transaction_type,
        "gross": _fmt(transaction.gross_amount),
        "net": {k: _fmt(v) for k, v in (transaction.net_amounts or {}).items()},
        "tax": {k: _fmt(v) for k, v in (transaction.tax_amounts or {}).items()},
        "payments": {k: _fmt(v) for k, v in (transaction.payment_types or {}).items()},
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class CountryComplianceConfig:
    """
    Configuração de conformidade fiscal por país, utilizada por:

      - Router (process type / process data enviados ao dispositivo).
      - Validação de configuração do site (settings obrigatórios).
      - Endpoint de features suportadas.

    Essa config não fala com o dispositivo de assinatura diretamente; ela só
    organiza metadados regulatórios usados pelos services.
    """

    # Identificação
    country: str  # 'DE', 'AT', 'IT', 'FR', 'PL'
    name: str
    compliance_standard: str  # 'KassenSichV', 'RKSV', ...

    # Capacidades e dispositivos homologados
    supported_features: Tuple[FiscalFeature, ...]
    certified_device_types: Tuple[str, ...]

    # Settings obrigatórios no country_settings do site
    required_settings: Tuple[str, ...] = ()

    # Formato dos dados enviados ao dispositivo
    process_type: str = "Beleg"
    process_data_builder: Callable = build_json_process_data

    labels: Mapping[str, str] = field(default_factory=dict)

    def build_process_data(self, transaction) -> str:
        return self.process_data_builder(transaction)
