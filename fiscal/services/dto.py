"""
DTOs trocados entre o Router, o Job Runner, o gerador de Z-report e a API.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional


@dataclass
class FiscalTransactionData:
    """
    Transação de venda a ser certificada (vinda do pipeline de pedidos).

    net_amounts / tax_amounts são indexados pela alíquota ("19%", "7%", ...);
    payment_types pelo tipo de pagamento ("cash", "card", ...).
    """

    transaction_id: uuid.UUID
    site_id: uuid.UUID
    timestamp: datetime
    transaction_type: str
    gross_amount: Decimal
    net_amounts: Dict[str, Decimal] = field(default_factory=dict)
    tax_amounts: Dict[str, Decimal] = field(default_factory=dict)
    payment_types: Dict[str, Decimal] = field(default_factory=dict)
    source_type: str = "Order"
    source_id: Optional[uuid.UUID] = None
    operator_id: Optional[uuid.UUID] = None
    client_id: Optional[str] = None
    additional_data: Dict[str, str] = field(default_factory=dict)


@dataclass
class FiscalResult:
    success: bool
    transaction_id: Optional[uuid.UUID] = None
    signature: Optional[str] = None
    signature_counter: Optional[int] = None
    certificate_serial: Optional[str] = None
    qr_code_data: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def failure(cls, code: str, message: str, *, transaction_id=None, metadata=None) -> "FiscalResult":
        return cls(
            success=False,
            transaction_id=transaction_id,
            error_code=code,
            error_message=message,
            metadata=metadata or {},
        )


@dataclass
class AuditExportResult:
    success: bool
    start: datetime
    end: datetime
    content: bytes = b""
    file_name: Optional[str] = None
    content_type: str = "application/octet-stream"
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.content)


@dataclass
class FiscalConfigValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class FiscalDeviceHealthStatus:
    """
    Snapshot de saúde do dispositivo do site. Nunca é None para quem chama:
    site sem adapter ativo recebe o snapshot "inactive".
    """

    device_id: Optional[str]
    device_serial: Optional[str]
    status: str
    is_online: bool
    certificate_valid: bool
    days_until_certificate_expiry: Optional[int]
    certificate_expiry_date: Optional[datetime]
    last_sync_at: Optional[datetime]
    last_transaction_at: Optional[datetime]
    total_transactions: int
    last_error: Optional[str]

    @classmethod
    def inactive(cls) -> "FiscalDeviceHealthStatus":
        return cls(
            device_id=None,
            device_serial=None,
            status="inactive",
            is_online=False,
            certificate_valid=False,
            days_until_certificate_expiry=None,
            certificate_expiry_date=None,
            last_sync_at=None,
            last_transaction_at=None,
            total_transactions=0,
            last_error="Not configured",
        )


@dataclass
class SiteFiscalSnapshot:
    org_id: uuid.UUID
    site_id: uuid.UUID
    country: Optional[str]
    compliance_standard: Optional[str]
    enabled: bool
    device_id: Optional[str]
    device_type: Optional[str]
    transaction_count: int
    last_transaction_at: Optional[datetime]
    last_error: Optional[str]
    version: int
    status: Dict[str, str] = field(default_factory=dict)


@dataclass
class ConfigureSiteFiscalCommand:
    country: str
    enabled: bool
    device_id: Optional[str] = None
    device_type: Optional[str] = None
    country_settings: Dict[str, str] = field(default_factory=dict)


@dataclass
class CertificateExpiryWarning:
    site_id: uuid.UUID
    device_serial: str
    expiry_date: datetime
    days_until_expiry: int
    severity: str


@dataclass
class ZReportTotals:
    """Acumulador usado durante a agregação do Z-report."""

    gross_sales: Decimal = Decimal("0.00")
    total_tax: Decimal = Decimal("0.00")
    transaction_count: int = 0
    void_count: int = 0
    void_total: Decimal = Decimal("0.00")
    skipped: int = 0
    sales_by_vat_rate: Dict[str, Decimal] = field(default_factory=dict)
    sales_by_payment_type: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def net_sales(self) -> Decimal:
        return self.gross_sales - self.total_tax
