# fiscal/countries/de.py
from __future__ import annotations

from decimal import Decimal

from .base import CountryComplianceConfig, FiscalFeature


# --------------------------------------------------------------------
# DSFinV-K: posição de cada alíquota no bloco de valores do Beleg
# (19%, 7%, 10,7%, 5,5%, 0%)
# --------------------------------------------------------------------
_VAT_SLOTS = {
    Decimal("19"): 0,
    Decimal("7"): 1,
    Decimal("10.7"): 2,
    Decimal("5.5"): 3,
    Decimal("0"): 4,
}

_CASH_PAYMENT_TYPES = {"cash", "bar"}


def _parse_rate(rate_key: str) -> Decimal:
    return Decimal(str(rate_key).strip().rstrip("%").replace(",", "."))


def build_dsfinvk_process_data(transaction) -> str:
    """
    Monta o processData no formato "Kassenbeleg-V1":

        Beleg^<brutos por alíquota separados por _>^<valor:Bar|Unbar ...>

    Regras:
      1) Bruto por alíquota = líquido + imposto daquela alíquota.
      2) Alíquota fora da tabela DSFinV-K gera ValueError (o Router
         converte em falha RECORD_FAILED).
      3) Pagamentos em dinheiro viram "Bar"; demais viram "Unbar".
    """
    slots = [Decimal("0.00")] * len(_VAT_SLOTS)

    rates = set(transaction.net_amounts or {}) | set(transaction.tax_amounts or {})
    for rate_key in rates:
        rate = _parse_rate(rate_key)
        if rate not in _VAT_SLOTS:
            raise ValueError(f"Alíquota não suportada pela DSFinV-K: {rate_key}")

        net = Decimal((transaction.net_amounts or {}).get(rate_key, 0))
        tax = Decimal((transaction.tax_amounts or {}).get(rate_key, 0))
        slots[_VAT_SLOTS[rate]] += net + tax

    cash = Decimal("0.00")
    non_cash = Decimal("0.00")
    for payment_type, amount in (transaction.payment_types or {}).items():
        if payment_type.strip().lower() in _CASH_PAYMENT_TYPES:
            cash += Decimal(amount)
        else:
            non_cash += Decimal(amount)

    payments = []
    if cash:
        payments.append(f"{cash:.2f}:Bar")
    if non_cash:
        payments.append(f"{non_cash:.2f}:Unbar")

    amounts = "_".join(f"{v:.2f}" for v in slots)
    return f"Beleg^{amounts}^{'_'.join(payments)}"


CONFIG = CountryComplianceConfig(
    country="DE",
    name="Germany",
    compliance_standard="KassenSichV",
    supported_features=(
        FiscalFeature.HARDWARE_TSE,
        FiscalFeature.CLOUD_TSE,
        FiscalFeature.REAL_TIME_SIGNING,
        FiscalFeature.QR_CODE_GENERATION,
    ),
    certified_device_types=(
        "fiskaly_cloud",
        "swissbit_cloud",
        "diebold_nixdorf",
        "swissbit_usb",
    ),
    required_settings=("tax_number",),
    process_type="Kassenbeleg-V1",
    process_data_builder=build_dsfinvk_process_data,
)
