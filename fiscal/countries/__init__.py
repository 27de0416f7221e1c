# fiscal/countries/__init__.py
from __future__ import annotations

from typing import Dict

from .base import CountryComplianceConfig, FiscalFeature
from . import de, at, it, fr, pl


# Registry interno, 1:1 por país
_COUNTRY_CONFIGS: Dict[str, CountryComplianceConfig] = {
    de.CONFIG.country: de.CONFIG,
    at.CONFIG.country: at.CONFIG,
    it.CONFIG.country: it.CONFIG,
    fr.CONFIG.country: fr.CONFIG,
    pl.CONFIG.country: pl.CONFIG,
}

SUPPORTED_COUNTRIES = tuple(_COUNTRY_CONFIGS)


def normalize_country(country: str | None) -> str:
    if not country:
        return ""
    return country.strip().upper()


def get_country_config(country: str | None) -> CountryComplianceConfig | None:
    """
    Retorna a configuração de conformidade para o país informado.

    Regras:
      - Normaliza o código para maiúsculas.
      - País não mapeado retorna None (quem chama decide o erro:
        UNKNOWN_COUNTRY na configuração, NOT_CONFIGURED no restante).

    Mudanças de um país ficam isoladas no arquivo respectivo
    (de.py, at.py, it.py, fr.py, pl.py).
    """
    return _COUNTRY_CONFIGS.get(normalize_country(country))


def list_country_configs() -> list[CountryComplianceConfig]:
    return list(_COUNTRY_CONFIGS.values())


__all__ = [
    "CountryComplianceConfig",
    "FiscalFeature",
    "SUPPORTED_COUNTRIES",
    "get_country_config",
    "list_country_configs",
    "normalize_country",
]
