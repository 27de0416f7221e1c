from .site_fiscal_models import FiscalCountry, SigningDeviceType, SiteFiscalState
from .job_models import (
    FiscalJobHistoryEntry,
    FiscalJobRun,
    FiscalJobTrigger,
    FiscalJobTriggeredBy,
    FiscalJobType,
    SiteFiscalJobConfig,
)
from .zreport_models import ZReport, ZReportCounter


__all__ = [
    "FiscalCountry",
    "SigningDeviceType",
    "SiteFiscalState",
    "SiteFiscalJobConfig",
    "FiscalJobType",
    "FiscalJobTriggeredBy",
    "FiscalJobRun",
    "FiscalJobHistoryEntry",
    "FiscalJobTrigger",
    "ZReport",
    "ZReportCounter",
]
