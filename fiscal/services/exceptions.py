# fiscal/services/exceptions.py

# Erros de pré-condição (levantados; a API responde 4xx)
ERR_NOT_CONFIGURED = "NOT_CONFIGURED"
ERR_ALREADY_EXISTS = "ALREADY_EXISTS"
ERR_INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
ERR_UNKNOWN_COUNTRY = "UNKNOWN_COUNTRY"
ERR_UNKNOWN_DEVICE_TYPE = "UNKNOWN_DEVICE_TYPE"
ERR_INVALID_TIME_ZONE = "INVALID_TIME_ZONE"
ERR_NOT_FOUND = "NOT_FOUND"
ERR_INVALID_SETTING = "INVALID_SETTING"

# Códigos de resultado (falhas de dispositivo/downstream, nunca levantadas)
RESULT_NOT_CONFIGURED = "NOT_CONFIGURED"
RESULT_RECORD_FAILED = "RECORD_FAILED"
RESULT_DEVICE_NOT_CONNECTED = "DEVICE_NOT_CONNECTED"
RESULT_SIGNING_FAILED = "SIGNING_FAILED"
RESULT_EXPORT_FAILED = "EXPORT_FAILED"
RESULT_DAILY_CLOSE_FAILED = "DAILY_CLOSE_FAILED"


class FiscalServiceError(Exception):
    """Erros de pré-condição dos serviços fiscais."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)

    def as_dict(self) -> dict:
        return {"code": self.code, "message": self.message}
