# fiscal/views/fiscal_common.py

import logging

from rest_framework import status
from rest_framework.response import Response

from fiscal.services.exceptions import (
    ERR_ALREADY_EXISTS,
    ERR_NOT_CONFIGURED,
    ERR_NOT_FOUND,
    FiscalServiceError,
    RESULT_NOT_CONFIGURED,
)

logger = logging.getLogger("compliance.fiscal")

# Códigos de pré-condição -> HTTP. Qualquer outro código é erro de validação (400).
SERVICE_ERROR_STATUS = {
    ERR_NOT_CONFIGURED: status.HTTP_409_CONFLICT,
    ERR_ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ERR_NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def user_id_from_request(request):
    return getattr(getattr(request, "user", None), "id", None)


def service_error_response(exc: FiscalServiceError, *, event: str, request, **extra) -> Response:
    http_status = SERVICE_ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)
    logger.warning(
        f"{event}_erro",
        extra={
            "event": event,
            "user_id": user_id_from_request(request),
            "code": exc.code,
            "detail": exc.message,
            "outcome": "precondition_failed",
            **{key: str(value) for key, value in extra.items()},
        },
    )
    return Response(exc.as_dict(), status=http_status)


def result_http_status(success: bool, error_code: str | None) -> int:
    """
    Resultado de operação no dispositivo -> HTTP.

      - sucesso -> 200
      - site sem fiscal ativo -> 409
      - falha do dispositivo/provider -> 502
    """
    if success:
        return status.HTTP_200_OK
    if error_code == RESULT_NOT_CONFIGURED:
        return status.HTTP_409_CONFLICT
    return status.HTTP_502_BAD_GATEWAY
