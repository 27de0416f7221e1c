# fiscal/views/job_views.py

import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from fiscal.models import FiscalJobTriggeredBy
from fiscal.serializers import (
    BusinessDateInputSerializer,
    CertificateExpiryWarningSerializer,
    DateRangeInputSerializer,
    FiscalJobHistoryEntrySerializer,
    SiteFiscalJobConfigInputSerializer,
    SiteFiscalJobConfigSerializer,
)
from fiscal.services import job_scheduler_service
from fiscal.services.exceptions import FiscalServiceError
from fiscal.views.fiscal_common import service_error_response, user_id_from_request

logger = logging.getLogger("compliance.fiscal")

HISTORY_DEFAULT_LIMIT = 50
HISTORY_MAX_LIMIT = 500


def _history_limit(raw) -> int:
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        return HISTORY_DEFAULT_LIMIT
    return max(1, min(limit, HISTORY_MAX_LIMIT))


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def site_daily_close_view(request, org_id, site_id):
    """
    POST /api/v1/fiscal/orgs/<org>/sites/<site>/daily-close/

    Disparo manual do fechamento diário. Falha do dispositivo não é erro
    HTTP: fica registrada na entrada de histórico devolvida.
    """
    ser_in = BusinessDateInputSerializer(data=request.data)
    ser_in.is_valid(raise_exception=True)
    business_date = ser_in.validated_data["business_date"]

    try:
        entry = job_scheduler_service.trigger_daily_close(
            org_id=org_id,
            site_id=site_id,
            business_date=business_date,
            triggered_by=FiscalJobTriggeredBy.MANUAL,
        )
    except FiscalServiceError as exc:
        return service_error_response(exc, event="fiscal_job_daily_close", request=request, org_id=org_id, site_id=site_id)

    logger.info(
        "fiscal_daily_close_api",
        extra={
            "event": "fiscal_job_daily_close",
            "user_id": user_id_from_request(request),
            "org_id": str(org_id),
            "site_id": str(site_id),
            "job_id": str(entry.job_id),
            "outcome": "success" if entry.success else "failure",
        },
    )
    return Response(FiscalJobHistoryEntrySerializer(entry).data, status=status.HTTP_200_OK)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def site_archive_view(request, org_id, site_id):
    ser_in = DateRangeInputSerializer(data=request.data)
    ser_in.is_valid(raise_exception=True)

    try:
        entry = job_scheduler_service.trigger_archive_generation(
            org_id=org_id,
            site_id=site_id,
            start_date=ser_in.validated_data["start_date"],
            end_date=ser_in.validated_data["end_date"],
            triggered_by=FiscalJobTriggeredBy.MANUAL,
        )
    except FiscalServiceError as exc:
        return service_error_response(exc, event="fiscal_job_archive", request=request, org_id=org_id, site_id=site_id)

    return Response(FiscalJobHistoryEntrySerializer(entry).data, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def org_job_configs_view(request, org_id):
    configs = job_scheduler_service.get_site_job_configs(org_id=org_id)
    return Response(SiteFiscalJobConfigSerializer(configs, many=True).data, status=status.HTTP_200_OK)


@api_view(["PUT", "DELETE"])
@permission_classes([IsAuthenticated])
def site_job_config_view(request, org_id, site_id):
    """
    PUT|DELETE /api/v1/fiscal/orgs/<org>/jobs/<site>/
    """
    if request.method == "DELETE":
        removed = job_scheduler_service.remove_site_jobs(org_id=org_id, site_id=site_id)
        if not removed:
            return Response(
                {"code": "NOT_FOUND", "message": "Agenda de jobs não encontrada para o site."},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(status=status.HTTP_204_NO_CONTENT)

    ser_in = SiteFiscalJobConfigInputSerializer(data=request.data)
    ser_in.is_valid(raise_exception=True)

    try:
        config = job_scheduler_service.configure_site_jobs(
            org_id=org_id,
            site_id=site_id,
            **ser_in.validated_data,
        )
    except FiscalServiceError as exc:
        return service_error_response(exc, event="fiscal_jobs_configure", request=request, org_id=org_id, site_id=site_id)

    return Response(SiteFiscalJobConfigSerializer(config).data, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def job_history_view(request, org_id):
    """
    GET /api/v1/fiscal/orgs/<org>/jobs/history/?limit=N

    Mais recentes primeiro; limit entre 1 e 500 (default 50).
    """
    limit = _history_limit(request.query_params.get("limit", HISTORY_DEFAULT_LIMIT))
    entries = job_scheduler_service.get_job_history(org_id=org_id, limit=limit)
    return Response(FiscalJobHistoryEntrySerializer(entries, many=True).data, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def certificate_expiry_view(request, org_id):
    warnings = job_scheduler_service.check_certificate_expiry(org_id=org_id)
    return Response(CertificateExpiryWarningSerializer(warnings, many=True).data, status=status.HTTP_200_OK)
