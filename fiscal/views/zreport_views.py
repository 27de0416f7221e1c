# fiscal/views/zreport_views.py

import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from fiscal.registry import TransactionRegistryError
from fiscal.serializers import BusinessDateInputSerializer, DateRangeInputSerializer, ZReportSerializer
from fiscal.services import zreport_service
from fiscal.services.exceptions import FiscalServiceError
from fiscal.views.fiscal_common import service_error_response, user_id_from_request

logger = logging.getLogger("compliance.fiscal")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def site_zreport_generate_view(request, org_id, site_id):
    """
    POST /api/v1/fiscal/orgs/<org>/sites/<site>/z-report/

    Gera o Z-report da data de negócio informada.
      - 201: relatório criado
      - 409: já existe relatório para a data
      - 502: registro de auditoria indisponível
    """
    ser_in = BusinessDateInputSerializer(data=request.data)
    ser_in.is_valid(raise_exception=True)
    business_date = ser_in.validated_data["business_date"]

    try:
        report = zreport_service.generate_report(org_id=org_id, site_id=site_id, business_date=business_date)
    except FiscalServiceError as exc:
        return service_error_response(
            exc,
            event="fiscal_zreport_generate",
            request=request,
            org_id=org_id,
            site_id=site_id,
            business_date=business_date,
        )
    except TransactionRegistryError as exc:
        logger.warning(
            "fiscal_zreport_registry_error",
            extra={
                "event": "fiscal_zreport_generate",
                "user_id": user_id_from_request(request),
                "org_id": str(org_id),
                "site_id": str(site_id),
                "error": str(exc),
                "outcome": "registry_unavailable",
            },
        )
        return Response(
            {"code": "REGISTRY_UNAVAILABLE", "message": str(exc)},
            status=status.HTTP_502_BAD_GATEWAY,
        )

    return Response(ZReportSerializer(report).data, status=status.HTTP_201_CREATED)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def site_zreport_detail_view(request, org_id, site_id, report_number):
    try:
        report = zreport_service.get_report(org_id=org_id, site_id=site_id, report_number=report_number)
    except FiscalServiceError as exc:
        return service_error_response(exc, event="fiscal_zreport_get", request=request, org_id=org_id, site_id=site_id)
    return Response(ZReportSerializer(report).data, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def site_zreport_latest_view(request, org_id, site_id):
    report = zreport_service.get_latest_report(org_id=org_id, site_id=site_id)
    if report is None:
        return Response(
            {"code": "NOT_FOUND", "message": "Nenhum Z-report gerado para o site."},
            status=status.HTTP_404_NOT_FOUND,
        )
    return Response(ZReportSerializer(report).data, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def site_zreport_list_view(request, org_id, site_id):
    ser_in = DateRangeInputSerializer(data=request.query_params)
    ser_in.is_valid(raise_exception=True)

    try:
        reports = zreport_service.get_reports(
            org_id=org_id,
            site_id=site_id,
            start_date=ser_in.validated_data["start_date"],
            end_date=ser_in.validated_data["end_date"],
        )
    except FiscalServiceError as exc:
        return service_error_response(exc, event="fiscal_zreport_list", request=request, org_id=org_id, site_id=site_id)

    return Response(ZReportSerializer(reports, many=True).data, status=status.HTTP_200_OK)
