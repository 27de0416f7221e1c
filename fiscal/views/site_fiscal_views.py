# fiscal/views/site_fiscal_views.py

import logging
from dataclasses import asdict

from django.http import HttpResponse
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from fiscal.serializers import (
    CountryComplianceSerializer,
    DateTimeRangeInputSerializer,
    FiscalConfigValidationSerializer,
    FiscalDeviceHealthSerializer,
    FiscalResultSerializer,
    FiscalTransactionInputSerializer,
    SiteFiscalConfigurationInputSerializer,
    SiteFiscalSnapshotSerializer,
)
from fiscal.services import router_service
from fiscal.services.dto import ConfigureSiteFiscalCommand, FiscalTransactionData
from fiscal.services.exceptions import FiscalServiceError
from fiscal.views.fiscal_common import result_http_status, service_error_response, user_id_from_request

logger = logging.getLogger("compliance.fiscal")


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def list_countries_view(request):
    """
    GET /api/v1/fiscal/countries/

    Catálogo de países suportados, com norma, features e dispositivos
    homologados.
    """
    ser_out = CountryComplianceSerializer(router_service.get_supported_countries(), many=True)
    return Response(ser_out.data, status=status.HTTP_200_OK)


@api_view(["GET", "PUT"])
@permission_classes([IsAuthenticated])
def site_configuration_view(request, org_id, site_id):
    """
    GET|PUT /api/v1/fiscal/orgs/<org>/sites/<site>/configuration/

    PUT substitui a configuração fiscal do site e reinicializa o dispositivo.
    """
    if request.method == "GET":
        snapshot = router_service.get_site_fiscal_snapshot(org_id=org_id, site_id=site_id)
        return Response(SiteFiscalSnapshotSerializer(snapshot).data, status=status.HTTP_200_OK)

    ser_in = SiteFiscalConfigurationInputSerializer(data=request.data)
    ser_in.is_valid(raise_exception=True)
    data = ser_in.validated_data

    command = ConfigureSiteFiscalCommand(
        country=data["country"],
        enabled=data["enabled"],
        device_id=data.get("device_id"),
        device_type=data.get("device_type"),
        country_settings=data.get("country_settings") or {},
    )

    try:
        snapshot = router_service.configure_site_fiscal(org_id=org_id, site_id=site_id, command=command)
    except FiscalServiceError as exc:
        return service_error_response(exc, event="fiscal_configure", request=request, org_id=org_id, site_id=site_id)

    logger.info(
        "fiscal_configure_api",
        extra={
            "event": "fiscal_configure",
            "user_id": user_id_from_request(request),
            "org_id": str(org_id),
            "site_id": str(site_id),
            "country": snapshot.country,
            "enabled": snapshot.enabled,
            "outcome": "success",
        },
    )
    return Response(SiteFiscalSnapshotSerializer(snapshot).data, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def site_configuration_validate_view(request, org_id, site_id):
    result = router_service.validate_configuration(org_id=org_id, site_id=site_id)
    return Response(FiscalConfigValidationSerializer(result).data, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def site_health_view(request, org_id, site_id):
    health = router_service.get_health_status(org_id=org_id, site_id=site_id)
    return Response(FiscalDeviceHealthSerializer(health).data, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def site_features_view(request, org_id, site_id):
    features = router_service.get_supported_features(org_id=org_id, site_id=site_id)
    return Response({"features": features}, status=status.HTTP_200_OK)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def site_record_transaction_view(request, org_id, site_id):
    """
    POST /api/v1/fiscal/orgs/<org>/sites/<site>/transactions/

    Certifica uma venda concluída. O corpo de resposta é sempre o
    FiscalResult; o status HTTP distingue sucesso (200), site sem fiscal
    ativo (409) e falha do dispositivo (502).
    """
    ser_in = FiscalTransactionInputSerializer(data=request.data)
    ser_in.is_valid(raise_exception=True)
    data = ser_in.validated_data

    tx = FiscalTransactionData(
        transaction_id=data["transaction_id"],
        site_id=site_id,
        timestamp=data.get("timestamp") or timezone.now(),
        transaction_type=data["transaction_type"],
        gross_amount=data["gross_amount"],
        net_amounts=data.get("net_amounts") or {},
        tax_amounts=data.get("tax_amounts") or {},
        payment_types=data.get("payment_types") or {},
        source_type=data["source_type"],
        source_id=data.get("source_id"),
        operator_id=data.get("operator_id"),
        client_id=data.get("client_id") or None,
        additional_data=data.get("additional_data") or {},
    )

    result = router_service.record_transaction(org_id=org_id, site_id=site_id, data=tx)
    return Response(
        FiscalResultSerializer(asdict(result)).data,
        status=result_http_status(result.success, result.error_code),
    )


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def site_audit_export_view(request, org_id, site_id):
    """
    POST /api/v1/fiscal/orgs/<org>/sites/<site>/export/

    Devolve o arquivo de exportação do dispositivo como download.
    """
    ser_in = DateTimeRangeInputSerializer(data=request.data)
    ser_in.is_valid(raise_exception=True)

    try:
        result = router_service.generate_audit_export(
            org_id=org_id,
            site_id=site_id,
            start=ser_in.validated_data["start"],
            end=ser_in.validated_data["end"],
        )
    except FiscalServiceError as exc:
        return service_error_response(exc, event="fiscal_audit_export", request=request, org_id=org_id, site_id=site_id)

    if not result.success:
        return Response(
            {"code": result.error_code, "message": result.error_message},
            status=result_http_status(False, result.error_code),
        )

    response = HttpResponse(result.content, content_type=result.content_type)
    response["Content-Disposition"] = f'attachment; filename="{result.file_name}"'
    return response
