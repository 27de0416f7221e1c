# fiscal/services/router_service.py
"""
Roteador de conformidade fiscal por site.

Responsabilidades:
  - Guardar a configuração fiscal do site (país, dispositivo, settings).
  - Selecionar/inicializar o dispositivo de assinatura via factory.
  - Encaminhar assinatura de transações, exportação de auditoria e
    fechamento diário, registrando contadores e último erro.

Regras gerais:
  1) Mutação de estado de um site acontece sempre dentro de
     transaction.atomic() com select_for_update na linha do site
     (um "dono" por site por vez).
  2) Falhas de dispositivo nunca sobem como exceção: viram FiscalResult
     com success=False, error_code e error_message.
  3) Erros de pré-condição (país desconhecido, intervalo inválido) sobem
     como FiscalServiceError.
  4) O adapter "vivo" de cada site fica num registry em memória do
     processo; após um restart ele é recriado a partir da configuração
     persistida na primeira chamada.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import date, datetime
from typing import Dict, Optional, Tuple

from django.db import transaction
from django.utils import timezone

from fiscal.countries import get_country_config, list_country_configs, normalize_country
from fiscal.devices.base import SigningDeviceError, SigningDeviceProtocol
from fiscal.devices.factory import (
    get_signing_device,
    invalid_integer_settings,
    is_supported_device_type,
    missing_required_settings,
    normalize_device_type,
)
from fiscal.models import SiteFiscalState
from fiscal.services.dto import (
    AuditExportResult,
    ConfigureSiteFiscalCommand,
    FiscalConfigValidationResult,
    FiscalDeviceHealthStatus,
    FiscalResult,
    FiscalTransactionData,
    SiteFiscalSnapshot,
)
from fiscal.services.exceptions import (
    ERR_INVALID_DATE_RANGE,
    ERR_INVALID_SETTING,
    ERR_NOT_CONFIGURED,
    ERR_UNKNOWN_COUNTRY,
    ERR_UNKNOWN_DEVICE_TYPE,
    FiscalServiceError,
    RESULT_DAILY_CLOSE_FAILED,
    RESULT_DEVICE_NOT_CONNECTED,
    RESULT_EXPORT_FAILED,
    RESULT_NOT_CONFIGURED,
    RESULT_RECORD_FAILED,
    RESULT_SIGNING_FAILED,
)

logger = logging.getLogger("compliance.fiscal")

NOT_CONFIGURED_MESSAGE = "Fiscalização não configurada ou desabilitada para o site."


# ---------------------------------------------------------------------------
# Registry de dispositivos ativos (por processo)
# ---------------------------------------------------------------------------

SiteKey = Tuple[uuid.UUID, uuid.UUID]

_live_devices: Dict[SiteKey, Tuple[int, SigningDeviceProtocol]] = {}
_live_lock = threading.Lock()


def _site_key(org_id, site_id) -> SiteKey:
    return (uuid.UUID(str(org_id)), uuid.UUID(str(site_id)))


def _dispose_device(device: SigningDeviceProtocol | None) -> None:
    if device is None:
        return
    try:
        device.disconnect()
    except Exception:
        logger.warning(
            "fiscal_device_disconnect_error",
            extra={"event": "fiscal_device_disconnect", "device_type": getattr(device, "device_type", None)},
            exc_info=True,
        )


def _drop_live_device(org_id, site_id) -> None:
    with _live_lock:
        entry = _live_devices.pop(_site_key(org_id, site_id), None)
    if entry is not None:
        _dispose_device(entry[1])


def reset_live_devices() -> None:
    """
    Descarta todos os dispositivos ativos do processo
    (usado em testes e para simular restart).
    """
    with _live_lock:
        entries = list(_live_devices.values())
        _live_devices.clear()
    for _, device in entries:
        _dispose_device(device)


def get_live_device(org_id, site_id) -> SigningDeviceProtocol | None:
    with _live_lock:
        entry = _live_devices.get(_site_key(org_id, site_id))
    return entry[1] if entry else None


def _resolve_live_device(state: SiteFiscalState | None) -> SigningDeviceProtocol | None:
    """
    Retorna o dispositivo ativo do site, criando-o a partir do estado
    persistido quando necessário (ativação após restart ou reconfiguração
    feita por outro processo, detectada pela versão).

    Site inexistente, sem país, desabilitado ou com settings do dispositivo
    inválidos → None.
    """
    if state is None or not state.enabled or not state.country:
        return None
    if not is_supported_device_type(state.device_type):
        return None

    key = _site_key(state.org_id, state.site_id)
    stale = None
    with _live_lock:
        entry = _live_devices.get(key)
        if entry is not None and entry[0] == state.version:
            return entry[1]
        if entry is not None:
            stale = entry[1]
        try:
            device = get_signing_device(state.device_type, state.country_settings)
        except SigningDeviceError:
            logger.warning(
                "fiscal_device_activation_error",
                extra={
                    "event": "fiscal_device_activated",
                    "org_id": str(state.org_id),
                    "site_id": str(state.site_id),
                    "device_type": state.device_type,
                    "version": state.version,
                },
                exc_info=True,
            )
            _live_devices.pop(key, None)
            device = None
        else:
            _live_devices[key] = (state.version, device)

    _dispose_device(stale)
    if device is None:
        return None
    logger.info(
        "fiscal_device_activated",
        extra={
            "event": "fiscal_device_activated",
            "org_id": str(state.org_id),
            "site_id": str(state.site_id),
            "device_type": state.device_type,
            "version": state.version,
        },
    )
    return device


def _ensure_connected(device: SigningDeviceProtocol) -> bool:
    if device.is_connected:
        return True
    return bool(device.connect())


# ---------------------------------------------------------------------------
# Acesso ao estado
# ---------------------------------------------------------------------------


def _get_state(org_id, site_id) -> SiteFiscalState | None:
    return SiteFiscalState.objects.filter(org_id=org_id, site_id=site_id).first()


def _lock_state(org_id, site_id) -> SiteFiscalState | None:
    return (
        SiteFiscalState.objects.select_for_update()
        .filter(org_id=org_id, site_id=site_id)
        .first()
    )


def _record_failure(state: SiteFiscalState, message: str) -> None:
    state.last_error = message
    state.save(update_fields=["last_error", "updated_at"])


def is_site_active(*, org_id, site_id) -> bool:
    state = _get_state(org_id, site_id)
    return bool(state and state.enabled and state.country and is_supported_device_type(state.device_type))


def require_active_site(*, org_id, site_id) -> None:
    if not is_site_active(org_id=org_id, site_id=site_id):
        raise FiscalServiceError(ERR_NOT_CONFIGURED, NOT_CONFIGURED_MESSAGE)


# ---------------------------------------------------------------------------
# Catálogo / snapshot
# ---------------------------------------------------------------------------


def get_supported_countries() -> list[dict]:
    return [
        {
            "country": config.country,
            "name": config.name,
            "compliance_standard": config.compliance_standard,
            "supported_features": [f.value for f in config.supported_features],
            "certified_device_types": list(config.certified_device_types),
        }
        for config in list_country_configs()
    ]


def _build_snapshot(org_id, site_id, state: SiteFiscalState | None) -> SiteFiscalSnapshot:
    if state is None:
        return SiteFiscalSnapshot(
            org_id=uuid.UUID(str(org_id)),
            site_id=uuid.UUID(str(site_id)),
            country=None,
            compliance_standard=None,
            enabled=False,
            device_id=None,
            device_type=None,
            transaction_count=0,
            last_transaction_at=None,
            last_error=None,
            version=0,
            status={"adapter_initialized": "False", "transaction_count": "0"},
        )

    config = get_country_config(state.country)
    live = get_live_device(org_id, site_id)
    status = {
        "adapter_initialized": str(live is not None),
        "transaction_count": str(state.transaction_count),
    }
    if live is not None:
        status["device_connected"] = str(bool(live.is_connected))
    if state.last_error:
        status["last_error"] = state.last_error

    return SiteFiscalSnapshot(
        org_id=state.org_id,
        site_id=state.site_id,
        country=state.country or None,
        compliance_standard=config.compliance_standard if config else None,
        enabled=state.enabled,
        device_id=state.device_id or None,
        device_type=state.device_type or None,
        transaction_count=state.transaction_count,
        last_transaction_at=state.last_transaction_at,
        last_error=state.last_error,
        version=state.version,
        status=status,
    )


def get_site_fiscal_snapshot(*, org_id, site_id) -> SiteFiscalSnapshot:
    return _build_snapshot(org_id, site_id, _get_state(org_id, site_id))


# ---------------------------------------------------------------------------
# Configuração
# ---------------------------------------------------------------------------


def configure_site_fiscal(*, org_id, site_id, command: ConfigureSiteFiscalCommand) -> SiteFiscalSnapshot:
    """
    Grava a configuração fiscal do site e (re)inicializa o dispositivo.

    Regras:
      1) País precisa estar no catálogo → senão UNKNOWN_COUNTRY.
      2) enabled=True exige device_type suportado → senão UNKNOWN_DEVICE_TYPE.
      3) O dispositivo anterior é sempre descartado; se o site ficou
         habilitado, um novo é criado e conectado. Falha de conexão não
         impede a configuração: fica registrada em last_error e a próxima
         assinatura tenta conectar de novo.
      4) Troca de dispositivo zera o contador de assinatura de referência
         usado na reconciliação diária.
      5) Settings numéricos do dispositivo (timeout_ms, ...) precisam ser
         inteiros válidos → senão INVALID_SETTING, antes de gravar.
    """
    country = normalize_country(command.country)
    if get_country_config(country) is None:
        raise FiscalServiceError(ERR_UNKNOWN_COUNTRY, f"País não suportado: {command.country!r}.")

    device_type = normalize_device_type(command.device_type)
    if command.enabled and not is_supported_device_type(device_type):
        raise FiscalServiceError(
            ERR_UNKNOWN_DEVICE_TYPE,
            f"Tipo de dispositivo de assinatura não suportado: {command.device_type!r}.",
        )

    country_settings = {str(k): str(v) for k, v in (command.country_settings or {}).items()}
    invalid = invalid_integer_settings(device_type, country_settings)
    if invalid:
        raise FiscalServiceError(ERR_INVALID_SETTING, " ".join(invalid))
    device_id = (command.device_id or "").strip()

    with transaction.atomic():
        state = _lock_state(org_id, site_id)
        if state is None:
            state = SiteFiscalState(org_id=org_id, site_id=site_id)

        if (state.device_type, state.device_id) != (device_type, device_id):
            state.last_signature_counter = 0

        state.country = country
        state.enabled = bool(command.enabled)
        state.device_id = device_id
        state.device_type = device_type
        state.country_settings = country_settings
        state.version += 1
        state.last_error = None
        state.save()

        _drop_live_device(org_id, site_id)

        if state.enabled:
            device = _resolve_live_device(state)
            try:
                connected = _ensure_connected(device)
            except Exception as exc:
                logger.warning(
                    "fiscal_device_connect_error",
                    extra={
                        "event": "fiscal_configure",
                        "org_id": str(org_id),
                        "site_id": str(site_id),
                        "device_type": device_type,
                    },
                    exc_info=True,
                )
                connected = False
                _record_failure(state, f"Falha ao conectar ao dispositivo: {exc}")
            else:
                if not connected:
                    _record_failure(state, "Falha ao conectar ao dispositivo de assinatura.")

    logger.info(
        "fiscal_site_configured",
        extra={
            "event": "fiscal_configure",
            "org_id": str(org_id),
            "site_id": str(site_id),
            "country": country,
            "enabled": state.enabled,
            "device_type": device_type,
            "version": state.version,
        },
    )
    return _build_snapshot(org_id, site_id, state)


# ---------------------------------------------------------------------------
# Assinatura de transações
# ---------------------------------------------------------------------------


def _sign_transaction(device, config, data: FiscalTransactionData) -> FiscalResult:
    if not _ensure_connected(device):
        return FiscalResult.failure(
            RESULT_DEVICE_NOT_CONNECTED,
            "Dispositivo de assinatura não conectado.",
            transaction_id=data.transaction_id,
        )

    process_type = config.process_type
    process_data = config.build_process_data(data)

    started = device.start_transaction(process_type, process_data, data.client_id)
    if not started.success:
        return FiscalResult.failure(
            RESULT_SIGNING_FAILED,
            started.error_message or "Falha ao iniciar a transação no dispositivo.",
            transaction_id=data.transaction_id,
        )

    signed = device.finish_transaction(started.transaction_number, process_type, process_data)
    if not signed.success:
        return FiscalResult.failure(
            RESULT_SIGNING_FAILED,
            signed.error_message or "Falha ao finalizar a transação no dispositivo.",
            transaction_id=data.transaction_id,
            metadata={"transaction_number": str(started.transaction_number)},
        )

    return FiscalResult(
        success=True,
        transaction_id=data.transaction_id,
        signature=signed.signature,
        signature_counter=signed.signature_counter,
        certificate_serial=signed.certificate_serial,
        qr_code_data=signed.qr_code_data,
        metadata={
            "transaction_number": str(signed.transaction_number),
            "signature_algorithm": signed.signature_algorithm,
            "process_type": process_type,
            "compliance_standard": config.compliance_standard,
            "start_time": signed.start_time.isoformat() if signed.start_time else "",
            "end_time": signed.end_time.isoformat() if signed.end_time else "",
        },
    )


def record_transaction(*, org_id, site_id, data: FiscalTransactionData) -> FiscalResult:
    """
    Certifica uma transação no dispositivo do site.

    Regras:
      1) Sem dispositivo ativo (site não configurado ou desabilitado) →
         NOT_CONFIGURED, sem tocar em nenhum dispositivo.
      2) Dispositivo desconectado → tenta connect(); se continuar
         desconectado → DEVICE_NOT_CONNECTED.
      3) Qualquer exceção da camada de dispositivo → RECORD_FAILED.
      4) Sucesso → transaction_count+1, last_transaction_at, last_error
         limpo. Falha → last_error preenchido. Nunca levanta exceção.
    """
    with transaction.atomic():
        state = _lock_state(org_id, site_id)
        device = _resolve_live_device(state)

        if device is None:
            logger.info(
                "fiscal_record_not_configured",
                extra={
                    "event": "fiscal_record_transaction",
                    "org_id": str(org_id),
                    "site_id": str(site_id),
                    "transaction_id": str(data.transaction_id),
                    "outcome": "not_configured",
                },
            )
            return FiscalResult.failure(
                RESULT_NOT_CONFIGURED, NOT_CONFIGURED_MESSAGE, transaction_id=data.transaction_id
            )

        config = get_country_config(state.country)

        try:
            result = _sign_transaction(device, config, data)
        except Exception as exc:
            logger.exception(
                "fiscal_record_error",
                extra={
                    "event": "fiscal_record_transaction",
                    "org_id": str(org_id),
                    "site_id": str(site_id),
                    "transaction_id": str(data.transaction_id),
                    "outcome": "error",
                },
            )
            result = FiscalResult.failure(
                RESULT_RECORD_FAILED, str(exc) or exc.__class__.__name__, transaction_id=data.transaction_id
            )

        if result.success:
            state.transaction_count += 1
            state.last_transaction_at = timezone.now()
            state.last_error = None
            state.last_signature_counter = result.signature_counter or state.last_signature_counter
            state.save(
                update_fields=[
                    "transaction_count",
                    "last_transaction_at",
                    "last_error",
                    "last_signature_counter",
                    "updated_at",
                ]
            )
        else:
            _record_failure(state, result.error_message)

    logger.info(
        "fiscal_record_transaction",
        extra={
            "event": "fiscal_record_transaction",
            "org_id": str(org_id),
            "site_id": str(site_id),
            "transaction_id": str(data.transaction_id),
            "signature_counter": result.signature_counter,
            "error_code": result.error_code,
            "outcome": "success" if result.success else "failure",
        },
    )
    return result


# ---------------------------------------------------------------------------
# Exportação de auditoria / fechamento diário
# ---------------------------------------------------------------------------


def generate_audit_export(*, org_id, site_id, start: datetime, end: datetime) -> AuditExportResult:
    if start > end:
        raise FiscalServiceError(
            ERR_INVALID_DATE_RANGE, "Data inicial deve ser menor ou igual à data final."
        )

    with transaction.atomic():
        state = _lock_state(org_id, site_id)
        device = _resolve_live_device(state)
        if device is None:
            return AuditExportResult(
                success=False,
                start=start,
                end=end,
                error_code=RESULT_NOT_CONFIGURED,
                error_message=NOT_CONFIGURED_MESSAGE,
            )

        try:
            if not _ensure_connected(device):
                _record_failure(state, "Dispositivo de assinatura não conectado.")
                return AuditExportResult(
                    success=False,
                    start=start,
                    end=end,
                    error_code=RESULT_DEVICE_NOT_CONNECTED,
                    error_message="Dispositivo de assinatura não conectado.",
                )
            content = device.export_audit_data(start, end)
        except Exception as exc:
            logger.warning(
                "fiscal_export_error",
                extra={"event": "fiscal_audit_export", "org_id": str(org_id), "site_id": str(site_id)},
                exc_info=True,
            )
            _record_failure(state, str(exc))
            return AuditExportResult(
                success=False,
                start=start,
                end=end,
                error_code=RESULT_EXPORT_FAILED,
                error_message=str(exc),
            )

    file_name = f"{state.country.lower()}-audit-{site_id}-{start:%Y%m%d}-{end:%Y%m%d}.export"
    logger.info(
        "fiscal_audit_export",
        extra={
            "event": "fiscal_audit_export",
            "org_id": str(org_id),
            "site_id": str(site_id),
            "country": state.country,
            "size_bytes": len(content),
        },
    )
    return AuditExportResult(success=True, start=start, end=end, content=content, file_name=file_name)


def perform_daily_close(*, org_id, site_id, business_date: date) -> FiscalResult:
    """
    Fechamento diário do dispositivo do site.

    Além do self-test, reconcilia o contador de assinaturas do dispositivo
    com o último contador confirmado pelo Router: um contador maior no
    dispositivo indica assinaturas órfãs (dispositivo assinou, mas a
    confirmação não chegou). Isso é reportado em metadata e em log; não
    há correção automática.
    """
    with transaction.atomic():
        state = _lock_state(org_id, site_id)
        device = _resolve_live_device(state)
        if device is None:
            return FiscalResult.failure(RESULT_NOT_CONFIGURED, NOT_CONFIGURED_MESSAGE)

        metadata = {"business_date": business_date.isoformat()}
        try:
            if not _ensure_connected(device):
                result = FiscalResult.failure(
                    RESULT_DEVICE_NOT_CONNECTED,
                    "Dispositivo de assinatura não conectado.",
                    metadata=metadata,
                )
            else:
                self_test = device.self_test()
                if not self_test.passed:
                    result = FiscalResult.failure(
                        RESULT_DAILY_CLOSE_FAILED,
                        self_test.error_message or "Self-test do dispositivo falhou.",
                        metadata=metadata,
                    )
                else:
                    info = device.get_device_info()
                    orphaned = max(0, info.signature_counter - state.last_signature_counter)
                    metadata.update(
                        {
                            "transaction_count": str(state.transaction_count),
                            "device_signature_counter": str(info.signature_counter),
                            "recorded_signature_counter": str(state.last_signature_counter),
                            "orphaned_signatures": str(orphaned),
                            "device_serial": info.serial_number,
                        }
                    )
                    if orphaned:
                        logger.warning(
                            "fiscal_orphaned_signatures_detected",
                            extra={
                                "event": "fiscal_daily_close",
                                "org_id": str(org_id),
                                "site_id": str(site_id),
                                "business_date": business_date.isoformat(),
                                "orphaned_signatures": orphaned,
                            },
                        )
                    result = FiscalResult(success=True, certificate_serial=info.certificate_serial, metadata=metadata)
        except Exception as exc:
            logger.warning(
                "fiscal_daily_close_error",
                extra={"event": "fiscal_daily_close", "org_id": str(org_id), "site_id": str(site_id)},
                exc_info=True,
            )
            result = FiscalResult.failure(RESULT_DAILY_CLOSE_FAILED, str(exc), metadata=metadata)

        if not result.success:
            _record_failure(state, result.error_message)

    logger.info(
        "fiscal_daily_close",
        extra={
            "event": "fiscal_daily_close",
            "org_id": str(org_id),
            "site_id": str(site_id),
            "business_date": business_date.isoformat(),
            "outcome": "success" if result.success else "failure",
            "error_code": result.error_code,
        },
    )
    return result


# ---------------------------------------------------------------------------
# Validação / saúde / features
# ---------------------------------------------------------------------------


def validate_configuration(*, org_id, site_id) -> FiscalConfigValidationResult:
    state = _get_state(org_id, site_id)
    if state is None or not state.country:
        return FiscalConfigValidationResult(
            is_valid=False,
            errors=["Configuração fiscal não definida para o site."],
        )

    config = get_country_config(state.country)
    settings = state.country_settings or {}
    errors: list[str] = []
    warnings: list[str] = []

    for name in config.required_settings:
        if not settings.get(name):
            errors.append(f"Setting obrigatório para {config.compliance_standard} ausente: {name}.")

    if state.enabled:
        if not is_supported_device_type(state.device_type):
            errors.append(f"Tipo de dispositivo não suportado: {state.device_type!r}.")
        else:
            for name in missing_required_settings(state.device_type, settings):
                errors.append(f"Setting obrigatório do dispositivo ausente: {name}.")
            errors.extend(invalid_integer_settings(state.device_type, settings))
            if state.device_type not in config.certified_device_types:
                warnings.append(
                    f"Dispositivo {state.device_type} não é homologado para {config.compliance_standard}."
                )
    else:
        warnings.append("Fiscalização desabilitada para o site.")

    return FiscalConfigValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        metadata={
            "country": state.country,
            "compliance_standard": config.compliance_standard,
        },
    )


def get_health_status(*, org_id, site_id, now: Optional[datetime] = None) -> FiscalDeviceHealthStatus:
    """
    Saúde do dispositivo do site. Nunca levanta exceção e nunca retorna
    None: sem dispositivo ativo → snapshot "inactive"; falha na consulta →
    status "error" com a mensagem em last_error.
    """
    state = _get_state(org_id, site_id)
    try:
        device = _resolve_live_device(state)
    except Exception as exc:
        logger.warning(
            "fiscal_health_activation_error",
            extra={"event": "fiscal_health", "org_id": str(org_id), "site_id": str(site_id)},
            exc_info=True,
        )
        device = None
        activation_error = str(exc)
    else:
        activation_error = None

    if device is None:
        health = FiscalDeviceHealthStatus.inactive()
        if activation_error:
            health.status = "error"
            health.last_error = activation_error
        return health

    now = now or timezone.now()

    def _status(status, *, is_online, last_error, **extra):
        values = {
            "device_id": state.device_id or None,
            "device_serial": None,
            "status": status,
            "is_online": is_online,
            "certificate_valid": False,
            "days_until_certificate_expiry": None,
            "certificate_expiry_date": None,
            "last_sync_at": None,
            "last_transaction_at": state.last_transaction_at,
            "total_transactions": state.transaction_count,
            "last_error": last_error,
        }
        values.update(extra)
        return FiscalDeviceHealthStatus(**values)

    try:
        if not _ensure_connected(device):
            return _status("offline", is_online=False, last_error="Dispositivo de assinatura não conectado.")

        info = device.get_device_info()
        self_test = device.self_test()
    except Exception as exc:
        logger.warning(
            "fiscal_health_error",
            extra={"event": "fiscal_health", "org_id": str(org_id), "site_id": str(site_id)},
            exc_info=True,
        )
        return _status("error", is_online=False, last_error=str(exc))

    expiry = info.certificate_expiry_date
    days = (expiry.date() - now.date()).days if expiry else None

    return _status(
        "active" if self_test.passed else "error",
        is_online=True,
        last_error=self_test.error_message or state.last_error,
        device_serial=info.serial_number or info.certificate_serial or None,
        certificate_valid=expiry is None or expiry > now,
        days_until_certificate_expiry=days,
        certificate_expiry_date=expiry,
        last_sync_at=self_test.performed_at,
    )


def get_supported_features(*, org_id, site_id) -> list[str]:
    state = _get_state(org_id, site_id)
    if state is None or not state.enabled or not state.country:
        return []
    config = get_country_config(state.country)
    return [feature.value for feature in config.supported_features]
