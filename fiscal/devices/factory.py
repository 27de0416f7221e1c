# fiscal/devices/factory.py
"""
Factory de dispositivos de assinatura por tipo.

Objetivos:
- Isolar a escolha do provider concreto em um único ponto.
- Resolver segredos (api_key/api_secret) a partir de variáveis de
  ambiente quando o site guarda apenas o alias (api_key_alias).
- Permitir que o Router trate todos os providers pelo mesmo contrato.
"""

from __future__ import annotations

import os
from typing import Dict, Mapping, Type

import requests

from fiscal.devices.base import BaseSigningDevice, SigningDeviceError, SigningDeviceProtocol
from fiscal.devices.diebold import DieboldNixdorfSigningDevice
from fiscal.devices.fiskaly import FiskalyCloudSigningDevice
from fiscal.devices.mock import MockSigningDevice, MockSigningDeviceAlwaysFail
from fiscal.devices.swissbit_cloud import SwissbitCloudSigningDevice
from fiscal.devices.swissbit_usb import SwissbitUsbSigningDevice


DEVICE_CLASS_BY_TYPE: Dict[str, Type[BaseSigningDevice]] = {
    FiskalyCloudSigningDevice.device_type: FiskalyCloudSigningDevice,
    SwissbitCloudSigningDevice.device_type: SwissbitCloudSigningDevice,
    DieboldNixdorfSigningDevice.device_type: DieboldNixdorfSigningDevice,
    SwissbitUsbSigningDevice.device_type: SwissbitUsbSigningDevice,
    MockSigningDevice.device_type: MockSigningDevice,
    MockSigningDeviceAlwaysFail.device_type: MockSigningDeviceAlwaysFail,
}

_SECRET_KEYS = ("api_key", "api_secret")


def normalize_device_type(device_type: str | None) -> str:
    if not device_type:
        return ""
    return device_type.strip().lower()


def is_supported_device_type(device_type: str | None) -> bool:
    return normalize_device_type(device_type) in DEVICE_CLASS_BY_TYPE


def resolve_device_settings(settings: Mapping[str, str] | None) -> Dict[str, str]:
    """
    Copia os settings do site e resolve segredos por alias.

    Regras:
      - Se "api_key" não vier preenchido mas "api_key_alias" vier,
        o valor é lido de os.environ[alias] (mesmo para api_secret).
      - Valor explícito sempre prevalece sobre o alias.
    """
    resolved = dict(settings or {})
    for key in _SECRET_KEYS:
        alias = resolved.get(f"{key}_alias")
        if alias and not resolved.get(key):
            resolved[key] = os.getenv(alias, "")
    return resolved


def missing_required_settings(device_type: str | None, settings: Mapping[str, str] | None) -> list[str]:
    device_cls = DEVICE_CLASS_BY_TYPE.get(normalize_device_type(device_type))
    if device_cls is None:
        return []
    resolved = resolve_device_settings(settings)
    return [name for name in device_cls.REQUIRED_SETTINGS if not resolved.get(name)]


def invalid_integer_settings(device_type: str | None, settings: Mapping[str, str] | None) -> list[str]:
    """
    Mensagens para settings numéricos do dispositivo que não são inteiros
    ou ficam abaixo do mínimo declarado em INTEGER_SETTINGS. Vazio = ok.
    """
    device_cls = DEVICE_CLASS_BY_TYPE.get(normalize_device_type(device_type))
    if device_cls is None:
        return []
    errors = []
    for name, minimum in device_cls.INTEGER_SETTINGS.items():
        raw = (settings or {}).get(name)
        if raw in (None, ""):
            continue
        try:
            value = int(str(raw).strip())
        except ValueError:
            errors.append(f"Setting {name} deve ser um número inteiro: {raw!r}.")
            continue
        if minimum is not None and value < minimum:
            errors.append(f"Setting {name} deve ser maior ou igual a {minimum}: {raw!r}.")
    return errors


def get_signing_device(
    device_type: str | None,
    settings: Mapping[str, str] | None = None,
    *,
    session: requests.Session | None = None,
) -> SigningDeviceProtocol:
    """
    Retorna uma instância (ainda não conectada) do dispositivo de assinatura.

    Tipo desconhecido levanta SigningDeviceError(code="UNKNOWN_DEVICE_TYPE")
    e setting numérico inválido, SigningDeviceError(code="INVALID_SETTING");
    o Router valida os dois antes, na configuração do site.
    """
    key = normalize_device_type(device_type)
    device_cls = DEVICE_CLASS_BY_TYPE.get(key)
    if device_cls is None:
        raise SigningDeviceError(
            f"Tipo de dispositivo de assinatura não suportado: {device_type!r}.",
            code="UNKNOWN_DEVICE_TYPE",
        )
    invalid = invalid_integer_settings(key, settings)
    if invalid:
        raise SigningDeviceError(" ".join(invalid), code="INVALID_SETTING")
    return device_cls(settings=resolve_device_settings(settings), session=session)
