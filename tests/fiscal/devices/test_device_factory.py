# tests/fiscal/devices/test_device_factory.py

import pytest

from fiscal.devices.base import SigningDeviceError
from fiscal.devices.diebold import DieboldNixdorfSigningDevice
from fiscal.devices.factory import (
    get_signing_device,
    invalid_integer_settings,
    is_supported_device_type,
    missing_required_settings,
    resolve_device_settings,
)
from fiscal.devices.fiskaly import FiskalyCloudSigningDevice
from fiscal.devices.mock import MockSigningDevice


@pytest.mark.parametrize(
    "device_type, expected_cls",
    [
        ("fiskaly_cloud", FiskalyCloudSigningDevice),
        ("  Diebold_Nixdorf ", DieboldNixdorfSigningDevice),
        ("mock", MockSigningDevice),
    ],
)
def test_factory_resolve_provider_por_tipo(device_type, expected_cls):
    device = get_signing_device(device_type, {"api_endpoint": "http://tse"})

    assert isinstance(device, expected_cls)
    assert device.is_connected is False


def test_factory_tipo_desconhecido_levanta():
    with pytest.raises(SigningDeviceError) as exc:
        get_signing_device("epson_tse")

    assert exc.value.code == "UNKNOWN_DEVICE_TYPE"
    assert is_supported_device_type("epson_tse") is False
    assert is_supported_device_type(None) is False


def test_segredos_resolvidos_por_alias(monkeypatch):
    monkeypatch.setenv("TSE_KEY_LOJA_1", "chave-do-ambiente")

    resolved = resolve_device_settings(
        {"api_key_alias": "TSE_KEY_LOJA_1", "api_secret": "explicito", "api_secret_alias": "NAO_USADO"}
    )

    assert resolved["api_key"] == "chave-do-ambiente"
    assert resolved["api_secret"] == "explicito"


def test_settings_obrigatorios_por_provider(monkeypatch):
    monkeypatch.delenv("ALIAS_INEXISTENTE", raising=False)

    assert missing_required_settings("fiskaly_cloud", {"api_endpoint": "x", "tss_id": "t"}) == [
        "api_key",
        "api_secret",
    ]
    assert missing_required_settings("swissbit_usb", {"client_id": "c", "api_key_alias": "ALIAS_INEXISTENTE"}) == [
        "api_key"
    ]
    assert missing_required_settings("mock", {}) == []
    assert missing_required_settings("desconhecido", {}) == []


def test_timeout_vem_dos_settings_do_site():
    device = get_signing_device("mock", {"timeout_ms": "2500"})

    assert device.timeout == 2.5


@pytest.mark.parametrize(
    "device_type, settings",
    [
        ("mock", {"timeout_ms": "30s"}),
        ("mock", {"timeout_ms": "0"}),
        ("mock", {"certificate_expiry_days": "soon"}),
        ("diebold_nixdorf", {"api_endpoint": "http://tse", "client_id": "K1", "timeout_ms": "rápido"}),
    ],
)
def test_factory_recusa_setting_numerico_invalido(device_type, settings):
    assert invalid_integer_settings(device_type, settings)

    with pytest.raises(SigningDeviceError) as exc:
        get_signing_device(device_type, settings)

    assert exc.value.code == "INVALID_SETTING"


def test_settings_numericos_validos():
    assert invalid_integer_settings("mock", {"timeout_ms": "1500", "certificate_expiry_days": "-3"}) == []
    assert invalid_integer_settings("diebold_nixdorf", {"certificate_expiry_days": "soon"}) == []
    assert invalid_integer_settings("desconhecido", {"timeout_ms": "x"}) == []
