# tests/fiscal/devices/test_local_signing_devices.py

from datetime import datetime, timezone as dt_timezone

import pytest
import requests

from fiscal.devices.base import SigningDeviceError
from fiscal.devices.diebold import DieboldNixdorfSigningDevice
from fiscal.devices.swissbit_usb import SwissbitUsbSigningDevice

TSE_INFO = {
    "serialNumber": "TSE-123",
    "firmwareVersion": "2.1.0",
    "publicKey": "PUB",
    "certificateExpiry": "2027-06-30T00:00:00Z",
    "state": "INITIALIZED",
    "remainingSignatures": 19000000,
    "transactionCounter": 10,
    "signatureCounter": 20,
}


def _diebold(fake_session, fake_response):
    fake_session.add("POST", "/api/v1/session/start", fake_response(200, {"sessionId": "S-1"}))
    fake_session.add("GET", "/api/v1/tse/info", fake_response(200, TSE_INFO))
    return DieboldNixdorfSigningDevice(
        settings={"api_endpoint": "http://10.0.0.5:9000/", "client_id": "KASSE-1"},
        session=fake_session,
    )


# ---------------------------------------------------------------------------
# Hardware em rede local (sessão)
# ---------------------------------------------------------------------------


def test_diebold_connect_abre_sessao_e_carrega_identidade(fake_session, fake_response):
    device = _diebold(fake_session, fake_response)

    assert device.connect() is True
    assert device.session_id == "S-1"
    assert device.certificate_serial == "TSE-123"
    assert device.signature_counter == 20

    start_call = fake_session.calls_to("POST", "/api/v1/session/start")[0]
    assert start_call["url"] == "http://10.0.0.5:9000/api/v1/session/start"
    assert start_call["json"] == {"clientId": "KASSE-1"}


def test_diebold_sem_session_id_nao_conecta(fake_session, fake_response):
    fake_session.add("POST", "/api/v1/session/start", fake_response(200, {}))
    fake_session.add("GET", "/api/v1/tse/info", fake_response(200, TSE_INFO))
    device = DieboldNixdorfSigningDevice(
        settings={"api_endpoint": "http://10.0.0.5:9000", "client_id": "KASSE-1"},
        session=fake_session,
    )

    assert device.connect() is False
    assert device.is_connected is False


def test_diebold_transacao_envia_session_id(fake_session, fake_response):
    device = _diebold(fake_session, fake_response)
    device.connect()
    fake_session.add("POST", "/api/v1/transaction/start", fake_response(200, {"transactionNumber": 11}))
    fake_session.add(
        "POST",
        "/api/v1/transaction/finish",
        fake_response(200, {"signature": "SIG", "signatureCounter": 21, "qrCodeData": "QR"}),
    )

    started = device.start_transaction("Kassenbeleg-V1", "Beleg^data", "KASSE-1")
    signed = device.finish_transaction(started.transaction_number, "Kassenbeleg-V1", "Beleg^data")

    assert started.transaction_number == 11
    assert signed.success is True
    assert signed.signature == "SIG"
    assert signed.signature_counter == 21
    assert signed.qr_code_data == "QR"
    assert signed.certificate_serial == "TSE-123"

    start_payload = fake_session.calls_to("POST", "/api/v1/transaction/start")[0]["json"]
    assert start_payload == {
        "sessionId": "S-1",
        "clientId": "KASSE-1",
        "processType": "Kassenbeleg-V1",
        "processData": "Beleg^data",
    }
    finish_payload = fake_session.calls_to("POST", "/api/v1/transaction/finish")[0]["json"]
    assert finish_payload["sessionId"] == "S-1"
    assert finish_payload["transactionNumber"] == 11


def test_diebold_finish_com_erro_descarta_contextos(fake_session, fake_response):
    """
    Cenário: três vendas seguidas com o TSE respondendo 503 no finish;
    nenhum contexto de transação fica pendurado no dispositivo.
    """
    device = _diebold(fake_session, fake_response)
    device.connect()
    for number in (11, 12, 13):
        fake_session.add("POST", "/api/v1/transaction/start", fake_response(200, {"transactionNumber": number}))
    fake_session.add("POST", "/api/v1/transaction/finish", fake_response(503, {"error": "busy"}))

    for _ in range(3):
        started = device.start_transaction("Kassenbeleg-V1", "Beleg^data", "KASSE-1")
        signed = device.finish_transaction(started.transaction_number, "Kassenbeleg-V1", "Beleg^data")
        assert signed.success is False

    assert device.active_transactions == {}


def test_diebold_finish_com_timeout_descarta_contexto(fake_session, fake_response):
    device = _diebold(fake_session, fake_response)
    device.connect()
    fake_session.add("POST", "/api/v1/transaction/start", fake_response(200, {"transactionNumber": 11}))
    fake_session.add("POST", "/api/v1/transaction/finish", requests.Timeout("read timed out"))

    device.start_transaction("Kassenbeleg-V1", "Beleg^data", "KASSE-1")
    signed = device.finish_transaction(11, "Kassenbeleg-V1", "Beleg^data")

    assert signed.success is False
    assert "read timed out" in signed.error_message
    assert device.active_transactions == {}


def test_falha_de_conexao_marca_dispositivo_desconectado(fake_session, fake_response):
    device = _diebold(fake_session, fake_response)
    device.connect()
    fake_session.add(
        "POST", "/api/v1/transaction/start", requests.ConnectionError("connection refused")
    )

    result = device.start_transaction("Kassenbeleg-V1", "Beleg^data")

    assert result.success is False
    assert "connection refused" in result.error_message
    assert device.is_connected is False
    assert device.session_id is None


def test_timeout_nao_derruba_a_sessao(fake_session, fake_response):
    device = _diebold(fake_session, fake_response)
    device.connect()
    fake_session.add("POST", "/api/v1/transaction/start", requests.Timeout("read timed out"))

    result = device.start_transaction("Kassenbeleg-V1", "Beleg^data")

    assert result.success is False
    assert device.is_connected is True


def test_diebold_disconnect_encerra_sessao(fake_session, fake_response):
    device = _diebold(fake_session, fake_response)
    device.connect()
    fake_session.add("POST", "/api/v1/session/end", fake_response(200, {}))

    device.disconnect()

    assert device.is_connected is False
    assert fake_session.calls_to("POST", "/api/v1/session/end")[0]["json"] == {"sessionId": "S-1"}


def test_local_device_info_e_self_test(fake_session, fake_response):
    device = _diebold(fake_session, fake_response)
    device.connect()
    fake_session.add("POST", "/api/v1/tse/selftest", fake_response(200, {"passed": False, "errorMessage": "TSE bloqueada"}))

    info = device.get_device_info()
    test = device.self_test()

    assert info.serial_number == "TSE-123"
    assert info.firmware_version == "2.1.0"
    assert info.remaining_signatures == 19000000
    assert info.certificate_expiry_date == datetime(2027, 6, 30, tzinfo=dt_timezone.utc)
    assert test.passed is False
    assert test.error_message == "TSE bloqueada"


def test_local_export_com_http_de_erro_levanta(fake_session, fake_response):
    device = _diebold(fake_session, fake_response)
    device.connect()
    fake_session.add("POST", "/api/v1/tse/export", fake_response(500, {"error": "disk"}))

    with pytest.raises(SigningDeviceError) as exc:
        device.export_audit_data(
            datetime(2024, 1, 1, tzinfo=dt_timezone.utc),
            datetime(2024, 1, 2, tzinfo=dt_timezone.utc),
        )

    assert exc.value.code == "500"


# ---------------------------------------------------------------------------
# USB atrás de daemon local
# ---------------------------------------------------------------------------


def test_swissbit_usb_usa_endpoint_padrao_e_pin(fake_session, fake_response):
    fake_session.add("POST", "/api/v1/tse/initialize", fake_response(200, TSE_INFO))
    device = SwissbitUsbSigningDevice(
        settings={"client_id": "KASSE-2", "api_key": "1234"},
        session=fake_session,
    )

    assert device.connect() is True
    call = fake_session.calls_to("POST", "/api/v1/tse/initialize")[0]
    assert call["url"] == "http://localhost:8080/api/v1/tse/initialize"
    assert call["json"] == {"clientId": "KASSE-2", "adminPin": "1234"}
    assert device.certificate_serial == "TSE-123"


def test_swissbit_usb_daemon_fora_do_ar(fake_session):
    fake_session.add("POST", "/api/v1/tse/initialize", requests.ConnectionError("daemon down"))
    device = SwissbitUsbSigningDevice(
        settings={"client_id": "KASSE-2", "api_key": "1234"},
        session=fake_session,
    )

    assert device.connect() is False
    assert device.is_connected is False
