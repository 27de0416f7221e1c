# fiscal/devices/mock.py
"""
Dispositivos de assinatura simulados, usados em desenvolvimento e testes.

- MockSigningDevice: sempre disponível, assina com HMAC-SHA256 e mantém
  contadores monotônicos em memória.
- MockSigningDeviceAlwaysFail: levanta SigningDeviceError em toda operação
  de assinatura/auditoria (testes de LastError e isolamento por site).
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import uuid
from datetime import datetime, timedelta

from fiscal.devices.base import (
    BaseSigningDevice,
    DeviceInfo,
    SelfTestResult,
    SignedTransactionResult,
    SigningDeviceError,
    StartTransactionResult,
)


class MockSigningDevice(BaseSigningDevice):
    """
    Settings opcionais:
      - signing_key: segredo do HMAC (default "mock-signing-key").
      - certificate_expiry_days: dias até a expiração do certificado (default 365).
      - device_serial: número de série simulado.
    """

    device_type = "mock"
    INTEGER_SETTINGS = {**BaseSigningDevice.INTEGER_SETTINGS, "certificate_expiry_days": None}
    SIGNATURE_ALGORITHM = "hmac-sha256"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._connected = False
        self.serial = self.settings.get("device_serial") or f"MOCK-{uuid.uuid4().hex[:8].upper()}"
        self.signing_key = (self.settings.get("signing_key") or "mock-signing-key").encode("utf-8")
        self.certificate_expiry_days = int(self.settings.get("certificate_expiry_days") or 365)
        self.created_at = self._now()

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> bool:
        self._connected = True
        return True

    def disconnect(self) -> None:
        self._connected = False

    def start_transaction(self, process_type, process_data, client_id=None) -> StartTransactionResult:
        if not self.is_connected:
            return StartTransactionResult(0, None, client_id, False, "Not connected")

        self.transaction_counter += 1
        context = self._remember_transaction(
            self.transaction_counter,
            process_type=process_type,
            process_data=process_data,
            client_id=client_id,
        )
        return StartTransactionResult(self.transaction_counter, context.start_time, client_id, True)

    def finish_transaction(self, transaction_number, process_type, process_data) -> SignedTransactionResult:
        context = self.active_transactions.pop(transaction_number, None)
        if not self.is_connected or context is None:
            return SignedTransactionResult.failed(
                transaction_number, "Transaction not found or not connected"
            )

        self.signature_counter += 1
        end_time = self._now()
        message = f"{transaction_number};{self.signature_counter};{process_type};{process_data}"
        digest = hmac.new(self.signing_key, message.encode("utf-8"), hashlib.sha256).digest()
        signature = base64.b64encode(digest).decode("ascii")

        qr = ";".join(
            [
                "V0",
                self.serial,
                process_type,
                str(transaction_number),
                str(self.signature_counter),
                context.start_time.isoformat(),
                end_time.isoformat(),
                self.SIGNATURE_ALGORITHM,
                signature,
            ]
        )

        return SignedTransactionResult(
            transaction_number=transaction_number,
            signature_counter=self.signature_counter,
            signature=signature,
            signature_algorithm=self.SIGNATURE_ALGORITHM,
            public_key="",
            certificate_serial=self.serial,
            start_time=context.start_time,
            end_time=end_time,
            qr_code_data=qr,
            success=True,
        )

    def self_test(self) -> SelfTestResult:
        if not self.is_connected:
            return SelfTestResult(False, "Not connected", self._now())
        return SelfTestResult(True, None, self._now())

    def get_device_info(self) -> DeviceInfo:
        self._require_connected()
        return DeviceInfo(
            serial_number=self.serial,
            firmware_version="mock-1.0",
            certificate_serial=self.serial,
            public_key="",
            certificate_expiry_date=self._now() + timedelta(days=self.certificate_expiry_days),
            transaction_counter=self.transaction_counter,
            signature_counter=self.signature_counter,
            state="INITIALIZED",
            remaining_signatures=None,
        )

    def export_audit_data(self, start: datetime, end: datetime) -> bytes:
        self._require_connected()
        header = f"MOCK-EXPORT;{self.serial};{start.isoformat()};{end.isoformat()}\n"
        return header.encode("utf-8")

    def register_client(self, client_id: str) -> bool:
        return self.is_connected

    def deregister_client(self, client_id: str) -> bool:
        return self.is_connected


class MockSigningDeviceAlwaysFail(MockSigningDevice):
    """
    Mock que SEMPRE falha tecnicamente nas operações com o dispositivo.
    A conexão funciona, para que a falha aconteça dentro da operação.
    """

    device_type = "mock_always_fail"

    def _raise_technical_error(self) -> None:
        raise SigningDeviceError(
            "Falha técnica simulada no dispositivo de assinatura (mock).",
            code="TECH_FAIL",
            raw={"serial": self.serial},
        )

    def start_transaction(self, process_type, process_data, client_id=None):
        self._raise_technical_error()

    def finish_transaction(self, transaction_number, process_type, process_data):
        self._raise_technical_error()

    def self_test(self) -> SelfTestResult:
        return SelfTestResult(False, "Falha técnica simulada (mock).", self._now())

    def get_device_info(self):
        self._raise_technical_error()

    def export_audit_data(self, start, end):
        self._raise_technical_error()
