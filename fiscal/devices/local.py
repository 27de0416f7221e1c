"""
Base para dispositivos de assinatura locais (hardware em rede local ou
USB atrás de daemon), expostos por uma API REST /api/v1 com payloads
em camelCase.

Regras:
  1) is_connected é derivado do estado da sessão/daemon; uma falha de
     conexão (requests.ConnectionError) marca o dispositivo como
     desconectado, para que o Router reconecte na próxima chamada.
  2) Timeouts são tratados como falha normal da operação.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict

import requests

from fiscal.devices.base import (
    BaseSigningDevice,
    DeviceInfo,
    SelfTestResult,
    SignedTransactionResult,
    SigningDeviceError,
    StartTransactionResult,
)

logger = logging.getLogger("compliance.fiscal")


class LocalSigningDevice(BaseSigningDevice):
    SIGNATURE_ALGORITHM = "ecdsa-plain-SHA256"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._connected = False
        self.certificate_serial = ""
        self.public_key = ""

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _session_fields(self) -> Dict[str, Any]:
        return {}

    def _mark_disconnected(self) -> None:
        self._connected = False

    def _call(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return self._request(method, path, **kwargs)
        except requests.ConnectionError:
            logger.warning(
                "fiscal_device_unreachable",
                extra={"event": "fiscal_device_unreachable", "device_type": self.device_type, "path": path},
            )
            self._mark_disconnected()
            raise

    def _load_identity(self, data: Dict[str, Any]) -> None:
        self.certificate_serial = data.get("serialNumber") or self.certificate_serial
        self.public_key = data.get("publicKey") or self.public_key
        self.transaction_counter = int(data.get("transactionCounter") or self.transaction_counter)
        self.signature_counter = int(data.get("signatureCounter") or self.signature_counter)

    # -- transações ------------------------------------------------------

    def start_transaction(self, process_type, process_data, client_id=None) -> StartTransactionResult:
        if not self.is_connected:
            return StartTransactionResult(0, None, client_id, False, "Not connected")

        try:
            response = self._call(
                "POST",
                "/api/v1/transaction/start",
                json={
                    **self._session_fields(),
                    "clientId": client_id or self.client_id,
                    "processType": process_type,
                    "processData": process_data,
                },
            )
        except requests.RequestException as exc:
            return StartTransactionResult(0, None, client_id, False, str(exc))

        if not response.ok:
            return StartTransactionResult(0, None, client_id, False, self._error_text(response))

        data = self._json(response)
        self.transaction_counter = int(data.get("transactionNumber") or self.transaction_counter + 1)
        number = self.transaction_counter

        context = self._remember_transaction(
            number,
            process_type=process_type,
            process_data=process_data,
            client_id=client_id,
        )
        return StartTransactionResult(number, context.start_time, client_id, True)

    def finish_transaction(self, transaction_number, process_type, process_data) -> SignedTransactionResult:
        context = self.active_transactions.pop(transaction_number, None)
        if not self.is_connected or context is None:
            return SignedTransactionResult.failed(
                transaction_number, "Transaction not found or not connected"
            )

        try:
            response = self._call(
                "POST",
                "/api/v1/transaction/finish",
                json={
                    **self._session_fields(),
                    "transactionNumber": transaction_number,
                    "processType": process_type,
                    "processData": process_data,
                },
            )
        except requests.RequestException as exc:
            return SignedTransactionResult.failed(
                transaction_number, str(exc), start_time=context.start_time
            )

        if not response.ok:
            return SignedTransactionResult.failed(
                transaction_number, self._error_text(response), start_time=context.start_time
            )

        data = self._json(response)
        self.signature_counter = int(data.get("signatureCounter") or self.signature_counter + 1)

        return SignedTransactionResult(
            transaction_number=transaction_number,
            signature_counter=self.signature_counter,
            signature=data.get("signature") or "",
            signature_algorithm=self.SIGNATURE_ALGORITHM,
            public_key=self.public_key,
            certificate_serial=self.certificate_serial,
            start_time=context.start_time,
            end_time=self._now(),
            qr_code_data=data.get("qrCodeData") or "",
            success=True,
        )

    # -- diagnóstico / auditoria -----------------------------------------

    def self_test(self) -> SelfTestResult:
        if not self.is_connected:
            return SelfTestResult(False, "Not connected", self._now())
        try:
            response = self._call("POST", "/api/v1/tse/selftest", json=self._session_fields())
        except requests.RequestException as exc:
            return SelfTestResult(False, str(exc), self._now())

        data = self._json(response)
        if "passed" in data:
            return SelfTestResult(bool(data["passed"]), data.get("errorMessage"), self._now())

        error = None if response.ok else f"Status: {response.status_code}"
        return SelfTestResult(response.ok, error, self._now())

    def get_device_info(self) -> DeviceInfo:
        self._require_connected()
        try:
            response = self._call("GET", "/api/v1/tse/info")
        except requests.RequestException as exc:
            raise SigningDeviceError(str(exc), code="CONNECTION") from exc

        self._ensure_ok(response, "consulta de informações")
        data = self._json(response)
        self._load_identity(data)

        return DeviceInfo(
            serial_number=data.get("serialNumber") or "",
            firmware_version=data.get("firmwareVersion") or "",
            certificate_serial=data.get("serialNumber") or "",
            public_key=data.get("publicKey") or "",
            certificate_expiry_date=self.parse_datetime(data.get("certificateExpiry")),
            transaction_counter=int(data.get("transactionCounter") or 0),
            signature_counter=int(data.get("signatureCounter") or 0),
            state=data.get("state") or "UNKNOWN",
            remaining_signatures=data.get("remainingSignatures"),
        )

    def export_audit_data(self, start: datetime, end: datetime) -> bytes:
        self._require_connected()
        try:
            response = self._call(
                "POST",
                "/api/v1/tse/export",
                json={
                    **self._session_fields(),
                    "startDate": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "endDate": end.strftime("%Y-%m-%dT%H:%M:%SZ"),
                },
            )
        except requests.RequestException as exc:
            raise SigningDeviceError(str(exc), code="CONNECTION") from exc

        self._ensure_ok(response, "exportação de auditoria")
        return response.content

    def _client_call(self, action: str, client_id: str) -> bool:
        if not self.is_connected:
            return False
        try:
            response = self._call(
                "POST",
                f"/api/v1/client/{action}",
                json={**self._session_fields(), "clientId": client_id},
            )
        except requests.RequestException:
            logger.warning(
                "fiscal_device_client_error",
                extra={"event": f"fiscal_device_client_{action}", "device_type": self.device_type},
                exc_info=True,
            )
            return False
        return response.ok

    def register_client(self, client_id: str) -> bool:
        return self._client_call("register", client_id)

    def deregister_client(self, client_id: str) -> bool:
        return self._client_call("deregister", client_id)
