"""
Base para providers de assinatura hospedados em nuvem (API de TSS).

Ambos os providers cloud expõem o mesmo formato de recursos
(/tss/{tss_id}/tx/{tx_id}, /tss/{tss_id}/export, /tss/{tss_id}/client/{id})
e diferem apenas em autenticação, ciclo de vida do token e formato do
intervalo de exportação. Essas diferenças ficam nas subclasses.
"""

from __future__ import annotations

import base64
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict

import requests

from fiscal.devices.base import (
    BaseSigningDevice,
    DeviceInfo,
    SelfTestResult,
    SignedTransactionResult,
    StartTransactionResult,
)

logger = logging.getLogger("compliance.fiscal")


class CloudTssSigningDevice(BaseSigningDevice):
    REQUIRED_SETTINGS = ("api_endpoint", "api_key", "api_secret", "tss_id")

    DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
    SIGNATURE_ALGORITHM = "ecdsa-plain-SHA256"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.tss_id = self.settings.get("tss_id", "")
        self.api_key = self.settings.get("api_key", "")
        self.api_secret = self.settings.get("api_secret", "")
        self.device_serial = self.settings.get("device_serial", "")

        self.access_token: str | None = None
        self.token_expires_at: datetime | None = None

    # -- autenticação ----------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return (
            self.access_token is not None
            and self.token_expires_at is not None
            and self.token_expires_at > self._now()
        )

    def connect(self) -> bool:
        raise NotImplementedError

    def disconnect(self) -> None:
        self.access_token = None
        self.token_expires_at = None

    def _before_operation(self) -> None:
        """Hook para renovação proativa do token (por provider)."""

    def _store_token(self, access_token: str | None, expires_in: int | None) -> None:
        self.access_token = access_token
        lifetime = int(expires_in or self.DEFAULT_TOKEN_LIFETIME_SECONDS)
        self.token_expires_at = self._now() + timedelta(seconds=lifetime)

    def _authorized(self, method: str, path: str, **kwargs) -> requests.Response:
        headers = kwargs.pop("headers", {}) or {}
        headers["Authorization"] = f"Bearer {self.access_token}"
        response = self._request(method, path, headers=headers, **kwargs)
        if response.status_code == 401:
            # token revogado/expirado no servidor: força nova autenticação
            logger.warning(
                "fiscal_device_token_rejected",
                extra={"event": "fiscal_device_token_rejected", "device_type": self.device_type},
            )
            self.access_token = None
            self.token_expires_at = None
        return response

    # -- payloads --------------------------------------------------------

    def _tx_path(self, tx_id: str) -> str:
        return f"/tss/{self.tss_id}/tx/{tx_id}"

    def _export_range(self, start: datetime, end: datetime) -> Dict[str, Any]:
        return {
            "start_date": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "end_date": end.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }

    @staticmethod
    def _raw_schema(process_type: str, process_data: str) -> Dict[str, Any]:
        encoded = base64.b64encode(process_data.encode("utf-8")).decode("ascii")
        return {"raw": {"process_type": process_type, "process_data": encoded}}

    # -- transações ------------------------------------------------------

    def start_transaction(self, process_type, process_data, client_id=None) -> StartTransactionResult:
        self._before_operation()
        if not self.is_connected:
            return StartTransactionResult(0, None, client_id, False, "Not connected")

        tx_id = uuid.uuid4().hex
        try:
            response = self._authorized(
                "PUT",
                self._tx_path(tx_id),
                params={"tx_revision": 1},
                json={"state": "ACTIVE", "client_id": client_id or self.client_id},
            )
        except requests.RequestException as exc:
            return StartTransactionResult(0, None, client_id, False, str(exc))

        if not response.ok:
            return StartTransactionResult(0, None, client_id, False, self._error_text(response))

        data = self._json(response)
        self.transaction_counter += 1
        number = int(data.get("number") or self.transaction_counter)

        context = self._remember_transaction(
            number,
            process_type=process_type,
            process_data=process_data,
            client_id=client_id,
            external_tx_id=tx_id,
        )
        return StartTransactionResult(number, context.start_time, client_id, True)

    def finish_transaction(self, transaction_number, process_type, process_data) -> SignedTransactionResult:
        self._before_operation()
        context = self.active_transactions.pop(transaction_number, None)
        if not self.is_connected or context is None:
            return SignedTransactionResult.failed(
                transaction_number, "Transaction not found or not connected"
            )

        try:
            response = self._authorized(
                "PUT",
                self._tx_path(context.external_tx_id),
                params={"tx_revision": 2},
                json={
                    "state": "FINISHED",
                    "client_id": context.client_id or self.client_id,
                    "schema": self._raw_schema(process_type, process_data),
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
        signature = data.get("signature") or {}
        self.signature_counter = int(signature.get("counter") or self.signature_counter + 1)

        return SignedTransactionResult(
            transaction_number=transaction_number,
            signature_counter=self.signature_counter,
            signature=signature.get("value", ""),
            signature_algorithm=signature.get("algorithm") or self.SIGNATURE_ALGORITHM,
            public_key=signature.get("public_key") or "",
            certificate_serial=self.device_serial,
            start_time=context.start_time,
            end_time=self._now(),
            qr_code_data=data.get("qr_code_data") or "",
            success=True,
        )

    # -- diagnóstico / auditoria -----------------------------------------

    def self_test(self) -> SelfTestResult:
        self._before_operation()
        if not self.is_connected:
            return SelfTestResult(False, "Not connected", self._now())
        try:
            response = self._authorized("GET", f"/tss/{self.tss_id}")
        except requests.RequestException as exc:
            return SelfTestResult(False, str(exc), self._now())

        error = None if response.ok else f"Status: {response.status_code}"
        return SelfTestResult(response.ok, error, self._now())

    def get_device_info(self) -> DeviceInfo:
        self._before_operation()
        self._require_connected()

        response = self._authorized("GET", f"/tss/{self.tss_id}")
        self._ensure_ok(response, "consulta da TSS")
        data = self._json(response)

        return DeviceInfo(
            serial_number=data.get("serial_number") or "",
            firmware_version="Cloud",
            certificate_serial=data.get("certificate") or self.device_serial,
            public_key=data.get("public_key") or "",
            certificate_expiry_date=self.parse_datetime(data.get("certificate_expiry")),
            transaction_counter=self.transaction_counter,
            signature_counter=int(data.get("signature_counter") or self.signature_counter),
            state=data.get("state") or "UNKNOWN",
            remaining_signatures=None,
        )

    def export_audit_data(self, start: datetime, end: datetime) -> bytes:
        self._before_operation()
        self._require_connected()

        response = self._authorized(
            "POST",
            f"/tss/{self.tss_id}/export",
            json=self._export_range(start, end),
        )
        self._ensure_ok(response, "exportação de auditoria")
        return response.content

    def register_client(self, client_id: str) -> bool:
        self._before_operation()
        if not self.is_connected:
            return False
        try:
            response = self._authorized(
                "PUT",
                f"/tss/{self.tss_id}/client/{client_id}",
                json={"serial_number": client_id},
            )
        except requests.RequestException:
            logger.warning(
                "fiscal_device_register_client_error",
                extra={"event": "fiscal_device_register_client", "device_type": self.device_type},
                exc_info=True,
            )
            return False
        return response.ok

    def deregister_client(self, client_id: str) -> bool:
        self._before_operation()
        if not self.is_connected:
            return False
        try:
            response = self._authorized("DELETE", f"/tss/{self.tss_id}/client/{client_id}")
        except requests.RequestException:
            logger.warning(
                "fiscal_device_deregister_client_error",
                extra={"event": "fiscal_device_deregister_client", "device_type": self.device_type},
                exc_info=True,
            )
            return False
        return response.ok
