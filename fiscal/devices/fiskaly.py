# fiscal/devices/fiskaly.py
"""
Provider cloud com access token + refresh token.

Ciclo de vida:
  1) connect() usa o refresh token enquanto ele estiver válido; se a
     renovação falhar, autentica novamente com api_key/api_secret.
  2) Antes de cada operação, renova proativamente o access token quando
     faltar menos de REFRESH_MARGIN para expirar.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

import requests

from fiscal.devices.cloud import CloudTssSigningDevice

logger = logging.getLogger("compliance.fiscal")


class FiskalyCloudSigningDevice(CloudTssSigningDevice):
    device_type = "fiskaly_cloud"

    REFRESH_MARGIN = timedelta(seconds=60)

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.refresh_token: str | None = None
        self.refresh_expires_at: datetime | None = None

    def _refresh_alive(self) -> bool:
        return (
            self.refresh_token is not None
            and self.refresh_expires_at is not None
            and self.refresh_expires_at > self._now()
        )

    def _authenticate(self, payload: dict) -> bool:
        try:
            response = self._request("POST", "/auth", json=payload)
        except requests.RequestException:
            logger.warning(
                "fiscal_device_connect_error",
                extra={"event": "fiscal_device_connect", "device_type": self.device_type},
                exc_info=True,
            )
            return False

        if not response.ok:
            logger.warning(
                "fiscal_device_connect_failed",
                extra={
                    "event": "fiscal_device_connect",
                    "device_type": self.device_type,
                    "status": response.status_code,
                },
            )
            return False

        data = self._json(response)
        self._store_token(
            data.get("access_token"),
            data.get("access_token_expires_in") or data.get("expires_in"),
        )

        if data.get("refresh_token"):
            self.refresh_token = data["refresh_token"]
            lifetime = int(data.get("refresh_token_expires_in") or 24 * 3600)
            self.refresh_expires_at = self._now() + timedelta(seconds=lifetime)

        return self.access_token is not None

    def connect(self) -> bool:
        if self._refresh_alive() and self._authenticate({"refresh_token": self.refresh_token}):
            return True
        return self._authenticate({"api_key": self.api_key, "api_secret": self.api_secret})

    def disconnect(self) -> None:
        super().disconnect()
        self.refresh_token = None
        self.refresh_expires_at = None

    def _before_operation(self) -> None:
        if not self.is_connected:
            return
        if self.token_expires_at - self._now() > self.REFRESH_MARGIN:
            return
        if self._refresh_alive():
            self._authenticate({"refresh_token": self.refresh_token})

    def _export_range(self, start, end):
        # epoch em milissegundos (UTC)
        return {
            "start_date": int(start.timestamp() * 1000),
            "end_date": int(end.timestamp() * 1000),
        }
