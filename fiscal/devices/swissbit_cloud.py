# fiscal/devices/swissbit_cloud.py
"""
Provider cloud com token de vida fixa e sem refresh token:
quando o token expira, autentica novamente com as credenciais.
"""

from __future__ import annotations

import logging

import requests

from fiscal.devices.cloud import CloudTssSigningDevice

logger = logging.getLogger("compliance.fiscal")


class SwissbitCloudSigningDevice(CloudTssSigningDevice):
    device_type = "swissbit_cloud"

    def connect(self) -> bool:
        try:
            response = self._request(
                "POST",
                "/auth/token",
                json={"apiKey": self.api_key, "apiSecret": self.api_secret},
            )
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
        self._store_token(data.get("access_token"), data.get("expires_in"))
        logger.info(
            "fiscal_device_connected",
            extra={"event": "fiscal_device_connect", "device_type": self.device_type},
        )
        return self.access_token is not None

    def _before_operation(self) -> None:
        if self.access_token is not None and not self.is_connected:
            self.connect()
