# fiscal/devices/swissbit_usb.py
"""
Dispositivo USB acessado por um daemon local (por padrão em
http://localhost:8080). A inicialização usa o client_id e o PIN de
administração (api_key).
"""

from __future__ import annotations

import logging

import requests

from fiscal.devices.local import LocalSigningDevice

logger = logging.getLogger("compliance.fiscal")


class SwissbitUsbSigningDevice(LocalSigningDevice):
    device_type = "swissbit_usb"
    REQUIRED_SETTINGS = ("client_id", "api_key")
    DEFAULT_ENDPOINT = "http://localhost:8080"

    def connect(self) -> bool:
        try:
            response = self._request(
                "POST",
                "/api/v1/tse/initialize",
                json={"clientId": self.client_id, "adminPin": self.settings.get("api_key")},
            )
        except requests.RequestException:
            logger.warning(
                "fiscal_device_connect_error",
                extra={"event": "fiscal_device_connect", "device_type": self.device_type},
                exc_info=True,
            )
            self._mark_disconnected()
            return False

        if not response.ok:
            return False

        self._load_identity(self._json(response))
        self._connected = True
        logger.info(
            "fiscal_device_connected",
            extra={
                "event": "fiscal_device_connect",
                "device_type": self.device_type,
                "certificate_serial": self.certificate_serial,
            },
        )
        return True

    def disconnect(self) -> None:
        self._mark_disconnected()
