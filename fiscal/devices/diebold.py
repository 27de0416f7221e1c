# fiscal/devices/diebold.py
"""
Dispositivo de hardware em rede local: toda operação exige uma sessão
aberta via /api/v1/session/start, e o sessionId acompanha cada request.
"""

from __future__ import annotations

import logging

import requests

from fiscal.devices.local import LocalSigningDevice

logger = logging.getLogger("compliance.fiscal")


class DieboldNixdorfSigningDevice(LocalSigningDevice):
    device_type = "diebold_nixdorf"
    REQUIRED_SETTINGS = ("api_endpoint", "client_id")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.session_id: str | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected and self.session_id is not None

    def _session_fields(self):
        return {"sessionId": self.session_id}

    def _mark_disconnected(self) -> None:
        self._connected = False
        self.session_id = None

    def connect(self) -> bool:
        try:
            response = self._request(
                "POST", "/api/v1/session/start", json={"clientId": self.client_id}
            )
            if not response.ok:
                return False

            self.session_id = self._json(response).get("sessionId")
            self._connected = self.session_id is not None

            info = self._request("GET", "/api/v1/tse/info")
            if info.ok:
                self._load_identity(self._json(info))
        except requests.RequestException:
            logger.warning(
                "fiscal_device_connect_error",
                extra={"event": "fiscal_device_connect", "device_type": self.device_type},
                exc_info=True,
            )
            self._mark_disconnected()
            return False

        logger.info(
            "fiscal_device_connected",
            extra={
                "event": "fiscal_device_connect",
                "device_type": self.device_type,
                "certificate_serial": self.certificate_serial,
            },
        )
        return self.is_connected

    def disconnect(self) -> None:
        if self.session_id is not None:
            try:
                self._request("POST", "/api/v1/session/end", json={"sessionId": self.session_id})
            except requests.RequestException:
                logger.warning(
                    "fiscal_device_session_end_error",
                    extra={"event": "fiscal_device_disconnect", "device_type": self.device_type},
                    exc_info=True,
                )
        self._mark_disconnected()
