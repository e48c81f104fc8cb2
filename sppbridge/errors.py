"""Error taxonomy for the SPP bridge."""

from __future__ import annotations

from typing import Dict

__all__ = [
    "BridgeError",
    "CapabilityUnavailable",
    "CapabilityDisabled",
    "ConnectionFailed",
    "NotConnected",
    "WriteFailed",
    "InvalidPayload",
    "BadRequest",
]


class BridgeError(Exception):
    """Base failure carrying a short wire code and a human readable message."""

    code = "ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


class CapabilityUnavailable(BridgeError):
    """No Bluetooth adapter is present on this host."""

    code = "BLUETOOTH_NOT_AVAILABLE"


class CapabilityDisabled(BridgeError):
    """An adapter exists but is powered off."""

    code = "BLUETOOTH_DISABLED"


class ConnectionFailed(BridgeError):
    code = "CONNECTION_FAILED"


class NotConnected(BridgeError):
    code = "NOT_CONNECTED"


class WriteFailed(BridgeError):
    code = "PRINT_FAILED"


class InvalidPayload(BridgeError):
    """Raised by the request surface when a payload is not valid base64."""

    code = "INVALID_PAYLOAD"


class BadRequest(BridgeError):
    """Raised by the request surface for malformed or unknown requests."""

    code = "BAD_REQUEST"
