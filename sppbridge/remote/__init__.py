"""Remote request surface for the SPP bridge."""

from .control import AsyncWebsocketBridge, RemoteControlServer, decode_payload

__all__ = [
    "AsyncWebsocketBridge",
    "RemoteControlServer",
    "decode_payload",
]
