"""Transport layer for the SPP bridge."""

from .bluez import BlueZPlatform, RfcommSocket, find_service_channel
from .platform import (
    DEFAULT_FALLBACK_CHANNEL,
    SPP_UUID,
    BluetoothPlatform,
    ChannelSocket,
    DeviceDescriptor,
)
from .session_manager import (
    DEFAULT_CHUNK_DELAY,
    DEFAULT_CHUNK_SIZE,
    ConnectionRecord,
    SessionManager,
    iter_chunks,
)

__all__ = [
    "BlueZPlatform",
    "BluetoothPlatform",
    "ChannelSocket",
    "ConnectionRecord",
    "DEFAULT_CHUNK_DELAY",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_FALLBACK_CHANNEL",
    "DeviceDescriptor",
    "RfcommSocket",
    "SPP_UUID",
    "SessionManager",
    "find_service_channel",
    "iter_chunks",
]
