"""Platform seam between the session manager and the Bluetooth stack."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import BinaryIO, Dict, List, Optional

SPP_UUID = "00001101-0000-1000-8000-00805F9B34FB"
DEFAULT_FALLBACK_CHANNEL = 1


@dataclass(frozen=True)
class DeviceDescriptor:
    """A device previously paired with this host."""

    address: str
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


class ChannelSocket(ABC):
    """A connected RFCOMM channel as handed back by a platform."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Return whether the platform still reports the link as up."""

    @abstractmethod
    def output_stream(self) -> BinaryIO:
        """Return a writable byte stream bound to the channel."""

    @abstractmethod
    def close(self) -> None:
        """Release the channel."""


class BluetoothPlatform(ABC):
    """Adapter state, the paired-device registry, and channel opening."""

    @abstractmethod
    def adapter_present(self) -> bool:
        ...

    @abstractmethod
    def adapter_enabled(self) -> bool:
        ...

    @abstractmethod
    def bonded_devices(self) -> List[DeviceDescriptor]:
        ...

    @abstractmethod
    def open_service_channel(self, address: str, service_uuid: str) -> ChannelSocket:
        """Connect to the channel advertised for *service_uuid* by *address*.

        Blocks for the duration of the handshake and raises on failure.
        """

    @abstractmethod
    def open_fixed_channel(self, address: str, channel: int) -> ChannelSocket:
        """Connect to RFCOMM *channel* on *address* without a service lookup."""
