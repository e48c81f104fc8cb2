"""BlueZ (Linux) implementation of the Bluetooth platform."""

from __future__ import annotations

import logging
import re
import socket
import subprocess
from typing import BinaryIO, Callable, List, Optional

from .platform import BluetoothPlatform, ChannelSocket, DeviceDescriptor

SocketFactory = Callable[[], socket.socket]
ServiceLookup = Callable[[str, str], int]

_LOGGER = logging.getLogger(__name__)
_BLUETOOTHCTL = "bluetoothctl"
_DEVICE_LINE = re.compile(r"^Device\s+([0-9A-Fa-f:]{17})(?:\s+(.*))?$")


def _rfcomm_socket() -> socket.socket:
    family = getattr(socket, "AF_BLUETOOTH", None)
    proto = getattr(socket, "BTPROTO_RFCOMM", None)
    if family is None or proto is None:
        raise OSError(
            "This Python build does not expose Bluetooth socket APIs "
            "(AF_BLUETOOTH/BTPROTO_RFCOMM)"
        )
    return socket.socket(family, socket.SOCK_STREAM, proto)


def find_service_channel(address: str, service_uuid: str) -> int:
    """Resolve the RFCOMM channel advertised for *service_uuid* via SDP."""

    import bluetooth

    matches = bluetooth.find_service(uuid=service_uuid, address=address)
    for match in matches:
        port = match.get("port")
        if port:
            return int(port)
    raise OSError(f"Service {service_uuid} is not advertised by {address}")


class RfcommSocket(ChannelSocket):
    """Connected RFCOMM stream socket."""

    def __init__(self, sock: socket.socket, address: str, channel: int) -> None:
        self._sock = sock
        self.address = address
        self.channel = channel

    def is_connected(self) -> bool:
        if self._sock.fileno() == -1:
            return False
        try:
            self._sock.getpeername()
        except OSError:
            return False
        return True

    def output_stream(self) -> BinaryIO:
        return self._sock.makefile("wb")

    def close(self) -> None:
        self._sock.close()

    def __repr__(self) -> str:
        return f"RfcommSocket({self.address!r}, channel={self.channel})"


class BlueZPlatform(BluetoothPlatform):
    """Read adapter state through ``bluetoothctl`` and open RFCOMM sockets."""

    def __init__(
        self,
        *,
        connect_timeout: Optional[float] = 10.0,
        command_timeout: float = 5.0,
        socket_factory: SocketFactory = _rfcomm_socket,
        service_lookup: ServiceLookup = find_service_channel,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self._socket_factory = socket_factory
        self._service_lookup = service_lookup

    # -- Adapter -------------------------------------------------------------
    def adapter_present(self) -> bool:
        try:
            output = self._bluetoothctl("list")
        except (OSError, subprocess.SubprocessError) as exc:
            _LOGGER.debug("Could not query Bluetooth controllers: %s", exc)
            return False
        return any(line.startswith("Controller ") for line in output.splitlines())

    def adapter_enabled(self) -> bool:
        try:
            output = self._bluetoothctl("show")
        except (OSError, subprocess.SubprocessError) as exc:
            _LOGGER.debug("Could not query Bluetooth power state: %s", exc)
            return False
        for line in output.splitlines():
            key, _, value = line.strip().partition(":")
            if key == "Powered":
                return value.strip().lower() == "yes"
        return False

    def bonded_devices(self) -> List[DeviceDescriptor]:
        try:
            output = self._bluetoothctl("devices", "Paired")
            primary_error = None
        except subprocess.CalledProcessError as exc:
            output = ""
            primary_error = exc
        if "Device " not in output:
            # bluetoothctl before 5.65 only knows the dedicated command
            try:
                legacy = self._bluetoothctl("paired-devices")
            except subprocess.CalledProcessError:
                if primary_error is not None:
                    raise primary_error
                legacy = ""
            if "Invalid command" not in legacy:
                output = legacy
        devices: List[DeviceDescriptor] = []
        seen = set()
        for line in output.splitlines():
            match = _DEVICE_LINE.match(line.strip())
            if not match:
                continue
            address = match.group(1).upper()
            if address in seen:
                continue
            seen.add(address)
            name = (match.group(2) or "").strip()
            if not name or name.replace("-", ":").upper() == address:
                name = None
            devices.append(DeviceDescriptor(address=address, name=name))
        return devices

    # -- Channels ------------------------------------------------------------
    def open_service_channel(self, address: str, service_uuid: str) -> ChannelSocket:
        channel = self._service_lookup(address, service_uuid)
        _LOGGER.debug("Service %s on %s resolved to channel %s", service_uuid, address, channel)
        return self._connect(address, channel)

    def open_fixed_channel(self, address: str, channel: int) -> ChannelSocket:
        return self._connect(address, channel)

    def _connect(self, address: str, channel: int) -> RfcommSocket:
        sock = self._socket_factory()
        try:
            sock.settimeout(self.connect_timeout)
            sock.connect((address, channel))
            sock.settimeout(None)
        except Exception:
            try:
                sock.close()
            except OSError:
                pass
            raise
        return RfcommSocket(sock, address, channel)

    def _bluetoothctl(self, *args: str) -> str:
        result = subprocess.run(
            [_BLUETOOTHCTL, *args],
            capture_output=True,
            text=True,
            timeout=self.command_timeout,
            check=False,
        )
        if result.returncode != 0 and not result.stdout:
            raise subprocess.CalledProcessError(
                result.returncode, result.args, result.stdout, result.stderr
            )
        return result.stdout
