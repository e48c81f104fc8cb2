"""Single-connection session manager for Bluetooth serial (SPP) devices."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, List, Optional, Tuple

from ..errors import (
    BridgeError,
    CapabilityDisabled,
    CapabilityUnavailable,
    ConnectionFailed,
    NotConnected,
    WriteFailed,
)
from .platform import (
    DEFAULT_FALLBACK_CHANNEL,
    SPP_UUID,
    BluetoothPlatform,
    ChannelSocket,
    DeviceDescriptor,
)

DEFAULT_CHUNK_SIZE = 1024
DEFAULT_CHUNK_DELAY = 0.05

_LOGGER = logging.getLogger(__name__)

_Request = Tuple[str, Callable[[], bool], "Future[bool]"]


@dataclass
class ConnectionRecord:
    """The one live link: socket, its output stream, and the peer address."""

    socket: ChannelSocket
    stream: BinaryIO
    address: str


def iter_chunks(payload: bytes, size: int) -> Iterator[bytes]:
    """Yield *payload* in slices of at most *size* bytes."""

    for offset in range(0, len(payload), size):
        yield payload[offset : offset + size]


class SessionManager:
    """Owns at most one outbound serial connection.

    ``connect`` and ``write_bytes`` are executed by a single worker thread in
    submission order and report through a :class:`concurrent.futures.Future`.
    ``disconnect``, ``is_connected`` and ``list_bonded_devices`` run on the
    caller's thread. Opening, closing and writing all hold the same lock so a
    close can never interleave with a half-finished open.
    """

    def __init__(
        self,
        platform: BluetoothPlatform,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_delay: float = DEFAULT_CHUNK_DELAY,
        service_uuid: str = SPP_UUID,
        fallback_channel: int = DEFAULT_FALLBACK_CHANNEL,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("Chunk size must be greater than zero")
        self.platform = platform
        self.chunk_size = chunk_size
        self.chunk_delay = max(0.0, chunk_delay)
        self.service_uuid = service_uuid
        self.fallback_channel = fallback_channel
        self._record: Optional[ConnectionRecord] = None
        self._record_lock = threading.RLock()
        self._requests: "queue.Queue[Optional[_Request]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()
        self._stopped = False

    @property
    def connected_address(self) -> Optional[str]:
        record = self._record
        return record.address if record else None

    # -- Caller-thread operations ---------------------------------------------
    def list_bonded_devices(self) -> List[DeviceDescriptor]:
        self._ensure_capability()
        try:
            return list(self.platform.bonded_devices())
        except Exception as exc:
            raise BridgeError(f"Failed to get bonded devices: {exc}") from exc

    def is_connected(self) -> bool:
        record = self._record
        if record is None:
            return False
        return self._socket_alive(record)

    def disconnect(self) -> None:
        """Release the current connection, if any. Never raises."""

        with self._record_lock:
            record, self._record = self._record, None
        if record is None:
            return
        try:
            record.stream.close()
        except Exception:
            _LOGGER.debug("Ignoring error while closing output stream", exc_info=True)
        try:
            record.socket.close()
        except Exception:
            _LOGGER.debug("Ignoring error while closing socket", exc_info=True)
        _LOGGER.info("Disconnected from %s", record.address)

    # -- Worker-thread operations ---------------------------------------------
    def connect(self, address: str) -> "Future[bool]":
        return self._submit(f"connect[{address}]", lambda: self._connect(address))

    def write_bytes(self, payload: bytes) -> "Future[bool]":
        data = bytes(payload)
        return self._submit(f"write[{len(data)}]", lambda: self._write(data))

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop the worker after queued requests drain, then disconnect."""

        with self._worker_lock:
            self._stopped = True
            worker = self._worker
            if worker is not None:
                self._requests.put(None)
        if wait and worker is not None and worker is not threading.current_thread():
            worker.join()
        self._worker = None
        self.disconnect()

    def _connect(self, address: str) -> bool:
        with self._record_lock:
            self.disconnect()
            self._ensure_capability()
            sock = self._open_channel(address)
            try:
                stream = sock.output_stream()
            except Exception as exc:
                try:
                    sock.close()
                except Exception:
                    _LOGGER.debug("Ignoring error while closing socket", exc_info=True)
                raise ConnectionFailed(f"Failed to connect: {exc}") from exc
            self._record = ConnectionRecord(socket=sock, stream=stream, address=address)
        _LOGGER.info("Connected to %s", address)
        return True

    def _open_channel(self, address: str) -> ChannelSocket:
        strategies = (
            (
                "service record",
                lambda: self.platform.open_service_channel(address, self.service_uuid),
            ),
            (
                f"RFCOMM channel {self.fallback_channel}",
                lambda: self.platform.open_fixed_channel(address, self.fallback_channel),
            ),
        )
        last_error: Optional[Exception] = None
        for name, opener in strategies:
            try:
                return opener()
            except Exception as exc:
                _LOGGER.info("Connecting to %s via %s failed: %s", address, name, exc)
                last_error = exc
        raise ConnectionFailed(
            f"Failed to connect: Failed to connect using both methods: {last_error}"
        ) from last_error

    def _write(self, payload: bytes) -> bool:
        with self._record_lock:
            record = self._record
            if record is None or not self._socket_alive(record):
                raise NotConnected("Printer is not connected")
            written = 0
            try:
                for chunk in iter_chunks(payload, self.chunk_size):
                    record.stream.write(chunk)
                    record.stream.flush()
                    written += len(chunk)
                    time.sleep(self.chunk_delay)
            except Exception as exc:
                # The record is left as-is; the caller decides whether to disconnect.
                _LOGGER.warning(
                    "Write to %s aborted after %d of %d bytes",
                    record.address,
                    written,
                    len(payload),
                )
                raise WriteFailed(f"Failed to print: {exc}") from exc
        _LOGGER.debug("Wrote %d bytes to %s", len(payload), record.address)
        return True

    # -- Helpers ----------------------------------------------------------------
    def _ensure_capability(self) -> None:
        if not self.platform.adapter_present():
            raise CapabilityUnavailable("Bluetooth is not available")
        if not self.platform.adapter_enabled():
            raise CapabilityDisabled("Bluetooth is disabled")

    @staticmethod
    def _socket_alive(record: ConnectionRecord) -> bool:
        try:
            return bool(record.socket.is_connected())
        except Exception:
            _LOGGER.debug("Socket state query failed", exc_info=True)
            return False

    def _submit(self, name: str, job: Callable[[], bool]) -> "Future[bool]":
        future: "Future[bool]" = Future()
        with self._worker_lock:
            if self._stopped:
                raise RuntimeError("Session manager has been shut down")
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._worker_loop,
                    name="SessionManager",
                    daemon=True,
                )
                self._worker.start()
            self._requests.put((name, job, future))
        return future

    def _worker_loop(self) -> None:
        while True:
            request = self._requests.get()
            if request is None:
                break
            name, job, future = request
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = job()
            except BridgeError as exc:
                _LOGGER.warning("%s failed: %s", name, exc)
                future.set_exception(exc)
            except Exception as exc:
                _LOGGER.exception("%s failed unexpectedly", name)
                future.set_exception(exc)
            else:
                future.set_result(result)
