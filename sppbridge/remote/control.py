"""WebSocket request surface exposing the session manager to a host app."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ..errors import BadRequest, BridgeError, InvalidPayload
from ..printer import PrinterService
from ..transport import SessionManager

__all__ = [
    "AsyncWebsocketBridge",
    "RemoteControlServer",
    "decode_payload",
]

_LOGGER = logging.getLogger(__name__)

Operation = Callable[[Dict[str, Any]], Awaitable[Any]]


def decode_payload(payload: Any) -> bytes:
    """Decode base64 *payload* text into raw bytes, ignoring whitespace."""

    if not isinstance(payload, str):
        raise InvalidPayload("Payload must be a base64 string")
    compact = "".join(payload.split())
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidPayload(f"Payload is not valid base64: {exc}") from exc


class AsyncWebsocketBridge:
    """Owns the asyncio loop for the remote WebSocket interface."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        message_handler: Callable,
        on_port_bound: Optional[Callable[[int], None]] = None,
        on_client_connected: Optional[Callable[[object], None]] = None,
        on_client_disconnected: Optional[Callable[[object], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        max_attempts: int = 10,
    ) -> None:
        self.host = host
        self.base_port = int(port)
        self.message_handler = message_handler
        self.on_port_bound = on_port_bound
        self.on_client_connected = on_client_connected
        self.on_client_disconnected = on_client_disconnected
        self.on_error = on_error
        self.max_attempts = max_attempts
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._server = None
        self.port = int(port)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"AsyncWebsocketBridge[{self.base_port}]",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        loop = self._loop
        if loop and loop.is_running():
            try:
                loop.call_soon_threadsafe(lambda: None)
            except RuntimeError:
                pass
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._thread = None

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._start_server())
            if self._server is None:
                return
            loop.run_until_complete(self._wait_for_stop())
        except Exception as exc:
            self._notify(self.on_error, exc)
        finally:
            try:
                if self._server:
                    self._server.close()
                    loop.run_until_complete(self._server.wait_closed())
            except Exception:
                _LOGGER.debug("Error while closing WebSocket server", exc_info=True)
            loop.close()
            self._loop = None
            self._server = None

    async def _start_server(self) -> None:
        last_error: Optional[Exception] = None
        for offset in range(self.max_attempts):
            port = self.base_port + offset
            try:
                self._server = await websockets.serve(
                    self._handle_client,
                    self.host,
                    port,
                    ping_interval=20,
                    ping_timeout=20,
                )
                self.port = port
                self._notify(self.on_port_bound, port)
                return
            except OSError as exc:
                last_error = exc
                await asyncio.sleep(0.3)
        if last_error:
            self._notify(self.on_error, last_error)

    async def _wait_for_stop(self) -> None:
        while not self._stop_event.is_set():
            await asyncio.sleep(0.1)

    async def _handle_client(self, websocket, path: str | None = None) -> None:
        self._notify(self.on_client_connected, websocket)
        try:
            while not self._stop_event.is_set():
                try:
                    message = await asyncio.wait_for(websocket.recv(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                if message is None:
                    break
                try:
                    await self.message_handler(websocket, message)
                except Exception as exc:
                    _LOGGER.debug("WS handler error: %s", exc, exc_info=True)
        except (asyncio.CancelledError, ConnectionClosed):
            pass
        finally:
            self._notify(self.on_client_disconnected, websocket)

    @staticmethod
    def _notify(callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            _LOGGER.debug("WebSocket bridge callback failed", exc_info=True)


class RemoteControlServer:
    """Serves JSON requests over WebSocket and relays them to the manager.

    Requests look like ``{"id": 1, "op": "connect", "args": {"address": ...}}``
    and are answered with ``{"id": 1, "ok": true, "result": true}`` or
    ``{"id": 1, "ok": false, "error": {"code": ..., "message": ...}}``.
    ``disconnect`` is fire-and-forget and gets no answer. With a *printer*
    service attached, a successful connect is remembered and a disconnect
    forgets it.
    """

    def __init__(
        self,
        manager: SessionManager,
        *,
        printer: Optional[PrinterService] = None,
        host: str = "0.0.0.0",
        ws_port: int = 8765,
    ) -> None:
        self.manager = manager
        self.printer = printer
        self.host = host
        self.ws_port = ws_port
        self.bridge: Optional[AsyncWebsocketBridge] = None
        self.clients: set = set()
        self.clients_lock = threading.Lock()
        self._operations: Dict[str, Operation] = {
            "listBondedDevices": self._op_list_bonded_devices,
            "connect": self._op_connect,
            "disconnect": self._op_disconnect,
            "isConnected": self._op_is_connected,
            "writeBytes": self._op_write_bytes,
        }

    # -- Lifecycle ---------------------------------------------------------
    def start(self) -> None:
        if self.bridge is not None:
            return
        self.bridge = AsyncWebsocketBridge(
            host=self.host,
            port=self.ws_port,
            message_handler=self._handle_ws_message,
            on_port_bound=self._on_ws_port_bound,
            on_client_connected=self._on_ws_client_connected,
            on_client_disconnected=self._on_ws_client_disconnected,
            on_error=self._on_ws_error,
        )
        self.bridge.start()

    def stop(self) -> None:
        if self.bridge:
            self.bridge.stop()
        self.bridge = None
        with self.clients_lock:
            self.clients.clear()

    # -- Requests ----------------------------------------------------------
    async def handle_request(self, message: str) -> Optional[Dict[str, Any]]:
        """Execute one request and build its response (``None`` for no reply)."""

        request_id = None
        try:
            request = self._parse(message)
            request_id = request.get("id")
            op = request.get("op")
            operation = self._operations.get(op) if isinstance(op, str) else None
            if operation is None:
                raise BadRequest(f"Unknown operation: {op!r}")
            args = request.get("args") or {}
            if not isinstance(args, dict):
                raise BadRequest("Request args must be an object")
            _LOGGER.debug("WS request %s (id=%r)", op, request_id)
            result = await operation(args)
        except BridgeError as exc:
            return {"id": request_id, "ok": False, "error": exc.to_dict()}
        except Exception as exc:
            _LOGGER.exception("WS request %r failed unexpectedly", request_id)
            return {
                "id": request_id,
                "ok": False,
                "error": BridgeError(str(exc) or type(exc).__name__).to_dict(),
            }
        if op == "disconnect":
            return None
        return {"id": request_id, "ok": True, "result": result}

    @staticmethod
    def _parse(message: Any) -> Dict[str, Any]:
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        try:
            request = json.loads(message)
        except (TypeError, ValueError) as exc:
            raise BadRequest(f"Request is not valid JSON: {exc}") from exc
        if not isinstance(request, dict):
            raise BadRequest("Request must be a JSON object")
        return request

    async def _op_list_bonded_devices(self, args: Dict[str, Any]) -> Any:
        loop = asyncio.get_running_loop()
        devices = await loop.run_in_executor(None, self.manager.list_bonded_devices)
        return [device.to_dict() for device in devices]

    async def _op_connect(self, args: Dict[str, Any]) -> Any:
        address = args.get("address")
        if not isinstance(address, str) or not address:
            raise BadRequest("connect requires an address")
        result = await asyncio.wrap_future(self.manager.connect(address))
        if self.printer is not None:
            name = args.get("name")
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None, self.printer.remember, address, name if isinstance(name, str) else None
            )
        return result

    async def _op_disconnect(self, args: Dict[str, Any]) -> Any:
        # Waits on the record lock, which a running connect or write holds.
        disconnect = self.printer.disconnect if self.printer else self.manager.disconnect
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, disconnect)
        return None

    async def _op_is_connected(self, args: Dict[str, Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.manager.is_connected)

    async def _op_write_bytes(self, args: Dict[str, Any]) -> Any:
        data = decode_payload(args.get("payload"))
        return await asyncio.wrap_future(self.manager.write_bytes(data))

    # -- WebSocket callbacks -----------------------------------------------
    async def _handle_ws_message(self, websocket, message: str) -> None:
        response = await self.handle_request(message)
        if response is None:
            return
        await websocket.send(json.dumps(response))

    def _on_ws_port_bound(self, port: int) -> None:
        self.ws_port = port
        _LOGGER.info("Remote: Listening (ws://%s:%s)", self.host, port)

    def _on_ws_client_connected(self, websocket) -> None:
        with self.clients_lock:
            self.clients.add(websocket)
        peer = getattr(websocket, "remote_address", None)
        _LOGGER.info("WS: client connected %s", peer)

    def _on_ws_client_disconnected(self, websocket) -> None:
        with self.clients_lock:
            self.clients.discard(websocket)
        _LOGGER.info("WS: client disconnected")

    def _on_ws_error(self, error: Exception) -> None:
        _LOGGER.error("WebSocket bridge error: %s", error)
