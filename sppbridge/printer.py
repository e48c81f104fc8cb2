"""Receipt printer service layered on top of the session manager."""
from __future__ import annotations

import json
import logging
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional

from .config import _ensure_parent
from .errors import BridgeError, NotConnected
from .settings import PRINTER_FILE
from .transport import SessionManager

logger = logging.getLogger(__name__)


@dataclass
class PrinterDevice:
    """A paired device offered to the user as a printer."""

    id: str
    name: str
    address: str
    bonded: bool = True


class PrinterService:
    """Connect to paired printers and remember the last one used."""

    def __init__(
        self,
        manager: SessionManager,
        *,
        storage_path: str | Path = PRINTER_FILE,
        connect_timeout: Optional[float] = None,
        write_timeout: Optional[float] = None,
    ) -> None:
        self.manager = manager
        self.storage_path = Path(storage_path)
        self.connect_timeout = connect_timeout
        self.write_timeout = write_timeout
        self._connected: Optional[PrinterDevice] = None

    @property
    def connected_printer(self) -> Optional[PrinterDevice]:
        return self._connected

    def is_connected(self) -> bool:
        return self._connected is not None

    def scan_for_printers(self) -> List[PrinterDevice]:
        """Return paired devices that carry both a name and an address."""

        printers: List[PrinterDevice] = []
        for device in self.manager.list_bonded_devices():
            if not device.address or not device.name:
                logger.debug("Skipping paired device without name: %s", device)
                continue
            printers.append(
                PrinterDevice(id=device.address, name=device.name, address=device.address)
            )
        logger.info("Found %d paired printer candidate(s)", len(printers))
        return printers

    def connect_to_printer(self, device: PrinterDevice) -> bool:
        logger.info("Connecting to printer %s (%s)", device.name, device.address)
        self.manager.connect(device.address).result(timeout=self.connect_timeout)
        self._connected = device
        self._save(device)
        return True

    def remember(self, address: str, name: Optional[str] = None) -> PrinterDevice:
        """Record *address* as the connected printer after an external connect."""

        device = PrinterDevice(id=address, name=name or "Unknown Device", address=address)
        self._connected = device
        self._save(device)
        return device

    def disconnect(self) -> None:
        self.manager.disconnect()
        self._connected = None
        self._clear()

    def auto_reconnect(self) -> bool:
        """Reconnect to the remembered printer; report failure instead of raising."""

        saved = self.load_saved_printer()
        if saved is None:
            logger.info("No saved printer to reconnect to")
            return False
        try:
            return self.connect_to_printer(saved)
        except (BridgeError, FutureTimeout) as exc:
            logger.warning("Auto-reconnect to %s failed: %s", saved.name, exc)
            return False

    def check_connection(self) -> bool:
        connected = self.manager.is_connected()
        if not connected:
            self._connected = None
        return connected

    def print_raw(self, payload: bytes) -> None:
        if self._connected is None:
            raise NotConnected("No printer connected. Please connect to a printer first.")
        logger.info("Printing %d bytes to %s", len(payload), self._connected.name)
        self.manager.write_bytes(payload).result(timeout=self.write_timeout)

    # -- Persistence -----------------------------------------------------------
    def load_saved_printer(self) -> Optional[PrinterDevice]:
        if not self.storage_path.exists():
            return None
        try:
            raw = json.loads(self.storage_path.read_text(encoding="utf-8"))
            return PrinterDevice(
                id=str(raw.get("id") or raw["address"]),
                name=str(raw.get("name") or "Unknown Device"),
                address=str(raw["address"]),
                bonded=bool(raw.get("bonded", True)),
            )
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error("Could not load saved printer from %s: %s", self.storage_path, exc)
            return None

    def _save(self, device: PrinterDevice) -> None:
        _ensure_parent(self.storage_path)
        try:
            self.storage_path.write_text(json.dumps(asdict(device), indent=4), encoding="utf-8")
        except OSError as exc:
            logger.error("Could not save printer to %s: %s", self.storage_path, exc)

    def _clear(self) -> None:
        try:
            self.storage_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error("Could not clear saved printer %s: %s", self.storage_path, exc)
