"""Application context container for shared services."""
from __future__ import annotations

from dataclasses import dataclass

from .printer import PrinterService
from .transport import BluetoothPlatform, SessionManager


@dataclass
class AppContext:
    platform: BluetoothPlatform
    manager: SessionManager
    printer: PrinterService
