"""Configuration helpers for the SPP bridge."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any

from .settings import CONFIG_FILE, PRINTER_FILE
from .transport.platform import DEFAULT_FALLBACK_CHANNEL, SPP_UUID
from .transport.session_manager import DEFAULT_CHUNK_DELAY, DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)

_MAX_RFCOMM_CHANNEL = 30


def _ensure_parent(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except Exception:
        # Directory creation failures will surface during write; keep silent here.
        pass


def _coerce_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _coerce_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class BridgeConfig:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_delay: float = DEFAULT_CHUNK_DELAY
    service_uuid: str = SPP_UUID
    fallback_channel: int = DEFAULT_FALLBACK_CHANNEL
    connect_timeout: float = 10.0
    ws_host: str = "0.0.0.0"
    ws_port: int = 8765
    printer_file: str = PRINTER_FILE
    auto_reconnect: bool = True


def load_config(path: str | Path = CONFIG_FILE) -> BridgeConfig:
    """Load configuration data from *path* or return defaults on failure."""

    defaults = BridgeConfig()
    cfg_path = Path(path)
    if not cfg_path.exists():
        return defaults

    try:
        raw = json.loads(cfg_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.error("Config file %s contains invalid JSON: %s", cfg_path, exc)
        return defaults
    except OSError as exc:
        logger.error("Could not read config file %s: %s", cfg_path, exc)
        return defaults

    if not isinstance(raw, dict):
        logger.error("Config file %s did not contain an object", cfg_path)
        return defaults

    data = asdict(defaults)
    data["chunk_size"] = max(1, _coerce_int(raw.get("chunk_size"), defaults.chunk_size))
    data["chunk_delay"] = max(0.0, _coerce_float(raw.get("chunk_delay"), defaults.chunk_delay))
    data["service_uuid"] = str(raw.get("service_uuid", data["service_uuid"]))
    channel = _coerce_int(raw.get("fallback_channel"), defaults.fallback_channel)
    data["fallback_channel"] = min(_MAX_RFCOMM_CHANNEL, max(1, channel))
    data["connect_timeout"] = max(
        0.0, _coerce_float(raw.get("connect_timeout"), defaults.connect_timeout)
    )
    data["ws_host"] = str(raw.get("ws_host", data["ws_host"]))
    data["ws_port"] = _coerce_int(raw.get("ws_port"), defaults.ws_port)
    data["printer_file"] = str(raw.get("printer_file", data["printer_file"]))
    data["auto_reconnect"] = bool(raw.get("auto_reconnect", data["auto_reconnect"]))

    return BridgeConfig(**data)


def save_config(config: BridgeConfig, path: str | Path = CONFIG_FILE) -> None:
    """Persist *config* to *path*, logging errors without raising."""

    cfg_path = Path(path)
    _ensure_parent(cfg_path)
    try:
        cfg_path.write_text(json.dumps(asdict(config), indent=4), encoding="utf-8")
    except OSError as exc:
        logger.error("Could not write config file %s: %s", cfg_path, exc)
