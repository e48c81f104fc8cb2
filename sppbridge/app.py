"""Headless service wiring the session manager to its WebSocket surface."""

from __future__ import annotations

import logging
import threading

from .config import BridgeConfig
from .config import load_config as load_app_config
from .context import AppContext
from .printer import PrinterService
from .remote import RemoteControlServer
from .settings import configure_logging
from .transport import BlueZPlatform, SessionManager

logger = logging.getLogger(__name__)


def build_context(config: BridgeConfig) -> AppContext:
    """Create the platform, manager and printer service described by *config*."""

    platform = BlueZPlatform(connect_timeout=config.connect_timeout or None)
    manager = SessionManager(
        platform,
        chunk_size=config.chunk_size,
        chunk_delay=config.chunk_delay,
        service_uuid=config.service_uuid,
        fallback_channel=config.fallback_channel,
    )
    printer = PrinterService(manager, storage_path=config.printer_file)
    return AppContext(platform=platform, manager=manager, printer=printer)


class BridgeApp:
    """Runs the remote server until stopped."""

    def __init__(
        self,
        *,
        context: AppContext | None = None,
        config: BridgeConfig | None = None,
    ) -> None:
        self.config = config or load_app_config()
        self.context = context or build_context(self.config)
        self.manager = self.context.manager
        self.printer = self.context.printer
        self.remote_server = RemoteControlServer(
            self.manager,
            printer=self.printer,
            host=self.config.ws_host,
            ws_port=self.config.ws_port,
        )
        self._stop_event = threading.Event()

    def start(self) -> None:
        self.remote_server.start()
        if self.config.auto_reconnect and self.printer.auto_reconnect():
            logger.info("Reconnected to saved printer %s", self.manager.connected_address)

    def stop(self) -> None:
        self._stop_event.set()
        self.remote_server.stop()
        self.manager.shutdown()

    def run(self) -> None:
        """Start serving and block until :meth:`stop` or Ctrl+C."""

        self.start()
        try:
            while not self._stop_event.wait(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted; shutting down")
        finally:
            self.stop()


def create_application(
    *,
    config: BridgeConfig | None = None,
    context: AppContext | None = None,
) -> BridgeApp:
    """Construct the bridge service without starting it."""

    cfg = config or load_app_config()
    return BridgeApp(context=context, config=cfg)


def main() -> None:
    """Launch the SPP bridge service."""

    configure_logging()
    app = create_application()
    app.run()


if __name__ == "__main__":
    main()
