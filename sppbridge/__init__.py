"""SPP bridge package exposing the session manager and its request server."""

from __future__ import annotations

__all__ = ["main"]


def main() -> None:
    """Launch the SPP bridge service."""

    from .app import main as _app_main

    _app_main()
