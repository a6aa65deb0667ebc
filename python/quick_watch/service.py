"""
Service entry point.

Loads configuration, starts the engine and the HTTP API, and blocks until
SIGINT or SIGTERM. SIGHUP reloads the configuration file: a new engine is
built, swapped into the API server, and the old one is stopped.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
import yaml
from pydantic import ValidationError

from quick_watch import __version__
from quick_watch.config import Config, set_config
from quick_watch.engine import MonitorEngine
from quick_watch.exceptions import ConfigurationError, QuickWatchError
from quick_watch.logging import setup_logging
from quick_watch.server import ApiServer

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = structlog.get_logger(__name__)


class Service:
    """Owns the running engine and API server."""

    def __init__(self, config_path: str | None = None) -> None:
        self._config_path = config_path
        self._shutdown_event = threading.Event()
        self._reload_lock = threading.Lock()

        config = self._load()
        self._engine = MonitorEngine(config)
        self._server = ApiServer(self._engine)

    @property
    def engine(self) -> MonitorEngine:
        return self._engine

    @property
    def server(self) -> ApiServer:
        return self._server

    def _load(self) -> Config:
        if self._config_path and not Path(self._config_path).exists():
            raise ConfigurationError.missing_file(self._config_path)
        try:
            config = Config.load(self._config_path)
        except (ValidationError, yaml.YAMLError) as e:
            raise ConfigurationError.validation_failed(
                "config", self._config_path, str(e).splitlines()[0]
            ) from e
        set_config(config)
        return config

    def start(self) -> None:
        self._server.start()
        self._engine.start()
        logger.info(
            "service_started",
            version=__version__,
            port=self._server.port,
            targets=len(self._engine.states),
        )

    def stop(self) -> None:
        self._server.stop()
        self._engine.stop()
        self._shutdown_event.set()
        logger.info("service_stopped")

    def reload(self) -> None:
        """
        Rebuild the engine from the configuration file.

        Incident and acknowledgement state is not carried over. A config
        that fails to load leaves the running engine untouched.
        """
        with self._reload_lock:
            try:
                config = self._load()
            except QuickWatchError as e:
                logger.error("config_reload_failed", **e.to_dict())
                return

            old_engine = self._engine
            new_engine = MonitorEngine(config)
            old_engine.stop()
            self._server.set_engine(new_engine)
            self._engine = new_engine
            new_engine.start()
            logger.info("config_reloaded", targets=len(new_engine.states))

    def wait(self, timeout: float | None = None) -> bool:
        return self._shutdown_event.wait(timeout=timeout)


def serve(config_path: str | None = None) -> None:
    """
    Start the service and block until shutdown.

    Args:
        config_path: YAML configuration file (searched for when None).
    """
    service = Service(config_path)
    setup_logging(service.engine.config.logging)
    service.start()

    def shutdown_handler(_signum: int, _frame: object) -> None:
        logger.info("shutdown_signal_received")
        threading.Thread(target=service.stop, name="quick-watch-shutdown").start()

    def reload_handler(_signum: int, _frame: object) -> None:
        logger.info("reload_signal_received")
        threading.Thread(target=service.reload, name="quick-watch-reload").start()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, reload_handler)

    try:
        while not service.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt_received")
        service.stop()


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for the quick-watch service."""
    parser = argparse.ArgumentParser(
        prog="quick-watch", description="Target monitoring and alerting service"
    )
    parser.add_argument(
        "config", nargs="?", default=None, help="YAML configuration file (default: watch-state.yml)"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    try:
        serve(args.config)
    except QuickWatchError as e:
        logger.error("service_failed", **e.to_dict())
        sys.exit(1)
    except Exception as e:
        logger.error("service_failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
