"""
TCP port check strategy.

A target passes when a connection can be opened to every configured port.
The address may be ``host``, ``host:port`` or a URL whose host is used.
"""

from __future__ import annotations

import socket
import time
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from quick_watch.checks.base import CheckStrategy, CheckStrategyFactory
from quick_watch.exceptions import CheckError
from quick_watch.models import CheckResult, utcnow

if TYPE_CHECKING:
    from quick_watch.config import TargetConfig


def parse_address(target: TargetConfig) -> tuple[str, list[int]]:
    """
    Resolve the host and ports to dial for a target.

    Raises:
        CheckError: If no port can be determined.
    """
    address = target.url
    if "://" in address:
        parts = urlsplit(address)
        host = parts.hostname or ""
        port = parts.port
    else:
        host, _, port_text = address.rpartition(":") if ":" in address else (address, "", "")
        try:
            port = int(port_text) if port_text else None
        except ValueError as e:
            raise CheckError.invalid_target(address, f"invalid port '{port_text}'") from e

    ports = list(target.ports) or ([port] if port else [])
    if not host:
        raise CheckError.invalid_target(address, "missing host")
    if not ports:
        raise CheckError.invalid_target(address, "no port configured")
    return host, ports


class TCPCheck(CheckStrategy):
    """Dial each configured port once."""

    name = "tcp"

    def check(self, target: TargetConfig) -> CheckResult:
        started = utcnow()
        start = time.monotonic()

        try:
            host, ports = parse_address(target)
        except CheckError as e:
            return CheckResult.failure(e.message, timestamp=started)

        for port in ports:
            try:
                with socket.create_connection((host, port), timeout=self._timeout):
                    pass
            except OSError as e:
                return CheckResult.failure(
                    f"Connection to {host}:{port} failed: {e}",
                    response_time=time.monotonic() - start,
                    timestamp=started,
                )

        response_time = time.monotonic() - start
        self._logger.debug(
            "tcp_check_completed",
            host=host,
            ports=ports,
            response_time=round(response_time, 4),
        )
        return CheckResult(success=True, response_time=response_time, timestamp=started)


CheckStrategyFactory.register("tcp", TCPCheck)
