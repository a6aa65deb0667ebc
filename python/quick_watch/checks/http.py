"""
HTTP check strategy.

Issues one request per check and accepts the response when its status code
matches the target's patterns. Up to 10 KiB of the body is read to measure
the response size; JSON bodies are kept on the result.
"""

from __future__ import annotations

import time
from http.client import HTTPException
from typing import TYPE_CHECKING
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from quick_watch.checks.base import CheckStrategy, CheckStrategyFactory
from quick_watch.evaluation import is_status_allowed
from quick_watch.models import CheckResult, utcnow

if TYPE_CHECKING:
    from quick_watch.config import TargetConfig

MAX_BODY_BYTES = 10 * 1024


class HTTPCheck(CheckStrategy):
    """Probe a URL with a single HTTP request."""

    name = "http"

    def check(self, target: TargetConfig) -> CheckResult:
        started = utcnow()
        start = time.monotonic()

        try:
            request = Request(
                target.url,
                headers={"User-Agent": "Quick-Watch/1.0", **target.headers},
                method=target.method,
            )
        except ValueError as e:
            return CheckResult.failure(f"Failed to create request: {e}", timestamp=started)

        try:
            response = urlopen(request, timeout=self._timeout)
        except HTTPError as e:
            # Non-2xx responses still count when the patterns allow them
            response = e
        except (URLError, HTTPException, OSError, ValueError) as e:
            reason = getattr(e, "reason", e)
            return CheckResult.failure(
                f"Request failed: {reason}",
                response_time=time.monotonic() - start,
                timestamp=started,
            )

        with response:
            status_code = response.getcode() or 0
            content_type = response.headers.get("Content-Type", "") or ""
            try:
                body = response.read(MAX_BODY_BYTES)
            except (HTTPException, OSError):
                length = response.headers.get("Content-Length")
                body = b""
                response_size = int(length) if length and length.isdigit() else 0
            else:
                response_size = len(body)

        response_time = time.monotonic() - start
        response_body = None
        if "application/json" in content_type and body:
            response_body = body.decode("utf-8", errors="replace")

        success = is_status_allowed(status_code, target.status_codes)
        self._logger.debug(
            "http_check_completed",
            url=target.url,
            status_code=status_code,
            success=success,
            response_time=round(response_time, 4),
        )

        return CheckResult(
            success=success,
            status_code=status_code,
            response_time=response_time,
            response_size=response_size,
            content_type=content_type or None,
            response_body=response_body,
            error=None if success else f"Unexpected status code {status_code}",
            timestamp=started,
        )


CheckStrategyFactory.register("http", HTTPCheck)
