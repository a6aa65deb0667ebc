"""
HTTP API for the monitoring engine.

Routes:
    GET  /health                       liveness and scheduler status
    GET  /status, /api/status          per-target status
    GET|POST /api/trigger/<name>       trigger a webhook target
    GET|POST /api/acknowledge/<token>  acknowledge an incident or hook
    POST /api/report                   send a status report now
    POST <webhook_path>                generic notification intake
    *    /hooks/<name>                 named inbound hooks
"""

from __future__ import annotations

import http.server
import json
import threading
import urllib.parse
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from quick_watch.exceptions import (
    InvalidTokenError,
    InvalidTriggerError,
    NoActiveIncidentError,
    QuickWatchError,
    ReportUnavailableError,
    TargetNotFoundError,
)
from quick_watch.hooks import is_authorized, method_allowed, resolve_message
from quick_watch.logging import with_context
from quick_watch.models import HookNotification

if TYPE_CHECKING:
    from quick_watch.engine import MonitorEngine

logger = structlog.get_logger(__name__)

MAX_BODY_BYTES = 1024 * 1024

ERROR_STATUS: list[tuple[type[QuickWatchError], int]] = [
    (InvalidTokenError, 400),
    (NoActiveIncidentError, 409),
    (TargetNotFoundError, 404),
    (InvalidTriggerError, 400),
    (ReportUnavailableError, 409),
]


def status_for_error(error: QuickWatchError) -> int:
    for error_class, status in ERROR_STATUS:
        if isinstance(error, error_class):
            return status
    return 500


class BadRequest(Exception):
    """Malformed request input."""


class ApiServer:
    """
    Threaded HTTP server exposing the engine.

    The engine is held by reference and can be swapped on reload with
    ``set_engine``.
    """

    def __init__(
        self,
        engine: MonitorEngine,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        """
        Initialize the server.

        Args:
            engine: Engine serving the requests.
            host: Bind address (defaults to ``settings.host``).
            port: Port (defaults to ``settings.webhook_port``; 0 picks a free one).
        """
        settings = engine.config.settings
        self._engine = engine
        self._host = host if host is not None else settings.host
        self._port = port if port is not None else settings.webhook_port
        self._logger = logger.bind(component="api-server")

        self._server: http.server.ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._started_at: datetime | None = None

    @property
    def engine(self) -> MonitorEngine:
        return self._engine

    def set_engine(self, engine: MonitorEngine) -> None:
        """Serve subsequent requests from a new engine."""
        self._engine = engine

    @property
    def port(self) -> int:
        if self._server:
            return self._server.server_address[1]
        return self._port

    @property
    def is_running(self) -> bool:
        return self._server is not None

    def start(self) -> None:
        """Start serving in a background thread."""
        handler = self._create_handler()
        self._server = http.server.ThreadingHTTPServer((self._host, self._port), handler)
        self._server.daemon_threads = True

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="quick-watch-api",
            daemon=True,
        )
        self._thread.start()
        self._started_at = datetime.now(tz=timezone.utc)

        self._logger.info("api_server_started", host=self._host, port=self.port)

    def stop(self) -> None:
        """Stop the server; in-flight requests complete."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None

        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None

        self._logger.info("api_server_stopped")

    def get_health(self) -> dict[str, Any]:
        engine = self._engine
        health: dict[str, Any] = {
            "status": "healthy",
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "targets": len(engine.states),
            "scheduler": engine.scheduler.get_status(),
        }
        if self._started_at:
            health["uptime_seconds"] = (
                datetime.now(tz=timezone.utc) - self._started_at
            ).total_seconds()
        return health

    def _create_handler(self) -> type[http.server.BaseHTTPRequestHandler]:
        """Create HTTP request handler."""
        api = self

        class ApiHandler(http.server.BaseHTTPRequestHandler):
            """HTTP handler for the API routes."""

            def log_message(self, format: str, *args: Any) -> None:
                """Suppress default logging."""
                pass

            def do_GET(self) -> None:
                self._dispatch("GET")

            def do_POST(self) -> None:
                self._dispatch("POST")

            def do_PUT(self) -> None:
                self._dispatch("PUT")

            def do_DELETE(self) -> None:
                self._dispatch("DELETE")

            def _dispatch(self, method: str) -> None:
                parsed = urllib.parse.urlsplit(self.path)
                path = parsed.path.rstrip("/") or "/"
                query = {k: v[-1] for k, v in urllib.parse.parse_qs(parsed.query).items()}

                with with_context(request_method=method, request_path=path):
                    try:
                        self._route(method, path, query)
                    except QuickWatchError as e:
                        api._logger.info("api_request_rejected", **e.to_dict())
                        self._send_json(e.to_dict(), status_for_error(e))
                    except BadRequest as e:
                        self._send_json({"error": str(e)}, 400)
                    except Exception as e:
                        api._logger.error("api_request_failed", error=str(e), exc_info=True)
                        self._send_json({"error": "internal server error"}, 500)

            def _route(self, method: str, path: str, query: dict[str, str]) -> None:
                engine = api.engine
                webhook_path = engine.config.settings.webhook_path.rstrip("/") or "/"

                if path == "/health" and method == "GET":
                    self._send_json(api.get_health(), 200)
                elif path in ("/status", "/api/status") and method == "GET":
                    self._send_json({"targets": engine.status()}, 200)
                elif path.startswith("/api/trigger/") and method in ("GET", "POST"):
                    self._handle_trigger(engine, _tail(path, "/api/trigger/"), query)
                elif path.startswith("/api/acknowledge/") and method in ("GET", "POST"):
                    self._handle_acknowledge(engine, _tail(path, "/api/acknowledge/"), query)
                elif path == "/api/report" and method == "POST":
                    report = engine.generate_status_report()
                    self._send_json(
                        {"status": "sent", "report": report.model_dump(mode="json")}, 200
                    )
                elif path == webhook_path and method == "POST":
                    self._handle_webhook(engine)
                elif path.startswith("/hooks/"):
                    self._handle_hook(engine, _tail(path, "/hooks/"), method, query)
                else:
                    self._send_json({"error": "not found"}, 404)

            def _handle_trigger(
                self, engine: MonitorEngine, name: str, query: dict[str, str]
            ) -> None:
                body = self._read_json() or {}
                message = str(body.get("message") or query.get("message") or "")
                raw_duration = body.get("duration", query.get("duration", 0))
                try:
                    duration = int(raw_duration or 0)
                except (TypeError, ValueError) as e:
                    raise BadRequest(f"invalid duration: {raw_duration!r}") from e

                outcome = engine.trigger(name, message=message, duration=duration)
                self._send_json(outcome.to_dict(), 200)

            def _handle_acknowledge(
                self, engine: MonitorEngine, token: str, query: dict[str, str]
            ) -> None:
                outcome = engine.acknowledge(
                    token,
                    acknowledged_by=query.get("by"),
                    note=query.get("note", ""),
                    contact=query.get("contact", ""),
                )
                self._send_json(
                    {
                        "status": "acknowledged",
                        "subject": outcome.subject_name,
                        "acknowledged_by": outcome.acknowledged_by,
                        "acknowledged_at": outcome.acknowledged_at.isoformat(),
                        "already_acknowledged": outcome.already_acknowledged,
                        "note": outcome.note,
                        "contact": outcome.contact,
                    },
                    200,
                )

            def _handle_webhook(self, engine: MonitorEngine) -> None:
                body = self._read_json()
                if body is None:
                    raise BadRequest("missing JSON body")
                try:
                    notification = HookNotification.model_validate(body)
                except ValidationError as e:
                    raise BadRequest(f"invalid notification: {e.error_count()} errors") from e

                delivered = engine.handle_webhook_notification(notification)
                self._send_json({"status": "received", "delivered": delivered}, 200)

            def _handle_hook(
                self, engine: MonitorEngine, name: str, method: str, query: dict[str, str]
            ) -> None:
                hook = engine.get_hook(name)
                if hook is None:
                    self._send_json({"error": f"unknown hook: {name}"}, 404)
                    return
                if not method_allowed(hook, method):
                    self._send_json({"error": f"method {method} not allowed"}, 405)
                    return
                if not is_authorized(hook.auth, self.headers.get("Authorization")):
                    self._send_json({"error": "unauthorized"}, 401)
                    return

                body = self._read_json()
                message = resolve_message(hook, query, body)
                outcome = engine.handle_hook(name, message, data=body or dict(query))
                self._send_json(outcome.to_dict(), 200)

            def _read_json(self) -> dict[str, Any] | None:
                raw_length = self.headers.get("Content-Length") or "0"
                try:
                    length = int(raw_length)
                except ValueError as e:
                    raise BadRequest(f"invalid Content-Length: {raw_length!r}") from e
                if length <= 0:
                    return None
                if length > MAX_BODY_BYTES:
                    raise BadRequest("request body too large")

                raw = self.rfile.read(length)
                try:
                    data = json.loads(raw.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    raise BadRequest("invalid JSON body") from e
                if not isinstance(data, dict):
                    raise BadRequest("JSON body must be an object")
                return data

            def _send_json(self, data: dict[str, Any], status_code: int) -> None:
                """Send JSON response."""
                body = json.dumps(data, indent=2, default=str).encode("utf-8")
                self.send_response(status_code)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

        return ApiHandler


def _tail(path: str, prefix: str) -> str:
    return urllib.parse.unquote(path[len(prefix) :])
