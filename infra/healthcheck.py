"""HTTP probes for the autonomy daemon: full status, readiness and liveness."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

StatusProvider = Callable[[], Dict[str, Any]]
ReadyCheck = Callable[[], bool]
Route = Callable[[], Tuple[int, Dict[str, Any]]]


def status_route(provider: StatusProvider) -> Route:
    """``ok: False`` in the provider payload turns the response into a 503."""
    def route() -> Tuple[int, Dict[str, Any]]:
        payload: Dict[str, Any] = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        payload.update(provider() or {})
        if not payload.get("ok", True):
            payload["status"] = "unhealthy"
            return 503, payload
        return 200, payload
    return route


def ready_route(ready_check: Optional[ReadyCheck]) -> Route:
    def route() -> Tuple[int, Dict[str, Any]]:
        ready = True if ready_check is None else bool(ready_check())
        return (200 if ready else 503), {"ready": ready}
    return route


class HealthServer:
    """
    Daemon-thread JSON server.

    Routes: ``/`` and ``/health`` (status provider payload), ``/ready``
    (``ready_check``, always ready when omitted), ``/live`` (process is up).
    Anything else is a 404.
    """

    def __init__(self, port: int, status_provider: StatusProvider,
                 ready_check: Optional[ReadyCheck] = None, host: str = "0.0.0.0"):
        self._port = int(port)
        self._host = host
        status = status_route(status_provider)
        self._routes: Dict[str, Route] = {
            "/": status,
            "/health": status,
            "/ready": ready_route(ready_check),
            "/live": lambda: (200, {"alive": True}),
        }
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> Optional[int]:
        """Bound port (differs from the requested one when 0 was requested)."""
        if self._server is None:
            return None
        return self._server.server_port

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        if self._thread:
            logger.info("Health server already running")
            return

        self._server = HTTPServer((self._host, self._port), self._build_handler(self._routes))
        self._thread = threading.Thread(target=self._server.serve_forever, name="HealthServer", daemon=True)
        self._thread.start()
        logger.info("Health server listening on %s:%s/health", self._host, self._server.server_port)

    def stop(self) -> None:
        if not self._server:
            return
        try:
            self._server.shutdown()
            self._server.server_close()
        except OSError as exc:  # pragma: no cover - socket teardown races
            logger.warning("Failed shutting down health server: %s", exc)
        if self._thread:
            self._thread.join(timeout=3)
        self._thread = None
        self._server = None

    @staticmethod
    def _build_handler(routes: Dict[str, Route]):
        class ProbeHandler(BaseHTTPRequestHandler):
            def do_GET(self):  # type: ignore[override]
                route = routes.get(self.path.split("?", 1)[0])
                if route is None:
                    status, payload = 404, {"error": "Not found"}
                else:
                    status, payload = route()

                body = json.dumps(payload, default=str).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - suppress noisy logs
                return

        return ProbeHandler


__all__ = ["HealthServer"]
