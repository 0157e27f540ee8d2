"""Health API: a small HTTP service reporting whether the datastore is healthy."""

from __future__ import annotations

import logging
import ssl
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from socketserver import ThreadingMixIn
from typing import Any, Callable, Iterable, Optional
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from layerscan.datastore import Datastore

log = logging.getLogger(__name__)

SERVER_NAME = "layerscan"

TIMEOUT_RESPONSE = (
    '{"Error":{"Message":"The server failed to respond within the configured timeout window.",'
    '"Type":"Timeout"}}'
)

WSGIApp = Callable[[dict, Callable[..., Any]], Iterable[bytes]]


@dataclass
class ApiConfig:
    """Configuration of the API services."""

    addr: str = "0.0.0.0:6060"
    health_addr: str = "0.0.0.0:6061"
    timeout: timedelta = field(default_factory=lambda: timedelta(seconds=900))
    cert_file: str = ""
    key_file: str = ""
    ca_file: str = ""


def health_app(store: Datastore) -> WSGIApp:
    """Return a WSGI app answering ``GET /health`` with 200 if the store is healthy, else 500."""

    def app(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        path = environ.get("PATH_INFO", "")
        method = environ.get("REQUEST_METHOD", "GET")
        if path != "/health":
            start_response("404 Not Found", [("Content-Type", "text/plain; charset=utf-8")])
            return [b"404 page not found\n"]
        if method != "GET":
            start_response(
                "405 Method Not Allowed",
                [("Allow", "GET"), ("Content-Type", "text/plain; charset=utf-8")],
            )
            return [b"Method Not Allowed\n"]

        try:
            healthy = bool(store.ping())
        except Exception:
            log.exception("health check failed")
            healthy = False
        status = "200 OK" if healthy else "500 Internal Server Error"
        start_response(status, [("Server", SERVER_NAME), ("Content-Length", "0")])
        return []

    return app


def _with_timeout(app: WSGIApp, timeout: float) -> WSGIApp:
    """Wrap an app so that a response not ready within ``timeout`` seconds becomes a 503."""

    def wrapped(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        result: dict[str, Any] = {}

        def run() -> None:
            chunks: list[bytes] = []

            def capture(status: str, headers: list, exc_info: Any = None) -> Callable[[bytes], None]:
                result["status"] = status
                result["headers"] = list(headers)
                return chunks.append

            try:
                chunks.extend(app(environ, capture))
                result["body"] = b"".join(chunks)
            except BaseException as err:  # handed back to the serving thread
                result["error"] = err

        worker = threading.Thread(target=run, daemon=True)
        worker.start()
        worker.join(max(timeout, 0.0))
        if worker.is_alive():
            start_response(
                "503 Service Unavailable", [("Content-Type", "text/plain; charset=utf-8")]
            )
            return [TIMEOUT_RESPONSE.encode()]
        if "error" in result:
            raise result["error"]
        start_response(result["status"], result["headers"])
        return [result["body"]]

    return wrapped


def tls_client_context(ca_path: str) -> Optional[ssl.SSLContext]:
    """Return a server TLS context requiring client certificates signed by the CA.

    An empty path disables client authentication and returns ``None``.
    """
    if not ca_path:
        return None
    with open(ca_path, encoding="ascii", errors="replace") as handle:
        ca_data = handle.read()
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_verify_locations(cadata=ca_data)
    context.verify_mode = ssl.CERT_REQUIRED
    return context


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address {addr!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)


class _ThreadingServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        log.debug("health API: " + format, *args)


def run_health(
    config: Optional[ApiConfig], store: Datastore, stop_event: threading.Event
) -> None:
    """Serve the health API until ``stop_event`` is set; do nothing without a config."""
    if config is None:
        log.info("health API service is disabled.")
        return

    host, port = _split_addr(config.health_addr)
    log.info("starting health API on %s", config.health_addr)
    app = _with_timeout(health_app(store), config.timeout.total_seconds())
    server = make_server(
        host, port, app, server_class=_ThreadingServer, handler_class=_QuietHandler
    )
    serving = threading.Thread(
        target=server.serve_forever, kwargs={"poll_interval": 0.1}, daemon=True
    )
    serving.start()
    try:
        stop_event.wait()
    finally:
        server.shutdown()
        server.server_close()
        serving.join()
    log.info("health API stopped")