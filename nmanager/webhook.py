"""HTTP webhook that receives alerts and answers health and status probes."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from http import HTTPStatus
from socketserver import ThreadingMixIn
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from nmanager.store import Provider
from nmanager.types import Data
from nmanager.utils import NotificationError, hash_value, json_marshal

logger = logging.getLogger(__name__)

ALERTS_PATH = "/api/v2/alerts"

_STATUS_MESSAGES = {
    "/metrics": "metrics",
    "/-/reload": "reload",
    "/-/ready": "health check",
    "/-/live": "ready",
    "/status": "status",
}

_NOT_FOUND_BODY = b"404 page not found\n"


def _seconds(value: timedelta | float) -> float:
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


def _local_time_string() -> str:
    now = datetime.now().astimezone()
    return f"{now:%Y-%m-%d %H:%M:%S.%f} {now:%z} {now:%Z}"


def _status_line(status: int) -> str:
    return f"{status} {HTTPStatus(status).phrase}"


@dataclass
class WebhookOptions:
    """Listening address and time limits of the webhook server."""

    listen_address: str = ":19093"
    webhook_timeout: timedelta | float = 3.0
    worker_timeout: timedelta | float = 3.0


class AlertHandler:
    """Turns webhook requests into alerts pushed to a store, and answers probes."""

    def __init__(self, store: Provider, cluster: str) -> None:
        self._store = store
        self._cluster = cluster

    def _respond(self, status: int, message: str) -> tuple[int, bytes]:
        if status != HTTPStatus.OK:
            logger.error("%s", message)
        else:
            logger.debug("%s", message)
        return status, json_marshal({"Status": status, "Message": message})

    def handle_alert(self, body: bytes) -> tuple[int, bytes]:
        """Decode Alertmanager webhook data and queue every alert it carries."""
        try:
            raw = json.loads(body)
            if raw is None:
                data = Data()
            elif isinstance(raw, dict):
                data = Data.from_dict(raw)
            else:
                raise ValueError("alert data must be a JSON object")
        except (ValueError, TypeError, AttributeError) as err:
            return self._respond(HTTPStatus.BAD_REQUEST, str(err))

        for alert in data.alerts:
            if not alert.labels.get("cluster"):
                alert.labels["cluster"] = self._cluster
            if alert.labels.get("alerttype") == "metric":
                alert.annotations["alerttime"] = _local_time_string()
            alert.id = hash_value(alert)
            try:
                self._store.push(alert)
            except NotificationError as err:
                logger.error("push alert error: %s", err)

        return self._respond(HTTPStatus.OK, "Notification request accepted")

    def handle_status(self, path: str) -> tuple[int, bytes]:
        """Answer a probe path; raise KeyError for a path that is not a probe."""
        try:
            message = _STATUS_MESSAGES[path]
        except KeyError:
            raise KeyError(path) from None
        return self._respond(HTTPStatus.OK, message)


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietRequestHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug(format, *args)


def _split_address(address: str) -> tuple[str, int]:
    host, _, port = address.rpartition(":")
    if not port:
        raise ValueError(f"invalid listen address {address!r}")
    return host.strip("[]"), int(port)


StartResponse = Callable[..., Any]


class Webhook:
    """WSGI application routing webhook requests to an AlertHandler."""

    def __init__(self, handler: AlertHandler, options: WebhookOptions | None = None) -> None:
        self.handler = handler
        self.options = options or WebhookOptions()
        self.ready = threading.Event()
        self.server_address: tuple[str, int] | None = None
        self._routes: dict[str, dict[str, Callable[[dict], tuple[int, bytes]]]] = {
            ALERTS_PATH: {"POST": self._alerts},
        }
        for path in _STATUS_MESSAGES:
            self._routes[path] = {"GET": self._probe}

    def _alerts(self, environ: dict) -> tuple[int, bytes]:
        return self.handler.handle_alert(self._read_body(environ))

    def _probe(self, environ: dict) -> tuple[int, bytes]:
        return self.handler.handle_status(environ.get("PATH_INFO", ""))

    @staticmethod
    def _read_body(environ: dict) -> bytes:
        stream = environ.get("wsgi.input")
        if stream is None:
            return b""
        length = environ.get("CONTENT_LENGTH") or ""
        if length.strip():
            return stream.read(int(length))
        return b""

    def _dispatch(self, environ: dict) -> tuple[int, bytes]:
        methods = self._routes.get(environ.get("PATH_INFO", ""))
        if methods is None:
            return HTTPStatus.NOT_FOUND, _NOT_FOUND_BODY
        endpoint = methods.get(environ.get("REQUEST_METHOD", "GET").upper())
        if endpoint is None:
            return HTTPStatus.METHOD_NOT_ALLOWED, b""
        return endpoint(environ)

    def wsgi_app(self, environ: dict, start_response: StartResponse) -> Iterable[bytes]:
        """Serve one request, turning handler failures into 500 and slow ones into 504."""
        limit = 2 * _seconds(self.options.webhook_timeout)
        started = time.monotonic()
        try:
            status, body = self._dispatch(environ)
        except Exception:
            logger.exception("panic while serving %s", environ.get("PATH_INFO", ""))
            status, body = HTTPStatus.INTERNAL_SERVER_ERROR, b""
        if time.monotonic() - started >= limit:
            status, body = HTTPStatus.GATEWAY_TIMEOUT, b""
        headers = [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("Content-Length", str(len(body))),
        ]
        start_response(_status_line(status), headers)
        return [body]

    def run(self, stop_event: threading.Event) -> None:
        """Serve HTTP on the configured address until ``stop_event`` is set."""
        host, port = _split_address(self.options.listen_address)
        with make_server(
            host,
            port,
            self.wsgi_app,
            server_class=_ThreadingWSGIServer,
            handler_class=_QuietRequestHandler,
        ) as server:
            self.server_address = (str(server.server_address[0]), int(server.server_address[1]))
            thread = threading.Thread(
                target=server.serve_forever, kwargs={"poll_interval": 0.1}, daemon=True
            )
            thread.start()
            self.ready.set()
            try:
                stop_event.wait()
            finally:
                server.shutdown()
                thread.join()
                self.ready.clear()
        logger.info("Shutdown HTTP server")


__all__ = ["AlertHandler", "Webhook", "WebhookOptions"]