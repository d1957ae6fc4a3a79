"""Tenant sidecar that answers which users should receive a namespace's notifications."""

from __future__ import annotations

import argparse
import contextlib
import logging
import re
import threading
from collections.abc import Callable, Iterable, Iterator
from datetime import timedelta
from http import HTTPStatus
from socketserver import ThreadingMixIn
from typing import Any, Protocol
from urllib.parse import parse_qs
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from nmanager.ks_backend import DEFAULT_BATCH_SIZE, DEFAULT_INTERVAL, Backend
from nmanager.utils import json_marshal_indent

logger = logging.getLogger(__name__)

LISTEN_PORT = 19094
DEFAULT_HOST = "ks-apiserver.kubesphere-system"

_NOT_FOUND = b"404: Page Not Found"
_NOT_ALLOWED = b"405: Method Not Allowed"

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class TenantSource(Protocol):
    def from_namespace(self, cluster: str, namespace: str) -> list[str] | None: ...


class _InFlight:
    """Counts requests being served so that shutdown can wait for them."""

    def __init__(self) -> None:
        self._count = 0
        self._cond = threading.Condition()

    @contextlib.contextmanager
    def track(self) -> Iterator[None]:
        with self._cond:
            self._count += 1
        try:
            yield
        finally:
            with self._cond:
                self._count -= 1
                if self._count == 0:
                    self._cond.notify_all()

    def wait(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._count == 0)


def _parse_duration(text: str) -> timedelta:
    """Parse durations such as ``5m``, ``1h30m`` or ``250ms``."""
    raw = text.strip()
    sign = -1.0 if raw.startswith("-") else 1.0
    body = raw.lstrip("+-")
    if body == "0":
        return timedelta(0)
    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(body):
        if match.start() != position:
            break
        total += float(match[1]) * _DURATION_UNITS[match[2]]
        position = match.end()
    if not body or position != len(body):
        raise argparse.ArgumentTypeError(f"invalid duration {text!r}")
    return timedelta(seconds=sign * total)


def _status_line(status: int) -> str:
    return f"{status} {HTTPStatus(status).phrase}"


def _first(query: dict[str, list[str]], name: str) -> str:
    values = query.get(name)
    return values[0] if values else ""


def make_app(backend: TenantSource) -> Callable[[dict, Callable[..., Any]], Iterable[bytes]]:
    """Build the WSGI application answering tenant lookups from ``backend``."""
    in_flight = _InFlight()

    def tenant(query: dict[str, list[str]]) -> tuple[int, Any]:
        with in_flight.track():
            tenants = backend.from_namespace(_first(query, "cluster"), _first(query, "namespace"))
            if tenants is None:
                return HTTPStatus.NOT_FOUND, ""
            return HTTPStatus.OK, tenants

    def readiness(_query: dict[str, list[str]]) -> tuple[int, Any]:
        return HTTPStatus.OK, ""

    def pre_stop(_query: dict[str, list[str]]) -> tuple[int, Any]:
        in_flight.wait()
        logger.info("msg handler close, wait pool close")
        return HTTPStatus.OK, ""

    routes = {
        "/api/v2/tenant": tenant,
        "/readiness": readiness,
        "/liveness": readiness,
        "/preStop": pre_stop,
    }

    def app(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        endpoint = routes.get(environ.get("PATH_INFO", ""))
        method = environ.get("REQUEST_METHOD", "GET").upper()
        if endpoint is None:
            status, body, content_type = HTTPStatus.NOT_FOUND, _NOT_FOUND, "text/plain"
        elif method != "GET":
            status, body, content_type = HTTPStatus.METHOD_NOT_ALLOWED, _NOT_ALLOWED, "text/plain"
        else:
            query = parse_qs(environ.get("QUERY_STRING", ""), keep_blank_values=True)
            status, value = endpoint(query)
            body, content_type = json_marshal_indent(value, "", " "), "application/json"
        start_response(
            _status_line(status),
            [("Content-Type", content_type), ("Content-Length", str(len(body)))],
        )
        return [body]

    return app


def build_parser() -> argparse.ArgumentParser:
    """Command-line options of the sidecar."""
    parser = argparse.ArgumentParser(
        prog="kubesphere-tenant-sidecar",
        description="The sidecar to determining which tenant should receive notifications",
    )
    parser.add_argument("--host", default=DEFAULT_HOST, help="the host of kubesphere apiserver")
    parser.add_argument("--username", default="", help="the username of kubesphere")
    parser.add_argument("--password", default="", help="the password of kubesphere")
    parser.add_argument(
        "--interval", type=_parse_duration, default=DEFAULT_INTERVAL, help="interval to reload"
    )
    parser.add_argument(
        "--batchSize",
        dest="batch_size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help="number of access reviews sent in one request",
    )
    return parser


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietRequestHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug(format, *args)


def main(argv: list[str] | None = None) -> int:
    """Start the tenant reload loop and serve lookups until interrupted."""
    args = build_parser().parse_args(argv)
    for name, value in vars(args).items():
        shown = "****" if name == "password" and value else value
        logger.info("FLAG: --%s=%r", name, shown)

    backend = Backend(args.host, args.username, args.password, args.interval, args.batch_size)
    backend.run()
    try:
        with make_server(
            "",
            LISTEN_PORT,
            make_app(backend),
            server_class=_ThreadingWSGIServer,
            handler_class=_QuietRequestHandler,
        ) as server:
            server.serve_forever()
    except KeyboardInterrupt:
        return 0
    except OSError as err:
        logger.critical("%s", err)
        return 1
    finally:
        backend.stop()
    return 0


__all__ = ["build_parser", "main", "make_app"]