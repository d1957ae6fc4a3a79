"""Tenant sidecar for plain Kubernetes: every namespace is its own tenant."""

from __future__ import annotations

import argparse
import contextlib
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from http import HTTPStatus
from socketserver import ThreadingMixIn
from typing import Any
from urllib.parse import parse_qs
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from nmanager.utils import json_marshal_indent

logger = logging.getLogger(__name__)

LISTEN_PORT = 19094
API_PREFIX = "/api/v2"

_NOT_FOUND = b"404: Page Not Found"
_NOT_ALLOWED = b"405: Method Not Allowed"


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


def tenants_for_namespace(namespace: str) -> list[str]:
    """Return the tenants of ``namespace``: the namespace itself."""
    if not namespace:
        raise ValueError("namespace must not be nil")
    return [namespace]


def _status_line(status: int) -> str:
    return f"{status} {HTTPStatus(status).phrase}"


def _first(query: dict[str, list[str]], name: str) -> str:
    values = query.get(name)
    return values[0] if values else ""


Endpoint = Callable[[dict[str, list[str]]], tuple[int, Any]]


def make_app() -> Callable[[dict, Callable[..., Any]], Iterable[bytes]]:
    """Build the WSGI application answering tenant lookups and probes."""
    in_flight = _InFlight()

    def tenant(query: dict[str, list[str]]) -> tuple[int, Any]:
        with in_flight.track():
            namespace = _first(query, "namespace")
            try:
                tenants = tenants_for_namespace(namespace)
            except ValueError as err:
                return HTTPStatus.BAD_REQUEST, str(err)
            logger.info("get tenants with namespace `%s`", namespace)
            return HTTPStatus.OK, tenants

    def readiness(_query: dict[str, list[str]]) -> tuple[int, Any]:
        return HTTPStatus.OK, ""

    def pre_stop(_query: dict[str, list[str]]) -> tuple[int, Any]:
        logger.info("waiting for message handler close")
        in_flight.wait()
        logger.info("message handler closed")
        return HTTPStatus.OK, ""

    routes: dict[str, Endpoint] = {
        f"{API_PREFIX}/tenant": tenant,
        f"{API_PREFIX}/readiness": readiness,
        f"{API_PREFIX}/liveness": readiness,
        f"{API_PREFIX}/preStop": pre_stop,
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


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietRequestHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug(format, *args)


def _build_parser() -> argparse.ArgumentParser:
    return argparse.ArgumentParser(
        prog="notification-adapter",
        description="The webhook to receive alert from notification manager, and send to socket",
    )


def main(argv: list[str] | None = None) -> int:
    """Serve the tenant sidecar until interrupted."""
    args = _build_parser().parse_args(argv)
    for name, value in vars(args).items():
        logger.info("FLAG: --%s=%r", name, value)
    try:
        with make_server(
            "",
            LISTEN_PORT,
            make_app(),
            server_class=_ThreadingWSGIServer,
            handler_class=_QuietRequestHandler,
        ) as server:
            server.serve_forever()
    except KeyboardInterrupt:
        return 0
    except OSError as err:
        logger.critical("%s", err)
        return 1
    return 0


__all__ = ["main", "make_app", "tenants_for_namespace"]