"""Shared helpers: errors, hashing, URLs, HTTP calls, JSON and strings."""

from __future__ import annotations

import contextlib
import dataclasses
import datetime
import json
import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_UINT64_MASK = 0xFFFFFFFFFFFFFFFF

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}
_JSON_ESCAPE_RE = re.compile("[<>&\u2028\u2029]")


class NotificationError(Exception):
    """Base error raised by the notification manager."""


class HttpStatusError(NotificationError):
    """Raised when an HTTP endpoint answers with a status other than 200."""

    def __init__(self, status: int, body: bytes) -> None:
        self.status = status
        self.body = body
        text = body.decode("utf-8", errors="replace") if body else ""
        super().__init__(f"{status}, {text}")


def _jsonable(value: Any) -> Any:
    """Convert objects the json module does not know into plain data."""
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, bytes):
        return value.hex()
    raise TypeError(f"object of type {type(value).__name__} is not serializable")


def _fnv1a64(data: bytes) -> int:
    digest = _FNV_OFFSET
    for byte in data:
        digest ^= byte
        digest = (digest * _FNV_PRIME) & _UINT64_MASK
    return digest


def hash_value(value: Any) -> str:
    """Return a stable 64-bit hash of a structure as a decimal string."""
    canonical = json.dumps(
        value,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=_jsonable,
    )
    return str(_fnv1a64(canonical.encode("utf-8")))


def url_with_path(url: str, path: str) -> str:
    """Append ``path`` to the path component of ``url``."""
    parts = urlsplit(url)
    return urlunsplit(parts._replace(path=parts.path + path))


def url_with_parameters(url: str, parameters: Mapping[str, str]) -> str:
    """Set query parameters on ``url``, replacing existing values of the same name."""
    parts = urlsplit(url)
    values: dict[str, list[str]] = {}
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        values.setdefault(key, []).append(value)
    for key, value in parameters.items():
        values[key] = [value]
    query = urlencode(sorted(values.items(), key=lambda item: item[0]), doseq=True)
    return urlunsplit(parts._replace(query=query))


def do_http_request(
    method: str,
    url: str,
    session: requests.Session | None = None,
    timeout: float | None = None,
    **kwargs: Any,
) -> bytes:
    """Perform a request and return the body; raise HttpStatusError unless 200."""
    with contextlib.ExitStack() as stack:
        client = session
        if client is None:
            client = stack.enter_context(requests.Session())
        response = client.request(method, url, timeout=timeout, **kwargs)
        try:
            body = response.content
        finally:
            response.close()
    if response.status_code != 200:
        raise HttpStatusError(response.status_code, body or b"")
    return body


def _escape_json(text: str) -> str:
    return _JSON_ESCAPE_RE.sub(lambda match: _JSON_ESCAPES[match.group()], text)


def json_marshal(value: Any) -> bytes:
    """Serialize ``value`` as compact JSON with HTML-sensitive characters escaped."""
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=_jsonable)
    return _escape_json(text).encode("utf-8")


def json_marshal_indent(value: Any, prefix: str, indent: str) -> bytes:
    """Serialize ``value`` as indented JSON; each new line starts with ``prefix``."""
    text = json.dumps(
        value,
        ensure_ascii=False,
        indent=indent,
        separators=(",", ": "),
        default=_jsonable,
    )
    text = text.replace("\n", "\n" + prefix)
    return _escape_json(text).encode("utf-8")


def array_to_string(array: list[str], sep: str) -> str:
    """Join the strings of ``array`` with ``sep``."""
    return sep.join(array)


def regular_match(expr: str, text: str) -> bool:
    """Tell whether the regular expression ``expr`` matches anywhere in ``text``."""
    if not expr:
        return False
    return re.search(expr, text) is not None