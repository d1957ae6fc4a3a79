import json
import re
from urllib.parse import parse_qs, urlsplit

import pytest

from nmanager.utils import (
    HttpStatusError,
    NotificationError,
    array_to_string,
    do_http_request,
    hash_value,
    json_marshal,
    json_marshal_indent,
    regular_match,
    url_with_parameters,
    url_with_path,
)


class _FakeResponse:
    def __init__(self, status_code, content):
        self.status_code = status_code
        self.content = content
        self.closed = False

    def close(self):
        self.closed = True


class _FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.response


def test_hash_is_stable_and_order_independent():
    first = hash_value({"a": 1, "b": [1, 2]})
    second = hash_value({"b": [1, 2], "a": 1})
    assert first == second
    assert first.isdigit()
    assert int(first) < 2**64


def test_hash_differs_for_different_values():
    assert hash_value({"a": 1}) != hash_value({"a": 2})


def test_url_with_path_appends():
    result = url_with_path("http://example.com/api?x=1", "/v1")
    parts = urlsplit(result)
    assert parts.path == "/api" + "/v1"
    assert parts.query == "x=1"
    assert parts.netloc == "example.com"


def test_url_with_parameters_sets_and_replaces():
    result = url_with_parameters("http://example.com/send?b=old&z=keep", {"b": "new", "a": "1 2"})
    parts = urlsplit(result)
    assert parse_qs(parts.query) == {"a": ["1 2"], "b": ["new"], "z": ["keep"]}
    keys = [item.split("=")[0] for item in parts.query.split("&")]
    assert keys == sorted(keys)


def test_do_http_request_returns_body():
    response = _FakeResponse(200, b"ok-body")
    session = _FakeSession(response)
    body = do_http_request("POST", "http://example.com", session, 5, data=b"x")
    assert body == b"ok-body"
    assert response.closed
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "http://example.com")
    assert kwargs["timeout"] == 5
    assert kwargs["data"] == b"x"


def test_do_http_request_raises_on_bad_status():
    session = _FakeSession(_FakeResponse(500, b"boom"))
    with pytest.raises(HttpStatusError) as info:
        do_http_request("GET", "http://example.com", session)
    assert info.value.status == 500
    assert info.value.body == b"boom"
    assert isinstance(info.value, NotificationError)


def test_json_marshal_escapes_html():
    assert json_marshal("<a&b>") == b'"\\u003ca\\u0026b\\u003e"'


def test_json_marshal_round_trip():
    value = {"name": "x", "items": [1, 2, None], "nested": {"k": "\u00e9"}}
    assert json.loads(json_marshal(value)) == value


def test_json_marshal_indent_pinned():
    assert json_marshal_indent({"a": 1}, "", "  ") == b'{\n  "a": 1\n}'


def test_json_marshal_indent_prefix_on_every_line():
    value = {"a": [1, 2], "b": {"c": "d"}}
    text = json_marshal_indent(value, ">>", "\t").decode()
    lines = text.split("\n")
    assert all(line.startswith(">>") for line in lines[1:])
    assert json.loads("\n".join([lines[0]] + [line[2:] for line in lines[1:]])) == value


def test_array_to_string_joins():
    items = ["alpha", "beta", "gamma"]
    assert array_to_string(items, ";").split(";") == items
    assert array_to_string([], ",") == ""


def test_regular_match():
    assert regular_match("^ab", "abc") is True
    assert regular_match("^b", "abc") is False
    assert regular_match("", "anything") is False


def test_regular_match_invalid_expression():
    with pytest.raises(re.error):
        regular_match("(", "abc")