"""Notification templates rendered with Jinja2, with named definitions and translation."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

import jinja2
from jinja2.filters import do_mark_safe

from nmanager.language import DEFAULT_LANGUAGE, parse_dictionary
from nmanager.types import Alert, Data
from nmanager.utils import NotificationError, json_marshal

logger = logging.getLogger(__name__)

_DEFINE_RE = re.compile(
    r'\{\{(-?)\s*define\s+"([^"]*)"\s*(-?)\}\}(.*?)\{\{(-?)\s*end\s*(-?)\}\}',
    re.S,
)
_DEFINE_START_RE = re.compile(r"\{\{-?\s*define\b")
_TEMPLATE_CALL_RE = re.compile(r'\{\{(-?)\s*template\s+"([^"]*)"\s*\.?\s*(-?)\}\}')
_REFERENCE_RE = re.compile(r'\{\{template"(.*?)".\}\}')
_GO_GROUP_RE = re.compile(r"\$(?:\$|\{(\w+)\}|(\w+))")
_TITLE_RE = re.compile(r"(^|[^\w])(\w)")


def _title(text: str) -> str:
    """Upper-case the first letter of every word, leaving the rest untouched."""
    return _TITLE_RE.sub(lambda m: m[1] + m[2].upper(), text)


def _expand_replacement(repl: str) -> str:
    """Turn a replacement using ``$1``/``${name}`` groups into re.sub syntax."""
    escaped = repl.replace("\\", "\\\\")

    def group(match: re.Match[str]) -> str:
        if match[0] == "$$":
            return "$"
        return "\\g<" + (match[1] or match[2]) + ">"

    return _GO_GROUP_RE.sub(group, escaped)


def _re_replace_all(pattern: str, repl: str, text: str) -> str:
    return re.sub(pattern, _expand_replacement(repl), text)


def _escape(text: str) -> str:
    return text.replace("'", "\\'").replace('"', "\\")


DEFAULT_FUNCS: dict[str, Callable[..., Any]] = {
    "toUpper": str.upper,
    "toLower": str.lower,
    "title": _title,
    "join": lambda sep, items: sep.join(items),
    "match": lambda pattern, text: re.search(pattern, text) is not None,
    "safeHtml": do_mark_safe,
    "reReplaceAll": _re_replace_all,
    "stringSlice": lambda *items: list(items),
    "escape": _escape,
}


def clean_suffix(text: str) -> str:
    """Strip trailing spaces, line feeds and carriage returns."""
    return text.rstrip("\n\r ")


def serialized_len(text: str) -> int:
    """Length in bytes of ``text`` once serialized as a JSON string, without quotes."""
    try:
        return len(json_marshal(text)) - 2
    except (TypeError, ValueError):
        return len(text.encode("utf-8"))


def _to_jinja(source: str) -> str:
    """Rewrite ``{{ template "name" . }}`` calls as Jinja includes."""
    return _TEMPLATE_CALL_RE.sub(
        lambda m: "{%" + m[1] + ' include "' + m[2] + '" ' + m[3] + "%}",
        source,
    )


def _split_definitions(text: str) -> tuple[dict[str, str], str]:
    definitions: dict[str, str] = {}

    def take(match: re.Match[str]) -> str:
        body = match[4]
        if match[3]:
            body = body.lstrip()
        if match[5]:
            body = body.rstrip()
        definitions[match[2]] = _to_jinja(body)
        return ""

    remainder = _DEFINE_RE.sub(take, text)
    if _DEFINE_START_RE.search(remainder):
        raise NotificationError("unexpected EOF: define without end")
    return definitions, _to_jinja(remainder)


def _context(data: Data | None) -> dict[str, Any]:
    if data is None:
        return {"data": None}
    return {
        "data": data,
        "alerts": data.alerts,
        "group_labels": data.group_labels,
        "common_labels": data.common_labels,
        "common_annotations": data.common_annotations,
        "status": data.status(),
    }


def _seconds(value: timedelta | float) -> float:
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


@dataclass
class DataSlice:
    """A batch of alerts together with its rendered message and title."""

    data: Data
    message: str
    title: str


class Template:
    """A set of named templates rendered as plain text or as escaped HTML."""

    def __init__(self, language: str = "", language_pack: list[str] | None = None) -> None:
        self._language = language or DEFAULT_LANGUAGE
        self._dictionary = parse_dictionary(language_pack or [])
        self._sources: dict[str, str] = {}
        self._created = time.monotonic()
        self._build_environments()

    def _build_environments(self) -> None:
        loader = jinja2.DictLoader(self._sources)
        self._text_env = jinja2.Environment(loader=loader, autoescape=False)
        self._html_env = jinja2.Environment(loader=loader, autoescape=True)
        functions = dict(DEFAULT_FUNCS)
        functions["translate"] = self.translate
        functions["message"] = self._message
        for env in (self._text_env, self._html_env):
            env.globals.update(functions)

    def _message(self, alert: Alert) -> str:
        if self._language == "zh-cn":
            return alert.message_cn()
        return alert.message()

    def translate(self, key: str) -> str:
        """Translate ``key`` into the template's language, or return it unchanged."""
        words = self._dictionary.get(self._language)
        if words is None:
            return key
        return words.get(key.lower(), key)

    def parse_text(self, *texts: str) -> Template:
        """Add the ``{{ define "name" }}...{{ end }}`` blocks found in ``texts``."""
        parsed: dict[str, str] = {}
        for text in texts:
            definitions, remainder = _split_definitions(text)
            try:
                for body in (*definitions.values(), remainder):
                    self._text_env.parse(body)
            except jinja2.TemplateSyntaxError as err:
                raise NotificationError(str(err)) from err
            parsed.update(definitions)
        self._sources.update(parsed)
        return self

    def parse_file(self, *paths: str | Path) -> Template:
        """Read template files and add their definitions."""
        return self.parse_text(*(Path(path).read_text(encoding="utf-8") for path in paths))

    def clone(self) -> Template:
        """Return an independent copy sharing the language dictionary."""
        copy = Template.__new__(Template)
        copy._language = self._language
        copy._dictionary = self._dictionary
        copy._sources = dict(self._sources)
        copy._created = self._created
        copy._build_environments()
        return copy

    def _render(self, env: jinja2.Environment, name: str, data: Data | None) -> str:
        if not name:
            return ""
        try:
            template = env.from_string(_to_jinja(self.transform(name)))
            output = template.render(_context(data))
        except (jinja2.TemplateError, re.error) as err:
            raise NotificationError(str(err) or repr(err)) from err
        return clean_suffix(output)

    def text(self, name: str, data: Data | None) -> str:
        """Render the named template (or template text) as plain text."""
        return self._render(self._text_env, name, data)

    def html(self, name: str, data: Data | None) -> str:
        """Render the named template (or template text) with HTML escaping."""
        return self._render(self._html_env, name, data)

    def transform(self, name: str) -> str:
        """Turn a template name into a call of that template; leave calls as they are."""
        if _REFERENCE_RE.search(name.replace(" ", "")):
            return name
        return '{{ template "' + name + '" . }}'

    def split(
        self,
        data: Data,
        max_size: int,
        template_name: str,
        subject_template_name: str,
    ) -> list[DataSlice]:
        """Group alerts into batches whose rendered message stays below ``max_size``."""
        output: list[DataSlice] = []
        current: Data | None = None
        last_msg = ""
        last_title = ""
        alerts = iter(data.alerts)
        alert = next(alerts, None)
        while alert is not None:
            if current is None:
                current = Data(group_labels=data.group_labels)
            current.alerts.append(alert)
            msg = self.text(self.transform(template_name), current.format())
            title = ""
            if subject_template_name:
                title = self.text(self.transform(subject_template_name), current)

            if serialized_len(msg) < max_size:
                last_msg, last_title = msg, title
                alert = next(alerts, None)
                continue

            if len(current.alerts) == 1:
                logger.error("alert is too large, drop it")
                current = None
                last_msg = last_title = ""
                alert = next(alerts, None)
                continue

            current.alerts.pop()
            output.append(DataSlice(current.format(), last_msg, last_title))
            current = None
            last_msg = last_title = ""

        if last_msg and current is not None:
            output.append(DataSlice(current, last_msg, last_title))
        return output

    def expired(self, expired_at: timedelta | float) -> bool:
        """Tell whether at least ``expired_at`` has passed since creation."""
        return time.monotonic() - self._created >= _seconds(expired_at)


__all__ = ["DEFAULT_FUNCS", "DataSlice", "Template", "clean_suffix", "serialized_len", "json"]