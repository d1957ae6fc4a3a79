"""Alert data model: label sets, alerts and grouped alert data."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

ALERT_FIRING = "firing"
ALERT_RESOLVED = "resolved"
ALERT_NAME = "alertname"
ALERT_MESSAGE = "message"
ALERT_SUMMARY = "summary"
ALERT_SUMMARY_CN = "summary_cn"

LABELS_TO_HIDE = ("rule_id",)
ANNOTATIONS_TO_HIDE = ("runbook_url", "message", "summary", "summary_cn")

_ZERO_TIME = "0001-01-01T00:00:00Z"
_TIME_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)


def _parse_time(raw: Any) -> datetime | None:
    if raw in (None, "", _ZERO_TIME):
        return None
    if isinstance(raw, datetime):
        return raw
    match = _TIME_RE.match(str(raw))
    if match is None:
        raise ValueError(f"invalid timestamp {raw!r}")
    base, fraction, zone = match.groups()
    micros = (fraction or "").ljust(6, "0")[:6]
    offset = "+00:00" if zone == "Z" else zone
    return datetime.fromisoformat(f"{base}.{micros}{offset}")


def _format_time(value: datetime | None) -> str:
    if value is None:
        return _ZERO_TIME
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if offset is None or offset == timedelta(0):
        return text + "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True)
class Pair:
    """A key/value string pair."""

    name: str
    value: str


class Pairs(list):
    """A list of key/value pairs."""

    def default_filter(self) -> Pairs:
        """Drop the pairs whose names are hidden labels or annotations."""
        return self.filter(*LABELS_TO_HIDE, *ANNOTATIONS_TO_HIDE)

    def filter(self, *keys: str) -> Pairs:
        """Return the pairs whose names are not among ``keys``."""
        return Pairs(pair for pair in self if pair.name not in keys)

    def names(self) -> list[str]:
        return [pair.name for pair in self]

    def values(self) -> list[str]:
        return [pair.value for pair in self]


class KV(dict):
    """A set of key/value string pairs."""

    def sorted_pairs(self) -> Pairs:
        """Pairs sorted by key, alert name first, hidden labels left out."""
        keys = sorted(k for k in self if k not in LABELS_TO_HIDE and k != ALERT_NAME)
        if ALERT_NAME in self:
            keys.insert(0, ALERT_NAME)
        return Pairs(Pair(key, self[key]) for key in keys)

    def remove(self, keys: Iterable[str]) -> KV:
        """Return a copy without the given keys."""
        dropped = set(keys)
        return KV({k: v for k, v in self.items() if k not in dropped})

    def names(self) -> list[str]:
        return self.sorted_pairs().names()

    def values(self) -> list[str]:  # type: ignore[override]
        return self.sorted_pairs().values()

    def clone(self) -> KV:
        return KV(self)


def _to_kv(raw: Any) -> KV:
    return KV(raw) if raw else KV()


@dataclass
class Alert:
    """A single alert with its labels, annotations and time range."""

    id: str = ""
    status: str = ""
    labels: KV = field(default_factory=KV)
    annotations: KV = field(default_factory=KV)
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    notify_successful: bool = False

    def __post_init__(self) -> None:
        self.labels = _to_kv(self.labels)
        self.annotations = _to_kv(self.annotations)

    def message(self) -> str:
        """The alert text: message, then summary, then the Chinese summary."""
        return (
            self.annotations.get(ALERT_MESSAGE)
            or self.annotations.get(ALERT_SUMMARY)
            or self.annotations.get(ALERT_SUMMARY_CN, "")
        )

    def message_cn(self) -> str:
        """The alert text preferring the Chinese summary."""
        return (
            self.annotations.get(ALERT_SUMMARY_CN)
            or self.annotations.get(ALERT_MESSAGE)
            or self.annotations.get(ALERT_SUMMARY, "")
        )

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Alert:
        return cls(
            id=raw.get("id") or "",
            status=raw.get("status") or "",
            labels=_to_kv(raw.get("labels")),
            annotations=_to_kv(raw.get("annotations")),
            starts_at=_parse_time(raw.get("startsAt")),
            ends_at=_parse_time(raw.get("endsAt")),
            notify_successful=bool(raw.get("NotifySuccessful", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "startsAt": _format_time(self.starts_at),
            "endsAt": _format_time(self.ends_at),
            "NotifySuccessful": self.notify_successful,
        }


class Alerts(list):
    """A list of alerts."""

    def firing(self) -> Alerts:
        return Alerts(a for a in self if a.status == ALERT_FIRING)

    def resolved(self) -> Alerts:
        return Alerts(a for a in self if a.status == ALERT_RESOLVED)


@dataclass
class Data:
    """A group of alerts with their group and common labels."""

    alerts: Alerts = field(default_factory=Alerts)
    group_labels: KV = field(default_factory=KV)
    common_labels: KV = field(default_factory=KV)
    common_annotations: KV = field(default_factory=KV)

    def __post_init__(self) -> None:
        self.alerts = Alerts(self.alerts or [])
        self.group_labels = _to_kv(self.group_labels)
        self.common_labels = _to_kv(self.common_labels)
        self.common_annotations = _to_kv(self.common_annotations)

    def format(self) -> Data:
        """Compute the labels and annotations shared by every alert."""
        if not self.alerts:
            return self
        first, *rest = self.alerts
        labels = first.labels.clone()
        annotations = first.annotations.clone()
        for alert in rest:
            if not labels and not annotations:
                break
            labels = KV({k: v for k, v in labels.items() if alert.labels.get(k, "") == v})
            annotations = KV(
                {k: v for k, v in annotations.items() if alert.annotations.get(k, "") == v}
            )
        self.common_labels = KV({k: v for k, v in labels.items() if v})
        self.common_annotations = KV({k: v for k, v in annotations.items() if v})
        return self

    def status(self) -> str:
        """"firing" or "resolved" when all alerts agree, otherwise empty."""
        if len(self.alerts.firing()) == len(self.alerts):
            return ALERT_FIRING
        if len(self.alerts.resolved()) == len(self.alerts):
            return ALERT_RESOLVED
        return ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Data:
        return cls(
            alerts=Alerts(Alert.from_dict(a) for a in raw.get("alerts") or []),
            group_labels=_to_kv(raw.get("groupLabels")),
            common_labels=_to_kv(raw.get("commonLabels")),
            common_annotations=_to_kv(raw.get("commonAnnotations")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "alerts": [alert.to_dict() for alert in self.alerts],
            "groupLabels": dict(self.group_labels),
            "commonLabels": dict(self.common_labels),
            "commonAnnotations": dict(self.common_annotations),
        }


__all__ = [
    "ALERT_FIRING",
    "ALERT_MESSAGE",
    "ALERT_NAME",
    "ALERT_RESOLVED",
    "ALERT_SUMMARY",
    "ALERT_SUMMARY_CN",
    "Alert",
    "Alerts",
    "Data",
    "KV",
    "Pair",
    "Pairs",
    "timezone",
]