"""Pipeline stage that drops alerts matched by an active silence."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol

from nmanager.stage import Stage
from nmanager.types import Alert, Alerts

logger = logging.getLogger(__name__)


class Silence(Protocol):
    """An active silence: tells whether a label set is muted."""

    def matches(self, labels: Mapping[str, str]) -> bool: ...


SilenceSource = Callable[[Any], Iterable[Silence]]


def _seq(context: Any) -> Any:
    return context.get("seq") if isinstance(context, Mapping) else None


class SilenceStage(Stage):
    """Removes the alerts that any active silence matches.

    ``source`` is called with the pipeline context and returns the active silences.
    """

    def __init__(self, source: SilenceSource) -> None:
        self._source = source

    def execute(self, context: Any, data: Iterable[Alert] | None) -> tuple[Any, Any]:
        if data is None:
            return context, None
        alerts = list(data)
        logger.debug("Start silence stage, seq=%s, alert=%d", _seq(context), len(alerts))

        try:
            silences = list(self._source(context))
        except Exception as err:
            logger.error("Get silence failed, stage=Silence, seq=%s, error=%s", _seq(context), err)
            raise

        if not silences:
            return context, data

        output = Alerts(
            alert
            for alert in alerts
            if not any(silence.matches(alert.labels) for silence in silences)
        )
        return context, output or None


__all__ = ["Silence", "SilenceSource", "SilenceStage"]