"""Pipeline stages that alerts pass through one after another."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Stage(ABC):
    """Processes data under a context and returns the new context and data."""

    @abstractmethod
    def execute(self, context: Any, data: Any) -> tuple[Any, Any]:
        """Process ``data``; raise on failure."""


class MultiStage(list, Stage):
    """A list of stages executed in order; stops once the data becomes None."""

    def execute(self, context: Any, data: Any) -> tuple[Any, Any]:
        for stage in self:
            if data is None:
                return context, None
            context, data = stage.execute(context, data)
        return context, data


__all__ = ["MultiStage", "Stage"]