"""Alert stores: a bounded in-memory queue between the webhook and the pipeline."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from datetime import timedelta

from nmanager.types import Alert
from nmanager.utils import NotificationError

PROVIDER_MEMORY = "memory"
DEFAULT_QUEUE_LEN = 10000
DEFAULT_PUSH_TIMEOUT = 3.0


class StoreClosedError(NotificationError):
    """Raised when a closed store is used; carries the alerts already pulled."""

    def __init__(self, alerts: list[Alert] | None = None) -> None:
        super().__init__("Store closed")
        self.alerts = list(alerts or [])


class PushTimeoutError(NotificationError):
    """Raised when an alert could not be queued in time."""

    def __init__(self) -> None:
        super().__init__("Time out")


def _seconds(value: timedelta | float) -> float:
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


class Provider(ABC):
    """Storage backend for alerts waiting to be processed."""

    @abstractmethod
    def push(self, alert: Alert) -> None:
        """Queue one alert."""

    @abstractmethod
    def pull(self, batch_size: int, batch_wait: timedelta | float) -> list[Alert]:
        """Return up to ``batch_size`` alerts, waiting at most ``batch_wait``."""

    @abstractmethod
    def close(self) -> None:
        """Stop accepting alerts."""

    def __enter__(self) -> Provider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class MemoryProvider(Provider):
    """A bounded, thread-safe FIFO queue of alerts."""

    def __init__(
        self,
        queue_len: int = DEFAULT_QUEUE_LEN,
        push_timeout: timedelta | float = DEFAULT_PUSH_TIMEOUT,
    ) -> None:
        if queue_len < 1:
            raise ValueError("queue length must be positive")
        self._capacity = queue_len
        self._push_timeout = _seconds(push_timeout)
        self._queue: deque[Alert] = deque()
        self._closed = False
        self._cond = threading.Condition()

    def push(self, alert: Alert) -> None:
        with self._cond:
            ready = self._cond.wait_for(
                lambda: self._closed or len(self._queue) < self._capacity,
                timeout=self._push_timeout,
            )
            if self._closed:
                raise StoreClosedError()
            if not ready:
                raise PushTimeoutError()
            self._queue.append(alert)
            self._cond.notify_all()

    def pull(self, batch_size: int, batch_wait: timedelta | float) -> list[Alert]:
        deadline = time.monotonic() + _seconds(batch_wait)
        alerts: list[Alert] = []
        with self._cond:
            while True:
                if self._queue:
                    alerts.append(self._queue.popleft())
                    self._cond.notify_all()
                    if len(alerts) >= batch_size:
                        return alerts
                    continue
                if self._closed:
                    raise StoreClosedError(alerts)
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return alerts
                self._cond.wait(remaining)

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class AlertStore(Provider):
    """Alert store backed by a named provider or a given provider instance."""

    def __init__(self, provider: str | Provider = PROVIDER_MEMORY) -> None:
        if isinstance(provider, Provider):
            self._provider = provider
        elif provider == PROVIDER_MEMORY:
            self._provider = MemoryProvider()
        else:
            raise ValueError(f"unknown store provider {provider!r}")

    def push(self, alert: Alert) -> None:
        self._provider.push(alert)

    def pull(self, batch_size: int, batch_wait: timedelta | float) -> list[Alert]:
        return self._provider.pull(batch_size, batch_wait)

    def close(self) -> None:
        self._provider.close()


__all__ = [
    "AlertStore",
    "MemoryProvider",
    "Provider",
    "PushTimeoutError",
    "StoreClosedError",
]