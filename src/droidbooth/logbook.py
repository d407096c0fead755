"""Bounded in-memory log channel with observer subscriptions."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

DEFAULT_CAPACITY = 200

Subscriber = Callable[["LogEntry"], None]


@dataclass(slots=True, frozen=True)
class LogEntry:
    timestamp: datetime
    level: int
    message: str
    duration: float | None = None

    @property
    def level_name(self) -> str:
        return logging.getLevelName(self.level)

    def render(self) -> str:
        line = f"[{self.timestamp:%Y-%m-%dT%H:%M:%S}] {self.level_name} - {self.message}"
        if self.duration is not None:
            line += f" [{int(self.duration * 1000)} ms]"
        return line

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> LogEntry:
        duration = getattr(record, "duration", None)
        return cls(
            timestamp=datetime.fromtimestamp(record.created),
            level=record.levelno,
            message=record.getMessage(),
            duration=float(duration) if duration is not None else None,
        )


class LogBook(logging.Handler):
    """Keeps the most recent entries and fans each new one out to subscribers."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._subscribers: list[Subscriber] = []
        self._attached_to: logging.Logger | None = None
        self._previous_level = logging.NOTSET

    @property
    def capacity(self) -> int:
        assert self._entries.maxlen is not None
        return self._entries.maxlen

    def entries(self, min_level: int = logging.NOTSET) -> list[LogEntry]:
        return [entry for entry in self._entries if entry.level >= min_level]

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)
        return lambda: self.unsubscribe(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def attach(self, logger: logging.Logger) -> None:
        """Capture records from ``logger``, lowering its level to ours while attached."""

        if self._attached_to is logger:
            return
        self.detach()
        logger.addHandler(self)
        self._attached_to = logger
        self._previous_level = logger.level
        if logger.level == logging.NOTSET or logger.level > self.level:
            logger.setLevel(self.level)

    def detach(self) -> None:
        if self._attached_to is not None:
            self._attached_to.removeHandler(self)
            self._attached_to.setLevel(self._previous_level)
            self._attached_to = None

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = LogEntry.from_record(record)
            self._entries.append(entry)
            for subscriber in list(self._subscribers):
                subscriber(entry)
        except Exception:  # noqa: BLE001 - logging must never raise into the caller
            self.handleError(record)
