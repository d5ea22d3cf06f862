"""
Bounded, append-only message log shown under the board.

Written by the event server, the reconciler and the orchestrator; read by
the board on every render. Oldest entries drop first once ``maxlen`` is
reached.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from octopai.core.constants import DEFAULT_MESSAGE_LOG_SIZE
from octopai.core.models import utcnow


class MessageLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Message:
    text: str
    level: MessageLevel = MessageLevel.INFO
    key: str | None = None
    at: datetime = field(default_factory=utcnow)


class MessageLog:
    """Thread-safe ring buffer of board messages."""

    def __init__(self, maxlen: int = DEFAULT_MESSAGE_LOG_SIZE) -> None:
        self._lock = threading.Lock()
        self._messages: deque[Message] = deque(maxlen=maxlen)
        self._total = 0

    def append(
        self,
        text: str,
        level: MessageLevel = MessageLevel.INFO,
        key: str | None = None,
    ) -> Message:
        msg = Message(text=text, level=level, key=key)
        with self._lock:
            self._messages.append(msg)
            self._total += 1
        return msg

    def info(self, text: str, key: str | None = None) -> Message:
        return self.append(text, MessageLevel.INFO, key)

    def warning(self, text: str, key: str | None = None) -> Message:
        return self.append(text, MessageLevel.WARNING, key)

    def error(self, text: str, key: str | None = None) -> Message:
        return self.append(text, MessageLevel.ERROR, key)

    def snapshot(self) -> list[Message]:
        with self._lock:
            return list(self._messages)

    def latest(self) -> Message | None:
        with self._lock:
            return self._messages[-1] if self._messages else None

    @property
    def total(self) -> int:
        """Messages ever appended, including dropped ones."""
        with self._lock:
            return self._total

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)
