"""
Session registry.

The SessionRegistry is the single source of truth for live session status.
The event server writes to it, the orchestrator registers and retires
sessions, and the board reads snapshots of it on every render.

Invariants:
  - One session per workspace key.
  - Within a generation, an event applies only if its seq is strictly
    greater than the last applied seq; anything else is a no-op.
  - Exiting, forgetting and re-registering never lower last_seq: each
    raises it to at least the current clock reading, the same clock the
    hook emitter stamps seq with, so a report sent before the session was
    retired cannot bring it back.
  - Every method holds the lock for in-memory field updates only.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from enum import StrEnum

import structlog

from octopai.core.models import Session, SessionStatus, utcnow

logger = structlog.get_logger()


class ApplyResult(StrEnum):
    APPLIED = "applied"
    STALE = "stale"
    UNKNOWN_SESSION = "unknown_session"


class SessionRegistry:
    """Thread-safe in-memory map from session key to Session."""

    def __init__(self, clock: Callable[[], int] = time.time_ns) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        # last_seq floor for keys that were forgotten
        self._retired: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, key: str) -> Session:
        """Start a new generation for *key* in STARTING state."""
        with self._lock:
            previous = self._sessions.get(key)
            retired = self._retired.pop(key, None)
            generation = previous.generation + 1 if previous else 1
            floor = 0
            if previous is not None or retired is not None:
                floor = max(previous.last_seq if previous else 0, retired or 0, self._clock())
            session = Session(
                key=key, status=SessionStatus.STARTING, generation=generation, last_seq=floor
            )
            self._sessions[key] = session
            snapshot = replace(session)
        logger.info("session_registered", session_id=key, generation=generation)
        return snapshot

    def ensure(self, key: str) -> Session:
        """Track a session discovered by refresh; existing status is kept."""
        with self._lock:
            session = self._sessions.get(key)
            created = session is None
            if session is None:
                session = Session(
                    key=key,
                    status=SessionStatus.UNKNOWN,
                    generation=1,
                    last_seq=self._retired.pop(key, 0),
                )
                self._sessions[key] = session
            snapshot = replace(session)
        if created:
            logger.debug("session_discovered", session_id=key)
        return snapshot

    def get(self, key: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(key)
            return replace(session) if session else None

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._sessions

    # ------------------------------------------------------------------
    # Status updates
    # ------------------------------------------------------------------

    def apply(
        self,
        key: str,
        status: SessionStatus,
        seq: int,
        detail: str | None = None,
        at: datetime | None = None,
    ) -> ApplyResult:
        """Apply a hook status report; stale or unknown ones change nothing."""
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return ApplyResult.UNKNOWN_SESSION
            if seq <= session.last_seq:
                last_seq = session.last_seq
                result = ApplyResult.STALE
            else:
                session.status = status
                session.last_seq = seq
                session.detail = detail
                session.last_updated = at or utcnow()
                result = ApplyResult.APPLIED
        if result is ApplyResult.STALE:
            logger.debug("session_event_stale", session_id=key, seq=seq, last_seq=last_seq)
        return result

    def mark_exited(self, key: str, detail: str | None = None) -> bool:
        """Terminal confirmation from the orchestrator or a refresh; returns False if unknown."""
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return False
            was = session.status
            session.status = SessionStatus.EXITED
            session.last_seq = max(session.last_seq, self._clock())
            session.last_updated = utcnow()
            if detail is not None:
                session.detail = detail
        if was != SessionStatus.EXITED:
            logger.info("session_exited", session_id=key, previous=str(was))
        return True

    def forget(self, key: str) -> None:
        with self._lock:
            session = self._sessions.pop(key, None)
            if session is not None:
                self._retired[key] = max(session.last_seq, self._clock())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Session]:
        """Copy of every session, safe to read without the lock."""
        with self._lock:
            return {k: replace(s) for k, s in self._sessions.items()}

    def status_of(self, key: str) -> SessionStatus:
        with self._lock:
            session = self._sessions.get(key)
            return session.status if session else SessionStatus.UNKNOWN
