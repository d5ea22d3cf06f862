"""
Event server — receives hook status reports over a unix socket.

Each AI session runs a hook command on activity changes; the hook connects
to the socket and writes one JSON line (see ``protocol``). A connection may
also stay open and stream several lines.

Failure isolation:
  - A line that fails to decode closes that connection only.
  - A well-formed event for an unknown session, or with a stale seq, is
    rejected and logged; the connection stays open.
  - Nothing raised while handling a connection reaches the server task.

The server runs on the application event loop. Handlers only touch the
registry and message log under their own short locks, so they never wait
on rendering.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from collections.abc import Callable
from pathlib import Path

import structlog

from octopai.core.constants import MAX_EVENT_LINE_BYTES
from octopai.core.events.protocol import HookEvent, decode_event
from octopai.core.exceptions import ProtocolError, StartupError
from octopai.core.messages import MessageLog
from octopai.core.session.registry import ApplyResult, SessionRegistry

logger = structlog.get_logger()

EventListener = Callable[[HookEvent, ApplyResult], None]


class EventServer:
    """Unix-socket listener feeding hook events into the SessionRegistry."""

    def __init__(
        self,
        registry: SessionRegistry,
        messages: MessageLog,
        socket_path: Path,
    ) -> None:
        self._registry = registry
        self._messages = messages
        self._socket_path = socket_path
        self._server: asyncio.Server | None = None
        self._listeners: list[EventListener] = []
        self._connections: set[asyncio.Task[None]] = set()
        self.applied = 0
        self.rejected = 0

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    @property
    def is_running(self) -> bool:
        return self._server is not None and self._server.is_serving()

    def add_listener(self, listener: EventListener) -> None:
        """Called on the event loop after every applied or rejected event."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        path = self._socket_path
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        await self._clear_stale_socket(path)
        self._server = await asyncio.start_unix_server(
            self._on_connection,
            path=str(path),
            limit=MAX_EVENT_LINE_BYTES + 1,
        )
        os.chmod(path, 0o600)
        logger.info("event_server_started", socket=str(path))

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for task in list(self._connections):
            task.cancel()
        if self._connections:
            await asyncio.gather(*self._connections, return_exceptions=True)
        await self._server.wait_closed()
        self._server = None
        with contextlib.suppress(FileNotFoundError):
            self._socket_path.unlink()
        logger.info("event_server_stopped", applied=self.applied, rejected=self.rejected)

    async def _clear_stale_socket(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            _, writer = await asyncio.wait_for(asyncio.open_unix_connection(str(path)), 1.0)
        except (ConnectionRefusedError, FileNotFoundError, TimeoutError, OSError):
            path.unlink(missing_ok=True)
            logger.debug("event_socket_stale_removed", socket=str(path))
            return
        writer.close()
        raise StartupError(f"Another octopai board is already listening on {path}")

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _on_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        try:
            await self._read_events(reader)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self._reject(f"connection error: {exc}")
        finally:
            if task is not None:
                self._connections.discard(task)
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()

    async def _read_events(self, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                raw = await reader.readline()
            except (ValueError, asyncio.LimitOverrunError):
                self._reject(f"event exceeds {MAX_EVENT_LINE_BYTES} bytes; connection closed")
                return
            if not raw:
                return
            line = raw.strip()
            if not line:
                continue
            try:
                self.handle_line(line)
            except ProtocolError as exc:
                self._reject(f"{exc}; connection closed")
                return

    def handle_line(self, line: bytes | str) -> ApplyResult:
        """Decode and apply one event; raises ProtocolError only for undecodable input."""
        event = decode_event(line)
        return self.handle_event(event)

    def handle_event(self, event: HookEvent) -> ApplyResult:
        result = self._registry.apply(
            event.session_id,
            event.status.to_session_status(),
            event.seq,
            event.detail,
        )
        if result is ApplyResult.APPLIED:
            self.applied += 1
            logger.info(
                "session_status_applied",
                session_id=event.session_id,
                status=str(event.status),
                seq=event.seq,
            )
            text = f"#{event.session_id} {event.status}"
            if event.detail:
                text += f": {event.detail}"
            self._messages.info(text, key=event.session_id)
        elif result is ApplyResult.UNKNOWN_SESSION:
            self._reject(f"event for unknown session {event.session_id!r}", key=event.session_id)
        else:
            self.rejected += 1
            logger.debug("session_event_dropped", session_id=event.session_id, seq=event.seq)
        self._notify(event, result)
        return result

    def _reject(self, reason: str, key: str | None = None) -> None:
        self.rejected += 1
        logger.warning("hook_event_rejected", reason=reason, session_id=key)
        self._messages.warning(f"hook event rejected: {reason}", key=key)

    def _notify(self, event: HookEvent, result: ApplyResult) -> None:
        for listener in self._listeners:
            try:
                listener(event, result)
            except Exception as exc:  # noqa: BLE001
                logger.warning("event_listener_failed", error=str(exc))
