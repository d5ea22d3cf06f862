"""
Hook event wire format.

One JSON object per line over the event socket::

    {"session_id": "42", "status": "working", "detail": "Edit", "seq": 17}

``status`` is one of starting, working, idle, waiting_permission, exited.
``seq`` must increase per session; the emitter uses a nanosecond clock.
Unknown keys are ignored so older boards accept newer hooks.
"""

from __future__ import annotations

import json
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from octopai.core.constants import MAX_EVENT_LINE_BYTES
from octopai.core.exceptions import ProtocolError
from octopai.core.models import SessionStatus


class HookStatus(StrEnum):
    STARTING = "starting"
    WORKING = "working"
    IDLE = "idle"
    WAITING_PERMISSION = "waiting_permission"
    EXITED = "exited"

    def to_session_status(self) -> SessionStatus:
        return SessionStatus(self.value)


class HookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    session_id: str = Field(min_length=1, max_length=128)
    status: HookStatus
    seq: int = Field(ge=0)
    detail: str | None = Field(default=None, max_length=2000)

    @field_validator("seq", mode="before")
    @classmethod
    def reject_non_integer_seq(cls, v: object) -> object:
        # JSON true/1.5 must not sneak through as a sequence number
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValueError("seq must be an integer")
        return v

    def encode(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8") + b"\n"


def decode_event(line: bytes | str) -> HookEvent:
    """Decode one line into a HookEvent; raise ProtocolError on anything invalid."""
    if isinstance(line, bytes):
        if len(line) > MAX_EVENT_LINE_BYTES:
            raise ProtocolError(f"event exceeds {MAX_EVENT_LINE_BYTES} bytes")
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"event is not UTF-8: {exc}") from exc
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"malformed JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("event must be a JSON object")
    try:
        return HookEvent.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'event'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ProtocolError(f"invalid event: {problems}") from exc
