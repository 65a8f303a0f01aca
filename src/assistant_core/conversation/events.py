"""Turn lifecycle events emitted by the conversation loop."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..models import _utcnow

USER_FACING_FAILURE = "The operation could not complete."


class TurnEventType(str, Enum):
    GENERATION_STARTED = "generation_started"
    CONTENT_DELTA = "content_delta"
    TOOL_CALL_REQUESTED = "tool_call_requested"
    TOOL_EXECUTION_ATTEMPTING = "tool_execution_attempting"
    TOOL_EXECUTION_SUCCEEDED = "tool_execution_succeeded"
    TOOL_EXECUTION_FAILED = "tool_execution_failed"
    TURN_COMPLETED = "turn_completed"
    ERROR = "error"


class TurnOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MAX_TURNS_EXCEEDED = "max_turns_exceeded"
    FAILED = "failed"


class TurnEvent(BaseModel):
    """One event for a transport layer to forward; encoding is up to it."""

    type: TurnEventType
    session_id: str
    turn: int = 0
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)
