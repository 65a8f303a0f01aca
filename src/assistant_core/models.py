"""Core data models shared by the context engine and the tool router."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, JsonValue, field_validator

from .errors import ErrorKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


def _normalize_tags(value) -> set[str]:
    if value is None:
        return set()
    if isinstance(value, str):
        value = value.split(",")
    return {str(tag).strip().lower() for tag in value if str(tag).strip()}


class Memory(BaseModel):
    """A long-term fact recalled into the prompt."""

    id: str = Field(default_factory=_uuid)
    title: str = ""
    content: str
    tags: set[str] = Field(default_factory=set)
    embedding: list[float] | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, value):
        return _normalize_tags(value)

    def summary_line(self) -> str:
        tags = f" [{', '.join(sorted(self.tags))}]" if self.tags else ""
        return f"{self.title or self.id}{tags}: {self.content}"

    def format_for_context(self) -> str:
        return f"- {self.summary_line()}"


class MemoryEdge(BaseModel):
    """Directed relation between two memories."""

    source_id: str
    target_id: str
    relationship: str
    weight: float = Field(default=1.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=_utcnow)


class ScoredMemory(BaseModel):
    memory: Memory
    score: float
    similarity: float | None = None


class Note(BaseModel):
    """Durable project or persona instructions."""

    id: str = Field(default_factory=_uuid)
    name: str
    description: str = ""
    content: str = ""
    tags: set[str] = Field(default_factory=set)
    is_readonly: bool = False
    always_append: bool = False  # Injected every turn when True
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, value):
        return _normalize_tags(value)

    def format_for_context(self) -> str:
        header = f"## {self.name}"
        if self.description:
            header += f" ({self.description})"
        return f"{header}\n{self.content}"


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str = Field(default_factory=_uuid)
    name: str
    arguments: dict[str, JsonValue] = Field(default_factory=dict)
    target_workspace_id: str | None = None
    # Raw argument text when the model produced invalid JSON
    malformed_arguments: str | None = Field(default=None, exclude=True)

    def signature(self) -> tuple[str, str]:
        """(name, argument-hash) pair used for loop detection."""
        canonical = json.dumps(self.arguments, sort_keys=True, separators=(",", ":"))
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return self.name, digest


class ToolResult(BaseModel):
    success: bool
    output: str = ""
    error: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def ok(cls, output: str) -> "ToolResult":
        return cls(success=True, output=output)

    @classmethod
    def failure(cls, message: str, kind: ErrorKind | None = None) -> "ToolResult":
        return cls(success=False, error=message, error_kind=kind)

    def render(self) -> str:
        """Text folded back into the conversation as a tool message."""
        if self.success:
            return self.output
        return f"Error: {self.error}"


class Message(BaseModel):
    """A single conversation message."""

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None
    is_truncated: bool = False  # Partial content kept after cancellation
    timestamp: datetime = Field(default_factory=_utcnow)

    def format_for_context(self) -> str:
        if self.role == Role.TOOL:
            return f"[tool:{self.name or self.tool_call_id}] {self.content}"
        text = f"{self.role.value}: {self.content}"
        for call in self.tool_calls:
            args = json.dumps(call.arguments, sort_keys=True)
            text += f"\n  -> {call.name}({args})"
        if self.is_truncated:
            text += " [truncated]"
        return text
