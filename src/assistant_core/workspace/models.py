"""Workspace, session and tool reference models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, JsonValue

from ..models import _utcnow, _uuid

SERVER_HOST = "assistant-server"
SERVER_HOST_PREFIX = "assistant-"


class HostType(str, Enum):
    SERVER = "server"
    SERVER_SESSION = "server_session"
    CLIENT = "client"


class TrustLevel(str, Enum):
    FULL = "full"
    RESTRICTED = "restricted"


class WorkspaceStatus(str, Enum):
    ACTIVE = "active"
    MISSING = "missing"
    UNKNOWN = "unknown"


class WorkspaceURI(BaseModel):
    """``host:path`` locator for a workspace, split at the first colon."""

    host: str
    path: str

    @classmethod
    def parse(cls, value: str) -> "WorkspaceURI":
        host, sep, path = value.partition(":")
        if not sep or not host or not path:
            raise ValueError(f"Invalid workspace URI: {value!r}")
        return cls(host=host, path=path)

    @classmethod
    def for_session(cls, session_id: str) -> "WorkspaceURI":
        return cls(host=SERVER_HOST, path=f"/sessions/{session_id}")

    @classmethod
    def for_client(cls, client_id: str, path: str) -> "WorkspaceURI":
        return cls(host=client_id, path=path)

    @property
    def is_server(self) -> bool:
        return self.host.startswith(SERVER_HOST_PREFIX)

    def __str__(self) -> str:
        return f"{self.host}:{self.path}"


class ToolDefinition(BaseModel):
    """Schema of a tool as presented to the model."""

    id: str
    name: str
    description: str = ""
    parameters_schema: dict[str, JsonValue] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    usage_example: str | None = None
    requires_permission: bool = False

    def format_for_context(self) -> str:
        # The model calls tools by id
        label = self.id if self.name == self.id else f"{self.id} ({self.name})"
        text = f"- {label}: {self.description}"
        properties = self.parameters_schema.get("properties") or {}
        if isinstance(properties, dict) and properties:
            text += f"\n  parameters: {', '.join(sorted(properties))}"
        if self.usage_example:
            text += f"\n  example: {self.usage_example}"
        return text


class KnownToolReference(BaseModel):
    """Tool implemented by the server, resolved by id."""

    kind: Literal["known"] = "known"
    id: str

    @property
    def tool_id(self) -> str:
        return self.id


class CustomToolReference(BaseModel):
    """Client-supplied tool; the server only knows its schema."""

    kind: Literal["custom"] = "custom"
    definition: ToolDefinition

    @property
    def tool_id(self) -> str:
        return self.definition.id


ToolReference = Annotated[
    Union[KnownToolReference, CustomToolReference], Field(discriminator="kind")
]


class WorkspaceReference(BaseModel):
    """A trust- and root-scoped environment where tools execute."""

    id: str = Field(default_factory=_uuid)
    uri: WorkspaceURI
    host_type: HostType
    owner_id: str | None = None
    root_path: str | None = None
    trust_level: TrustLevel = TrustLevel.FULL
    status: WorkspaceStatus = WorkspaceStatus.ACTIVE
    tools: list[ToolReference] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_remote(self) -> bool:
        return self.host_type == HostType.CLIENT

    def tool_reference(self, name: str) -> KnownToolReference | CustomToolReference | None:
        for ref in self.tools:
            if ref.tool_id == name:
                return ref
        return None

    def exposes(self, name: str) -> bool:
        return self.tool_reference(name) is not None


class Session(BaseModel):
    """A conversation with one primary and zero or more attached workspaces."""

    id: str = Field(default_factory=_uuid)
    primary_workspace_id: str
    attached_workspace_ids: list[str] = Field(default_factory=list)
    title: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    is_archived: bool = False

    @property
    def workspace_ids(self) -> list[str]:
        """Primary first, then attached in attachment order."""
        return [self.primary_workspace_id, *self.attached_workspace_ids]
