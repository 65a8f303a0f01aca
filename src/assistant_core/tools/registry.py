"""Server-side tool registry and per-session tool snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from loguru import logger

from ..workspace.models import (
    CustomToolReference,
    KnownToolReference,
    ToolDefinition,
    WorkspaceReference,
    WorkspaceStatus,
)
from .base import Tool
from .filesystem import FILESYSTEM_TOOLS
from .memory_tools import MEMORY_TOOLS


@dataclass(frozen=True)
class ToolSnapshot:
    """Tools visible to a session at one point in time.

    ``provenance`` maps each tool id to the workspace that provides it,
    following the same primary-then-attached order used for resolution.
    """

    definitions: tuple[ToolDefinition, ...] = ()
    provenance: dict[str, str] = field(default_factory=dict)

    def names(self) -> list[str]:
        return [d.id for d in self.definitions]


class ToolRegistry:
    """Known tool implementations, keyed by id.

    Built explicitly and handed to the router; sessions take snapshots
    instead of sharing mutable tool state.
    """

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    @classmethod
    def with_builtin_tools(cls) -> "ToolRegistry":
        return cls(tool_cls() for tool_cls in (*FILESYSTEM_TOOLS, *MEMORY_TOOLS))

    def register(self, tool: Tool) -> None:
        if tool.id in self._tools:
            logger.warning(f"Replacing registered tool '{tool.id}'")
        self._tools[tool.id] = tool

    def get(self, tool_id: str) -> Tool | None:
        return self._tools.get(tool_id)

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def known_references(self, ids: Iterable[str] | None = None) -> list[KnownToolReference]:
        selected = self._tools if ids is None else [i for i in ids if i in self._tools]
        return [KnownToolReference(id=tool_id) for tool_id in selected]

    def definition_for(
        self, ref: KnownToolReference | CustomToolReference
    ) -> ToolDefinition | None:
        if isinstance(ref, CustomToolReference):
            return ref.definition
        tool = self._tools.get(ref.id)
        return tool.definition if tool else None

    def snapshot(self, workspaces: list[WorkspaceReference]) -> ToolSnapshot:
        """Collect the tools exposed by active workspaces, first provider wins.

        Args:
            workspaces: Session workspaces, primary first
        """
        definitions: list[ToolDefinition] = []
        provenance: dict[str, str] = {}
        for workspace in workspaces:
            if workspace.status != WorkspaceStatus.ACTIVE:
                continue
            for ref in workspace.tools:
                if ref.tool_id in provenance:
                    continue
                definition = self.definition_for(ref)
                if definition is None:
                    logger.debug(
                        f"Workspace {workspace.id} references unknown tool '{ref.tool_id}'"
                    )
                    continue
                definitions.append(definition)
                provenance[ref.tool_id] = workspace.id
        return ToolSnapshot(definitions=tuple(definitions), provenance=provenance)
