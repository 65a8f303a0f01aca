"""Tool interface.

Every server-side tool implements ``execute(arguments, context)`` and
returns a ``ToolResult``. Expected failures (missing file, bad argument)
are returned as ``ToolResult.failure``. The router sandboxes
``path_arguments`` as strings first; filesystem tools call
``ToolContext.confine`` right before touching a path so that symlinks
cannot lead outside the workspace.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from ..memory.embedding import EmbeddingProvider
from ..memory.store import MemoryStore
from ..models import ToolResult
from ..workspace.models import ToolDefinition, WorkspaceReference
from ..workspace.sandbox import confine_real_path, resolve_in_root


@dataclass
class ToolContext:
    """What a tool may touch while executing one call."""

    session_id: str
    workspace: WorkspaceReference
    store: MemoryStore | None = None
    embedder: EmbeddingProvider | None = None

    @property
    def root(self) -> str | None:
        return self.workspace.root_path

    def resolve(self, path: str | None) -> str:
        """Resolve a path argument inside the workspace root."""
        return resolve_in_root(path or ".", self.root)

    def confine(self, target: str) -> str:
        """Follow symlinks in ``target`` and reject it if it leaves the root.

        Touches the filesystem; call it from the worker thread doing the I/O.
        """
        return confine_real_path(target, self.root)


class Tool(ABC):
    """Base class for server-implemented tools."""

    id: ClassVar[str]
    name: ClassVar[str]
    description: ClassVar[str]
    parameters_schema: ClassVar[dict[str, Any]] = {"type": "object", "properties": {}}
    usage_example: ClassVar[str | None] = None
    requires_permission: ClassVar[bool] = False
    # Argument names holding filesystem paths, checked by the router
    path_arguments: ClassVar[tuple[str, ...]] = ()

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            id=self.id,
            name=self.name,
            description=self.description,
            parameters_schema=self.parameters_schema,
            usage_example=self.usage_example,
            requires_permission=self.requires_permission,
        )

    def missing_arguments(self, arguments: dict[str, Any]) -> list[str]:
        required = self.parameters_schema.get("required", [])
        return [key for key in required if arguments.get(key) in (None, "")]

    def argument_error(self, arguments: dict[str, Any]) -> ToolResult | None:
        missing = self.missing_arguments(arguments)
        if not missing:
            return None
        message = f"Missing required parameter: {', '.join(missing)}."
        if self.usage_example:
            message += f" Example: {self.usage_example}"
        return ToolResult.failure(message)

    @abstractmethod
    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """
        Run the tool.

        Args:
            arguments: Arguments supplied by the model
            context: Session, workspace and storage handles

        Returns:
            ToolResult: Success output or a failure message
        """
        pass
