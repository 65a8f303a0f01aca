"""Tools that read and write long-term memory and notes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from loguru import logger

from ..errors import MemoryNotFoundError
from ..models import Memory, MemoryEdge, ToolResult
from .base import Tool, ToolContext


def _require_store(context: ToolContext) -> ToolResult | None:
    if context.store is None:
        return ToolResult.failure("Memory storage is not available in this workspace")
    return None


class CreateMemoryTool(Tool):
    id = "create_memory"
    name = "Create Memory"
    description = "Save an important fact or piece of information to long-term memory"
    parameters_schema = {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "Short title for the memory"},
            "content": {"type": "string", "description": "The information to remember"},
            "tags": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Keywords used to recall this memory later",
            },
        },
        "required": ["content"],
    }
    usage_example = (
        '{"name": "create_memory", "arguments": {"title": "Deploy target", '
        '"content": "Production deploys go through the staging cluster first", '
        '"tags": ["deployment"]}}'
    )

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        error = self.argument_error(arguments) or _require_store(context)
        if error:
            return error

        content = str(arguments["content"])
        tags = arguments.get("tags") or []
        if not isinstance(tags, (list, str)):
            return ToolResult.failure("tags must be a list of strings")

        memory = Memory(title=str(arguments.get("title") or ""), content=content, tags=tags)
        if context.embedder is not None:
            try:
                memory.embedding = await context.embedder.embed(content)
            except Exception as e:
                logger.warning(f"Embedding failed, storing memory without vector: {e}")

        stored = await context.store.upsert(memory)
        return ToolResult.ok(f"Memory saved with id {stored.id}")


class CreateMemoryEdgeTool(Tool):
    id = "create_memory_edge"
    name = "Link Memories"
    description = "Create a directed relationship between two existing memories"
    parameters_schema = {
        "type": "object",
        "properties": {
            "source_id": {"type": "string"},
            "target_id": {"type": "string"},
            "relationship": {
                "type": "string",
                "description": "e.g. 'depends_on', 'contradicts', 'part_of'",
            },
            "weight": {"type": "number", "minimum": 0, "maximum": 1},
        },
        "required": ["source_id", "target_id", "relationship"],
    }

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        error = self.argument_error(arguments) or _require_store(context)
        if error:
            return error

        try:
            weight = float(arguments.get("weight", 1.0))
        except (TypeError, ValueError):
            return ToolResult.failure("weight must be a number between 0 and 1")
        if not 0.0 <= weight <= 1.0:
            return ToolResult.failure("weight must be a number between 0 and 1")

        edge = MemoryEdge(
            source_id=str(arguments["source_id"]),
            target_id=str(arguments["target_id"]),
            relationship=str(arguments["relationship"]),
            weight=weight,
        )
        try:
            await context.store.save_edge(edge)
        except MemoryNotFoundError as e:
            return ToolResult.failure(str(e))
        return ToolResult.ok(
            f"Linked {edge.source_id} -[{edge.relationship}]-> {edge.target_id}"
        )


class EditMemoryTool(Tool):
    id = "edit_memory"
    name = "Edit Memory"
    description = "Correct the title, content or tags of an existing memory"
    parameters_schema = {
        "type": "object",
        "properties": {
            "memory_id": {"type": "string", "description": "ID of the memory to edit"},
            "title": {"type": "string", "description": "New title (optional)"},
            "content": {
                "type": "string",
                "description": (
                    "New content (optional). With line_index, replaces that line "
                    "or appends when line_index is -1"
                ),
            },
            "line_index": {
                "type": "integer",
                "description": "0-based line to replace, or -1 to append",
            },
            "tags": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Replacement tag list (optional)",
            },
        },
        "required": ["memory_id"],
    }
    usage_example = (
        '{"name": "edit_memory", "arguments": {"memory_id": "<id>", '
        '"content": "Production deploys go through canary first"}}'
    )

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        error = self.argument_error(arguments) or _require_store(context)
        if error:
            return error

        memory_id = str(arguments["memory_id"])
        memory = await context.store.get_memory(memory_id)
        if memory is None:
            return ToolResult.failure(f"Memory not found: {memory_id}")

        changes: dict[str, Any] = {}
        title = arguments.get("title")
        if isinstance(title, str) and title.strip() and title.strip() != memory.title:
            changes["title"] = title.strip()

        if arguments.get("content") is not None:
            try:
                content = _edited_content(
                    memory.content, str(arguments["content"]), arguments.get("line_index")
                )
            except ValueError as e:
                return ToolResult.failure(str(e))
            if content != memory.content:
                changes["content"] = content

        if arguments.get("tags") is not None:
            tags = arguments["tags"]
            if not isinstance(tags, (list, str)):
                return ToolResult.failure("tags must be a list of strings")
            changes["tags"] = tags

        label = changes.get("title") or memory.title or memory.id
        if not changes:
            return ToolResult.ok(f"No changes made to memory '{label}'")

        updated = Memory.model_validate({**memory.model_dump(), **changes})
        if "content" in changes:
            updated.embedding = None  # stale once the content changes
            if context.embedder is not None:
                try:
                    updated.embedding = await context.embedder.embed(updated.content)
                except Exception as e:
                    logger.warning(f"Re-embedding memory {memory_id} failed: {e}")

        await context.store.upsert(updated)
        return ToolResult.ok(f"Memory '{label}' updated")


def _edited_content(current: str, new: str, line_index: Any) -> str:
    if line_index is None:
        return new
    if isinstance(line_index, bool) or not isinstance(line_index, int):
        raise ValueError(f"Invalid line_index: {line_index!r}")
    lines = current.split("\n")
    if line_index == -1:
        return "\n".join([*lines, new])
    if 0 <= line_index < len(lines):
        lines[line_index] = new
        return "\n".join(lines)
    raise ValueError(f"line_index {line_index} out of range (memory has {len(lines)} lines)")


class SearchMemoriesTool(Tool):
    id = "search_memories"
    name = "Search Memories"
    description = "Search long-term memory by keyword"
    parameters_schema = {
        "type": "object",
        "properties": {
            "query": {"type": "string"},
            "limit": {"type": "integer", "minimum": 1, "maximum": 50},
        },
        "required": ["query"],
    }

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        error = self.argument_error(arguments) or _require_store(context)
        if error:
            return error

        try:
            limit = max(1, min(50, int(arguments.get("limit", 10))))
        except (TypeError, ValueError):
            limit = 10
        memories = await context.store.search_by_keyword(str(arguments["query"]), limit=limit)
        if not memories:
            return ToolResult.ok("No memories found.")
        return ToolResult.ok(
            "\n".join(f"[{m.id}] {m.summary_line()}" for m in memories)
        )


class EditNoteTool(Tool):
    id = "edit_note"
    name = "Edit Note"
    description = "Replace the content of an existing note"
    parameters_schema = {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Name of the note to edit"},
            "content": {"type": "string", "description": "New note content"},
        },
        "required": ["name", "content"],
    }

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        error = self.argument_error(arguments) or _require_store(context)
        if error:
            return error

        name = str(arguments["name"])
        note = await context.store.get_note_by_name(name)
        if note is None:
            return ToolResult.failure(f"Note not found: {name}")
        if note.is_readonly:
            return ToolResult.failure(f"Note '{name}' is read-only and cannot be edited")

        updated = note.model_copy(
            update={
                "content": str(arguments["content"]),
                "updated_at": datetime.now(timezone.utc),
            }
        )
        await context.store.save_note(updated)
        return ToolResult.ok(f"Note '{name}' updated")


MEMORY_TOOLS: tuple[type[Tool], ...] = (
    CreateMemoryTool,
    CreateMemoryEdgeTool,
    EditMemoryTool,
    SearchMemoriesTool,
    EditNoteTool,
)
