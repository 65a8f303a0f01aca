"""Tests for ToolRegistry and tool snapshots."""

from assistant_core.tools.registry import ToolRegistry
from assistant_core.workspace.models import (
    CustomToolReference,
    HostType,
    KnownToolReference,
    ToolDefinition,
    WorkspaceReference,
    WorkspaceStatus,
    WorkspaceURI,
)


def workspace(host, tools, status=WorkspaceStatus.ACTIVE):
    return WorkspaceReference(
        uri=WorkspaceURI.for_client(host, "/p"),
        host_type=HostType.CLIENT,
        owner_id=host,
        status=status,
        tools=tools,
    )


def test_builtin_tools_are_registered():
    registry = ToolRegistry.with_builtin_tools()
    for tool_id in (
        "list_dir",
        "read_file",
        "inspect_file",
        "find_file",
        "search_file_content",
        "create_memory",
        "create_memory_edge",
        "edit_memory",
        "search_memories",
        "edit_note",
    ):
        assert tool_id in registry


def test_known_references_filters_unknown_ids():
    registry = ToolRegistry.with_builtin_tools()
    refs = registry.known_references(["read_file", "bogus"])
    assert [r.id for r in refs] == ["read_file"]


def test_snapshot_first_provider_wins_and_skips_inactive():
    registry = ToolRegistry.with_builtin_tools()
    custom = ToolDefinition(id="run_tests", name="run_tests", description="Run tests")
    primary = workspace("a", [KnownToolReference(id="read_file")])
    offline = workspace(
        "b", [CustomToolReference(definition=custom)], status=WorkspaceStatus.MISSING
    )
    attached = workspace(
        "c",
        [
            KnownToolReference(id="read_file"),
            KnownToolReference(id="unknown_tool"),
            CustomToolReference(definition=custom),
        ],
    )

    snapshot = registry.snapshot([primary, offline, attached])

    assert snapshot.names() == ["read_file", "run_tests"]
    assert snapshot.provenance == {"read_file": primary.id, "run_tests": attached.id}
