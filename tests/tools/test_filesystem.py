"""Tests for the filesystem tools."""

import os
import tempfile

import pytest

from assistant_core.errors import SandboxViolationError
from assistant_core.tools.base import ToolContext
from assistant_core.tools.filesystem import (
    MAX_READ_BYTES,
    FindFileTool,
    InspectFileTool,
    ListDirectoryTool,
    ReadFileTool,
    SearchFileContentTool,
)
from assistant_core.workspace.models import HostType, WorkspaceReference, WorkspaceURI


@pytest.fixture
def root():
    with tempfile.TemporaryDirectory() as tmpdir:
        os.makedirs(os.path.join(tmpdir, "src", "pkg"))
        with open(os.path.join(tmpdir, "README.md"), "w", encoding="utf-8") as f:
            f.write("# Demo\nTODO: write docs\n")
        with open(os.path.join(tmpdir, "src", "main.py"), "w", encoding="utf-8") as f:
            f.write("import os\n# TODO refactor\nprint('hi')\n")
        with open(os.path.join(tmpdir, "src", "pkg", "util.py"), "w", encoding="utf-8") as f:
            f.write("def helper():\n    return 1\n")
        with open(os.path.join(tmpdir, ".hidden"), "w", encoding="utf-8") as f:
            f.write("secret")
        yield tmpdir


@pytest.fixture
def context(root):
    workspace = WorkspaceReference(
        uri=WorkspaceURI.for_session("s1"),
        host_type=HostType.SERVER_SESSION,
        root_path=root,
    )
    return ToolContext(session_id="s1", workspace=workspace)


# ---------------------------------------------------------------------------
# list_dir
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_dir_root(context):
    result = await ListDirectoryTool().execute({}, context)
    assert result.success
    lines = result.output.splitlines()
    assert lines[0] == "[FILE] README.md 24 B"
    assert lines[1] == "[DIR] src"
    assert ".hidden" not in result.output


@pytest.mark.asyncio
async def test_list_dir_missing_path(context):
    result = await ListDirectoryTool().execute({"path": "nope"}, context)
    assert not result.success
    assert "Path not found" in result.error


@pytest.mark.asyncio
async def test_tool_context_still_sandboxes(context):
    with pytest.raises(SandboxViolationError):
        await ListDirectoryTool().execute({"path": "../.."}, context)


# ---------------------------------------------------------------------------
# read_file
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_read_file(context):
    result = await ReadFileTool().execute({"path": "src/main.py"}, context)
    assert result.success
    assert result.output.startswith("import os")


@pytest.mark.asyncio
async def test_read_file_requires_path(context):
    result = await ReadFileTool().execute({}, context)
    assert not result.success
    assert result.error.startswith("Missing required parameter: path.")
    assert "Example:" in result.error


@pytest.mark.asyncio
async def test_read_file_rejects_large_files(context, root):
    with open(os.path.join(root, "big.txt"), "w", encoding="utf-8") as f:
        f.write("x" * (MAX_READ_BYTES + 1))
    result = await ReadFileTool().execute({"path": "big.txt"}, context)
    assert not result.success
    assert "too large" in result.error


@pytest.mark.asyncio
async def test_read_file_rejects_binary(context, root):
    with open(os.path.join(root, "blob.bin"), "wb") as f:
        f.write(b"\xff\xfe\x00\x81")
    result = await ReadFileTool().execute({"path": "blob.bin"}, context)
    assert not result.success
    assert "not valid UTF-8" in result.error


# ---------------------------------------------------------------------------
# find_file / search_file_content
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_find_file_glob(context):
    result = await FindFileTool().execute({"pattern": "*.py"}, context)
    assert result.output.splitlines() == [
        os.path.join("src", "main.py"),
        os.path.join("src", "pkg", "util.py"),
    ]


@pytest.mark.asyncio
async def test_find_file_substring_is_case_insensitive(context):
    result = await FindFileTool().execute({"pattern": "readme"}, context)
    assert result.output == "README.md"


@pytest.mark.asyncio
async def test_find_file_no_match(context):
    result = await FindFileTool().execute({"pattern": "*.rs"}, context)
    assert result.success
    assert result.output.startswith("No files found")


@pytest.mark.asyncio
async def test_search_file_content(context):
    result = await SearchFileContentTool().execute({"pattern": "TODO"}, context)
    assert result.output.splitlines() == [
        "README.md:2: TODO: write docs",
        f"{os.path.join('src', 'main.py')}:2: # TODO refactor",
    ]


@pytest.mark.asyncio
async def test_search_file_content_non_recursive(context):
    result = await SearchFileContentTool().execute(
        {"pattern": "TODO", "recursive": False}, context
    )
    assert result.output == "README.md:2: TODO: write docs"


@pytest.mark.asyncio
async def test_search_single_file(context):
    result = await SearchFileContentTool().execute(
        {"pattern": "return", "path": "src/pkg/util.py"}, context
    )
    assert result.output == "util.py:2: return 1"


@pytest.mark.asyncio
async def test_search_file_content_uses_regular_expressions(context):
    result = await SearchFileContentTool().execute({"pattern": r"^def \w+\("}, context)
    assert result.output == f"{os.path.join('src', 'pkg', 'util.py')}:1: def helper():"


@pytest.mark.asyncio
async def test_search_file_content_rejects_invalid_regex(context):
    result = await SearchFileContentTool().execute({"pattern": "(unclosed"}, context)
    assert not result.success
    assert result.error.startswith("Invalid regular expression '(unclosed'")


# ---------------------------------------------------------------------------
# inspect_file
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_inspect_text_file(context):
    result = await InspectFileTool().execute({"path": "src/main.py"}, context)
    assert result.success
    assert result.output.startswith("src/main.py: text/")
    assert "ascii text, 3 lines, 38 B, modified " in result.output


@pytest.mark.asyncio
async def test_inspect_binary_file_and_directory(context, root):
    with open(os.path.join(root, "blob.bin"), "wb") as f:
        f.write(b"\x00\x01\x02")

    binary = await InspectFileTool().execute({"path": "blob.bin"}, context)
    directory = await InspectFileTool().execute({"path": "src"}, context)
    missing = await InspectFileTool().execute({"path": "nope.txt"}, context)

    assert "binary data, 3 B" in binary.output
    assert directory.output == "src: directory, 2 entries"
    assert missing.error == "File not found: nope.txt"


# ---------------------------------------------------------------------------
# symlinks
# ---------------------------------------------------------------------------


@pytest.fixture
def outside():
    with tempfile.TemporaryDirectory() as tmpdir:
        with open(os.path.join(tmpdir, "secret.txt"), "w", encoding="utf-8") as f:
            f.write("TOP SECRET\n")
        yield tmpdir


@pytest.fixture
def escape_links(root, outside):
    os.symlink(outside, os.path.join(root, "escape"))
    os.symlink(os.path.join(outside, "secret.txt"), os.path.join(root, "src", "leak.txt"))


@pytest.mark.asyncio
async def test_symlinked_directory_cannot_leave_the_root(context, escape_links):
    with pytest.raises(SandboxViolationError):
        await ReadFileTool().execute({"path": "escape/secret.txt"}, context)
    with pytest.raises(SandboxViolationError):
        await ListDirectoryTool().execute({"path": "escape"}, context)
    with pytest.raises(SandboxViolationError):
        await InspectFileTool().execute({"path": "escape/secret.txt"}, context)


@pytest.mark.asyncio
async def test_symlinked_file_cannot_leave_the_root(context, escape_links):
    with pytest.raises(SandboxViolationError):
        await ReadFileTool().execute({"path": "src/leak.txt"}, context)


@pytest.mark.asyncio
async def test_search_skips_links_that_leave_the_root(context, escape_links):
    result = await SearchFileContentTool().execute({"pattern": "SECRET"}, context)
    assert result.output == "No matches found for 'SECRET'"

    listing = await ListDirectoryTool().execute({}, context)
    assert "[LINK] escape" in listing.output.splitlines()


@pytest.mark.asyncio
async def test_symlink_inside_the_root_still_works(context, root):
    os.symlink(os.path.join(root, "README.md"), os.path.join(root, "src", "readme-link.md"))
    result = await ReadFileTool().execute({"path": "src/readme-link.md"}, context)
    assert result.success
    assert result.output.startswith("# Demo")
