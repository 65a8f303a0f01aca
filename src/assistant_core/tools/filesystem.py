"""Filesystem tools scoped to a workspace root.

All tools are read-only. Every path is confined twice: as a string by the
router before dispatch, and with symlinks resolved in the worker thread
right before any I/O.
"""

from __future__ import annotations

import asyncio
import fnmatch
import mimetypes
import os
import re
from datetime import datetime, timezone
from typing import Any

import chardet

from ..models import ToolResult
from ..workspace.sandbox import is_within_root, relative_to_root
from .base import Tool, ToolContext

MAX_READ_BYTES = 1_000_000
MAX_FIND_RESULTS = 100
MAX_SEARCH_MATCHES = 50
SNIFF_BYTES = 8192


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size} B"


def _walk(root: str, real_root: str, recursive: bool = True):
    """Yield file paths under ``root``, skipping hidden entries, sorted.

    Symlinked directories are not descended into; symlinked files that
    resolve outside ``real_root`` are skipped.
    """
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for name in sorted(files):
            if name.startswith("."):
                continue
            file_path = os.path.join(current, name)
            if is_within_root(file_path, real_root):
                yield file_path
        if not recursive:
            break


class ListDirectoryTool(Tool):
    id = "list_dir"
    name = "List Directory"
    description = "List files and directories at a path inside the workspace"
    parameters_schema = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Directory to list (defaults to the workspace root)",
            }
        },
    }
    usage_example = '{"name": "list_dir", "arguments": {"path": "."}}'
    path_arguments = ("path",)

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        path = arguments.get("path") or "."
        target = context.resolve(path)
        return await asyncio.to_thread(self._list, context, target, path)

    @staticmethod
    def _list(context: ToolContext, target: str, display: str) -> ToolResult:
        target = context.confine(target)
        if not os.path.exists(target):
            return ToolResult.failure(f"Path not found: {display}")
        if not os.path.isdir(target):
            return ToolResult.failure(f"Path is not a directory: {display}")

        lines = []
        for entry in sorted(os.scandir(target), key=lambda e: e.name):
            if entry.name.startswith("."):
                continue
            if entry.is_symlink():
                lines.append(f"[LINK] {entry.name}")
            elif entry.is_dir():
                lines.append(f"[DIR] {entry.name}")
            else:
                lines.append(f"[FILE] {entry.name} {_format_size(entry.stat().st_size)}")
        return ToolResult.ok("\n".join(lines) if lines else "(empty directory)")


class ReadFileTool(Tool):
    id = "read_file"
    name = "Read File"
    description = "Read the content of a text file inside the workspace"
    parameters_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The path to the file to read"}
        },
        "required": ["path"],
    }
    usage_example = '{"name": "read_file", "arguments": {"path": "README.md"}}'
    path_arguments = ("path",)

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        error = self.argument_error(arguments)
        if error:
            return error
        path = arguments["path"]
        target = context.resolve(path)
        return await asyncio.to_thread(self._read, context, target, path)

    @staticmethod
    def _read(context: ToolContext, target: str, display: str) -> ToolResult:
        target = context.confine(target)
        if not os.path.isfile(target):
            return ToolResult.failure(f"File not found: {display}")
        size = os.path.getsize(target)
        if size > MAX_READ_BYTES:
            return ToolResult.failure(
                f"File is too large ({_format_size(size)}). "
                f"The limit is {_format_size(MAX_READ_BYTES)}."
            )
        try:
            with open(target, "r", encoding="utf-8") as file:
                return ToolResult.ok(file.read())
        except UnicodeDecodeError:
            return ToolResult.failure(f"File is not valid UTF-8 text: {display}")
        except OSError as e:
            return ToolResult.failure(f"Failed to read file: {e}")


class InspectFileTool(Tool):
    id = "inspect_file"
    name = "Inspect File"
    description = "Report the type, encoding, size and line count of a file"
    parameters_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The path to the file to inspect"}
        },
        "required": ["path"],
    }
    usage_example = '{"name": "inspect_file", "arguments": {"path": "src/main.py"}}'
    path_arguments = ("path",)

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        error = self.argument_error(arguments)
        if error:
            return error
        path = arguments["path"]
        target = context.resolve(path)
        return await asyncio.to_thread(self._inspect, context, target, path)

    @staticmethod
    def _inspect(context: ToolContext, target: str, display: str) -> ToolResult:
        target = context.confine(target)
        if not os.path.exists(target):
            return ToolResult.failure(f"File not found: {display}")
        if os.path.isdir(target):
            count = sum(1 for entry in os.scandir(target) if not entry.name.startswith("."))
            return ToolResult.ok(f"{display}: directory, {count} entries")

        size = os.path.getsize(target)
        modified = datetime.fromtimestamp(os.path.getmtime(target), timezone.utc)
        mime, _ = mimetypes.guess_type(target)
        with open(target, "rb") as file:
            sample = file.read(SNIFF_BYTES)

        parts = [mime or "application/octet-stream"]
        if b"\x00" in sample:
            parts.append("binary data")
        else:
            encoding = chardet.detect(sample)["encoding"] if sample else "empty"
            parts.append(f"{encoding or 'unknown'} text")
            if size <= MAX_READ_BYTES:
                with open(target, "rb") as file:
                    data = file.read()
                lines = data.count(b"\n") + (1 if data and not data.endswith(b"\n") else 0)
                parts.append(f"{lines} lines")
        parts.append(_format_size(size))
        parts.append(f"modified {modified:%Y-%m-%d %H:%M} UTC")
        return ToolResult.ok(f"{display}: {', '.join(parts)}")


class FindFileTool(Tool):
    id = "find_file"
    name = "Find File"
    description = (
        "Find files whose name matches a pattern (glob, or case-insensitive "
        "substring) in a directory, recursively"
    )
    parameters_schema = {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "File name pattern"},
            "path": {
                "type": "string",
                "description": "Directory to start searching (default: .)",
            },
        },
        "required": ["pattern"],
    }
    usage_example = '{"name": "find_file", "arguments": {"pattern": "*.py"}}'
    path_arguments = ("path",)

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        error = self.argument_error(arguments)
        if error:
            return error
        path = arguments.get("path") or "."
        target = context.resolve(path)
        return await asyncio.to_thread(
            self._find, context, target, str(arguments["pattern"]), path
        )

    @staticmethod
    def _find(context: ToolContext, target: str, pattern: str, display: str) -> ToolResult:
        real_target = context.confine(target)
        if not os.path.isdir(real_target):
            return ToolResult.failure(f"Path is not a directory: {display}")

        lowered = pattern.lower()
        is_glob = any(ch in pattern for ch in "*?[")
        matches = []
        for file_path in _walk(real_target, os.path.realpath(context.root)):
            name = os.path.basename(file_path)
            hit = fnmatch.fnmatch(name.lower(), lowered) if is_glob else lowered in name.lower()
            if not hit:
                continue
            matches.append(relative_to_root(file_path, real_target))
            if len(matches) >= MAX_FIND_RESULTS:
                matches.append("... (limit reached)")
                break

        if not matches:
            return ToolResult.ok(f"No files found matching '{pattern}' in {display}")
        return ToolResult.ok("\n".join(matches))


class SearchFileContentTool(Tool):
    id = "search_file_content"
    name = "Search File Content"
    description = "Search file lines matching a regular expression in a directory"
    parameters_schema = {
        "type": "object",
        "properties": {
            "pattern": {
                "type": "string",
                "description": "Regular expression (Python syntax) to search for",
            },
            "path": {
                "type": "string",
                "description": "Directory or file to search (default: .)",
            },
            "recursive": {
                "type": "boolean",
                "description": "Search subdirectories too (default: true)",
            },
        },
        "required": ["pattern"],
    }
    usage_example = (
        '{"name": "search_file_content", "arguments": {"pattern": "TODO", "path": "src"}}'
    )
    path_arguments = ("path",)

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        error = self.argument_error(arguments)
        if error:
            return error
        pattern = str(arguments["pattern"])
        try:
            regex = re.compile(pattern)
        except re.error as e:
            return ToolResult.failure(f"Invalid regular expression '{pattern}': {e}")
        path = arguments.get("path") or "."
        target = context.resolve(path)
        recursive = arguments.get("recursive", True) is not False
        return await asyncio.to_thread(self._search, context, target, regex, recursive, path)

    @staticmethod
    def _search(
        context: ToolContext,
        target: str,
        regex: re.Pattern,
        recursive: bool,
        display: str,
    ) -> ToolResult:
        real_target = context.confine(target)
        if os.path.isfile(real_target):
            files, base = [real_target], os.path.dirname(real_target)
        elif os.path.isdir(real_target):
            real_root = os.path.realpath(context.root)
            files, base = list(_walk(real_target, real_root, recursive)), real_target
        else:
            return ToolResult.failure(f"Path not found: {display}")

        matches = []
        truncated = False
        for file_path in files:
            if os.path.getsize(file_path) > MAX_READ_BYTES:
                continue
            try:
                with open(file_path, "r", encoding="utf-8") as file:
                    for number, line in enumerate(file, 1):
                        if regex.search(line):
                            rel = relative_to_root(file_path, base)
                            matches.append(f"{rel}:{number}: {line.strip()}")
            except (UnicodeDecodeError, OSError):
                continue  # binary or unreadable
            if len(matches) > MAX_SEARCH_MATCHES:
                truncated = True
                break

        if not matches:
            return ToolResult.ok(f"No matches found for '{regex.pattern}'")
        output = "\n".join(matches[:MAX_SEARCH_MATCHES])
        if truncated or len(matches) > MAX_SEARCH_MATCHES:
            output += "\n... (limit reached)"
        return ToolResult.ok(output)


FILESYSTEM_TOOLS: tuple[type[Tool], ...] = (
    ListDirectoryTool,
    ReadFileTool,
    InspectFileTool,
    FindFileTool,
    SearchFileContentTool,
)
