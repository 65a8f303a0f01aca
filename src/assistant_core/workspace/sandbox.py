"""Workspace root sandboxing.

``resolve_in_root`` is pure string normalization and runs before any tool
I/O. ``confine_real_path`` follows symlinks, so it touches the filesystem and
runs inside the tool's worker thread right before the path is opened.
"""

from __future__ import annotations

import os

from ..errors import SandboxViolationError


def resolve_in_root(path: str, root: str | None) -> str:
    """Resolve ``path`` against ``root`` and reject anything escaping it.

    Rejected: any ``..`` segment, home-relative paths, NUL bytes, and
    absolute paths that do not normalize under ``root``.

    Args:
        path: Path argument as supplied by the model
        root: Workspace root directory

    Returns:
        Normalized absolute path inside ``root``

    Raises:
        SandboxViolationError: If the path escapes or cannot be checked
    """
    if not root:
        raise SandboxViolationError(path, root)

    raw = path.strip() if isinstance(path, str) else ""
    if not raw:
        raw = "."
    if "\x00" in raw or raw.startswith("~"):
        raise SandboxViolationError(path, root)
    if ".." in raw.replace("\\", "/").split("/"):
        raise SandboxViolationError(path, root)

    root_abs = os.path.normpath(os.path.abspath(root))
    candidate = raw if os.path.isabs(raw) else os.path.join(root_abs, raw)
    candidate = os.path.normpath(candidate)

    if os.path.commonpath([root_abs, candidate]) != root_abs:
        raise SandboxViolationError(path, root)
    return candidate


def check_path_arguments(
    arguments: dict, path_keys: tuple[str, ...], root: str | None
) -> dict[str, str]:
    """Validate every declared path argument that is present.

    Returns:
        Mapping of argument name to its resolved absolute path
    """
    resolved = {}
    for key in path_keys:
        if key not in arguments or arguments[key] is None:
            continue
        value = arguments[key]
        if not isinstance(value, str):
            raise SandboxViolationError(repr(value), root)
        resolved[key] = resolve_in_root(value, root)
    return resolved


def relative_to_root(path: str, root: str) -> str:
    rel = os.path.relpath(path, os.path.abspath(root))
    return "." if rel == os.curdir else rel


def confine_real_path(path: str, root: str) -> str:
    """Reject ``path`` when following its symlinks leads outside ``root``.

    Returns:
        The fully resolved path

    Raises:
        SandboxViolationError: If the resolved path is outside the resolved root
    """
    real_root = os.path.realpath(root)
    real = os.path.realpath(path)
    if os.path.commonpath([real_root, real]) != real_root:
        raise SandboxViolationError(path, root)
    return real


def is_within_root(path: str, real_root: str) -> bool:
    """True when ``path`` resolves under an already resolved root."""
    return os.path.commonpath([real_root, os.path.realpath(path)]) == real_root
