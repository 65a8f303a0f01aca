"""
Exception hierarchy for assistant-core.

Infrastructural failures carry an ``ErrorKind`` so the tool router can turn
them into typed ``ToolResult`` failures and the conversation loop can treat
them differently from ordinary tool errors.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    TOOL_NOT_FOUND = "tool_not_found"
    WORKSPACE_NOT_FOUND = "workspace_not_found"
    CLIENT_NOT_CONNECTED = "client_not_connected"
    TIMEOUT = "timeout"
    LOOP_DETECTED = "loop_detected"
    SANDBOX_VIOLATION = "sandbox_violation"
    APPROVAL_DENIED = "approval_denied"
    MAX_TURNS_EXCEEDED = "max_turns_exceeded"
    EXECUTION_FAILED = "execution_failed"


class CoreError(Exception):
    """Base error for assistant-core"""

    kind: ErrorKind = ErrorKind.EXECUTION_FAILED


class ToolNotFoundError(CoreError):
    kind = ErrorKind.TOOL_NOT_FOUND

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool not found: {name}")


class WorkspaceNotFoundError(CoreError):
    kind = ErrorKind.WORKSPACE_NOT_FOUND

    def __init__(self, workspace_id: str, reason: str = "does not exist"):
        self.workspace_id = workspace_id
        self.reason = reason
        super().__init__(f"Workspace {workspace_id} {reason}")


class ClientNotConnectedError(CoreError):
    kind = ErrorKind.CLIENT_NOT_CONNECTED

    def __init__(self, client_id: str | None):
        self.client_id = client_id
        super().__init__(f"Client not connected: {client_id or '<unknown>'}")


class ToolTimeoutError(CoreError):
    kind = ErrorKind.TIMEOUT

    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(f"Tool '{name}' timed out after {timeout:.1f}s")


class LoopDetectedError(CoreError):
    kind = ErrorKind.LOOP_DETECTED

    def __init__(self, name: str, count: int):
        self.name = name
        self.count = count
        super().__init__(
            f"Loop detected. Tool '{name}' has been called {count} times with "
            "the exact same parameters. Please try a different approach or "
            "verify your logic."
        )


class SandboxViolationError(CoreError):
    """Path escapes the workspace root"""

    kind = ErrorKind.SANDBOX_VIOLATION

    def __init__(self, path: str, root: str | None):
        self.path = path
        self.root = root
        super().__init__(f"Path '{path}' is outside the workspace root")


class ApprovalDeniedError(CoreError):
    kind = ErrorKind.APPROVAL_DENIED

    def __init__(self, name: str, workspace_id: str):
        self.name = name
        self.workspace_id = workspace_id
        super().__init__(
            f"Execution of '{name}' in workspace {workspace_id} was not approved"
        )


class MaxTurnsExceededError(CoreError):
    kind = ErrorKind.MAX_TURNS_EXCEEDED

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Maximum number of turns exceeded ({limit})")


class SessionNotFoundError(CoreError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionBusyError(CoreError):
    """A turn is already running for this session"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} already has a turn in progress")


class MemoryNotFoundError(CoreError):
    def __init__(self, memory_id: str):
        self.memory_id = memory_id
        super().__init__(f"Memory not found: {memory_id}")


class StoreNotInitializedError(RuntimeError):
    def __init__(self):
        super().__init__("Database not initialized. Call initialize() first.")
