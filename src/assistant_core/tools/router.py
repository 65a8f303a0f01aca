"""Tool router: resolves where a tool call runs and dispatches it."""

from __future__ import annotations

from loguru import logger

from ..config import RouterConfig
from ..errors import (
    ApprovalDeniedError,
    ClientNotConnectedError,
    CoreError,
    ErrorKind,
    SandboxViolationError,
    ToolNotFoundError,
)
from ..memory.embedding import EmbeddingProvider
from ..memory.store import MemoryStore
from ..models import ToolCall, ToolResult
from ..workspace.models import Session, TrustLevel, WorkspaceReference
from ..workspace.registry import WorkspaceRegistry
from ..workspace.sandbox import check_path_arguments
from .approval import ApprovalDecision, ApprovalGate
from .base import ToolContext
from .loop_detector import LoopDetector
from .registry import ToolRegistry
from .remote import ClientConnectionManager


class ToolRouter:
    """Executes tool calls in the right workspace.

    Order of checks for every call:
    1. loop detection against the session's window
    2. workspace resolution (explicit target, primary, attached)
    3. sandboxing of declared path arguments against the workspace root
    4. approval for restricted workspaces
    5. local execution or remote dispatch to the owning client

    Every outcome is returned as a ``ToolResult``; infrastructural failures
    carry an ``ErrorKind``. Cancellation is never converted.
    """

    def __init__(
        self,
        workspaces: WorkspaceRegistry,
        tools: ToolRegistry,
        connections: ClientConnectionManager | None = None,
        approval_gate: ApprovalGate | None = None,
        store: MemoryStore | None = None,
        embedder: EmbeddingProvider | None = None,
        config: RouterConfig | None = None,
    ):
        self.workspaces = workspaces
        self.tools = tools
        self.connections = connections
        self.approval_gate = approval_gate
        self.store = store
        self.embedder = embedder
        self.config = config or RouterConfig()

    async def execute(
        self,
        call: ToolCall,
        session: Session,
        loop_detector: LoopDetector | None = None,
    ) -> ToolResult:
        """Execute ``call`` on behalf of ``session``.

        Args:
            call: Tool call emitted by the model
            session: Session issuing the call
            loop_detector: The session's repeat-call window

        Returns:
            ToolResult: never raises for expected or infrastructural failures
        """
        try:
            return await self._execute(call, session, loop_detector)
        except SandboxViolationError as e:
            logger.bind(event="sandbox_violation").error(
                f"Sandbox violation in session {session.id}: tool '{call.name}' "
                f"requested {e.path!r} outside {e.root}"
            )
            return ToolResult.failure(str(e), e.kind)
        except CoreError as e:
            logger.warning(f"Tool call '{call.name}' failed ({e.kind.value}): {e}")
            return ToolResult.failure(str(e), e.kind)

    async def _execute(
        self,
        call: ToolCall,
        session: Session,
        loop_detector: LoopDetector | None,
    ) -> ToolResult:
        if call.malformed_arguments is not None:
            return ToolResult.failure(
                f"Arguments for '{call.name}' are not valid JSON: {call.malformed_arguments}"
            )

        if loop_detector is not None:
            loop_detector.check(call)

        workspace = self.workspaces.resolve_target(call, session)

        if workspace.is_remote:
            await self._require_approval(call, workspace)
            return await self._dispatch_remote(call, workspace)

        tool = self.tools.get(call.name)
        if tool is None:
            raise ToolNotFoundError(call.name)

        check_path_arguments(call.arguments, tool.path_arguments, workspace.root_path)
        await self._require_approval(call, workspace)

        context = ToolContext(
            session_id=session.id,
            workspace=workspace,
            store=self.store,
            embedder=self.embedder,
        )
        logger.debug(f"Executing '{call.name}' in workspace {workspace.uri}")
        try:
            return await tool.execute(dict(call.arguments), context)
        except CoreError:
            raise
        except Exception as e:
            logger.exception(f"Tool '{call.name}' raised unexpectedly")
            return ToolResult.failure(
                f"Tool '{call.name}' failed: {e}", ErrorKind.EXECUTION_FAILED
            )

    async def _require_approval(self, call: ToolCall, workspace: WorkspaceReference) -> None:
        if workspace.trust_level != TrustLevel.RESTRICTED:
            return
        if self.approval_gate is None:
            raise ApprovalDeniedError(call.name, workspace.id)
        decision = await self.approval_gate.request_approval(call, workspace)
        if decision != ApprovalDecision.GRANTED:
            raise ApprovalDeniedError(call.name, workspace.id)

    async def _dispatch_remote(
        self, call: ToolCall, workspace: WorkspaceReference
    ) -> ToolResult:
        channel = (
            self.connections.channel_for(workspace.owner_id) if self.connections else None
        )
        if channel is None:
            raise ClientNotConnectedError(workspace.owner_id)
        logger.debug(f"Dispatching '{call.name}' to client {workspace.owner_id}")
        return await channel.dispatch(call, self.config.remote_timeout_seconds)
