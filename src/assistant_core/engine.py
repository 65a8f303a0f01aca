"""
Assistant engine - facade wiring storage, workspaces, tools and sessions.

Shared services (memory store, embedding model, workspace and tool
registries, client connections, router, context assembler, model provider)
are built once. Each session gets its own ``SessionRuntime`` holding the
per-session loop detector, job queue and conversation loop.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from loguru import logger

from .config import CoreConfig, load_config
from .context.assembler import ContextAssembler
from .context.token_budget import TokenBudget
from .context.token_counter import TokenCounter
from .conversation.job_queue import JobQueue
from .conversation.loop import ConversationLoop
from .errors import SessionNotFoundError
from .llm.openai_provider import OpenAIChatProvider
from .llm.provider import ModelProvider
from .llm.utility import ModelSummarizer, TagGenerator
from .log import configure_logging
from .memory.embedding import EmbeddingProvider, SentenceTransformerEmbedding
from .memory.sqlite_store import SQLiteMemoryStore
from .memory.store import MemoryStore
from .tools.approval import ApprovalGate, PendingApprovalGate
from .tools.loop_detector import LoopDetector
from .tools.registry import ToolRegistry
from .tools.remote import ClientConnectionManager
from .tools.router import ToolRouter
from .workspace.models import (
    SERVER_HOST,
    HostType,
    Session,
    ToolReference,
    TrustLevel,
    WorkspaceReference,
    WorkspaceStatus,
    WorkspaceURI,
)
from .workspace.registry import WorkspaceRegistry


@dataclass
class SessionRuntime:
    """Per-session state. Nothing in here is shared between sessions."""

    session: Session
    loop: ConversationLoop
    loop_detector: LoopDetector
    job_queue: JobQueue

    @property
    def tool_snapshot(self):
        return self.loop.tool_snapshot


class AssistantEngine:
    """Entry point for hosting applications.

    Typical use::

        engine = await AssistantEngine.from_config(load_config("conf.yaml"))
        runtime = await engine.create_session(title="demo")
        async for event in runtime.loop.run_turn("hello"):
            ...
        await engine.close()
    """

    def __init__(
        self,
        config: CoreConfig,
        store: MemoryStore,
        provider: ModelProvider,
        embedder: EmbeddingProvider | None = None,
        tools: ToolRegistry | None = None,
        approval_gate: ApprovalGate | None = None,
        token_counter: TokenCounter | None = None,
    ):
        self.config = config
        self.store = store
        self.provider = provider
        self.embedder = embedder
        self.tools = tools or ToolRegistry.with_builtin_tools()

        # Workspaces and remote clients
        self.workspaces = WorkspaceRegistry(config.storage.sessions_root)
        self.connections = ClientConnectionManager()
        self.connections.add_connect_listener(self._on_client_connect)
        self.connections.add_disconnect_listener(self._on_client_disconnect)
        self.approval_gate = approval_gate or PendingApprovalGate(
            timeout=config.router.approval_timeout_seconds
        )

        self.router = ToolRouter(
            workspaces=self.workspaces,
            tools=self.tools,
            connections=self.connections,
            approval_gate=self.approval_gate,
            store=store,
            embedder=embedder,
            config=config.router,
        )

        # Context
        self.token_counter = token_counter or TokenCounter(config.model.token_model)
        self.token_budget = TokenBudget(self.token_counter, ModelSummarizer(provider))
        self.assembler = ContextAssembler(
            store=store,
            token_budget=self.token_budget,
            embedder=embedder,
            recall_config=config.recall,
            budget_config=config.budget,
        )
        self.tag_generator = TagGenerator(provider)

        self._runtimes: dict[str, SessionRuntime] = {}

    @classmethod
    async def from_config(
        cls,
        config: CoreConfig | str | None = None,
        provider: ModelProvider | None = None,
        embedder: EmbeddingProvider | None = None,
    ) -> "AssistantEngine":
        """Build an engine with the default SQLite store and OpenAI provider.

        Args:
            config: Loaded config, or a path to a YAML config file
            provider: Model provider override
            embedder: Embedding provider override
        """
        if not isinstance(config, CoreConfig):
            config = load_config(config)
        configure_logging(config.log_level, config.log_file)

        db_dir = os.path.dirname(config.storage.sqlite_db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        store = SQLiteMemoryStore(config.storage.sqlite_db_path)
        await store.initialize()

        engine = cls(
            config=config,
            store=store,
            provider=provider or OpenAIChatProvider(config.model),
            embedder=embedder or SentenceTransformerEmbedding(config.embedding),
        )
        logger.info("Assistant engine initialized")
        return engine

    async def close(self) -> None:
        for runtime in list(self._runtimes.values()):
            runtime.loop.cancel()
            await runtime.loop.wait_idle()
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()
        logger.info("Assistant engine closed")

    # ==========================================================================
    # Sessions
    # ==========================================================================

    async def create_session(
        self, title: str | None = None, tags: list[str] | None = None
    ) -> SessionRuntime:
        """Create a session whose primary workspace exposes every built-in tool."""
        session = await self.workspaces.create_session(
            title=title, tags=tags, tools=self.tools.known_references()
        )
        loop_detector = LoopDetector(
            max_repeats=self.config.router.loop_max_repeats,
            window_size=self.config.router.loop_window_size,
        )
        job_queue = JobQueue(session.id)
        loop = ConversationLoop(
            session=session,
            assembler=self.assembler,
            provider=self.provider,
            router=self.router,
            workspaces=self.workspaces,
            tools=self.tools,
            config=self.config.loop,
            loop_detector=loop_detector,
            job_queue=job_queue,
            tag_generator=self.tag_generator,
            recall_limit=self.config.recall.limit,
        )
        loop.refresh_tools()
        runtime = SessionRuntime(
            session=session, loop=loop, loop_detector=loop_detector, job_queue=job_queue
        )
        self._runtimes[session.id] = runtime
        return runtime

    def get_runtime(self, session_id: str) -> SessionRuntime:
        runtime = self._runtimes.get(session_id)
        if runtime is None:
            raise SessionNotFoundError(session_id)
        return runtime

    async def delete_session(self, session_id: str, remove_files: bool = True) -> None:
        runtime = self.get_runtime(session_id)
        runtime.loop.cancel()
        await runtime.loop.wait_idle()
        await self.workspaces.delete_session(session_id, remove_files=remove_files)
        del self._runtimes[session_id]

    # ==========================================================================
    # Workspaces
    # ==========================================================================

    async def attach_directory(
        self,
        session_id: str,
        root_path: str,
        tool_ids: list[str] | None = None,
        trust_level: TrustLevel = TrustLevel.RESTRICTED,
    ) -> WorkspaceReference:
        """Attach a server-side directory to a session."""
        root = os.path.normpath(os.path.abspath(root_path))
        workspace = await self.workspaces.register_workspace(
            WorkspaceReference(
                uri=WorkspaceURI(host=SERVER_HOST, path=root),
                host_type=HostType.SERVER,
                root_path=root,
                trust_level=trust_level,
                tools=self.tools.known_references(tool_ids),
            )
        )
        await self._attach(session_id, workspace)
        return workspace

    async def attach_client_workspace(
        self,
        session_id: str,
        client_id: str,
        path: str,
        tools: list[ToolReference],
        trust_level: TrustLevel = TrustLevel.FULL,
    ) -> WorkspaceReference:
        """Attach a project hosted by a connected client."""
        status = (
            WorkspaceStatus.ACTIVE
            if self.connections.is_connected(client_id)
            else WorkspaceStatus.MISSING
        )
        workspace = await self.workspaces.register_workspace(
            WorkspaceReference(
                uri=WorkspaceURI.for_client(client_id, path),
                host_type=HostType.CLIENT,
                owner_id=client_id,
                root_path=path,
                trust_level=trust_level,
                status=status,
                tools=list(tools),
            )
        )
        await self._attach(session_id, workspace)
        return workspace

    async def _attach(self, session_id: str, workspace: WorkspaceReference) -> None:
        runtime = self.get_runtime(session_id)
        await self.workspaces.attach_workspace(session_id, workspace.id)
        runtime.loop.refresh_tools()

    async def _on_client_connect(self, client_id: str) -> None:
        await self.workspaces.set_client_status(client_id, WorkspaceStatus.ACTIVE)
        self._refresh_all_tools()

    async def _on_client_disconnect(self, client_id: str) -> None:
        await self.workspaces.set_client_status(client_id, WorkspaceStatus.MISSING)
        self._refresh_all_tools()

    def _refresh_all_tools(self) -> None:
        for runtime in self._runtimes.values():
            runtime.loop.refresh_tools()
