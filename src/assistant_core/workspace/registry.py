"""Workspace registry: sessions, workspaces, attachments and tool resolution."""

from __future__ import annotations

import asyncio
import os
import shutil
from collections import defaultdict
from datetime import datetime, timezone

from loguru import logger

from ..errors import SessionNotFoundError, ToolNotFoundError, WorkspaceNotFoundError
from ..models import ToolCall, _uuid
from .models import (
    HostType,
    Session,
    ToolReference,
    TrustLevel,
    WorkspaceReference,
    WorkspaceStatus,
    WorkspaceURI,
)

NOTES_DIR = "Notes"


def _make_session_dirs(root: str) -> None:
    os.makedirs(os.path.join(root, NOTES_DIR), exist_ok=True)


class WorkspaceRegistry:
    """Tracks workspaces and session attachments.

    Shared across sessions. Mutations are serialized per session or per
    workspace; resolution only reads and never awaits, so it always sees a
    consistent graph.
    """

    def __init__(self, sessions_root: str):
        """Initialize the registry.

        Args:
            sessions_root: Directory holding one private folder per session
        """
        self.sessions_root = os.path.normpath(os.path.abspath(sessions_root))
        self._sessions: dict[str, Session] = {}
        self._workspaces: dict[str, WorkspaceReference] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def session_root(self, session_id: str) -> str:
        return os.path.join(self.sessions_root, session_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(
        self,
        title: str | None = None,
        tags: list[str] | None = None,
        tools: list[ToolReference] | None = None,
    ) -> Session:
        """Create a session together with its private primary workspace.

        Args:
            title: Optional session title
            tags: Optional session tags
            tools: Tool references exposed by the primary workspace

        Returns:
            The new session
        """
        session_id = _uuid()
        root = self.session_root(session_id)
        await asyncio.to_thread(_make_session_dirs, root)

        workspace = WorkspaceReference(
            uri=WorkspaceURI.for_session(session_id),
            host_type=HostType.SERVER_SESSION,
            owner_id=session_id,
            root_path=root,
            trust_level=TrustLevel.FULL,
            tools=list(tools or []),
        )
        session = Session(
            id=session_id,
            primary_workspace_id=workspace.id,
            title=title,
            tags=list(tags or []),
        )
        # Both records become visible together
        self._workspaces[workspace.id] = workspace
        self._sessions[session.id] = session

        logger.info(f"Created session {session.id} with primary workspace {workspace.uri}")
        return session

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self, include_archived: bool = False) -> list[Session]:
        return [
            s for s in self._sessions.values() if include_archived or not s.is_archived
        ]

    async def archive_session(self, session_id: str) -> Session:
        async with self._locks[session_id]:
            session = self.get_session(session_id)
            session.is_archived = True
            session.updated_at = datetime.now(timezone.utc)
            return session

    async def delete_session(self, session_id: str, remove_files: bool = True) -> None:
        """Delete a session and destroy its primary workspace."""
        async with self._locks[session_id]:
            session = self.get_session(session_id)
            primary = self._workspaces.pop(session.primary_workspace_id, None)
            del self._sessions[session_id]

        self._locks.pop(session_id, None)
        if remove_files and primary and primary.root_path:
            root = primary.root_path
            if os.path.commonpath([self.sessions_root, root]) == self.sessions_root:
                await asyncio.to_thread(shutil.rmtree, root, ignore_errors=True)
        logger.info(f"Deleted session {session_id}")

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    def get_workspace(self, workspace_id: str) -> WorkspaceReference | None:
        return self._workspaces.get(workspace_id)

    def workspaces_for(self, session: Session) -> list[WorkspaceReference]:
        """Existing workspaces of a session, primary first."""
        return [
            self._workspaces[wid] for wid in session.workspace_ids if wid in self._workspaces
        ]

    async def register_workspace(self, workspace: WorkspaceReference) -> WorkspaceReference:
        """Register an attachable workspace (server directory or client project)."""
        if workspace.host_type == HostType.CLIENT and not workspace.owner_id:
            raise ValueError("Client workspaces require an owner_id")
        if workspace.host_type == HostType.SERVER_SESSION:
            root = os.path.normpath(os.path.abspath(workspace.root_path or ""))
            if os.path.commonpath([self.sessions_root, root]) != self.sessions_root:
                raise ValueError(
                    f"Session workspace root must lie under {self.sessions_root}"
                )

        async with self._locks[workspace.id]:
            self._workspaces[workspace.id] = workspace
        logger.info(f"Registered {workspace.host_type.value} workspace {workspace.uri}")
        return workspace

    async def attach_workspace(self, session_id: str, workspace_id: str) -> Session:
        """Attach a workspace; attaching twice is a no-op."""
        async with self._locks[session_id]:
            session = self.get_session(session_id)
            if workspace_id not in self._workspaces:
                raise WorkspaceNotFoundError(workspace_id)
            if workspace_id in session.workspace_ids:
                return session
            session.attached_workspace_ids.append(workspace_id)
            session.updated_at = datetime.now(timezone.utc)
        logger.info(f"Attached workspace {workspace_id} to session {session_id}")
        return session

    async def detach_workspace(self, session_id: str, workspace_id: str) -> Session:
        """Detach a workspace; detaching an unattached one is a no-op."""
        async with self._locks[session_id]:
            session = self.get_session(session_id)
            if workspace_id == session.primary_workspace_id:
                raise ValueError("The primary workspace cannot be detached")
            if workspace_id in session.attached_workspace_ids:
                session.attached_workspace_ids.remove(workspace_id)
                session.updated_at = datetime.now(timezone.utc)
                logger.info(f"Detached workspace {workspace_id} from session {session_id}")
        return session

    async def set_client_status(
        self, owner_id: str, status: WorkspaceStatus
    ) -> list[WorkspaceReference]:
        """Update the status of every client workspace owned by ``owner_id``."""
        changed = []
        for workspace in list(self._workspaces.values()):
            if workspace.host_type != HostType.CLIENT or workspace.owner_id != owner_id:
                continue
            async with self._locks[workspace.id]:
                if workspace.status != status:
                    workspace.status = status
                    changed.append(workspace)
        if changed:
            logger.info(
                f"Marked {len(changed)} workspace(s) of client {owner_id} as {status.value}"
            )
        return changed

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_target(
        self,
        call: ToolCall,
        session: Session,
        explicit_target: str | None = None,
    ) -> WorkspaceReference:
        """Pick the workspace that should execute ``call``.

        An explicit target must exist, belong to the session, be active and
        expose the tool. Otherwise the primary workspace is checked first,
        then attached workspaces in attachment order.

        Raises:
            WorkspaceNotFoundError: Target unknown, not attached or not active
            ToolNotFoundError: No candidate workspace exposes the tool
        """
        target_id = explicit_target or call.target_workspace_id
        if target_id:
            workspace = self._workspaces.get(target_id)
            if workspace is None or target_id not in session.workspace_ids:
                raise WorkspaceNotFoundError(target_id)
            if workspace.status != WorkspaceStatus.ACTIVE:
                raise WorkspaceNotFoundError(target_id, f"is {workspace.status.value}")
            if not workspace.exposes(call.name):
                raise ToolNotFoundError(call.name)
            return workspace

        for workspace_id in session.workspace_ids:
            workspace = self._workspaces.get(workspace_id)
            if workspace is None or not workspace.exposes(call.name):
                continue
            if workspace.status != WorkspaceStatus.ACTIVE:
                raise WorkspaceNotFoundError(workspace.id, f"is {workspace.status.value}")
            return workspace

        raise ToolNotFoundError(call.name)
