"""
Agentic conversation loop for one session.

A user turn is driven by a background worker task that pushes ``TurnEvent``s
onto a queue; ``run_turn`` yields them as they arrive. The worker alternates
between generating (context assembly, prompt composition, streamed model
output) and executing the tool calls the model requested, until the model
answers without tool calls, the turn limit is reached or the turn is
cancelled.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import AsyncIterator, Callable

from loguru import logger

from ..config import LoopConfig
from ..context.assembler import ContextAssembler, TagGenerator
from ..errors import ErrorKind, MaxTurnsExceededError, SessionBusyError
from ..llm.provider import ModelProvider, StreamAccumulator
from ..models import Message, Role, ToolCall, ToolResult
from ..tools.loop_detector import LoopDetector
from ..tools.registry import ToolRegistry, ToolSnapshot
from ..tools.router import ToolRouter
from ..workspace.models import Session
from ..workspace.registry import WorkspaceRegistry
from .events import USER_FACING_FAILURE, TurnEvent, TurnEventType, TurnOutcome
from .job_queue import Job, JobQueue

Emit = Callable[[TurnEvent], None]

# Failures surfaced to the user as an error event in addition to the
# tool message the model sees.
_SURFACED_KINDS = {ErrorKind.SANDBOX_VIOLATION}


class LoopState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    TOOL_EXECUTING = "tool_executing"
    CANCELLED = "cancelled"


class ConversationLoop:
    """Drives generation and tool execution for one session.

    At most one turn runs at a time. The loop owns the session's message
    history, loop detector and tool snapshot; none of them are shared with
    other sessions.
    """

    def __init__(
        self,
        session: Session,
        assembler: ContextAssembler,
        provider: ModelProvider,
        router: ToolRouter,
        workspaces: WorkspaceRegistry,
        tools: ToolRegistry,
        config: LoopConfig | None = None,
        loop_detector: LoopDetector | None = None,
        job_queue: JobQueue | None = None,
        tag_generator: TagGenerator | None = None,
        recall_limit: int | None = None,
    ):
        self.session = session
        self.assembler = assembler
        self.provider = provider
        self.router = router
        self.workspaces = workspaces
        self.tools = tools
        self.config = config or LoopConfig()
        self.loop_detector = loop_detector or LoopDetector()
        self.job_queue = job_queue or JobQueue(session.id)
        self.tag_generator = tag_generator
        self.recall_limit = recall_limit

        self.history: list[Message] = []
        self.state = LoopState.IDLE
        self.tool_snapshot = ToolSnapshot()
        self._task: asyncio.Task | None = None
        self._cancel_requested = False
        self._accumulator: StreamAccumulator | None = None
        self._active_job: Job | None = None
        self._turn = 0

    @property
    def is_busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def refresh_tools(self) -> ToolSnapshot:
        """Re-read the tools exposed by the session's active workspaces."""
        self.tool_snapshot = self.tools.snapshot(self.workspaces.workspaces_for(self.session))
        return self.tool_snapshot

    async def run_turn(self, user_message: str) -> AsyncIterator[TurnEvent]:
        """Run one user turn, yielding events until it completes.

        Args:
            user_message: Text the user sent

        Yields:
            TurnEvent: Lifecycle events; the last one is ``turn_completed``

        Raises:
            SessionBusyError: A turn is already running for this session
        """
        if self.is_busy:
            raise SessionBusyError(self.session.id)

        queue: asyncio.Queue[TurnEvent | None] = asyncio.Queue()
        self._cancel_requested = False
        task = asyncio.create_task(self._run(user_message, queue.put_nowait))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        self._task = task

        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            if not task.done():
                # Consumer went away; stop the worker with it
                self._cancel_requested = True
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            if self.state not in (LoopState.IDLE, LoopState.CANCELLED):
                self._preserve_partial()
                self.state = LoopState.CANCELLED

    def cancel(self) -> bool:
        """Cancel the running turn. Returns False when no turn is running."""
        if not self.is_busy:
            return False
        logger.info(f"Cancelling turn in session {self.session.id}")
        self._cancel_requested = True
        self._task.cancel()
        return True

    async def wait_idle(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self, user_message: str, emit: Emit) -> None:
        self._turn = 0
        try:
            outcome = await self._drive(user_message, emit)
        except asyncio.CancelledError:
            self._preserve_partial()
            self.state = LoopState.CANCELLED
            self._finish_job(TurnOutcome.CANCELLED)
            emit(self._event(TurnEventType.TURN_COMPLETED, outcome=TurnOutcome.CANCELLED.value))
            if not self._cancel_requested:
                raise
            return
        except Exception as e:
            logger.exception(f"Turn failed in session {self.session.id}")
            self._preserve_partial()
            emit(
                self._event(
                    TurnEventType.ERROR,
                    kind=ErrorKind.EXECUTION_FAILED.value,
                    message=USER_FACING_FAILURE,
                    detail=str(e),
                )
            )
            outcome = TurnOutcome.FAILED

        self._finish_job(outcome)
        self.state = LoopState.IDLE
        emit(self._event(TurnEventType.TURN_COMPLETED, outcome=outcome.value))

    async def _drive(self, user_message: str, emit: Emit) -> TurnOutcome:
        self.loop_detector.reset()
        self.history.append(Message(role=Role.USER, content=user_message))
        query = user_message
        # Memories stay recalled for the question the turn is answering
        recall_query = user_message
        generations = 0
        loop_detected = False

        while True:
            if generations >= self.config.max_turns:
                error = MaxTurnsExceededError(self.config.max_turns)
                logger.warning(f"Session {self.session.id}: {error}")
                emit(
                    self._event(
                        TurnEventType.ERROR,
                        kind=error.kind.value,
                        message=USER_FACING_FAILURE,
                        detail=str(error),
                    )
                )
                return TurnOutcome.MAX_TURNS_EXCEEDED

            generations += 1
            self._turn += 1
            calls = await self._generate(query, recall_query, emit)

            if not calls:
                job = None
                if self.config.auto_continue and not loop_detected:
                    job = self._next_job()
                if job is None:
                    return TurnOutcome.COMPLETED
                logger.info(f"Auto-continuing session {self.session.id} with job {job.id}")
                self.loop_detector.reset()
                query = recall_query = job.as_prompt()
                self.history.append(Message(role=Role.USER, content=query))
                generations = 0
                continue

            results = await self._execute_tools(calls, emit)
            if any(r.error_kind == ErrorKind.LOOP_DETECTED for r in results):
                loop_detected = True
            # Follow-up generations answer from history; no new query
            query = ""

    async def _generate(self, query: str, recall_query: str, emit: Emit) -> list[ToolCall]:
        self.state = LoopState.GENERATING
        # The pending user message is rendered as the query section
        history = self.history[:-1] if query else list(self.history)

        context = await self.assembler.gather_context(
            recall_query, history, self.recall_limit, self.tag_generator
        )
        definitions = list(self.refresh_tools().definitions)
        prompt = await self.assembler.build_prompt(
            query, history, context, definitions, self.config.system_instructions
        )
        emit(
            self._event(
                TurnEventType.GENERATION_STARTED,
                prompt_tokens=prompt.total_tokens,
                memories=len(context.memories),
                notes=len(context.notes),
            )
        )

        accumulator = StreamAccumulator()
        self._accumulator = accumulator
        async for delta in self.provider.stream_completion(prompt, definitions):
            accumulator.feed(delta)
            if delta.content:
                emit(self._event(TurnEventType.CONTENT_DELTA, text=delta.content))
            if delta.done:
                break

        message = accumulator.to_message()
        self._accumulator = None
        if message.content or message.tool_calls:
            self.history.append(message)
        return message.tool_calls

    async def _execute_tools(self, calls: list[ToolCall], emit: Emit) -> list[ToolResult]:
        self.state = LoopState.TOOL_EXECUTING
        for call in calls:
            emit(
                self._event(
                    TurnEventType.TOOL_CALL_REQUESTED,
                    tool_call=call.model_dump(mode="json"),
                )
            )

        async def run(call: ToolCall) -> ToolResult:
            emit(
                self._event(
                    TurnEventType.TOOL_EXECUTION_ATTEMPTING,
                    tool_call_id=call.id,
                    name=call.name,
                )
            )
            return await self.router.execute(call, self.session, self.loop_detector)

        results = await asyncio.gather(*(run(call) for call in calls))

        # Fold results back in the order the model requested them
        for call, result in zip(calls, results):
            self.history.append(
                Message(
                    role=Role.TOOL,
                    content=result.render(),
                    tool_call_id=call.id,
                    name=call.name,
                )
            )
            if result.success:
                emit(
                    self._event(
                        TurnEventType.TOOL_EXECUTION_SUCCEEDED,
                        tool_call_id=call.id,
                        name=call.name,
                        output=result.output,
                    )
                )
                continue
            kind = result.error_kind.value if result.error_kind else None
            emit(
                self._event(
                    TurnEventType.TOOL_EXECUTION_FAILED,
                    tool_call_id=call.id,
                    name=call.name,
                    error=result.error,
                    error_kind=kind,
                )
            )
            if result.error_kind in _SURFACED_KINDS:
                emit(
                    self._event(
                        TurnEventType.ERROR,
                        kind=kind,
                        message=USER_FACING_FAILURE,
                        detail=result.error,
                    )
                )
        return list(results)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _preserve_partial(self) -> None:
        accumulator, self._accumulator = self._accumulator, None
        if accumulator is None or not accumulator.raw_content.strip():
            return
        self.history.append(accumulator.to_message(truncated=True))
        logger.debug(f"Kept partial assistant message in session {self.session.id}")

    def _next_job(self) -> Job | None:
        if self._active_job is not None:
            self.job_queue.complete(self._active_job.id)
            self._active_job = None
        job = self.job_queue.dequeue()
        self._active_job = job
        return job

    def _finish_job(self, outcome: TurnOutcome) -> None:
        job, self._active_job = self._active_job, None
        if job is None:
            return
        if outcome == TurnOutcome.COMPLETED:
            self.job_queue.complete(job.id)
        elif outcome == TurnOutcome.CANCELLED:
            self.job_queue.cancel(job.id)
        else:
            self.job_queue.fail(job.id, outcome.value)

    def _event(self, event_type: TurnEventType, **data) -> TurnEvent:
        return TurnEvent(type=event_type, session_id=self.session.id, turn=self._turn, data=data)
