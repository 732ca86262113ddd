"""
agent/session_manager.py - Session Registry

Owns every task session in the process. One SessionManager is constructed
by the host (kernel/bootstrap.py, or a test) and passed where needed; there
is no module-level instance.

Lifecycle of a session:
  start_task()      resolve conversation → memory + tool catalogue →
                    ExecutionContext → AgentEngine → launched as a task
  running           engine publishes progress/error events to the
                    session's EventStream
  finished          exactly one ExecutionResult (a crash becomes a failed
                    result), published as the `complete` event, then the
                    result summary is persisted to the conversation in the
                    background

Status is one of running | completed | failed | stopped. A stopped session
stays stopped even when its engine finishes afterwards.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Callable, Optional

from taskforge.agent.background import BackgroundTasks
from taskforge.agent.engine import AgentEngine
from taskforge.agent.events import EventKind, EventStream, EventSubscription
from taskforge.agent.interfaces import (
    ConversationStore,
    MemoryProvider,
    ReasoningService,
    ToolCatalog,
)
from taskforge.agent.synthesizer import build_result_message, failed_execution_result
from taskforge.agent.types import (
    ExecutionContext,
    ExecutionResult,
    SessionStatus,
    new_id,
)
from taskforge.config.settings import AgentConfig, SessionConfig
from taskforge.exceptions import (
    ConversationNotFoundError,
    SessionNotFoundError,
    SessionTimeoutError,
)
from taskforge.observability.logger import bind_session, clear_session, get_logger

log = get_logger(__name__)

Callback = Callable[[Any], Any]


class Session:
    """One task run plus the handles needed to observe and stop it."""

    def __init__(
        self,
        session_id: str,
        task: str,
        goal: str,
        conversation_id: str,
        context: ExecutionContext,
        engine: AgentEngine,
        stream: EventStream,
    ):
        self.id = session_id
        self.task = task
        self.goal = goal
        self.conversation_id = conversation_id
        self.context = context
        self.engine = engine
        self.stream = stream
        self.status = SessionStatus.RUNNING
        self.start_time = time.time()
        self.end_time: Optional[float] = None
        self.result: Optional[ExecutionResult] = None
        self.error: Optional[str] = None
        self.run_task: Optional[asyncio.Task] = None
        self._result: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def is_running(self) -> bool:
        return self.status == SessionStatus.RUNNING

    @property
    def result_future(self) -> asyncio.Future:
        return self._result

    def summary(self) -> dict:
        state = self.engine.state
        end = self.end_time or time.time()
        return {
            "session_id": self.id,
            "task": self.task,
            "goal": self.goal,
            "conversation_id": self.conversation_id,
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_seconds": round(end - self.start_time, 2),
            "agent_id": state.id if state else None,
            "agent_status": state.status.value if state else None,
            "progress": state.progress if state else 0.0,
            "current_step": state.current_step if state else 0,
            "total_steps": state.total_steps if state else 0,
            "success": self.result.success if self.result else None,
            "error": self.error,
        }

    def __repr__(self) -> str:
        return f"<Session id={self.id} status={self.status.value} task={self.task[:40]!r}>"


class SessionManager:

    def __init__(
        self,
        reasoning: ReasoningService,
        tools: ToolCatalog,
        memory: Optional[MemoryProvider],
        conversations: ConversationStore,
        config: AgentConfig,
        session_config: Optional[SessionConfig] = None,
    ):
        self._reasoning = reasoning
        self._tools = tools
        self._memory = memory
        self._conversations = conversations
        self._config = config.model_copy(deep=True)
        self._session_config = session_config or SessionConfig()
        self._sessions: dict[str, Session] = {}
        self._background = BackgroundTasks(owner="sessions")

    # ─────────────────────────────────────────────────────────────────────────
    # Start
    # ─────────────────────────────────────────────────────────────────────────

    async def start_task(
        self,
        task: str,
        goal: str,
        conversation_id: str,
        on_progress: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
        on_complete: Optional[Callback] = None,
    ) -> str:
        """
        Start a task and return its session id without waiting for it.

        Raises ConversationNotFoundError before anything is registered when
        the conversation doesn't exist.
        """
        conversation = await self._conversations.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)

        config = self._config
        snippets: list[Any] = []
        if config.enable_memory and self._memory is not None:
            try:
                snippets = list(await self._memory.find_related(task, config.memory_snippets))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("session.memory_lookup_failed", error=str(e), error_type=type(e).__name__)

        context = ExecutionContext(
            task=task,
            goal=goal,
            available_tools=self._tools.list_tools(),
            memory=snippets,
            conversation_history=_conversation_history(conversation),
            environment={"conversation_id": conversation_id, "timestamp": time.time()},
        )

        session_id = new_id("sess")
        stream = EventStream(session_id, self._session_config.event_queue_size)
        engine = AgentEngine(self._reasoning, self._tools, config, events=stream)
        session = Session(session_id, task, goal, conversation_id, context, engine, stream)
        self._sessions[session_id] = session

        if on_progress or on_error or on_complete:
            self._background.spawn(
                self._dispatch(stream.subscribe(), on_progress, on_error, on_complete),
                name=f"dispatch:{session_id}",
            )
        session.run_task = asyncio.create_task(self._run(session), name=f"session:{session_id}")

        log.info(
            "session.started",
            session_id=session_id,
            conversation_id=conversation_id,
            tools=len(context.available_tools),
            memory_snippets=len(snippets),
        )
        return session_id

    async def _run(self, session: Session) -> None:
        bind_session(session.id)
        try:
            try:
                result = await session.engine.execute_task(session.task, session.goal, session.context)
            except asyncio.CancelledError:
                self._finish(session, failed_execution_result(
                    "session cancelled", metadata={"session_id": session.id}
                ))
                raise
            except Exception as e:
                log.error(
                    "session.run_failed",
                    session_id=session.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result = failed_execution_result(str(e), metadata={"session_id": session.id})

            self._finish(session, result)
            if session.status != SessionStatus.STOPPED:
                self._background.spawn(self._persist(session, result), name=f"persist:{session.id}")
        finally:
            clear_session()

    def _finish(self, session: Session, result: ExecutionResult) -> None:
        if session.result is not None:
            return
        session.result = result
        session.end_time = time.time()
        if session.status != SessionStatus.STOPPED:
            session.status = SessionStatus.COMPLETED if result.success else SessionStatus.FAILED
            if not result.success:
                session.error = result.summary

        if not session.stream.closed:
            session.stream.publish(EventKind.COMPLETE, result)
            session.stream.close()
        if not session.result_future.done():
            session.result_future.set_result(result)

        log.info(
            "session.finished",
            session_id=session.id,
            status=session.status.value,
            success=result.success,
            error_count=result.error_count,
            duration_ms=result.execution_time_ms,
        )

    async def _persist(self, session: Session, result: ExecutionResult) -> None:
        await self._conversations.append_message(
            session.conversation_id, build_result_message(result), "assistant"
        )
        log.debug("session.result_persisted", session_id=session.id)
        if result.success and self._memory is not None and session.engine.config.enable_memory:
            await self._memory.remember(
                _memory_text(session, result),
                {"session_id": session.id, "conversation_id": session.conversation_id},
            )

    async def _dispatch(
        self,
        subscription: EventSubscription,
        on_progress: Optional[Callback],
        on_error: Optional[Callback],
        on_complete: Optional[Callback],
    ) -> None:
        callbacks = {
            EventKind.PROGRESS: on_progress,
            EventKind.ERROR: on_error,
            EventKind.COMPLETE: on_complete,
        }
        async for event in subscription:
            callback = callbacks[event.kind]
            if callback is None:
                continue
            try:
                outcome = callback(event.payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(
                    "session.callback_failed",
                    session_id=event.session_id,
                    kind=event.kind.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    # ─────────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────────

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def list_active_sessions(self) -> list[Session]:
        return [s for s in self._sessions.values() if s.is_running]

    def session_stats(self) -> dict[str, int]:
        stats = {"total": len(self._sessions)}
        for status in SessionStatus:
            stats[status.value] = sum(1 for s in self._sessions.values() if s.status == status)
        return stats

    def subscribe(self, session_id: str, replay: bool = True) -> EventSubscription:
        return self._require(session_id).stream.subscribe(replay=replay)

    async def wait_for_result(self, session_id: str, timeout: Optional[float] = None) -> ExecutionResult:
        """
        Wait for the session's result. On timeout raises SessionTimeoutError;
        the run itself keeps going.
        """
        session = self._require(session_id)
        try:
            return await asyncio.wait_for(asyncio.shield(session.result_future), timeout)
        except asyncio.TimeoutError:
            raise SessionTimeoutError(session_id, timeout) from None

    # ─────────────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────────────

    def stop_session(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None or not session.is_running:
            return False
        session.engine.stop()
        session.status = SessionStatus.STOPPED
        session.end_time = time.time()
        log.info("session.stopped", session_id=session_id)
        return True

    def delete_session(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        if session.is_running:
            self.stop_session(session_id)
        del self._sessions[session_id]
        log.info("session.deleted", session_id=session_id)
        return True

    def cleanup_expired_sessions(self, max_age_seconds: Optional[float] = None) -> int:
        """Remove sessions older than max_age_seconds, whatever their status."""
        if max_age_seconds is None:
            max_age_seconds = self._session_config.max_age_hours * 3600
        cutoff = time.time() - max_age_seconds
        expired = [sid for sid, s in self._sessions.items() if s.start_time < cutoff]
        for sid in expired:
            self.delete_session(sid)
        if expired:
            log.info("session.cleanup", removed=len(expired), remaining=len(self._sessions))
        return len(expired)

    @property
    def config(self) -> AgentConfig:
        return self._config.model_copy(deep=True)

    def update_config(self, **changes: Any) -> AgentConfig:
        """Applies to sessions started afterwards; running engines keep their copy."""
        unknown = sorted(set(changes) - set(AgentConfig.model_fields))
        if unknown:
            raise ValueError(f"Unknown agent config keys: {unknown}")
        self._config = AgentConfig.model_validate({**self._config.model_dump(), **changes})
        log.info("session.config_updated", changes=sorted(changes))
        return self.config

    def restart(self) -> int:
        """Stop every running session and clear the registry."""
        stopped = sum(1 for sid in list(self._sessions) if self.stop_session(sid))
        self._sessions.clear()
        log.info("session.restart", stopped=stopped)
        return stopped

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        runs = [s.run_task for s in self._sessions.values() if s.run_task and not s.run_task.done()]
        self.restart()
        if runs:
            _, still_running = await asyncio.wait(runs, timeout=timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
        await self._background.drain()
        log.info("session.shutdown", runs=len(runs))

    async def drain(self) -> None:
        """Wait for pending persistence and callback dispatch."""
        await self._background.drain()

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session


def _memory_text(session: Session, result: ExecutionResult) -> str:
    conclusion = (result.task_conclusion or {}).get("conclusion")
    outcome = str(conclusion).strip() if conclusion else "completed"
    return f"{session.task}: {outcome}"


def _conversation_history(conversation: Any) -> list[Any]:
    if isinstance(conversation, dict):
        messages = conversation.get("messages")
    else:
        messages = getattr(conversation, "messages", None)
    return list(messages) if isinstance(messages, (list, tuple)) else []
