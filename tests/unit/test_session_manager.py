"""
tests/unit/test_session_manager.py - SessionManager lifecycle

Uses the real InMemoryConversationStore and KeywordMemoryProvider with a
canned reasoning service. A gated tool keeps a session running until the
test releases it.
"""

from __future__ import annotations

import asyncio
import json
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from structlog.testing import capture_logs

from taskforge.agent import prompts
from taskforge.agent.events import EventKind
from taskforge.agent.session_manager import SessionManager
from taskforge.agent.types import (
    AgentStatus,
    ExecutionResult,
    ProgressEvent,
    SessionStatus,
    ToolDescriptor,
    ToolOutcome,
)
from taskforge.config.settings import AgentConfig, SessionConfig
from taskforge.exceptions import (
    ConversationNotFoundError,
    SessionNotFoundError,
    SessionTimeoutError,
)
from taskforge.memory.store import InMemoryConversationStore, KeywordMemoryProvider, Role


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_CANNED = {
    prompts.PLANNER_SYSTEM: {
        "estimatedSteps": 2,
        "executionStrategy": "sequential",
        "steps": [
            {"type": "action", "description": "first", "expectedOutcome": "one"},
            {"type": "action", "description": "second", "expectedOutcome": "two"},
        ],
    },
    prompts.REASONER_SYSTEM: {
        "thoughts": [{"type": "analysis", "content": "easy"}],
        "nextAction": "call the tool",
        "confidence": 0.9,
        "reasoning": "it is the only tool",
        "alternatives": [],
    },
    prompts.ACTOR_SYSTEM: {"toolCalls": [{"toolName": "work", "input": {}}]},
    prompts.OBSERVER_SYSTEM: {"observations": ["worked"], "confidence": 0.9},
    prompts.CONCLUSION_SYSTEM: {
        "taskCompletion": {"isCompleted": True},
        "userResponse": "Done.",
        "conclusion": "Done.",
    },
}


def _make_reasoning():
    async def _generate(prompt, options):
        return "```json\n" + json.dumps(_CANNED[options.system_prompt]) + "\n```"

    reasoning = MagicMock()
    reasoning.generate_text = AsyncMock(side_effect=_generate)
    return reasoning


def _make_tools(gate: asyncio.Event = None):
    async def _invoke(name, inp):
        if gate is not None:
            await gate.wait()
        return ToolOutcome(output="ok")

    tools = MagicMock()
    tools.list_tools = MagicMock(return_value=[ToolDescriptor(name="work")])
    tools.invoke = AsyncMock(side_effect=_invoke)
    return tools


def _make_manager(gate=None, memory=None, reasoning=None, **config):
    config.setdefault("enable_reflection", False)
    conversations = InMemoryConversationStore()
    manager = SessionManager(
        reasoning or _make_reasoning(),
        _make_tools(gate),
        memory,
        conversations,
        AgentConfig(**config),
        SessionConfig(max_age_hours=1.0, event_queue_size=64),
    )
    return manager, conversations


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


# ─────────────────────────────────────────────────────────────────────────────
# Start + result
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestStartTask:

    async def test_run_completes_and_result_is_persisted(self):
        manager, conversations = _make_manager()
        cid = conversations.create()

        sid = await manager.start_task("Do the work", "work done", cid)
        result = await manager.wait_for_result(sid, timeout=5)
        await manager.drain()

        assert isinstance(result, ExecutionResult)
        assert result.success is True
        session = manager.get_session(sid)
        assert session.status == SessionStatus.COMPLETED
        assert session.result is result
        assert session.end_time is not None

        messages = conversations.messages(cid)
        assert len(messages) == 1
        assert messages[0].role == Role.ASSISTANT
        assert messages[0].content.startswith("## Task Execution Summary")
        assert "**Execution time**" in messages[0].content

    async def test_start_returns_before_the_run_finishes(self):
        gate = asyncio.Event()
        manager, conversations = _make_manager(gate)
        sid = await manager.start_task("t", "g", conversations.create())

        await _settle()
        assert manager.get_session(sid).is_running
        assert [s.id for s in manager.list_active_sessions()] == [sid]

        gate.set()
        await manager.wait_for_result(sid, timeout=5)
        assert manager.list_active_sessions() == []

    async def test_unknown_conversation_registers_nothing(self):
        manager, _ = _make_manager()
        with pytest.raises(ConversationNotFoundError):
            await manager.start_task("t", "g", "conv_missing")
        assert manager.list_sessions() == []

    async def test_context_carries_history_memory_and_tools(self):
        memory = KeywordMemoryProvider()
        memory.add("deploy notes: restart the worker after deploy")
        memory.add("unrelated gardening tips")
        manager, conversations = _make_manager(memory=memory, memory_snippets=3)
        cid = conversations.create()
        await conversations.append_message(cid, "please deploy", "user")

        sid = await manager.start_task("deploy the worker", "worker deployed", cid)
        context = manager.get_session(sid).context

        assert context.memory == ["deploy notes: restart the worker after deploy"]
        assert [m.content for m in context.conversation_history] == ["please deploy"]
        assert context.tool_names == ["work"]
        assert context.environment["conversation_id"] == cid
        await manager.wait_for_result(sid, timeout=5)

    async def test_memory_disabled_skips_lookup(self):
        memory = MagicMock()
        memory.find_related = AsyncMock(return_value=["x"])
        manager, conversations = _make_manager(memory=memory, enable_memory=False)

        sid = await manager.start_task("t", "g", conversations.create())

        memory.find_related.assert_not_awaited()
        assert manager.get_session(sid).context.memory == []
        await manager.wait_for_result(sid, timeout=5)

    async def test_memory_failure_is_logged_and_ignored(self):
        memory = MagicMock()
        memory.find_related = AsyncMock(side_effect=RuntimeError("index offline"))
        memory.remember = AsyncMock()
        manager, conversations = _make_manager(memory=memory)

        with capture_logs() as logs:
            sid = await manager.start_task("t", "g", conversations.create())

        assert any(e["event"] == "session.memory_lookup_failed" for e in logs)
        result = await manager.wait_for_result(sid, timeout=5)
        assert result.success is True

    async def test_successful_run_is_remembered(self):
        memory = KeywordMemoryProvider()
        manager, conversations = _make_manager(memory=memory)
        cid = conversations.create()

        sid = await manager.start_task("rotate the worker logs", "logs rotated", cid)
        await manager.wait_for_result(sid, timeout=5)
        await manager.drain()

        assert await memory.find_related("rotate logs", k=5) == ["rotate the worker logs: Done."]
        entry = memory._entries[0]
        assert entry.metadata == {"session_id": sid, "conversation_id": cid}

    async def test_failed_run_is_not_remembered(self):
        memory = MagicMock()
        memory.find_related = AsyncMock(return_value=[])
        memory.remember = AsyncMock()
        manager, conversations = _make_manager(memory=memory)
        sid = await manager.start_task("t", "g", conversations.create())
        manager.get_session(sid).engine.execute_task = AsyncMock(side_effect=RuntimeError("kaboom"))

        await manager.wait_for_result(sid, timeout=5)
        await manager.drain()

        memory.remember.assert_not_awaited()

    async def test_engine_crash_becomes_failed_result(self):
        reasoning = _make_reasoning()
        manager, conversations = _make_manager(reasoning=reasoning)
        cid = conversations.create()
        sid = await manager.start_task("t", "g", cid)
        manager.get_session(sid).engine.execute_task = AsyncMock(side_effect=RuntimeError("kaboom"))

        result = await manager.wait_for_result(sid, timeout=5)
        await manager.drain()

        session = manager.get_session(sid)
        assert result.success is False
        assert result.summary == "Task execution failed"
        assert result.metadata["error"]["details"] == "kaboom"
        assert session.status == SessionStatus.FAILED
        assert session.error == "Task execution failed"
        assert len(conversations.messages(cid)) == 1

    async def test_persistence_failure_is_logged_not_raised(self):
        manager, conversations = _make_manager()
        cid = conversations.create()
        sid = await manager.start_task("t", "g", cid)
        conversations.delete(cid)

        with capture_logs() as logs:
            result = await manager.wait_for_result(sid, timeout=5)
            await manager.drain()

        assert result.success is True
        assert manager.get_session(sid).status == SessionStatus.COMPLETED
        failures = [e for e in logs if e["event"] == "background.task_failed"]
        assert len(failures) == 1
        assert failures[0]["task"] == f"sessions:persist:{sid}"


# ─────────────────────────────────────────────────────────────────────────────
# Observation
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestObservation:

    async def test_subscription_ends_with_the_complete_event(self):
        manager, conversations = _make_manager()
        sid = await manager.start_task("t", "g", conversations.create())

        events = [e async for e in manager.subscribe(sid)]

        assert events[-1].kind == EventKind.COMPLETE
        assert isinstance(events[-1].payload, ExecutionResult)
        assert all(e.kind == EventKind.PROGRESS for e in events[:-1])
        assert events[-2].payload.status == AgentStatus.COMPLETED

    async def test_late_subscriber_gets_replay(self):
        manager, conversations = _make_manager()
        sid = await manager.start_task("t", "g", conversations.create())
        await manager.wait_for_result(sid, timeout=5)

        events = [e async for e in manager.subscribe(sid)]
        assert events[-1].kind == EventKind.COMPLETE
        assert [e async for e in manager.subscribe(sid, replay=False)] == []

    async def test_callbacks_sync_and_async(self):
        progress: list[ProgressEvent] = []
        completed: list[ExecutionResult] = []

        async def _on_complete(result):
            completed.append(result)

        manager, conversations = _make_manager()
        sid = await manager.start_task(
            "t", "g", conversations.create(),
            on_progress=progress.append,
            on_complete=_on_complete,
        )
        result = await manager.wait_for_result(sid, timeout=5)
        await manager.drain()

        assert completed == [result]
        assert progress and all(isinstance(p, ProgressEvent) for p in progress)

    async def test_failing_callback_is_logged(self):
        def _explode(event):
            raise ValueError("bad handler")

        manager, conversations = _make_manager()
        with capture_logs() as logs:
            sid = await manager.start_task("t", "g", conversations.create(), on_complete=_explode)
            result = await manager.wait_for_result(sid, timeout=5)
            await manager.drain()

        assert result.success is True
        failed = [e for e in logs if e["event"] == "session.callback_failed"]
        assert len(failed) == 1
        assert failed[0]["kind"] == "complete"

    async def test_wait_timeout_leaves_run_going(self):
        gate = asyncio.Event()
        manager, conversations = _make_manager(gate)
        sid = await manager.start_task("t", "g", conversations.create())

        with pytest.raises(SessionTimeoutError) as exc_info:
            await manager.wait_for_result(sid, timeout=0.05)
        assert exc_info.value.session_id == sid
        assert manager.get_session(sid).is_running

        gate.set()
        result = await manager.wait_for_result(sid, timeout=5)
        assert result.success is True

    async def test_unknown_session(self):
        manager, _ = _make_manager()
        with pytest.raises(SessionNotFoundError):
            await manager.wait_for_result("sess_nope")
        with pytest.raises(SessionNotFoundError):
            manager.subscribe("sess_nope")
        assert manager.get_session("sess_nope") is None


# ─────────────────────────────────────────────────────────────────────────────
# Stop / delete / cleanup
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSessionControl:

    async def test_stop_keeps_status_stopped(self):
        gate = asyncio.Event()
        manager, conversations = _make_manager(gate)
        cid = conversations.create()
        sid = await manager.start_task("t", "g", cid)
        await _settle()

        assert manager.stop_session(sid) is True
        assert manager.stop_session(sid) is False
        gate.set()
        result = await manager.wait_for_result(sid, timeout=5)
        await manager.drain()

        assert manager.get_session(sid).status == SessionStatus.STOPPED
        assert result.success is False
        assert result.metadata["stopped"] is True
        assert conversations.messages(cid) == []

    async def test_stop_unknown_or_finished(self):
        manager, conversations = _make_manager()
        assert manager.stop_session("sess_nope") is False
        sid = await manager.start_task("t", "g", conversations.create())
        await manager.wait_for_result(sid, timeout=5)
        assert manager.stop_session(sid) is False

    async def test_delete(self):
        manager, conversations = _make_manager()
        sid = await manager.start_task("t", "g", conversations.create())
        await manager.wait_for_result(sid, timeout=5)

        assert manager.delete_session(sid) is True
        assert manager.get_session(sid) is None
        assert manager.delete_session(sid) is False

    async def test_cleanup_expired_sessions(self):
        manager, conversations = _make_manager()
        cid = conversations.create()
        old = await manager.start_task("t", "g", cid)
        fresh = await manager.start_task("t", "g", cid)
        await manager.wait_for_result(old, timeout=5)
        await manager.wait_for_result(fresh, timeout=5)
        manager.get_session(old).start_time = time.time() - 7200

        assert manager.cleanup_expired_sessions() == 1
        assert [s.id for s in manager.list_sessions()] == [fresh]
        assert manager.cleanup_expired_sessions(max_age_seconds=0) == 1
        assert manager.list_sessions() == []

    async def test_session_stats(self):
        gate = asyncio.Event()
        manager, conversations = _make_manager(gate)
        cid = conversations.create()
        running = await manager.start_task("t", "g", cid)
        stopped = await manager.start_task("t", "g", cid)
        await _settle()
        manager.stop_session(stopped)

        stats = manager.session_stats()
        assert stats == {"total": 2, "running": 1, "completed": 0, "failed": 0, "stopped": 1}

        gate.set()
        await manager.wait_for_result(running, timeout=5)
        assert manager.session_stats()["completed"] == 1

    async def test_summary_has_agent_progress(self):
        manager, conversations = _make_manager()
        sid = await manager.start_task("t", "g", conversations.create())
        await manager.wait_for_result(sid, timeout=5)

        summary = manager.get_session(sid).summary()
        assert summary["status"] == "completed"
        assert summary["agent_status"] == "completed"
        assert summary["progress"] == 100.0
        assert summary["total_steps"] == 2
        assert summary["success"] is True

    async def test_restart_and_shutdown(self):
        gate = asyncio.Event()
        manager, conversations = _make_manager(gate)
        sid = await manager.start_task("t", "g", conversations.create())
        await _settle()
        run = manager.get_session(sid).run_task

        gate.set()
        await manager.shutdown(timeout=5)

        assert manager.list_sessions() == []
        assert run.done()

    async def test_shutdown_cancels_stuck_runs(self):
        gate = asyncio.Event()
        manager, conversations = _make_manager(gate)
        sid = await manager.start_task("t", "g", conversations.create())
        await _settle()
        session = manager.get_session(sid)

        await manager.shutdown(timeout=0.05)

        assert session.run_task.cancelled()
        assert session.result_future.done()
        assert session.result.success is False


class TestConfig:

    def test_update_config_applies_to_new_sessions(self):
        manager, _ = _make_manager()
        updated = manager.update_config(max_retries=1)
        assert updated.max_retries == 1
        assert manager.config.max_retries == 1

    def test_update_config_rejects_bad_input(self):
        manager, _ = _make_manager()
        with pytest.raises(ValueError):
            manager.update_config(nonsense=1)
        with pytest.raises(ValueError):
            manager.update_config(max_steps=0)
        assert manager.config.max_steps == 20
