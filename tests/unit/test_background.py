"""
tests/unit/test_background.py - BackgroundTasks
"""

from __future__ import annotations

import asyncio

import pytest
from structlog.testing import capture_logs

from taskforge.agent.background import BackgroundTasks


@pytest.mark.asyncio
class TestBackgroundTasks:

    async def test_spawn_names_task_and_drains(self):
        bg = BackgroundTasks(owner="test")
        done = []

        async def _work():
            await asyncio.sleep(0)
            done.append(True)

        task = bg.spawn(_work(), name="one")
        assert task.get_name() == "test:one"
        assert bg.pending == 1

        await bg.drain()
        assert done == [True]
        assert bg.pending == 0

    async def test_failure_is_logged_not_raised(self):
        bg = BackgroundTasks(owner="test")

        async def _boom():
            raise OSError("disk gone")

        with capture_logs() as logs:
            bg.spawn(_boom(), name="persist")
            await bg.drain()

        failed = [e for e in logs if e["event"] == "background.task_failed"]
        assert len(failed) == 1
        assert failed[0]["task"] == "test:persist"
        assert failed[0]["error_type"] == "OSError"

    async def test_drain_waits_for_nested_spawns(self):
        bg = BackgroundTasks()
        order = []

        async def _child():
            order.append("child")

        async def _parent():
            order.append("parent")
            bg.spawn(_child(), name="child")

        bg.spawn(_parent(), name="parent")
        await bg.drain()
        assert order == ["parent", "child"]

    async def test_cancel_all(self):
        bg = BackgroundTasks(owner="test")
        task = bg.spawn(asyncio.sleep(10), name="slow")

        with capture_logs() as logs:
            bg.cancel_all()
            await bg.drain()

        assert task.cancelled()
        assert any(e["event"] == "background.task_cancelled" for e in logs)
