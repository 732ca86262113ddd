"""
tests/unit/test_tools.py - ToolRegistry + workspace file tools

Covers:
  - registration (decorator + programmatic), descriptors, unregister
  - invoke(): sync/async handlers, schema validation, timeout, handler
    errors, result normalisation and truncation, unknown tool
  - workspace tools confined to their root directory
"""

from __future__ import annotations

import asyncio
import json

import pytest

from taskforge.agent.types import ToolDescriptor, ToolOutcome
from taskforge.exceptions import ToolNotFoundError
from taskforge.tools import ToolRegistry, register_workspace_tools
from taskforge.tools.registry import MAX_RESULT_CHARS


_ECHO_SCHEMA = {
    "type": "object",
    "properties": {"text": {"type": "string"}, "times": {"type": "integer"}},
    "required": ["text"],
}


def _make_registry(timeout_seconds: float = 1.0) -> ToolRegistry:
    registry = ToolRegistry(timeout_seconds=timeout_seconds)

    @registry.register(name="echo", description="Echo text", input_schema=_ECHO_SCHEMA)
    def echo(text: str, times: int = 1) -> str:
        return text * times

    @registry.register(name="aecho", description="Async echo")
    async def aecho(text: str = "") -> dict:
        await asyncio.sleep(0)
        return {"echo": text}

    return registry


# ─────────────────────────────────────────────────────────────────────────────
# Registration
# ─────────────────────────────────────────────────────────────────────────────

class TestRegistration:

    def test_decorator_registers_descriptor(self):
        registry = _make_registry()
        assert registry.list_names() == ["echo", "aecho"]
        assert len(registry) == 2
        echo = registry.list_tools()[0]
        assert isinstance(echo, ToolDescriptor)
        assert echo.input_schema["required"] == ["text"]

    def test_default_schema_is_empty_object(self):
        registry = _make_registry()
        aecho = registry.list_tools()[1]
        assert aecho.input_schema == {"type": "object", "properties": {}, "required": []}

    def test_list_tools_returns_copies(self):
        registry = _make_registry()
        registry.list_tools()[0].input_schema["required"].append("oops")
        assert registry.list_tools()[0].input_schema["required"] == ["text"]

    def test_programmatic_register_and_unregister(self):
        registry = ToolRegistry()
        registry.register_tool(ToolDescriptor(name="noop"), lambda: None)
        assert registry.is_registered("noop")
        assert registry.unregister("noop") is True
        assert registry.unregister("noop") is False
        assert not registry.is_registered("noop")

    def test_repr(self):
        assert "echo" in repr(_make_registry())


# ─────────────────────────────────────────────────────────────────────────────
# Invoke
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestInvoke:

    async def test_sync_handler(self):
        outcome = await _make_registry().invoke("echo", {"text": "ab", "times": 2})
        assert outcome == ToolOutcome(output="abab")

    async def test_async_handler_result_is_json_encoded(self):
        outcome = await _make_registry().invoke("aecho", {"text": "hi"})
        assert outcome.error is None
        assert json.loads(outcome.output) == {"echo": "hi"}

    async def test_none_result_becomes_done(self):
        registry = ToolRegistry()
        registry.register_tool(ToolDescriptor(name="noop"), lambda: None)
        assert (await registry.invoke("noop", {})).output == "Done."

    async def test_unknown_tool_raises(self):
        with pytest.raises(ToolNotFoundError) as exc_info:
            await _make_registry().invoke("nope", {})
        assert exc_info.value.available == ["echo", "aecho"]

    async def test_missing_required_field(self):
        outcome = await _make_registry().invoke("echo", {})
        assert outcome.output is None
        assert outcome.error == "Invalid parameters: Missing required field: 'text'"

    @pytest.mark.parametrize("times", ["2", True])
    async def test_wrong_type_is_rejected(self, times):
        outcome = await _make_registry().invoke("echo", {"text": "a", "times": times})
        assert outcome.error.startswith("Invalid parameters: Field 'times'")

    async def test_handler_exception_becomes_error(self):
        registry = ToolRegistry()

        def broken():
            raise ValueError("nope")

        registry.register_tool(ToolDescriptor(name="broken"), broken)
        outcome = await registry.invoke("broken", {})
        assert outcome.error == "Tool execution failed: ValueError: nope"

    async def test_timeout(self):
        registry = ToolRegistry(timeout_seconds=0.01)

        async def slow():
            await asyncio.sleep(5)

        registry.register_tool(ToolDescriptor(name="slow"), slow)
        outcome = await registry.invoke("slow", {})
        assert "timed out" in outcome.error

    async def test_long_output_is_truncated(self):
        registry = ToolRegistry()
        registry.register_tool(ToolDescriptor(name="big"), lambda: "x" * (MAX_RESULT_CHARS + 10))
        output = (await registry.invoke("big", {})).output
        assert output.startswith("x" * MAX_RESULT_CHARS)
        assert "[Output truncated: 10 chars omitted." in output


# ─────────────────────────────────────────────────────────────────────────────
# Workspace tools
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestWorkspaceTools:

    async def test_write_read_list(self, tmp_path):
        registry = ToolRegistry()
        root = register_workspace_tools(registry, tmp_path / "ws")
        assert root.is_dir()
        assert set(registry.list_names()) == {"file_read", "file_write", "list_dir"}

        wrote = await registry.invoke("file_write", {"path": "notes/a.txt", "content": "hello"})
        assert wrote.error is None
        assert (root / "notes" / "a.txt").read_text() == "hello"

        read = await registry.invoke("file_read", {"path": "notes/a.txt"})
        assert read.output == "hello"

        listing = await registry.invoke("list_dir", {})
        assert json.loads(listing.output) == [{"name": "notes", "type": "dir"}]

    async def test_paths_outside_workspace_are_refused(self, tmp_path):
        (tmp_path / "secret.txt").write_text("s3cret")
        registry = ToolRegistry()
        register_workspace_tools(registry, tmp_path / "ws")

        outcome = await registry.invoke("file_read", {"path": "../secret.txt"})
        assert "PermissionError" in outcome.error

        outcome = await registry.invoke("file_write", {"path": str(tmp_path / "x.txt"), "content": "x"})
        assert "PermissionError" in outcome.error
        assert not (tmp_path / "x.txt").exists()

    async def test_missing_file(self, tmp_path):
        registry = ToolRegistry()
        register_workspace_tools(registry, tmp_path)
        outcome = await registry.invoke("file_read", {"path": "ghost.txt"})
        assert "FileNotFoundError" in outcome.error
