"""
tools/registry.py - Tool Registry

In-process ToolCatalog. Tools register a handler (sync or async) together
with a ToolDescriptor, either through the decorator or programmatically:

    registry = ToolRegistry()

    @registry.register(
        name="file_read",
        description="Read a text file",
        input_schema={
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
        },
    )
    async def file_read(path: str) -> str:
        ...

invoke() validates the input against the declared schema, runs the handler
under a timeout and returns a ToolOutcome. Handler failures come back as
ToolOutcome.error; only an unknown tool name raises (ToolNotFoundError).
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from typing import Any, Callable, Optional

from taskforge.agent.interfaces import ToolCatalog
from taskforge.agent.types import ToolDescriptor, ToolOutcome
from taskforge.exceptions import ToolNotFoundError
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

# Max output size handed back to the agent; truncated beyond this
MAX_RESULT_CHARS = 8_000

DEFAULT_TIMEOUT_SECONDS = 30.0

_JSON_TYPE_MAP: dict[str, type | tuple] = {
    "string":  str,
    "integer": int,
    "number":  (int, float),
    "boolean": bool,
    "array":   list,
    "object":  dict,
}


class ToolRegistry(ToolCatalog):
    """Maps tool names to descriptors and handlers. Not designed for concurrent writes."""

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self._descriptors: dict[str, ToolDescriptor] = {}
        self._handlers: dict[str, Callable] = {}

    def register(
        self,
        name: str,
        description: str,
        input_schema: Optional[dict[str, Any]] = None,
    ) -> Callable:
        def decorator(fn: Callable) -> Callable:
            fields: dict[str, Any] = {"name": name, "description": description}
            if input_schema is not None:
                fields["input_schema"] = input_schema
            self.register_tool(ToolDescriptor(**fields), fn)
            return fn

        return decorator

    def register_tool(self, descriptor: ToolDescriptor, handler: Callable) -> None:
        """Programmatic registration (alternative to the decorator)."""
        self._descriptors[descriptor.name] = descriptor
        self._handlers[descriptor.name] = handler
        log.debug("tool.registered", tool=descriptor.name)

    def unregister(self, name: str) -> bool:
        self._handlers.pop(name, None)
        return self._descriptors.pop(name, None) is not None

    def is_registered(self, name: str) -> bool:
        return name in self._descriptors

    def list_names(self) -> list[str]:
        return list(self._descriptors)

    # ── ToolCatalog ───────────────────────────────────────────────────────────

    def list_tools(self) -> list[ToolDescriptor]:
        return [d.model_copy(deep=True) for d in self._descriptors.values()]

    async def invoke(self, name: str, input: dict[str, Any]) -> ToolOutcome:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise ToolNotFoundError(name, self.list_names())

        arguments = dict(input or {})
        validation_error = _validate_args(arguments, descriptor.input_schema)
        if validation_error:
            log.warning("tool.invalid_input", tool=name, error=validation_error)
            return ToolOutcome(error=f"Invalid parameters: {validation_error}")

        handler = self._handlers[name]
        start_ms = time.monotonic() * 1000
        try:
            raw = await asyncio.wait_for(_call(handler, arguments), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            log.error("tool.timeout", tool=name, timeout_seconds=self.timeout_seconds)
            return ToolOutcome(error=f"Tool '{name}' timed out after {self.timeout_seconds}s")
        except Exception as e:
            log.error(
                "tool.execution_error",
                tool=name,
                error=str(e),
                duration_ms=round(time.monotonic() * 1000 - start_ms, 1),
            )
            return ToolOutcome(error=f"Tool execution failed: {type(e).__name__}: {e}")

        content = _truncate(_normalise_result(raw), MAX_RESULT_CHARS)
        log.info(
            "tool.success",
            tool=name,
            duration_ms=round(time.monotonic() * 1000 - start_ms, 1),
            result_chars=len(content),
        )
        return ToolOutcome(output=content)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __repr__(self) -> str:
        return f"<ToolRegistry tools={self.list_names()}>"


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


async def _call(handler: Callable, arguments: dict[str, Any]) -> Any:
    result = handler(**arguments)
    if inspect.isawaitable(result):
        result = await result
    return result


def _validate_args(arguments: dict, schema: dict) -> Optional[str]:
    """
    Check required fields and the declared JSON Schema types of the
    provided values. Returns an error string, or None when valid.
    """
    for field in schema.get("required", []):
        if field not in arguments:
            return f"Missing required field: '{field}'"

    properties = schema.get("properties", {})
    for field, value in arguments.items():
        json_type = (properties.get(field) or {}).get("type")
        expected = _JSON_TYPE_MAP.get(json_type) if json_type else None
        if expected is None:
            continue
        # bool is a subclass of int
        if json_type in ("integer", "number") and isinstance(value, bool):
            return f"Field '{field}': expected {json_type}, got boolean"
        if not isinstance(value, expected):
            return f"Field '{field}': expected {json_type}, got {type(value).__name__}"
    return None


def _normalise_result(result: Any) -> str:
    if result is None:
        return "Done."
    if isinstance(result, str):
        return result
    if isinstance(result, (dict, list)):
        try:
            return json.dumps(result, indent=2, default=str)
        except (TypeError, ValueError):
            return str(result)
    return str(result)


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return (
        text[:max_chars]
        + f"\n\n[Output truncated: {len(text) - max_chars} chars omitted. "
        f"Total: {len(text)} chars]"
    )
