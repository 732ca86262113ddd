"""
tools/workspace.py - Workspace File Tools

File access for the agent, confined to one workspace directory. Relative
paths resolve against the workspace; anything resolving outside of it is
refused with PermissionError (reported back as a failed tool call).

Registered tools:
  - file_read   → read a text file
  - file_write  → write/overwrite a text file
  - list_dir    → list directory contents
"""

from __future__ import annotations

import json
from pathlib import Path

from taskforge.tools.registry import ToolRegistry

# Refuse to load files larger than this into the LLM context
_MAX_READ_BYTES = 10 * 1024 * 1024
_MAX_LIST_ENTRIES = 500


def _confine(root: Path, path: str) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    if resolved != root and not resolved.is_relative_to(root):
        raise PermissionError(f"Path is outside the workspace: {resolved}")
    return resolved


def register_workspace_tools(registry: ToolRegistry, workspace_dir: str | Path) -> Path:
    """Register the file tools on `registry`, rooted at workspace_dir (created if missing)."""
    root = Path(workspace_dir).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)

    @registry.register(
        name="file_read",
        description="Read the contents of a text file inside the workspace.",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path relative to the workspace"},
                "encoding": {"type": "string", "description": "File encoding (default: utf-8)"},
            },
            "required": ["path"],
        },
    )
    def file_read(path: str, encoding: str = "utf-8") -> str:
        resolved = _confine(root, path)
        if not resolved.is_file():
            raise FileNotFoundError(f"File not found: {resolved}")
        size = resolved.stat().st_size
        if size > _MAX_READ_BYTES:
            return f"[File too large to read directly: {size:,} bytes (limit {_MAX_READ_BYTES:,} bytes)]"
        return resolved.read_text(encoding=encoding)

    @registry.register(
        name="file_write",
        description="Write text to a file inside the workspace, creating parent directories.",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path relative to the workspace"},
                "content": {"type": "string", "description": "Text content to write"},
            },
            "required": ["path", "content"],
        },
    )
    def file_write(path: str, content: str) -> str:
        resolved = _confine(root, path)
        resolved.parent.mkdir(parents=True, exist_ok=True)
        resolved.write_text(content, encoding="utf-8")
        return f"Wrote {len(content)} chars to {resolved.relative_to(root)}"

    @registry.register(
        name="list_dir",
        description="List the entries of a directory inside the workspace.",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory relative to the workspace (default: .)"},
            },
            "required": [],
        },
    )
    def list_dir(path: str = ".") -> str:
        resolved = _confine(root, path)
        if not resolved.is_dir():
            raise NotADirectoryError(f"Not a directory: {resolved}")
        entries = [
            {"name": p.name, "type": "dir" if p.is_dir() else "file"}
            for p in sorted(resolved.iterdir())[:_MAX_LIST_ENTRIES]
        ]
        return json.dumps(entries, indent=2)

    return root
