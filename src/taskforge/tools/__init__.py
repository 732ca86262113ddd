from taskforge.tools.registry import ToolRegistry
from taskforge.tools.workspace import register_workspace_tools

__all__ = ["ToolRegistry", "register_workspace_tools"]
