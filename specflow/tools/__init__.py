from .results import ToolResult
from .runtime import CallToolOptions, OrchestratorRuntime, StateBridge
from .schemas import TOOLS

__all__ = ["CallToolOptions", "OrchestratorRuntime", "StateBridge", "TOOLS", "ToolResult"]
