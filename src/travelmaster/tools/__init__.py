"""Tools module - tool contract and registry."""

from travelmaster.tools.base import BaseTool, ToolDefinition, ToolResult
from travelmaster.tools.capabilities import WorkerCapability, infer_capabilities
from travelmaster.tools.registry import ToolRegistry

__all__ = [
    "BaseTool",
    "ToolDefinition",
    "ToolResult",
    "ToolRegistry",
    "WorkerCapability",
    "infer_capabilities",
]
