"""
Terminate tool - lets the model end its think-act loop explicitly.
"""

from travelmaster.tools.base import BaseTool, ToolDefinition, ToolResult
from travelmaster.tools.capabilities import WorkerCapability

TERMINATE_TOOL_NAME = "terminate"


class TerminateTool(BaseTool):
    """Signals that the current task is finished."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=TERMINATE_TOOL_NAME,
            description="当任务已经完成或无法继续时调用，结束当前任务。",
            parameters={
                "type": "object",
                "properties": {
                    "status": {
                        "type": "string",
                        "description": "任务结束状态",
                        "enum": ["success", "failure"],
                    },
                },
            },
            capabilities=[WorkerCapability.GENERAL],
        )

    async def execute(self, **kwargs) -> ToolResult:
        status = self.get_string(kwargs, "status", "success")
        return ToolResult.ok(f"任务结束，状态：{status}", status=status)
