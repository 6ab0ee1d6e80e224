"""Built-in tools available to every agent."""

from travelmaster.tools.builtin.terminate import TERMINATE_TOOL_NAME, TerminateTool

__all__ = ["TERMINATE_TOOL_NAME", "TerminateTool"]
