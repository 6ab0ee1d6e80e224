"""Integrations module - remote language-model access."""

from travelmaster.integrations.llm_gateway import (
    LLMGateway,
    LLMResponse,
    InvalidToolCall,
    TokenUsage,
    function_tool_choice,
)
from travelmaster.integrations.monitor import UsageMonitor, UsageSnapshot

__all__ = [
    "LLMGateway",
    "LLMResponse",
    "InvalidToolCall",
    "TokenUsage",
    "function_tool_choice",
    "UsageMonitor",
    "UsageSnapshot",
]
