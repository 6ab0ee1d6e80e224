"""Configuration loading and typed settings."""

from travelmaster.config.manager import ConfigManager
from travelmaster.config.models import (
    AgentSettings,
    FallbackPolicy,
    FlowSettings,
    LLMConfig,
    MemorySettings,
    RouterSettings,
)

__all__ = [
    "ConfigManager",
    "AgentSettings",
    "FallbackPolicy",
    "FlowSettings",
    "LLMConfig",
    "MemorySettings",
    "RouterSettings",
]
