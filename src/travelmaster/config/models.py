"""
Typed settings views over configuration sections.
"""

from enum import Enum
from typing import List

from loguru import logger
from pydantic import BaseModel, Field


class FallbackPolicy(str, Enum):
    """How a component reacts when it has to degrade."""
    SILENT = "silent"
    WARN = "warn"
    RAISE = "raise"

    def degrade(self, message: str, error: Exception) -> None:
        """Log `message` at the policy's level, or raise `error` under RAISE."""
        if self is FallbackPolicy.RAISE:
            raise error
        if self is FallbackPolicy.WARN:
            logger.warning(message)
        else:
            logger.debug(message)


class LLMConfig(BaseModel):
    """Connection, sampling and retry settings for the language-model gateway."""

    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    request_timeout_seconds: float = 120.0

    max_tokens: int = Field(default=4000, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0

    max_retries: int = Field(default=3, ge=0)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=10.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    # USD per 1K tokens
    input_cost_per_1k: float = 0.03
    output_cost_per_1k: float = 0.06

    @classmethod
    def creative(cls, **overrides) -> "LLMConfig":
        return cls(**{"temperature": 0.9, **overrides})

    @classmethod
    def precise(cls, **overrides) -> "LLMConfig":
        return cls(**{"temperature": 0.1, "top_p": 0.9, **overrides})


class MemorySettings(BaseModel):
    max_message_count: int = Field(default=100, gt=0)
    max_age_hours: float = Field(default=24.0, gt=0)
    summarization_threshold: int = Field(default=50, ge=2)


class AgentSettings(BaseModel):
    max_steps: int = Field(default=10, gt=0)
    context_value_max_chars: int = Field(default=1000, gt=0)


class RouterSettings(BaseModel):
    short_input_chars: int = 10
    failure_policy: FallbackPolicy = FallbackPolicy.WARN


class FlowSettings(BaseModel):
    dependent_kinds: List[str] = Field(default_factory=lambda: ["budget"])
    ephemeral_prefixes: List[str] = Field(default_factory=lambda: ["last_"])
    unknown_kind_policy: FallbackPolicy = FallbackPolicy.WARN
