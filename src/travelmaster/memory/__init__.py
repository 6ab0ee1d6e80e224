"""Memory module - per-agent working memory."""

from travelmaster.memory.heuristics import PriorityWeights, score_importance
from travelmaster.memory.working_memory import (
    ConversationSummary,
    EnhancedMessage,
    WorkingMemory,
)

__all__ = [
    "ConversationSummary",
    "EnhancedMessage",
    "PriorityWeights",
    "WorkingMemory",
    "score_importance",
]
