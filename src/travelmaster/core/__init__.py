"""Core primitives shared by every component."""

from travelmaster.core.cancellation import CancellationToken
from travelmaster.core.context import SharedContext
from travelmaster.core.messages import Message, MessageRole, ToolCall, validate_message_sequence

__all__ = [
    "CancellationToken",
    "SharedContext",
    "Message",
    "MessageRole",
    "ToolCall",
    "validate_message_sequence",
]
