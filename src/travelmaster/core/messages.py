"""
Conversation messages exchanged between agents, memory and the gateway.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from travelmaster.errors import MessageOrderError


class MessageRole(str, Enum):
    """Role of a message author."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}


@dataclass
class MessageMetadata:
    """
    Protocol metadata attached to a message.

    Assistant messages carry `tool_calls`; tool messages carry the
    `tool_call_id` / `tool_name` they answer.
    """

    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None


@dataclass
class Message:
    """A single message in a conversation."""

    role: MessageRole
    content: str
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Optional[MessageMetadata] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCall]] = None) -> "Message":
        metadata = MessageMetadata(tool_calls=list(tool_calls)) if tool_calls else None
        return cls(role=MessageRole.ASSISTANT, content=content or "", metadata=metadata)

    @classmethod
    def tool(cls, content: str, tool_call_id: str, tool_name: str) -> "Message":
        return cls(
            role=MessageRole.TOOL,
            content=content,
            metadata=MessageMetadata(tool_call_id=tool_call_id, tool_name=tool_name),
        )

    @property
    def tool_calls(self) -> List[ToolCall]:
        return list(self.metadata.tool_calls) if self.metadata else []

    @property
    def tool_call_id(self) -> Optional[str]:
        return self.metadata.tool_call_id if self.metadata else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data: Dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.metadata:
            data["metadata"] = {
                "tool_calls": [c.to_dict() for c in self.metadata.tool_calls],
                "tool_call_id": self.metadata.tool_call_id,
                "tool_name": self.metadata.tool_name,
            }
        return data


def validate_message_sequence(messages: Iterable[Message]) -> None:
    """
    Check the tool-message ordering invariant.

    Every tool message must sit in the run of tool messages directly after
    an assistant message that declared its `tool_call_id`, and each declared
    id may be answered once.

    Raises:
        MessageOrderError: On the first violation found
    """
    open_ids: Set[str] = set()
    for index, message in enumerate(messages):
        if message.role == MessageRole.TOOL:
            call_id = message.tool_call_id
            if not call_id or call_id not in open_ids:
                raise MessageOrderError(
                    f"Tool message at position {index} (call id {call_id!r}) "
                    "does not follow a matching assistant tool call"
                )
            open_ids.discard(call_id)
        elif message.role == MessageRole.ASSISTANT:
            open_ids = {call.id for call in message.tool_calls}
        else:
            open_ids = set()
