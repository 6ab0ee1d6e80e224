"""
Working Memory - Per-agent conversation store.

Keeps the raw message stream for one agent with importance scoring,
summarization of old history, a hard size cap, and two longer-lived
stores (user preferences and travel knowledge) learned from user messages.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from loguru import logger

from travelmaster.config.models import MemorySettings
from travelmaster.core.messages import Message, MessageRole
from travelmaster.memory.heuristics import (
    PriorityWeights,
    extract_decisions,
    extract_stated_preferences,
    extract_topics,
    learn_knowledge,
    learn_preferences,
    score_importance,
    summary_importance,
)

ROLE_ICONS = {
    MessageRole.SYSTEM: "⚙️",
    MessageRole.USER: "👤",
    MessageRole.ASSISTANT: "🤖",
    MessageRole.TOOL: "🔧",
}


@dataclass
class EnhancedMessage:
    """A stored message with its insertion time and fixed importance."""

    message: Message
    importance: float
    timestamp: datetime

    @property
    def role(self) -> MessageRole:
        return self.message.role


@dataclass
class ConversationSummary:
    """Condensed record of a span of older messages."""

    text: str
    topics: List[str]
    importance: float
    message_count: int
    timestamp: datetime
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "text": self.text,
            "topics": list(self.topics),
            "importance": self.importance,
            "message_count": self.message_count,
        }


class WorkingMemory:
    """
    Conversation memory owned by a single agent.

    Features:
    - Importance scoring at insertion
    - Retention scoring (importance + time decay)
    - Summarization of the oldest half once a threshold is reached
    - Hard cap keeping the best 80% by retention, plus all system messages
    - Preference/knowledge learning that survives `clear()`

    Assistant messages with tool calls and the tool results that answer
    them are kept or dropped together, so the stream always satisfies the
    tool-message ordering rule.
    """

    def __init__(
        self,
        settings: Optional[MemorySettings] = None,
        *,
        weights: Optional[PriorityWeights] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize working memory.

        Args:
            settings: Size, age and summarization limits
            weights: Importance scoring weights
            clock: Time source (injectable for tests)
        """
        self.settings = settings or MemorySettings()
        self.weights = weights or PriorityWeights()
        self._clock = clock

        self._entries: List[EnhancedMessage] = []
        self._summaries: List[ConversationSummary] = []
        self._preferences: Dict[str, Any] = {}
        self._knowledge: Dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def max_age(self) -> timedelta:
        return timedelta(hours=self.settings.max_age_hours)

    @property
    def messages(self) -> List[Message]:
        return [e.message for e in self._entries]

    @property
    def entries(self) -> List[EnhancedMessage]:
        return list(self._entries)

    @property
    def summaries(self) -> List[ConversationSummary]:
        return list(self._summaries)

    @property
    def user_preferences(self) -> Dict[str, Any]:
        return dict(self._preferences)

    @property
    def knowledge_base(self) -> Dict[str, Any]:
        return dict(self._knowledge)

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> EnhancedMessage:
        """Store a message, learn from it, then compact if needed."""
        entry = EnhancedMessage(
            message=message,
            importance=score_importance(message, self.weights),
            timestamp=self._clock(),
        )
        self._entries.append(entry)

        if message.role == MessageRole.USER:
            self._learn(message.content)

        self.compact()
        return entry

    def add_messages(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.add_message(message)

    def compact(self) -> bool:
        """
        Apply expiry, summarization and the hard cap.

        Returns:
            True if anything was removed or summarized
        """
        changed = self._expire_summaries()

        non_system = sum(1 for e in self._entries if e.role != MessageRole.SYSTEM)
        if non_system >= self.settings.summarization_threshold:
            changed = self._summarize_oldest_half() or changed

        if len(self._entries) > self.settings.max_message_count:
            changed = self._enforce_cap() or changed

        return changed

    def clear(self) -> None:
        """
        Partial reset for a new topic.

        System messages and summaries with importance > 0.7 survive;
        preferences and knowledge are untouched.
        """
        self._entries = [e for e in self._entries if e.role == MessageRole.SYSTEM]
        self._summaries = [s for s in self._summaries if s.importance > 0.7]
        logger.debug(
            f"Working memory cleared (kept {len(self._entries)} system messages, "
            f"{len(self._summaries)} summaries)"
        )

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def retention_score(self, entry: EnhancedMessage, now: Optional[datetime] = None) -> float:
        now = now or self._clock()
        age = (now - entry.timestamp).total_seconds()
        decay = max(0.0, 1.0 - age / self.max_age.total_seconds())
        return entry.importance * 0.7 + decay * 0.3

    # ------------------------------------------------------------------
    # Recall
    # ------------------------------------------------------------------

    def get_context(self) -> str:
        """Render summaries, learned profile and recent high-value messages."""
        parts: List[str] = []

        background = self._background_text()
        if background:
            parts.append(background)

        now = self._clock()
        ranked = sorted(self._entries, key=lambda e: self.retention_score(e, now), reverse=True)[:20]
        if ranked:
            lines = ["## 近期对话"]
            for entry in ranked:
                star = " ⭐" if entry.importance > 0.7 else ""
                lines.append(f"{ROLE_ICONS.get(entry.role, '•')} {entry.message.content[:200]}{star}")
            parts.append("\n".join(lines))

        return "\n\n".join(parts)

    def context_messages(self) -> List[Message]:
        """
        Messages to send to the model.

        When summaries or learned facts exist they are added as one system
        message after the leading system messages.
        """
        messages = self.messages
        background = self._background_text()
        if not background:
            return messages

        insert_at = 0
        while insert_at < len(messages) and messages[insert_at].role == MessageRole.SYSTEM:
            insert_at += 1
        return messages[:insert_at] + [Message.system(background)] + messages[insert_at:]

    def _background_text(self) -> str:
        parts: List[str] = []

        important = [s for s in self._summaries if s.importance > 0.5]
        important.sort(key=lambda s: s.timestamp, reverse=True)
        if important:
            lines = ["## 历史对话摘要"]
            lines.extend(f"- {s.text}" for s in important[:3])
            parts.append("\n".join(lines))

        profile = {**self._preferences, **self._knowledge}
        if profile:
            lines = ["## 用户画像"]
            for key, value in profile.items():
                if isinstance(value, list):
                    value = "、".join(str(v) for v in value)
                lines.append(f"- {key}: {value}")
            parts.append("\n".join(lines))

        return "\n\n".join(parts)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _learn(self, content: str) -> None:
        if learn_preferences(content, self._preferences):
            logger.debug(f"Learned preferences: {self._preferences}")
        if learn_knowledge(content, self._knowledge):
            logger.debug(f"Learned knowledge: {self._knowledge}")

    def _expire_summaries(self) -> bool:
        cutoff = self._clock() - self.max_age * 2
        kept = [s for s in self._summaries if s.timestamp >= cutoff]
        expired = len(self._summaries) - len(kept)
        self._summaries = kept
        return expired > 0

    @staticmethod
    def _units(entries: List[EnhancedMessage]) -> List[List[EnhancedMessage]]:
        """Group an assistant tool-call message with the tool results that follow it."""
        units: List[List[EnhancedMessage]] = []
        for entry in entries:
            if entry.role == MessageRole.TOOL and units and units[-1][0].message.tool_calls:
                units[-1].append(entry)
            else:
                units.append([entry])
        return units

    def _summarize_oldest_half(self) -> bool:
        non_system = [e for e in self._entries if e.role != MessageRole.SYSTEM]
        half = len(non_system) // 2
        if half == 0:
            return False

        # Extend the cut over whole units; the newest unit may still be
        # receiving tool results and is never summarized.
        selected: List[EnhancedMessage] = []
        for unit in self._units(non_system)[:-1]:
            if len(selected) >= half:
                break
            selected.extend(unit)
        if not selected:
            return False

        summary = self._build_summary([e.message for e in selected])
        self._summaries.append(summary)

        removed = {id(e) for e in selected}
        self._entries = [e for e in self._entries if id(e) not in removed]

        logger.info(
            f"Summarized {len(selected)} messages (topics={summary.topics}, "
            f"importance={summary.importance:.2f})"
        )
        return True

    def _build_summary(self, messages: List[Message]) -> ConversationSummary:
        topics = extract_topics(messages)
        decisions = extract_decisions(messages)
        preferences = extract_stated_preferences(messages)

        sections = []
        if topics:
            sections.append(f"话题：{', '.join(topics)}")
        if decisions:
            sections.append(f"主要决策：{'; '.join(decisions)}")
        if preferences:
            sections.append(f"用户偏好：{'; '.join(preferences)}")
        text = "\n".join(sections) if sections else f"{len(messages)} 条早期对话"

        return ConversationSummary(
            text=text,
            topics=topics,
            importance=summary_importance(len(topics), len(decisions), len(messages)),
            message_count=len(messages),
            timestamp=self._clock(),
        )

    def _enforce_cap(self) -> bool:
        before = len(self._entries)
        target = int(self.settings.max_message_count * 0.8)

        system_count = sum(1 for e in self._entries if e.role == MessageRole.SYSTEM)
        budget = max(0, target - system_count)

        now = self._clock()
        units = self._units([e for e in self._entries if e.role != MessageRole.SYSTEM])
        if not units:
            return False

        # The newest unit always survives
        newest = units.pop()
        keep = {id(e) for e in newest}
        used = len(newest)

        units.sort(key=lambda u: max(self.retention_score(e, now) for e in u), reverse=True)
        for unit in units:
            if used + len(unit) > budget:
                continue
            keep.update(id(e) for e in unit)
            used += len(unit)

        self._entries = [
            e for e in self._entries
            if e.role == MessageRole.SYSTEM or id(e) in keep
        ]
        dropped = before - len(self._entries)
        if dropped:
            logger.info(f"Working memory over capacity: dropped {dropped} low-retention messages")
        return dropped > 0
