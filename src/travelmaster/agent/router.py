"""
Intent Router - Classifies requests into an execution path.

Ordered keyword rules resolve the common cases without a network call;
when none fires, one model call picks a label. Classification failure
never blocks a response: it degrades to casual chat per the configured
policy.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from loguru import logger

from travelmaster.config.models import RouterSettings
from travelmaster.core.messages import Message
from travelmaster.errors import GatewayError, InvalidResponseError

if TYPE_CHECKING:
    from travelmaster.integrations.llm_gateway import LLMGateway


class UserIntent(str, Enum):
    COMPLEX_PLANNING = "complex_planning"
    SINGLE_QUERY = "single_query"
    CASUAL_CHAT = "casual_chat"


@dataclass
class RoutingDecision:
    """Result of intent routing."""
    intent: UserIntent
    source: str  # "rule", "model" or "fallback"
    reasoning: str


CLASSIFY_PROMPT = """请判断下面这条用户消息的意图，只回答以下标签之一：
- complex_planning：需要多步骤的完整旅行规划
- single_query：单一的信息查询（机票、酒店、景点、路线、预算等）
- casual_chat：闲聊或一般性问题

用户消息：{text}

标签："""


class IntentRouter:
    """
    Routes user requests to planning, a single worker, or plain chat.

    Rules, in order:
    1. planning keyword -> complex planning
    2. query verb together with a travel topic -> single query
    3. chat keyword or very short input -> casual chat
    """

    def __init__(
        self,
        gateway: Optional["LLMGateway"] = None,
        settings: Optional[RouterSettings] = None,
    ):
        self.gateway = gateway
        self.settings = settings or RouterSettings()

        self._keyword_mappings: Dict[str, List[str]] = {
            "planning": [
                "规划", "计划", "行程", "帮我安排", "制定方案", "去旅游", "几天游",
                "plan a trip", "itinerary",
            ],
            "query_verbs": ["查", "搜索", "找", "推荐", "有哪些", "多少钱", "search", "find"],
            "query_topics": ["机票", "航班", "酒店", "景点", "路线", "预算", "flight", "hotel"],
            "chat": ["你好", "谢谢", "再见", "怎么样", "是什么", "为什么", "天气", "hello", "thanks"],
        }

        # Worker chosen for a single query, first match wins
        self._worker_topics: List[Tuple[str, List[str]]] = [
            ("flight", ["机票", "航班", "flight"]),
            ("hotel", ["酒店", "住宿", "hotel"]),
            ("route", ["路线", "景点", "route"]),
            ("budget", ["预算", "费用", "budget"]),
        ]

    async def classify(self, text: str) -> UserIntent:
        """Classify a request into one of the three intents."""
        return (await self.route(text)).intent

    async def route(self, text: str) -> RoutingDecision:
        """
        Route a request.

        Args:
            text: Raw user request

        Returns:
            Routing decision with its source
        """
        decision = self.match_rules(text)
        if decision is not None:
            logger.debug(f"Intent {decision.intent.value} by rule: {decision.reasoning}")
            return decision

        if self.gateway is None:
            return RoutingDecision(UserIntent.CASUAL_CHAT, "fallback", "no rule matched and no model configured")

        return await self._classify_with_model(text)

    def match_rules(self, text: str) -> Optional[RoutingDecision]:
        """Apply the keyword rules only; None when no rule fires."""
        message = (text or "").strip()
        lowered = message.lower()

        keyword = self._first_match(lowered, "planning")
        if keyword:
            return RoutingDecision(UserIntent.COMPLEX_PLANNING, "rule", f"planning keyword '{keyword}'")

        verb = self._first_match(lowered, "query_verbs")
        topic = self._first_match(lowered, "query_topics")
        if verb and topic:
            return RoutingDecision(UserIntent.SINGLE_QUERY, "rule", f"query '{verb}' + topic '{topic}'")

        keyword = self._first_match(lowered, "chat")
        if keyword:
            return RoutingDecision(UserIntent.CASUAL_CHAT, "rule", f"chat keyword '{keyword}'")
        if len(message) < self.settings.short_input_chars:
            return RoutingDecision(UserIntent.CASUAL_CHAT, "rule", "short input")

        return None

    def select_worker(self, text: str) -> str:
        """Worker id best suited to answer a single query."""
        lowered = (text or "").lower()
        for worker_id, keywords in self._worker_topics:
            if any(k in lowered for k in keywords):
                return worker_id
        return "general"

    def _first_match(self, lowered: str, group: str) -> Optional[str]:
        for keyword in self._keyword_mappings[group]:
            if keyword in lowered:
                return keyword
        return None

    async def _classify_with_model(self, text: str) -> RoutingDecision:
        policy = self.settings.failure_policy
        messages = [Message.user(CLASSIFY_PROMPT.format(text=text))]

        try:
            answer = (await self.gateway.chat(messages)).strip().lower()
        except GatewayError as e:
            policy.degrade(f"Intent classification failed ({e}); falling back to casual chat", e)
            return RoutingDecision(UserIntent.CASUAL_CHAT, "fallback", f"classifier error: {e}")

        for intent in UserIntent:
            if intent.value in answer:
                return RoutingDecision(intent, "model", f"model answered '{answer[:40]}'")

        policy.degrade(
            f"Unrecognized intent label {answer[:40]!r}; falling back to casual chat",
            InvalidResponseError(f"Unrecognized intent label: {answer[:40]!r}"),
        )
        return RoutingDecision(UserIntent.CASUAL_CHAT, "fallback", "unrecognized label")
