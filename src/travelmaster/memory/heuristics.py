"""
Keyword heuristics for working memory.

Pure functions: importance scoring, summary extraction and the
preference/knowledge learners. Keyword lists are tuned for Chinese travel
conversations with a few English equivalents.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from travelmaster.core.amounts import parse_budget_amount
from travelmaster.core.messages import Message, MessageRole

ACTION_KEYWORDS = ("预订", "确认", "book", "confirm")
IMPORTANT_KEYWORDS = ("重要", "注意", "important")
PREFERENCE_KEYWORDS = ("偏好", "喜欢", "prefer")

TOPIC_KEYWORDS = {
    "航班预订": ("航班", "机票"),
    "住宿安排": ("酒店", "住宿"),
    "行程规划": ("路线", "景点"),
    "预算管理": ("预算", "费用"),
}

DECISION_KEYWORDS = ("决定", "选择")
PREFERENCE_STATEMENT_KEYWORDS = ("喜欢", "偏好")

INTEREST_GROUPS = {
    "美食": ("美食", "小吃", "餐厅"),
    "历史": ("历史", "古迹", "博物馆"),
    "自然": ("自然", "风景", "爬山", "海边"),
    "购物": ("购物", "商场"),
    "娱乐": ("娱乐", "游乐园", "酒吧"),
}

DESTINATIONS = ("北京", "上海", "广州", "深圳", "杭州", "成都", "西安", "重庆")


@dataclass(frozen=True)
class PriorityWeights:
    base: float = 0.5
    system: float = 0.8
    user: float = 0.6
    assistant: float = 0.4
    other: float = 0.3
    action: float = 0.3
    important: float = 0.3
    preference: float = 0.2

    def for_role(self, role: MessageRole) -> float:
        if role == MessageRole.SYSTEM:
            return self.system
        if role == MessageRole.USER:
            return self.user
        if role == MessageRole.ASSISTANT:
            return self.assistant
        return self.other


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(k in lowered for k in keywords)


def score_importance(message: Message, weights: PriorityWeights = PriorityWeights()) -> float:
    """Importance in [0, 1], computed once at insertion."""
    content = message.content or ""
    score = weights.base + weights.for_role(message.role)

    if _contains_any(content, ACTION_KEYWORDS):
        score += weights.action
    if _contains_any(content, IMPORTANT_KEYWORDS):
        score += weights.important
    if _contains_any(content, PREFERENCE_KEYWORDS):
        score += weights.preference

    score += min(len(content) / 1000, 0.2)
    return max(0.0, min(1.0, score))


def extract_topics(messages: Iterable[Message]) -> List[str]:
    topics: List[str] = []
    for message in messages:
        for topic, keywords in TOPIC_KEYWORDS.items():
            if topic not in topics and _contains_any(message.content, keywords):
                topics.append(topic)
    return topics


def extract_decisions(messages: Iterable[Message]) -> List[str]:
    decisions = []
    for message in messages:
        if _contains_any(message.content, DECISION_KEYWORDS):
            text = message.content
            decisions.append(text[:100] + "..." if len(text) > 100 else text)
    return decisions


def extract_stated_preferences(messages: Iterable[Message]) -> List[str]:
    stated = []
    for message in messages:
        if message.role == MessageRole.USER and _contains_any(message.content, PREFERENCE_STATEMENT_KEYWORDS):
            text = message.content
            stated.append(text[:50] + "..." if len(text) > 50 else text)
    return stated


def summary_importance(topic_count: int, decision_count: int, message_count: int) -> float:
    score = (
        0.5
        + min(topic_count * 0.1, 0.3)
        + min(decision_count * 0.15, 0.4)
        + min(message_count * 0.01, 0.2)
    )
    return min(score, 1.0)


def learn_preferences(content: str, preferences: Dict[str, Any]) -> bool:
    """Update `preferences` in place from one user message. Returns True if changed."""
    before = dict(preferences)

    if "自由行" in content:
        preferences["travel_style"] = "自由行"
    elif "跟团" in content:
        preferences["travel_style"] = "跟团游"

    if "经济" in content:
        preferences["budget_preference"] = "经济型"
    elif "豪华" in content:
        preferences["budget_preference"] = "豪华型"

    interests: List[str] = list(preferences.get("interests", []))
    for interest, keywords in INTEREST_GROUPS.items():
        if interest not in interests and _contains_any(content, keywords):
            interests.append(interest)
    if interests:
        preferences["interests"] = interests

    return preferences != before


def _budget_range(amount: Optional[float], content: str) -> Optional[str]:
    if amount is not None:
        if amount < 3000:
            return "经济"
        if amount < 10000:
            return "中等"
        return "高端"
    if "万" in content:
        return "高端"
    if "千" in content:
        return "中等"
    return None


def learn_knowledge(content: str, knowledge: Dict[str, Any]) -> bool:
    """Update `knowledge` in place from one user message. Returns True if changed."""
    before = dict(knowledge)

    destinations: List[str] = list(knowledge.get("frequent_destinations", []))
    for city in DESTINATIONS:
        if city in content and city not in destinations:
            destinations.append(city)
    if destinations:
        knowledge["frequent_destinations"] = destinations

    if "预算" in content:
        amount = parse_budget_amount(content)
        budget_range = _budget_range(amount, content)
        if budget_range:
            knowledge["budget_range"] = budget_range
        if amount is not None:
            knowledge["budget_amount"] = amount

    if "周末" in content:
        knowledge["travel_timing"] = "周末"
    elif "假期" in content or "长假" in content:
        knowledge["travel_timing"] = "长假期"

    return knowledge != before
