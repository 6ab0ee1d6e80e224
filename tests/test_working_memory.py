from datetime import datetime, timedelta

import pytest

from travelmaster.config.models import MemorySettings
from travelmaster.core.messages import Message, MessageRole, ToolCall, validate_message_sequence
from travelmaster.memory.heuristics import score_importance
from travelmaster.memory.working_memory import WorkingMemory


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 5, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def test_importance_scoring():
    assert score_importance(Message.system("sys")) == 1.0
    assert score_importance(Message.user("请帮我预订机票")) == 1.0
    assert score_importance(Message.assistant("好的")) == pytest.approx(0.902)
    assert score_importance(Message.tool("ok", "call_1", "flight_search")) == pytest.approx(0.802)


def test_keyword_bonus_lifts_an_assistant_reply():
    plain = score_importance(Message.assistant("航班信息如下"))
    flagged = score_importance(Message.assistant("请注意：航班信息如下"))

    assert plain == pytest.approx(0.906)
    assert flagged == 1.0


def test_summarizes_oldest_half_at_threshold():
    memory = WorkingMemory(MemorySettings(summarization_threshold=4))
    memory.add_message(Message.system("你是旅行助手"))
    memory.add_messages([
        Message.user("我决定订国航的机票"),
        Message.user("我喜欢住在市中心的酒店"),
        Message.user("第三条"),
        Message.user("第四条"),
    ])

    assert [m.content for m in memory.messages] == ["你是旅行助手", "第三条", "第四条"]
    assert len(memory.summaries) == 1

    summary = memory.summaries[0]
    assert summary.message_count == 2
    assert summary.topics == ["航班预订", "住宿安排"]
    assert "主要决策：我决定订国航的机票" in summary.text
    assert "用户偏好：我喜欢住在市中心的酒店" in summary.text
    assert summary.importance == pytest.approx(0.87)

    # Nothing left to do on a second pass
    assert memory.compact() is False
    assert len(memory.summaries) == 1


def test_summarization_keeps_tool_results_with_their_call():
    memory = WorkingMemory(MemorySettings(summarization_threshold=4))
    call = ToolCall(id="call_1", name="flight_search", arguments={"origin": "上海"})
    memory.add_messages([
        Message.user("查机票"),
        Message.assistant("", [call]),
        Message.tool("¥1200", "call_1", "flight_search"),
        Message.user("好的"),
    ])

    assert [m.role for m in memory.messages] == [MessageRole.USER]
    assert memory.summaries[0].message_count == 3
    validate_message_sequence(memory.context_messages())


def test_newest_tool_call_is_never_cut_off_from_its_results():
    memory = WorkingMemory(MemorySettings(summarization_threshold=4))
    call = ToolCall(id="call_1", name="hotel_search")
    memory.add_messages([Message.user("一"), Message.user("二"), Message.user("三")])
    memory.add_message(Message.assistant("", [call]))
    memory.add_message(Message.tool("每晚¥450", "call_1", "hotel_search"))

    roles = [m.role for m in memory.messages]
    assert roles == [MessageRole.USER, MessageRole.ASSISTANT, MessageRole.TOOL]
    validate_message_sequence(memory.messages)


def test_hard_cap_keeps_system_newest_and_important_messages():
    clock = _Clock()
    memory = WorkingMemory(MemorySettings(max_message_count=10, summarization_threshold=1000), clock=clock)
    memory.add_message(Message.system("你是旅行助手"))
    memory.add_message(Message.user("重要：护照需要确认"))
    for i in range(20):
        clock.advance(seconds=1)
        memory.add_message(Message.assistant(f"消息 {i}"))

    contents = [m.content for m in memory.messages]
    assert len(memory) <= 10
    assert contents[0] == "你是旅行助手"
    assert contents[-1] == "消息 19"
    assert "重要：护照需要确认" in contents


def test_summaries_expire_after_twice_max_age():
    clock = _Clock()
    memory = WorkingMemory(MemorySettings(summarization_threshold=2, max_age_hours=24), clock=clock)
    memory.add_messages([Message.user("一"), Message.user("二")])
    assert len(memory.summaries) == 1

    clock.advance(hours=47)
    assert memory.compact() is False
    clock.advance(hours=2)
    assert memory.compact() is True
    assert memory.summaries == []


def test_retention_score_decays_with_age():
    clock = _Clock()
    memory = WorkingMemory(clock=clock)
    entry = memory.add_message(Message.user("重要：请确认，我喜欢靠窗"))

    assert memory.retention_score(entry) == pytest.approx(1.0)
    clock.advance(hours=12)
    assert memory.retention_score(entry) == pytest.approx(0.85)
    clock.advance(hours=24)
    assert memory.retention_score(entry) == pytest.approx(0.7)


def test_learns_preferences_and_knowledge_from_user_messages():
    memory = WorkingMemory()
    memory.add_message(Message.user("我喜欢美食和博物馆，预算5000，周末去杭州，自由行"))
    memory.add_message(Message.assistant("好的，我去北京看看"))

    assert memory.user_preferences == {"travel_style": "自由行", "interests": ["美食", "历史"]}
    assert memory.knowledge_base == {
        "frequent_destinations": ["杭州"],
        "budget_range": "中等",
        "budget_amount": 5000.0,
        "travel_timing": "周末",
    }


def test_context_messages_insert_background_after_system_prompt():
    memory = WorkingMemory()
    memory.add_message(Message.system("你是旅行助手"))
    memory.add_message(Message.user("下个月去上海"))

    messages = memory.context_messages()
    assert [m.role for m in messages] == [MessageRole.SYSTEM, MessageRole.SYSTEM, MessageRole.USER]
    assert "## 用户画像" in messages[1].content
    assert "上海" in messages[1].content

    context = memory.get_context()
    assert "## 近期对话" in context
    assert "⭐" in context


def test_clear_is_a_partial_reset():
    memory = WorkingMemory(MemorySettings(summarization_threshold=4))
    memory.add_message(Message.system("你是旅行助手"))
    memory.add_messages([
        Message.user("我决定订国航的机票"),
        Message.user("我喜欢住在市中心的酒店，预算1万"),
        Message.user("三"),
        Message.user("四"),
    ])
    assert memory.summaries[0].importance > 0.7

    memory.clear()

    assert [m.content for m in memory.messages] == ["你是旅行助手"]
    assert len(memory.summaries) == 1
    assert memory.knowledge_base["budget_range"] == "高端"
