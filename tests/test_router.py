import pytest

from fixtures.scripted_llm import ScriptedGateway
from travelmaster.agent.router import IntentRouter, UserIntent
from travelmaster.config.models import FallbackPolicy, RouterSettings
from travelmaster.errors import InvalidResponseError, NetworkError

AMBIGUOUS = "请介绍一下比利时的文化背景和风俗习惯吧"


@pytest.mark.parametrize(
    "text, intent",
    [
        ("帮我规划北京三天游，预算5000", UserIntent.COMPLEX_PLANNING),
        ("下周去成都的行程怎么安排", UserIntent.COMPLEX_PLANNING),
        ("查一下上海到北京的机票", UserIntent.SINGLE_QUERY),
        ("推荐几家杭州西湖边的酒店", UserIntent.SINGLE_QUERY),
        ("你好", UserIntent.CASUAL_CHAT),
        ("北京今天天气适合出门吗，会不会下雨", UserIntent.CASUAL_CHAT),
        ("嗯", UserIntent.CASUAL_CHAT),
    ],
)
def test_keyword_rules(text, intent):
    decision = IntentRouter().match_rules(text)
    assert decision is not None
    assert decision.intent == intent
    assert decision.source == "rule"


def test_no_rule_for_ambiguous_text():
    assert IntentRouter().match_rules(AMBIGUOUS) is None


@pytest.mark.asyncio
async def test_without_gateway_falls_back_to_chat():
    decision = await IntentRouter().route(AMBIGUOUS)
    assert decision.intent == UserIntent.CASUAL_CHAT
    assert decision.source == "fallback"


@pytest.mark.asyncio
async def test_model_classifies_when_no_rule_fires():
    gateway = ScriptedGateway(chat_steps=["single_query"])
    router = IntentRouter(gateway)

    decision = await router.route(AMBIGUOUS)

    assert decision.intent == UserIntent.SINGLE_QUERY
    assert decision.source == "model"
    assert AMBIGUOUS in gateway.chat_calls[0][0].content


@pytest.mark.asyncio
async def test_rules_skip_the_model():
    gateway = ScriptedGateway(chat_steps=["casual_chat"])
    assert await IntentRouter(gateway).classify("帮我规划行程") == UserIntent.COMPLEX_PLANNING
    assert gateway.chat_calls == []


@pytest.mark.asyncio
async def test_classifier_failure_degrades_to_chat():
    gateway = ScriptedGateway(chat_steps=[NetworkError("connection reset")])
    decision = await IntentRouter(gateway).route(AMBIGUOUS)

    assert decision.intent == UserIntent.CASUAL_CHAT
    assert decision.source == "fallback"


@pytest.mark.asyncio
async def test_classifier_failure_raises_under_raise_policy():
    gateway = ScriptedGateway(chat_steps=[NetworkError("connection reset")])
    router = IntentRouter(gateway, RouterSettings(failure_policy=FallbackPolicy.RAISE))

    with pytest.raises(NetworkError):
        await router.route(AMBIGUOUS)


@pytest.mark.asyncio
async def test_unrecognized_label():
    gateway = ScriptedGateway(chat_steps=["不知道"])
    assert await IntentRouter(gateway).classify(AMBIGUOUS) == UserIntent.CASUAL_CHAT

    strict = IntentRouter(gateway, RouterSettings(failure_policy=FallbackPolicy.RAISE))
    with pytest.raises(InvalidResponseError):
        await strict.classify(AMBIGUOUS)


@pytest.mark.parametrize(
    "text, worker",
    [
        ("查一下明天的航班", "flight"),
        ("找个便宜的酒店", "hotel"),
        ("故宫附近有哪些景点", "route"),
        ("这次旅行费用大概多少", "budget"),
        ("推荐一本书", "general"),
    ],
)
def test_select_worker(text, worker):
    assert IntentRouter().select_worker(text) == worker
