import json

import pytest

from fixtures.scripted_llm import ScriptedGateway
from fixtures.travel_tools import FlightSearchTool, HotelSearchTool
from travelmaster.agent.synthesis_agent import SynthesisAgent, parse_hybrid_response, summarize_context
from travelmaster.agent.workers import GENERAL_WORKER, WORKER_SPECS, create_default_workers
from travelmaster.core.context import SharedContext
from travelmaster.errors import ApiError, ExecutionFailedError
from travelmaster.tools.builtin.terminate import TerminateTool
from travelmaster.tools.capabilities import WorkerCapability
from travelmaster.tools.registry import ToolRegistry

PLAN_JSON = json.dumps(
    {
        "message": "北京三日游方案已生成",
        "plan_data": {"budget_status": "预算充足", "itinerary": ["第一天：故宫"], "weather": "晴"},
        "thoughts": "机票加酒店低于预算",
    },
    ensure_ascii=False,
)


def test_parse_hybrid_response_with_code_fence():
    parsed = parse_hybrid_response(f"```json\n{PLAN_JSON}\n```")

    assert parsed.message == "北京三日游方案已生成"
    assert parsed.plan_data.budget_status == "预算充足"
    assert parsed.plan_data.itinerary == ["第一天：故宫"]
    assert parsed.plan_data.model_dump()["weather"] == "晴"


def test_parse_hybrid_response_falls_back_to_text():
    parsed = parse_hybrid_response("直接给你一段文字建议")
    assert parsed.message == "直接给你一段文字建议"
    assert parsed.plan_data is None

    assert parse_hybrid_response('{"plan_data": {}}').message == '{"plan_data": {}}'


def test_summarize_context_lists_results_and_costs():
    ctx = SharedContext({
        "task_flight_result": "CA1234 ¥1200",
        "extracted_flight_cost": 1200.0,
        "user_budget": 5000.0,
        "last_flight_search_result": "raw",
    })

    text = summarize_context(ctx)

    assert "### flight\nCA1234 ¥1200" in text
    assert "- extracted_flight_cost: ¥1200" in text
    assert "- user_budget: ¥5000" in text
    assert "raw" not in text


@pytest.mark.asyncio
async def test_synthesis_agent_sends_context_and_parses_answer():
    gateway = ScriptedGateway(chat_steps=[PLAN_JSON])
    agent = SynthesisAgent(gateway)

    response = await agent.synthesize("帮我规划北京三天游", SharedContext({"task_hotel_result": "每晚¥450"}))

    assert response.message == "北京三日游方案已生成"
    system, user = gateway.chat_calls[0]
    assert "JSON" in system.content
    assert user.content.startswith("用户请求：帮我规划北京三天游")
    assert "每晚¥450" in user.content


@pytest.mark.asyncio
async def test_synthesis_gateway_error_is_wrapped():
    agent = SynthesisAgent(ScriptedGateway(chat_steps=[ApiError("bad key")]))

    with pytest.raises(ExecutionFailedError):
        await agent.synthesize("请求", SharedContext())
    assert agent.last_response is None


def test_default_workers_get_domain_tools():
    registry = ToolRegistry()
    registry.register_all([FlightSearchTool(), HotelSearchTool(), TerminateTool()])

    workers = create_default_workers(ScriptedGateway(), registry)

    assert set(workers) == set(WORKER_SPECS)
    assert workers[GENERAL_WORKER].allowed_tools is None
    assert workers["flight"].allowed_tools == {"flight_search", "terminate"}
    assert workers["hotel"].allowed_tools == {"hotel_search", "terminate"}
    assert "flight_search" not in workers["budget"].allowed_tools
    assert workers["budget"].is_capable_of(WorkerCapability.BUDGET_PLANNING)
    assert workers["flight"].memory.messages[0].content == WORKER_SPECS["flight"].system_prompt
