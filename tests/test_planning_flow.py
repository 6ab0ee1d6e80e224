import asyncio
import json

import pytest

from fixtures.scripted_llm import ScriptedGateway
from travelmaster.agent.base import BaseAgent
from travelmaster.agent.planning_flow import (
    FlowStatus,
    PlanningFlow,
    TaskKind,
    TaskStatus,
    parse_tasks,
)
from travelmaster.agent.synthesis_agent import SynthesisAgent
from travelmaster.config.models import FallbackPolicy, FlowSettings
from travelmaster.errors import (
    ExecutionFailedError,
    ExecutionTimeoutError,
    FlowCancelledError,
    FlowError,
    InvalidConfigurationError,
    TaskExecutionFailedError,
    WorkerNotFoundError,
)
from travelmaster.tools.capabilities import WorkerCapability

DECOMPOSITION = """1. [flight] 搜索上海到北京的往返机票
2. [hotel] 查找北京王府井附近的酒店
3. [route] 规划北京三日游路线
4. [budget] 计算总预算"""

SYNTHESIS = json.dumps({"message": "北京三日游方案", "plan_data": {"budget_status": "充足"}}, ensure_ascii=False)


class _FakeWorker(BaseAgent):
    """Answers with a fixed reply and optionally writes context keys."""

    def __init__(self, name, capabilities, reply="完成", *, log=None, writes=None, error=None, gate=None):
        super().__init__(name, f"fake {name}", capabilities)
        self.reply = reply
        self.log = log if log is not None else []
        self.writes = writes or {}
        self.error = error
        self.gate = gate
        self.requests = []
        self.started = asyncio.Event()

    async def _execute(self, request, cancel_token):
        self.requests.append(request)
        self.log.append(self.name)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        for key, value in self.writes.items():
            self._shared_context.set(key, value)
        return self.reply


def _workers(log, **overrides):
    workers = {
        "general": _FakeWorker("general", [WorkerCapability.GENERAL, WorkerCapability.TEXT_GENERATION], DECOMPOSITION, log=log),
        "flight": _FakeWorker(
            "flight",
            [WorkerCapability.FLIGHT_SEARCH],
            "推荐CA1234，往返¥1200",
            log=log,
            writes={"flight_choice": "CA1234", "last_flight_search_result": "raw tool output"},
        ),
        "hotel": _FakeWorker("hotel", [WorkerCapability.HOTEL_BOOKING], "王府井酒店每晚¥450", log=log),
        "route": _FakeWorker("route", [WorkerCapability.ROUTE_PLANNING], "第一天故宫，第二天长城", log=log),
        "budget": _FakeWorker("budget", [WorkerCapability.BUDGET_PLANNING], "总计¥3000，预算充足", log=log),
    }
    workers.update(overrides)
    return workers


def _flow(workers, settings=None, synthesis_steps=(SYNTHESIS,)):
    return PlanningFlow(
        primary_agent=workers["general"],
        agents=workers,
        synthesis_agent=SynthesisAgent(ScriptedGateway(chat_steps=list(synthesis_steps))),
        settings=settings,
    )


def test_parse_tasks_reads_kind_and_description():
    tasks = parse_tasks("1. [flight] 搜索北京到上海的航班\n2. [budget] 计算预算")

    assert [(t.id, t.kind, t.description, t.assigned_worker) for t in tasks] == [
        ("task_1", TaskKind.FLIGHT, "搜索北京到上海的航班", "flight"),
        ("task_2", TaskKind.BUDGET, "计算预算", "budget"),
    ]
    assert all(t.status == TaskStatus.PENDING for t in tasks)


def test_parse_tasks_sends_unknown_lines_to_general():
    tasks = parse_tasks("1. [cruise] 预订邮轮\n\n- 整理签证材料\n3、[Hotel] 订酒店")

    assert [(t.kind, t.description) for t in tasks] == [
        (TaskKind.GENERAL, "预订邮轮"),
        (TaskKind.GENERAL, "整理签证材料"),
        (TaskKind.HOTEL, "订酒店"),
    ]
    assert [t.id for t in tasks] == ["task_1", "task_2", "task_3"]

    with pytest.raises(InvalidConfigurationError):
        parse_tasks("1. [cruise] 预订邮轮", FallbackPolicy.RAISE)


@pytest.mark.asyncio
async def test_flow_runs_dependent_tasks_after_independent_ones():
    log = []
    workers = _workers(log)
    flow = _flow(workers)

    result = await flow.execute("帮我规划北京三天游，预算5000")

    assert result.success
    assert result.output == "北京三日游方案"
    assert result.tasks_completed == 4
    assert result.metadata["partial"] is False
    assert result.metadata["structured"]["plan_data"]["budget_status"] == "充足"
    assert log[0] == "general"
    assert set(log[1:4]) == {"flight", "hotel", "route"}
    assert log[4] == "budget"
    assert flow.status == FlowStatus.COMPLETED

    budget_request = workers["budget"].requests[0]
    assert budget_request.startswith("计算总预算\n\n已知费用信息：")
    assert "- 机票（flight）: ¥1200" in budget_request
    assert "- 住宿（hotel）: ¥450" in budget_request
    assert "- 已知费用合计: ¥1650" in budget_request
    assert "- 用户预算: ¥5000" in budget_request


@pytest.mark.asyncio
async def test_shared_context_merges_worker_changes_but_not_last_keys():
    workers = _workers([])
    flow = _flow(workers)

    result = await flow.execute("帮我规划北京三天游，预算5000")
    context = result.metadata["context"]

    assert context["flight_choice"] == "CA1234"
    assert "last_flight_search_result" not in context
    assert context["extracted_flight_cost"] == 1200.0
    assert context["extracted_hotel_cost"] == 450.0
    assert context["extracted_total_cost"] == 1650.0
    assert context["user_budget"] == 5000.0
    assert context["task_budget_result"] == "总计¥3000，预算充足"
    assert "extracted_budget_cost" not in context
    assert "extracted_route_cost" not in context


@pytest.mark.asyncio
async def test_failed_parallel_task_gives_partial_result():
    workers = _workers([], hotel=_FakeWorker(
        "hotel", [WorkerCapability.HOTEL_BOOKING], error=ExecutionFailedError("hotel backend down"),
    ))
    flow = _flow(workers)

    result = await flow.execute("帮我规划北京三天游")

    assert result.success
    assert result.tasks_completed == 3
    assert result.metadata["partial"] is True
    assert result.metadata["failed_tasks"] == ["task_2"]
    assert "extracted_hotel_cost" not in result.metadata["context"]


@pytest.mark.asyncio
async def test_tasks_on_one_worker_after_a_failure_are_skipped():
    general = _FakeWorker(
        "general",
        [WorkerCapability.GENERAL, WorkerCapability.TEXT_GENERATION],
        "1. [flight] 去程机票\n2. [flight] 返程机票\n3. [hotel] 订酒店",
    )
    workers = _workers([], general=general, flight=_FakeWorker(
        "flight", [WorkerCapability.FLIGHT_SEARCH], error=ExecutionFailedError("no flights"),
    ))
    flow = _flow(workers)

    result = await flow.execute("规划行程")

    statuses = {t["id"]: (t["status"], t["error"]) for t in result.metadata["tasks"]}
    assert statuses["task_1"][0] == "failed"
    assert statuses["task_2"] == ("failed", "skipped after task_1 failed on worker 'flight'")
    assert statuses["task_3"][0] == "completed"
    assert len(workers["flight"].requests) == 1


@pytest.mark.asyncio
async def test_dependent_task_failure_fails_the_flow():
    workers = _workers([], budget=_FakeWorker(
        "budget", [WorkerCapability.BUDGET_PLANNING], error=ExecutionFailedError("calculator down"),
    ))
    flow = _flow(workers)

    with pytest.raises(ExecutionTimeoutError):
        await flow.execute("帮我规划北京三天游")

    assert flow.status == FlowStatus.FAILED
    assert "task_4" in flow.failure_reason
    assert len(flow.shared_context) == 0


@pytest.mark.asyncio
async def test_no_completed_task_fails_the_flow():
    general = _FakeWorker("general", [WorkerCapability.GENERAL, WorkerCapability.TEXT_GENERATION], "1. [route] 规划路线")
    workers = _workers([], general=general, route=_FakeWorker(
        "route", [WorkerCapability.ROUTE_PLANNING], error=ExecutionFailedError("map down"),
    ))

    with pytest.raises(TaskExecutionFailedError):
        await _flow(workers).execute("规划行程")


@pytest.mark.asyncio
async def test_missing_worker_is_rejected_before_execution():
    log = []
    workers = _workers(log)
    del workers["hotel"]
    flow = _flow(workers)

    with pytest.raises(WorkerNotFoundError) as exc_info:
        await flow.execute("帮我规划北京三天游")

    assert exc_info.value.worker_id == "hotel"
    assert log == ["general"]
    assert flow.status == FlowStatus.FAILED


@pytest.mark.asyncio
async def test_worker_without_required_capability_is_rejected():
    workers = _workers([], route=_FakeWorker("route", [WorkerCapability.GENERAL]))

    with pytest.raises(InvalidConfigurationError):
        await _flow(workers).execute("帮我规划北京三天游")


@pytest.mark.asyncio
async def test_empty_decomposition_runs_request_as_general_task():
    general = _FakeWorker("general", [WorkerCapability.GENERAL, WorkerCapability.TEXT_GENERATION], "   ")
    workers = _workers([], general=general)

    result = await _flow(workers).execute("随便聊聊旅行")

    assert result.tasks_completed == 1
    assert general.requests[1] == "随便聊聊旅行"


@pytest.mark.asyncio
async def test_synthesis_failure_fails_the_flow():
    from travelmaster.errors import ApiError

    flow = _flow(_workers([]), synthesis_steps=(ApiError("bad key"),))

    with pytest.raises(TaskExecutionFailedError, match="synthesis"):
        await flow.execute("帮我规划北京三天游")
    assert flow.status == FlowStatus.FAILED


@pytest.mark.asyncio
async def test_budget_can_be_configured_as_independent():
    log = []
    flow = _flow(_workers(log), FlowSettings(dependent_kinds=[]))

    await flow.execute("帮我规划北京三天游")

    assert "已知费用信息" not in flow.agents["budget"].requests[0]


@pytest.mark.asyncio
async def test_cancel_stops_the_flow_and_discards_results():
    gate = asyncio.Event()
    flight = _FakeWorker("flight", [WorkerCapability.FLIGHT_SEARCH], "¥1200", gate=gate)
    workers = _workers([], flight=flight)
    flow = _flow(workers)

    assert flow.cancel() is False

    running = asyncio.ensure_future(flow.execute("帮我规划北京三天游"))
    await asyncio.wait_for(flight.started.wait(), timeout=1)

    assert flow.running
    assert flow.get_progress().total == 4
    with pytest.raises(FlowError):
        await flow.execute("另一个请求")

    assert flow.cancel("user stop") is True
    gate.set()

    with pytest.raises(FlowCancelledError, match="user stop"):
        await running

    assert flow.status == FlowStatus.CANCELLED
    assert flow.tasks == []
    assert len(flow.shared_context) == 0
    assert workers["budget"].requests == []


@pytest.mark.asyncio
async def test_progress_after_completion():
    flow = _flow(_workers([]))
    assert flow.get_progress().percentage == 0.0

    await flow.execute("帮我规划北京三天游")

    progress = flow.get_progress()
    assert progress.completed == progress.total == 4
    assert progress.percentage == 100.0
    assert progress.current_task is None


@pytest.mark.asyncio
async def test_unexpected_worker_exception_is_a_task_failure():
    workers = _workers([], flight=_FakeWorker(
        "flight", [WorkerCapability.FLIGHT_SEARCH], error=RuntimeError("boom"),
    ))
    flow = _flow(workers)

    result = await flow.execute("帮我规划北京三天游")

    assert result.success
    assert result.metadata["failed_tasks"] == ["task_1"]
    assert result.metadata["tasks"][0]["error"] == "RuntimeError: boom"
    assert flow.status == FlowStatus.COMPLETED

    workers["flight"].error = None
    again = await flow.execute("帮我规划北京三天游")
    assert again.metadata["partial"] is False


@pytest.mark.asyncio
async def test_unexpected_exception_outside_workers_leaves_flow_failed():
    general = _FakeWorker(
        "general", [WorkerCapability.GENERAL, WorkerCapability.TEXT_GENERATION], DECOMPOSITION,
        error=RuntimeError("boom"),
    )
    flow = _flow(_workers([], general=general))

    with pytest.raises(RuntimeError):
        await flow.execute("帮我规划北京三天游")

    assert flow.status == FlowStatus.FAILED
    assert not flow.running
    assert "RuntimeError" in flow.failure_reason

    general.error = None
    result = await flow.execute("帮我规划北京三天游")
    assert result.tasks_completed == 4


@pytest.mark.asyncio
async def test_flow_result_metadata_is_read_only():
    result = await _flow(_workers([])).execute("帮我规划北京三天游")

    with pytest.raises(TypeError):
        result.metadata["partial"] = True
