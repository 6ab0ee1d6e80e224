"""
Worker factories for the travel domain.

Each worker is a ToolCallAgent with its own prompt, capability set and
tool allowlist. Domain tools are supplied by the caller; a worker picks up
the registered tools that carry its domain capability plus any tools
listed by name.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, FrozenSet, Optional

from loguru import logger

from travelmaster.agent.toolcall_agent import ToolCallAgent
from travelmaster.config.models import AgentSettings, MemorySettings
from travelmaster.memory.working_memory import WorkingMemory
from travelmaster.tools.capabilities import WorkerCapability

if TYPE_CHECKING:
    from travelmaster.integrations.llm_gateway import LLMGateway
    from travelmaster.tools.registry import ToolRegistry

GENERAL_WORKER = "general"


@dataclass(frozen=True)
class WorkerSpec:
    description: str
    system_prompt: str
    capabilities: FrozenSet[WorkerCapability]
    # Tools matching these capabilities are allowed; None means every tool
    tool_capabilities: Optional[FrozenSet[WorkerCapability]] = None
    tool_names: FrozenSet[str] = field(default_factory=frozenset)


WORKER_SPECS: Dict[str, WorkerSpec] = {
    GENERAL_WORKER: WorkerSpec(
        description="通用旅行助手，负责任务分解和综合性问题",
        system_prompt=(
            "你是 TravelMaster 旅行规划助手。你擅长理解用户的旅行需求、拆解任务并给出清晰的建议。"
            "需要时调用可用工具获取信息；任务完成后直接给出回答。"
        ),
        capabilities=frozenset({
            WorkerCapability.GENERAL,
            WorkerCapability.TEXT_GENERATION,
            WorkerCapability.TRAVEL_PLANNING,
            WorkerCapability.WEB_SEARCH,
        }),
    ),
    "flight": WorkerSpec(
        description="航班搜索专家",
        system_prompt=(
            "你是航班搜索专家。根据任务描述提取出发地、目的地和日期，调用航班搜索工具，"
            "比较价格和时间后推荐合适的航班，并明确写出价格（例如 ¥1200）。"
        ),
        capabilities=frozenset({WorkerCapability.FLIGHT_SEARCH}),
        tool_capabilities=frozenset({WorkerCapability.FLIGHT_SEARCH}),
        tool_names=frozenset({"flight_search"}),
    ),
    "hotel": WorkerSpec(
        description="酒店预订专家",
        system_prompt=(
            "你是酒店预订专家。根据目的地、日期和预算搜索酒店，推荐性价比高的选择，"
            "并明确写出每晚价格（例如 ¥450）。"
        ),
        capabilities=frozenset({WorkerCapability.HOTEL_BOOKING}),
        tool_capabilities=frozenset({WorkerCapability.HOTEL_BOOKING}),
        tool_names=frozenset({"hotel_search"}),
    ),
    "route": WorkerSpec(
        description="路线规划专家",
        system_prompt=(
            "你是路线与景点规划专家。根据目的地和天数安排每日景点和交通路线，"
            "兼顾距离和游览时间。"
        ),
        capabilities=frozenset({WorkerCapability.ROUTE_PLANNING}),
        tool_capabilities=frozenset({WorkerCapability.ROUTE_PLANNING}),
        tool_names=frozenset({"route_planning"}),
    ),
    "budget": WorkerSpec(
        description="预算规划专家",
        system_prompt=(
            "你是旅行预算专家。结合已知的交通、住宿等费用和用户预算，给出费用明细、"
            "判断预算是否充足，并提出节省建议。"
        ),
        capabilities=frozenset({WorkerCapability.BUDGET_PLANNING, WorkerCapability.DATA_ANALYSIS}),
        tool_capabilities=frozenset({WorkerCapability.BUDGET_PLANNING}),
        tool_names=frozenset({"budget_analyzer"}),
    ),
}


def create_worker(
    worker_id: str,
    gateway: "LLMGateway",
    tools: "ToolRegistry",
    *,
    agent_settings: Optional[AgentSettings] = None,
    memory_settings: Optional[MemorySettings] = None,
) -> ToolCallAgent:
    """
    Build one worker from WORKER_SPECS.

    Raises:
        KeyError: If `worker_id` has no spec
    """
    spec = WORKER_SPECS[worker_id]

    allowed = None
    if spec.tool_capabilities is not None:
        allowed = set(spec.tool_names)
        for capability in spec.tool_capabilities:
            allowed.update(t.definition.name for t in tools.by_capability(capability))

    agent = ToolCallAgent(
        worker_id,
        spec.description,
        gateway=gateway,
        tools=tools,
        system_prompt=spec.system_prompt,
        capabilities=spec.capabilities,
        allowed_tools=allowed,
        settings=agent_settings,
        memory=WorkingMemory(memory_settings),
    )
    logger.debug(
        f"Worker '{worker_id}' tools: "
        f"{'all' if allowed is None else sorted(n for n in tools.names if n in agent.allowed_tools)}"
    )
    return agent


def create_default_workers(
    gateway: "LLMGateway",
    tools: "ToolRegistry",
    *,
    agent_settings: Optional[AgentSettings] = None,
    memory_settings: Optional[MemorySettings] = None,
) -> Dict[str, ToolCallAgent]:
    """One worker per entry in WORKER_SPECS, keyed by worker id."""
    return {
        worker_id: create_worker(
            worker_id,
            gateway,
            tools,
            agent_settings=agent_settings,
            memory_settings=memory_settings,
        )
        for worker_id in WORKER_SPECS
    }
