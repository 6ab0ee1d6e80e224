"""Agent module - workers, routing and orchestration."""

from travelmaster.agent.base import AgentStatus, AgentThought, BaseAgent
from travelmaster.agent.planning_flow import (
    FlowProgress,
    FlowResult,
    FlowStatus,
    PlanningFlow,
    Task,
    TaskKind,
    TaskStatus,
    parse_tasks,
)
from travelmaster.agent.router import IntentRouter, RoutingDecision, UserIntent
from travelmaster.agent.synthesis_agent import HybridResponse, SynthesisAgent
from travelmaster.agent.toolcall_agent import ToolCallAgent
from travelmaster.agent.workers import create_default_workers, create_worker

__all__ = [
    "AgentStatus",
    "AgentThought",
    "BaseAgent",
    "FlowProgress",
    "FlowResult",
    "FlowStatus",
    "PlanningFlow",
    "Task",
    "TaskKind",
    "TaskStatus",
    "parse_tasks",
    "IntentRouter",
    "RoutingDecision",
    "UserIntent",
    "HybridResponse",
    "SynthesisAgent",
    "ToolCallAgent",
    "create_default_workers",
    "create_worker",
]
