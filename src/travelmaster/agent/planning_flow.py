"""
Planning Flow - Multi-worker orchestration for complex travel requests.

This module:
1. Asks the primary agent to decompose a request into typed tasks
2. Runs independent tasks concurrently, one unit per worker
3. Runs dependent (budget) tasks afterwards, enriched with extracted costs
4. Merges every worker's context into one shared context
5. Hands the shared context to the synthesis agent for the final answer
"""

from __future__ import annotations

import asyncio
import re
import time
from types import MappingProxyType
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from travelmaster.agent.base import BaseAgent
from travelmaster.agent.synthesis_agent import HybridResponse, SynthesisAgent
from travelmaster.config.models import FallbackPolicy, FlowSettings
from travelmaster.core.amounts import lowest_currency_amount, parse_budget_amount
from travelmaster.core.cancellation import CancellationToken
from travelmaster.core.context import SharedContext
from travelmaster.errors import (
    AgentError,
    ExecutionTimeoutError,
    FlowCancelledError,
    FlowError,
    InvalidConfigurationError,
    TaskExecutionFailedError,
    TravelMasterError,
    WorkerNotFoundError,
)
from travelmaster.tools.capabilities import WorkerCapability


class TaskKind(str, Enum):
    FLIGHT = "flight"
    HOTEL = "hotel"
    ROUTE = "route"
    BUDGET = "budget"
    GENERAL = "general"


class TaskStatus(str, Enum):
    """Status of a task."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class FlowStatus(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


KIND_CAPABILITIES: Dict[TaskKind, WorkerCapability] = {
    TaskKind.FLIGHT: WorkerCapability.FLIGHT_SEARCH,
    TaskKind.HOTEL: WorkerCapability.HOTEL_BOOKING,
    TaskKind.ROUTE: WorkerCapability.ROUTE_PLANNING,
    TaskKind.BUDGET: WorkerCapability.BUDGET_PLANNING,
    TaskKind.GENERAL: WorkerCapability.TEXT_GENERATION,
}

KIND_LABELS: Dict[str, str] = {
    "flight": "机票",
    "hotel": "住宿",
    "route": "交通",
    "budget": "预算",
    "general": "其他",
}


@dataclass
class Task:
    """
    One typed unit of work produced by decomposition.

    Attributes:
        id: "task_<n>", numbered in parse order
        kind: Task kind; unknown kinds become GENERAL
        description: What the worker is asked to do
        assigned_worker: Worker id that runs the task
        status: Current execution status
        result: Worker output once completed
        error: Failure reason
    """
    id: str
    kind: TaskKind
    description: str
    assigned_worker: str
    status: TaskStatus = TaskStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "description": self.description,
            "assigned_worker": self.assigned_worker,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
        }


@dataclass(frozen=True)
class FlowResult:
    success: bool
    output: str
    execution_time_seconds: float
    tasks_completed: int
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class FlowProgress:
    current_task: Optional[str]
    percentage: float
    completed: int
    total: int


@dataclass
class _TaskOutcome:
    task: Task
    result: str
    context: SharedContext
    baseline: SharedContext


DECOMPOSITION_PROMPT = """请将以下用户请求分解为具体的子任务，每行一个，格式为：
序号. [类型] 任务描述

类型只能是：flight（航班）、hotel（酒店）、route（路线景点）、budget（预算）、general（其他）

示例：
1. [flight] 搜索北京到上海的航班
2. [hotel] 查找上海外滩附近的酒店
3. [budget] 根据机票和酒店价格计算总预算

只输出任务列表，不要输出其他内容。

用户请求：{request}"""

TASK_LINE = re.compile(r"^(\d+)\s*[.、)）]\s*\[\s*([A-Za-z_]+)\s*\]\s*(.+)$")
LIST_MARKER = re.compile(r"^(?:\d+\s*[.、)）]|[-*•])\s*")


def parse_tasks(text: str, policy: FallbackPolicy = FallbackPolicy.WARN) -> List[Task]:
    """
    Parse `N. [kind] description` lines into tasks.

    Lines that do not match, or carry an unknown kind, become GENERAL tasks
    assigned to the general worker; blank lines are skipped.

    Raises:
        InvalidConfigurationError: On a fallback when policy is RAISE
    """
    tasks: List[Task] = []
    known = {k.value for k in TaskKind}

    for line in (text or "").splitlines():
        stripped = line.strip()
        if not stripped:
            continue

        match = TASK_LINE.match(stripped)
        if match:
            raw_kind = match.group(2).lower()
            description = match.group(3).strip()
        else:
            raw_kind = None
            description = LIST_MARKER.sub("", stripped).strip()
        if not description:
            continue

        if raw_kind in known:
            kind = TaskKind(raw_kind)
        else:
            policy.degrade(
                f"Task line {stripped!r} has no recognized kind; assigning to general",
                InvalidConfigurationError(f"Unrecognized task line: {stripped!r}"),
            )
            kind = TaskKind.GENERAL

        tasks.append(Task(
            id=f"task_{len(tasks) + 1}",
            kind=kind,
            description=description,
            assigned_worker=kind.value,
        ))

    return tasks


def _format_amount(value: float) -> str:
    return f"¥{value:.0f}" if float(value).is_integer() else f"¥{value:.2f}"


def _describe(error: Exception) -> str:
    if isinstance(error, TravelMasterError):
        return str(error)
    return f"{type(error).__name__}: {error}"


class PlanningFlow:
    """
    Orchestrates one complex request across several workers.

    Status: idle -> planning -> executing -> completed | failed | cancelled.
    A flow instance runs one request at a time; tasks and shared context
    belong to the current run.
    """

    def __init__(
        self,
        primary_agent: BaseAgent,
        agents: Mapping[str, BaseAgent],
        synthesis_agent: SynthesisAgent,
        settings: Optional[FlowSettings] = None,
    ):
        """
        Initialize the flow.

        Args:
            primary_agent: Agent that decomposes the request
            agents: Workers keyed by worker id ("flight", "hotel", ...)
            synthesis_agent: Agent that writes the final answer
            settings: Dependent kinds, ephemeral prefixes, fallback policy
        """
        self.primary_agent = primary_agent
        self.agents: Dict[str, BaseAgent] = dict(agents)
        self.synthesis_agent = synthesis_agent
        self.settings = settings or FlowSettings()

        self.status = FlowStatus.IDLE
        self.failure_reason: Optional[str] = None
        self.tasks: List[Task] = []
        self.shared_context = SharedContext()
        self._token: Optional[CancellationToken] = None

    @property
    def running(self) -> bool:
        return self.status in (FlowStatus.PLANNING, FlowStatus.EXECUTING)

    @property
    def _ephemeral(self) -> Tuple[str, ...]:
        return tuple(self.settings.ephemeral_prefixes)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def execute(self, request: str) -> FlowResult:
        """
        Run the whole flow for one request.

        Returns:
            FlowResult of a completed run

        Raises:
            FlowCancelledError: If cancel() was called during the run
            FlowError: On any fatal failure (status becomes failed)
        """
        if self.running:
            raise FlowError("Flow is already running")

        start = time.monotonic()
        token = CancellationToken()
        self._token = token
        self.tasks = []
        self.shared_context = SharedContext()
        self.failure_reason = None
        self._set_status(FlowStatus.PLANNING)

        try:
            budget = parse_budget_amount(request)
            if budget is not None:
                self.shared_context.set("user_budget", budget)

            self.tasks = await self._decompose(request, token)
            self._validate_assignments(self.tasks)

            token.raise_if_cancelled()
            self._set_status(FlowStatus.EXECUTING)

            independent, dependent = self._partition(self.tasks)
            await self._run_parallel_phase(independent, token)
            await self._run_sequential_phase(dependent, token)

            if self.tasks and not any(t.status == TaskStatus.COMPLETED for t in self.tasks):
                raise TaskExecutionFailedError("all", "no task completed")

            answer = await self._synthesize(request, token)
            token.raise_if_cancelled()

        except FlowCancelledError:
            logger.warning("Flow cancelled")
            raise
        except FlowError as e:
            self._fail(str(e))
            raise
        except BaseException as e:
            self._fail(f"unexpected {type(e).__name__}: {e}")
            raise

        failed = [t.id for t in self.tasks if t.status == TaskStatus.FAILED]
        completed = sum(1 for t in self.tasks if t.status == TaskStatus.COMPLETED)
        elapsed = time.monotonic() - start

        result = FlowResult(
            success=True,
            output=answer.message,
            execution_time_seconds=elapsed,
            tasks_completed=completed,
            metadata=MappingProxyType({
                "tasks": [t.to_dict() for t in self.tasks],
                "failed_tasks": failed,
                "partial": bool(failed),
                "context": self.shared_context.to_dict(),
                "structured": answer.model_dump(),
            }),
        )
        self._set_status(FlowStatus.COMPLETED)
        logger.success(
            f"Flow completed: {completed}/{len(self.tasks)} tasks in {elapsed:.2f}s"
        )
        return result

    def cancel(self, reason: str = "cancelled by user") -> bool:
        """
        Stop further orchestration steps of the running flow.

        In-flight gateway or tool calls are not interrupted; their results
        are discarded. Returns False when nothing was running.
        """
        if not self.running:
            logger.debug(f"cancel() ignored, flow is {self.status.value}")
            return False

        if self._token is not None:
            self._token.cancel(reason)
        self.tasks = []
        self.shared_context.clear()
        self._set_status(FlowStatus.CANCELLED)
        return True

    def get_progress(self) -> FlowProgress:
        total = len(self.tasks)
        completed = sum(1 for t in self.tasks if t.status == TaskStatus.COMPLETED)
        current = next((t.description for t in self.tasks if t.status == TaskStatus.RUNNING), None)
        if total:
            percentage = completed / total * 100
        else:
            percentage = 100.0 if self.status == FlowStatus.COMPLETED else 0.0
        return FlowProgress(current_task=current, percentage=percentage, completed=completed, total=total)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def _decompose(self, request: str, token: CancellationToken) -> List[Task]:
        token.raise_if_cancelled()
        try:
            plan_text = await self.primary_agent.run(
                DECOMPOSITION_PROMPT.format(request=request),
                cancel_token=token,
            )
        except AgentError as e:
            raise TaskExecutionFailedError("decomposition", str(e)) from e

        tasks = parse_tasks(plan_text, self.settings.unknown_kind_policy)
        if not tasks:
            self.settings.unknown_kind_policy.degrade(
                "Decomposition produced no tasks; running the request as one general task",
                InvalidConfigurationError("Decomposition produced no tasks"),
            )
            tasks = [Task(
                id="task_1",
                kind=TaskKind.GENERAL,
                description=request,
                assigned_worker=TaskKind.GENERAL.value,
            )]

        logger.info(
            f"Decomposed into {len(tasks)} tasks: "
            f"{', '.join(f'{t.id}[{t.kind.value}]' for t in tasks)}"
        )
        return tasks

    def _validate_assignments(self, tasks: List[Task]) -> None:
        for task in tasks:
            agent = self.agents.get(task.assigned_worker)
            if agent is None:
                raise WorkerNotFoundError(task.assigned_worker)
            required = KIND_CAPABILITIES[task.kind]
            if not agent.is_capable_of(required):
                raise InvalidConfigurationError(
                    f"Worker '{task.assigned_worker}' lacks capability "
                    f"'{required.value}' needed by {task.id}"
                )

    def _partition(self, tasks: List[Task]) -> Tuple[List[Task], List[Task]]:
        dependent_kinds = set(self.settings.dependent_kinds)
        independent = [t for t in tasks if t.kind.value not in dependent_kinds]
        dependent = [t for t in tasks if t.kind.value in dependent_kinds]
        return independent, dependent

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run_parallel_phase(self, tasks: List[Task], token: CancellationToken) -> None:
        if not tasks:
            return

        groups: Dict[str, List[Task]] = {}
        for task in tasks:
            groups.setdefault(task.assigned_worker, []).append(task)

        logger.info(f"Parallel phase: {len(tasks)} tasks on {len(groups)} workers")
        baseline = self.shared_context.snapshot()
        units = [
            asyncio.ensure_future(self._run_unit(self.agents[worker_id], group, baseline, token))
            for worker_id, group in groups.items()
        ]

        # Merge as units finish; after a cancel, drain without merging
        try:
            for finished in asyncio.as_completed(units):
                outcomes = await finished
                if token.cancelled:
                    continue
                for outcome in outcomes:
                    self._absorb(outcome)
        finally:
            pending = [u for u in units if not u.done()]
            for unit in pending:
                unit.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        token.raise_if_cancelled()

    async def _run_unit(
        self,
        agent: BaseAgent,
        tasks: List[Task],
        baseline: SharedContext,
        token: CancellationToken,
    ) -> List[_TaskOutcome]:
        """Run one worker's tasks in order. Never raises for task failures."""
        outcomes: List[_TaskOutcome] = []
        agent.set_shared_context(baseline)

        for index, task in enumerate(tasks):
            if token.cancelled:
                break

            before = agent.get_shared_context()
            self._mark_running(task)
            try:
                result = await agent.run(task.description, cancel_token=token)
            except FlowCancelledError:
                task.status = TaskStatus.FAILED
                task.error = "cancelled"
                break
            except Exception as e:
                self._mark_failed(task, _describe(e))
                for skipped in tasks[index + 1:]:
                    self._mark_failed(skipped, f"skipped after {task.id} failed on worker '{agent.name}'")
                break

            self._mark_completed(task, result)
            outcomes.append(_TaskOutcome(task, result, agent.get_shared_context(), before))

        return outcomes

    async def _run_sequential_phase(self, tasks: List[Task], token: CancellationToken) -> None:
        if tasks:
            logger.info(f"Sequential phase: {len(tasks)} dependent tasks")

        for task in tasks:
            token.raise_if_cancelled()
            agent = self.agents[task.assigned_worker]
            baseline = self.shared_context.snapshot()
            agent.set_shared_context(baseline)

            self._mark_running(task)
            try:
                result = await agent.run(self._enrich(task), cancel_token=token)
            except FlowCancelledError:
                raise
            except Exception as e:
                self._mark_failed(task, _describe(e))
                raise ExecutionTimeoutError(f"Dependent task {task.id} failed: {_describe(e)}") from e

            token.raise_if_cancelled()
            self._mark_completed(task, result)
            self._absorb(_TaskOutcome(task, result, agent.get_shared_context(), baseline))

    async def _synthesize(self, request: str, token: CancellationToken) -> HybridResponse:
        token.raise_if_cancelled()
        try:
            return await self.synthesis_agent.synthesize(
                request,
                self.shared_context.snapshot(),
                cancel_token=token,
            )
        except AgentError as e:
            raise TaskExecutionFailedError("synthesis", str(e)) from e

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def _absorb(self, outcome: _TaskOutcome) -> None:
        """Merge one task's worker context and result into the shared context."""
        task = outcome.task
        changes = outcome.context.diff(outcome.baseline)
        merged = self.shared_context.merge(changes, exclude_prefixes=self._ephemeral)

        key = f"task_{task.kind.value}_result"
        previous = self.shared_context.get_str(key)
        self.shared_context.set(key, f"{previous}\n\n{outcome.result}" if previous else outcome.result)

        if task.kind != TaskKind.BUDGET:
            cost = lowest_currency_amount(outcome.result)
            if cost is not None:
                self.shared_context.set(f"extracted_{task.kind.value}_cost", cost)
                self._update_total_cost()

        logger.debug(f"Merged {task.id}: {merged} context keys")

    def _update_total_cost(self) -> None:
        total = 0.0
        for key in list(self.shared_context.keys_with_prefix("extracted_")):
            if key.endswith("_cost") and key != "extracted_total_cost":
                total += self.shared_context.get_number(key) or 0.0
        self.shared_context.set("extracted_total_cost", total)

    def _enrich(self, task: Task) -> str:
        """Append known cost figures to a dependent task's description."""
        lines = []
        for key in self.shared_context.keys_with_prefix("extracted_"):
            amount = self.shared_context.get_number(key)
            if amount is None or not key.endswith("_cost") or key == "extracted_total_cost":
                continue
            kind = key[len("extracted_"):-len("_cost")]
            lines.append(f"- {KIND_LABELS.get(kind, kind)}（{kind}）: {_format_amount(amount)}")

        total = self.shared_context.get_number("extracted_total_cost")
        if lines and total is not None:
            lines.append(f"- 已知费用合计: {_format_amount(total)}")
        budget = self.shared_context.get_number("user_budget")
        if budget is not None:
            lines.append(f"- 用户预算: {_format_amount(budget)}")

        if not lines:
            return task.description
        return f"{task.description}\n\n已知费用信息：\n" + "\n".join(lines)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _set_status(self, status: FlowStatus) -> None:
        if status != self.status:
            logger.debug(f"Flow status: {self.status.value} -> {status.value}")
        self.status = status

    def _fail(self, reason: str) -> None:
        self.failure_reason = reason
        self.shared_context.clear()
        self._set_status(FlowStatus.FAILED)
        logger.error(f"Flow failed: {reason}")

    @staticmethod
    def _mark_running(task: Task) -> None:
        task.status = TaskStatus.RUNNING
        task.started_at = datetime.now()
        logger.info(f"Running {task.id} [{task.kind.value}] on '{task.assigned_worker}': {task.description[:60]}")

    @staticmethod
    def _mark_completed(task: Task, result: str) -> None:
        task.status = TaskStatus.COMPLETED
        task.result = result
        task.completed_at = datetime.now()
        logger.info(f"Completed {task.id}")

    @staticmethod
    def _mark_failed(task: Task, reason: str) -> None:
        task.status = TaskStatus.FAILED
        task.error = reason
        task.completed_at = datetime.now()
        logger.error(f"Task {task.id} failed: {reason}")
