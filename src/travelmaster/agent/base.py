"""
Base agent class for all TravelMaster agents.

Provides the single-flight run template, status tracking, capability
declaration and the per-agent shared-context snapshot.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from travelmaster.core.cancellation import CancellationToken
from travelmaster.core.context import SharedContext
from travelmaster.errors import ConcurrentExecutionError, InvalidRequestError
from travelmaster.tools.capabilities import WorkerCapability


class AgentStatus(str, Enum):
    """Agent operational status."""
    IDLE = "idle"
    WORKING = "working"
    FAILED = "failed"


class AgentThought(BaseModel):
    """Represents a single thought/reasoning step."""

    step: int
    thought: str
    action: Optional[str] = None
    action_input: Optional[Dict[str, Any]] = None
    observation: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class BaseAgent(ABC):
    """
    Abstract base class for all TravelMaster agents.

    An agent is a single-flight executor: `run` fails immediately with
    ConcurrentExecutionError while a previous run is still in progress.
    Status moves idle -> working -> idle, or through failed back to idle
    when the run raises.
    """

    def __init__(
        self,
        name: str,
        description: str,
        capabilities: Iterable[WorkerCapability] = (),
    ):
        """
        Initialize base agent.

        Args:
            name: Agent identifier
            description: What this agent does
            capabilities: Capability tags this agent supports
        """
        self.name = name
        self.description = description
        self._capabilities: FrozenSet[WorkerCapability] = frozenset(capabilities)
        self.status = AgentStatus.IDLE
        self.last_error: Optional[str] = None
        self._shared_context = SharedContext()
        self._current_thoughts: List[AgentThought] = []

        logger.debug(f"Agent '{name}' initialized")

    @property
    def capabilities(self) -> FrozenSet[WorkerCapability]:
        return self._capabilities

    def is_capable_of(self, capability: WorkerCapability) -> bool:
        return capability in self._capabilities

    @property
    def thoughts(self) -> List[AgentThought]:
        return list(self._current_thoughts)

    def set_shared_context(self, context: SharedContext) -> None:
        """Give the agent its own copy of the orchestrator's context."""
        self._shared_context = context.snapshot()

    def get_shared_context(self) -> SharedContext:
        return self._shared_context.snapshot()

    async def run(self, request: str, *, cancel_token: Optional[CancellationToken] = None) -> str:
        """
        Run the agent on one request.

        Args:
            request: Task or question text
            cancel_token: Cooperative cancellation signal

        Returns:
            The agent's final answer

        Raises:
            ConcurrentExecutionError: If the agent is already running
            InvalidRequestError: If the request is empty
        """
        if self.status == AgentStatus.WORKING:
            raise ConcurrentExecutionError(self.name)
        if not request or not request.strip():
            raise InvalidRequestError(f"Agent '{self.name}' received an empty request")

        self.status = AgentStatus.WORKING
        self.last_error = None
        self._current_thoughts = []
        logger.info(f"Agent '{self.name}' started: {request[:80]}")

        try:
            result = await self._execute(request, cancel_token)
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Agent '{self.name}' failed: {e}")
            raise
        finally:
            # A failed status stays visible until the next run
            self.status = AgentStatus.IDLE if self.last_error is None else AgentStatus.FAILED

        logger.info(f"Agent '{self.name}' finished ({len(self._current_thoughts)} steps)")
        return result

    @abstractmethod
    async def _execute(self, request: str, cancel_token: Optional[CancellationToken]) -> str:
        """Agent-specific work for one run."""

    def record_thought(
        self,
        step: int,
        thought: str,
        action: Optional[str] = None,
        action_input: Optional[Dict[str, Any]] = None,
        observation: Optional[str] = None,
    ) -> AgentThought:
        """
        Record a reasoning step.

        Args:
            step: Step number in the loop
            thought: The reasoning text
            action: Tool invoked, if any
            action_input: Tool arguments
            observation: Tool output

        Returns:
            AgentThought object
        """
        entry = AgentThought(
            step=step,
            thought=thought,
            action=action,
            action_input=action_input,
            observation=observation,
        )
        self._current_thoughts.append(entry)
        logger.debug(f"[{self.name}] step {step}: {thought[:120]}")
        return entry
