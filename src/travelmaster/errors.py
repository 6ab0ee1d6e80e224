"""
Error taxonomy for TravelMaster.

Four families share one root:
- GatewayError: transport and remote model failures
- AgentError: think-act loop failures
- FlowError: orchestration failures
- ToolError: tool contract failures (converted to ToolResult data)
"""

from typing import Optional


class TravelMasterError(Exception):
    """Base class for all TravelMaster errors."""


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class GatewayError(TravelMasterError):
    """Raised when a language-model request fails."""

    retryable: bool = False


class NetworkError(GatewayError):
    retryable = True


class GatewayTimeoutError(GatewayError):
    retryable = True


class HttpStatusError(GatewayError):
    """Non-success HTTP status from the remote endpoint."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = int(status_code)
        super().__init__(f"HTTP {self.status_code}: {message}" if message else f"HTTP {self.status_code}")

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code >= 500 or self.status_code == 429


class ServiceUnavailableError(HttpStatusError):
    def __init__(self, message: str = "service unavailable"):
        super().__init__(503, message)


class ApiError(GatewayError):
    """The endpoint answered with an explicit error payload."""


class InvalidResponseError(GatewayError):
    pass


class InvalidToolCallError(GatewayError):
    pass


class MessageOrderError(GatewayError):
    """A tool message does not follow an assistant message declaring its call id."""


class RetriesExhaustedError(GatewayError):
    def __init__(self, attempts: int, cause: Optional[BaseException] = None):
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Gave up after {attempts} attempts: {cause}")


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

class AgentError(TravelMasterError):
    pass


class ConcurrentExecutionError(AgentError):
    def __init__(self, agent_name: str):
        self.agent_name = agent_name
        super().__init__(f"Agent '{agent_name}' is already running")


class ExecutionFailedError(AgentError):
    pass


class MaxStepsExceededError(AgentError):
    def __init__(self, agent_name: str, max_steps: int):
        self.agent_name = agent_name
        self.max_steps = max_steps
        super().__init__(f"Agent '{agent_name}' exceeded {max_steps} steps")


class InvalidRequestError(AgentError):
    pass


# ---------------------------------------------------------------------------
# Flow
# ---------------------------------------------------------------------------

class FlowError(TravelMasterError):
    pass


class WorkerNotFoundError(FlowError):
    def __init__(self, worker_id: str):
        self.worker_id = worker_id
        super().__init__(f"No worker registered for '{worker_id}'")


class TaskExecutionFailedError(FlowError):
    def __init__(self, task_id: str, detail: str):
        self.task_id = task_id
        super().__init__(f"Task {task_id} failed: {detail}")


class InvalidConfigurationError(FlowError):
    pass


class ExecutionTimeoutError(FlowError):
    """A dependent-phase task failed; the flow cannot continue."""


class FlowCancelledError(FlowError):
    pass


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------

class ToolError(TravelMasterError):
    pass


class MissingParameterError(ToolError):
    def __init__(self, parameter: str):
        self.parameter = parameter
        super().__init__(f"Missing required parameter: {parameter}")


class ToolExecutionError(ToolError):
    pass
