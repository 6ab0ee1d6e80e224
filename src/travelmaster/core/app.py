"""
Main application entry point for TravelMaster.

Builds every component in order and routes each request to the right
execution path: the planning flow, a single worker, or direct chat.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from loguru import logger

from travelmaster.agent.planning_flow import FlowResult, PlanningFlow
from travelmaster.agent.router import IntentRouter, UserIntent
from travelmaster.agent.synthesis_agent import SynthesisAgent
from travelmaster.agent.toolcall_agent import ToolCallAgent
from travelmaster.agent.workers import GENERAL_WORKER, create_default_workers
from travelmaster.config.manager import ConfigManager
from travelmaster.core.messages import Message
from travelmaster.errors import GatewayError, TravelMasterError
from travelmaster.integrations.llm_gateway import LLMGateway
from travelmaster.integrations.monitor import UsageMonitor, UsageSnapshot
from travelmaster.memory.working_memory import WorkingMemory
from travelmaster.tools.base import BaseTool
from travelmaster.tools.builtin.terminate import TerminateTool
from travelmaster.tools.registry import ToolRegistry

CHAT_SYSTEM_PROMPT = "你是 TravelMaster 旅行助手，用简洁友好的中文回答用户的问题。"


@dataclass
class AppResponse:
    """Answer to one user request."""
    intent: UserIntent
    output: str
    success: bool = True
    error: Optional[str] = None
    worker: Optional[str] = None
    flow_result: Optional[FlowResult] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "intent": self.intent.value,
            "output": self.output,
            "success": self.success,
            "error": self.error,
            "worker": self.worker,
        }
        if self.flow_result is not None:
            data["flow"] = {
                "tasks_completed": self.flow_result.tasks_completed,
                "execution_time_seconds": round(self.flow_result.execution_time_seconds, 3),
                "structured": self.flow_result.metadata.get("structured"),
            }
        return data


class TravelMasterApp:
    """
    Main application class that coordinates all TravelMaster components.

    Startup order: configuration, usage monitor, gateway, tool registry,
    workers, router, planning flow.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        *,
        config: Optional[ConfigManager] = None,
        gateway: Optional[LLMGateway] = None,
        tools: Iterable[BaseTool] = (),
    ):
        """
        Initialize the application.

        Args:
            config_path: Configuration file (ignored when `config` is given)
            config: Pre-built configuration manager
            gateway: Pre-built gateway (the app builds one from config otherwise)
            tools: Domain tools to register next to the built-ins
        """
        self.config = config or ConfigManager(config_path)
        self._external_gateway = gateway
        self._domain_tools = list(tools)

        self.monitor: Optional[UsageMonitor] = None
        self.gateway: Optional[LLMGateway] = None
        self.tools: Optional[ToolRegistry] = None
        self.workers: Dict[str, ToolCallAgent] = {}
        self.router: Optional[IntentRouter] = None
        self.flow: Optional[PlanningFlow] = None
        self.conversation: Optional[WorkingMemory] = None
        self._running = False

        logger.info("TravelMaster application instance created")

    @property
    def running(self) -> bool:
        return self._running

    async def startup(self) -> None:
        """Initialize all components in the correct order."""
        logger.info("Starting TravelMaster...")

        # 1. Configuration
        if not self.config.loaded:
            await self.config.load()
        logger.info("Configuration loaded")

        # 2. Gateway and its monitor
        if self._external_gateway is not None:
            self.gateway = self._external_gateway
            self.monitor = self.gateway.monitor
        else:
            self.monitor = UsageMonitor()
            self.gateway = LLMGateway(self.config.llm_config(), monitor=self.monitor)
        logger.info(f"LLM gateway ready ({self.gateway.config.model})")

        # 3. Tools
        self.tools = ToolRegistry()
        self.tools.register(TerminateTool())
        self.tools.register_all(self._domain_tools)
        logger.info(f"Tool registry initialized with {len(self.tools)} tools")

        # 4. Workers
        agent_settings = self.config.agent_settings()
        memory_settings = self.config.memory_settings()
        self.workers = create_default_workers(
            self.gateway,
            self.tools,
            agent_settings=agent_settings,
            memory_settings=memory_settings,
        )
        logger.info(f"Workers initialized: {', '.join(self.workers)}")

        # 5. Routing and orchestration
        self.router = IntentRouter(self.gateway, self.config.router_settings())
        self.flow = PlanningFlow(
            primary_agent=self.workers[GENERAL_WORKER],
            agents=self.workers,
            synthesis_agent=SynthesisAgent(self.gateway),
            settings=self.config.flow_settings(),
        )

        self.conversation = WorkingMemory(memory_settings)
        self.conversation.add_message(Message.system(CHAT_SYSTEM_PROMPT))

        self._running = True
        logger.success("TravelMaster started successfully!")

    async def shutdown(self) -> None:
        """Gracefully shutdown all components."""
        logger.info("Shutting down TravelMaster...")
        self._running = False

        if self.flow is not None and self.flow.running:
            self.flow.cancel("application shutdown")

        # An injected gateway belongs to the caller
        if self.gateway is not None and self._external_gateway is None:
            await self.gateway.close()

        logger.success("TravelMaster shutdown complete")

    async def handle(self, request: str) -> AppResponse:
        """
        Answer one request.

        Never raises for model or orchestration failures; they are
        reported in the response instead.
        """
        if not self._running:
            raise RuntimeError("TravelMasterApp.startup() has not been called")

        decision = await self.router.route(request)
        logger.info(f"Request routed to {decision.intent.value} ({decision.source})")

        if decision.intent == UserIntent.COMPLEX_PLANNING:
            return await self._handle_planning(request)
        if decision.intent == UserIntent.SINGLE_QUERY:
            return await self._handle_single_query(request)
        return await self._handle_chat(request)

    async def _handle_planning(self, request: str) -> AppResponse:
        try:
            result = await self.flow.execute(request)
        except TravelMasterError as e:
            return AppResponse(UserIntent.COMPLEX_PLANNING, "", success=False, error=str(e))
        return AppResponse(UserIntent.COMPLEX_PLANNING, result.output, flow_result=result)

    async def _handle_single_query(self, request: str) -> AppResponse:
        worker_id = self.router.select_worker(request)
        worker = self.workers.get(worker_id) or self.workers[GENERAL_WORKER]
        try:
            output = await worker.run(request)
        except TravelMasterError as e:
            return AppResponse(UserIntent.SINGLE_QUERY, "", success=False, error=str(e), worker=worker.name)
        return AppResponse(UserIntent.SINGLE_QUERY, output, worker=worker.name)

    async def _handle_chat(self, request: str) -> AppResponse:
        self.conversation.add_message(Message.user(request))
        try:
            reply = await self.gateway.chat(self.conversation.context_messages())
        except GatewayError as e:
            return AppResponse(UserIntent.CASUAL_CHAT, "", success=False, error=str(e))
        self.conversation.add_message(Message.assistant(reply))
        return AppResponse(UserIntent.CASUAL_CHAT, reply)

    def new_topic(self) -> None:
        """Start a new topic: partial reset of the chat memory and every worker's memory."""
        if self.conversation is not None:
            self.conversation.clear()
        for worker in self.workers.values():
            worker.memory.clear()

    def usage(self) -> UsageSnapshot:
        if self.monitor is None:
            return UsageSnapshot()
        return self.monitor.snapshot()
