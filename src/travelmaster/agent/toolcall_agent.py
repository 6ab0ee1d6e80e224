"""
Tool-calling agent - a bounded think-act loop.

Each step asks the model what to do next (think), then runs every tool
call it returned through the registry (act). The loop ends when the model
answers without tool calls, when it calls `terminate`, or fails once
`max_steps` is reached.
"""

import json
from typing import TYPE_CHECKING, Iterable, List, Optional, Set

from loguru import logger

from travelmaster.agent.base import BaseAgent
from travelmaster.config.models import AgentSettings
from travelmaster.core.cancellation import CancellationToken
from travelmaster.core.messages import Message, ToolCall
from travelmaster.errors import ExecutionFailedError, GatewayError, MaxStepsExceededError
from travelmaster.memory.working_memory import WorkingMemory
from travelmaster.tools.builtin.terminate import TERMINATE_TOOL_NAME
from travelmaster.tools.capabilities import WorkerCapability

if TYPE_CHECKING:
    from travelmaster.integrations.llm_gateway import InvalidToolCall, LLMGateway, LLMResponse, ToolChoice
    from travelmaster.tools.registry import ToolRegistry

DEFAULT_RESULT = "任务完成"
CONTEXT_HEADER = "当前上下文:"


class ToolCallAgent(BaseAgent):
    """
    Worker that solves a request by calling tools.

    The agent owns one WorkingMemory; the system prompt is its first
    message. Tool results are published to the agent's shared context as
    `last_<tool>_result`.
    """

    def __init__(
        self,
        name: str,
        description: str,
        *,
        gateway: "LLMGateway",
        tools: "ToolRegistry",
        system_prompt: str = "",
        capabilities: Iterable[WorkerCapability] = (),
        allowed_tools: Optional[Iterable[str]] = None,
        settings: Optional[AgentSettings] = None,
        memory: Optional[WorkingMemory] = None,
        tool_choice: "ToolChoice" = "auto",
    ):
        super().__init__(name, description, capabilities)
        self.gateway = gateway
        self.tools = tools
        self.settings = settings or AgentSettings()
        self.memory = memory or WorkingMemory()
        self.tool_choice = tool_choice
        self.allowed_tools: Optional[Set[str]] = (
            set(allowed_tools) | {TERMINATE_TOOL_NAME} if allowed_tools is not None else None
        )

        if system_prompt:
            self.memory.add_message(Message.system(system_prompt))

    @property
    def max_steps(self) -> int:
        return self.settings.max_steps

    async def _execute(self, request: str, cancel_token: Optional[CancellationToken]) -> str:
        self.memory.add_message(Message.user(request))
        context_text = self._context_summary()
        if context_text:
            self.memory.add_message(Message.system(context_text))

        schemas = self.tools.to_schemas(self.allowed_tools)

        for step in range(1, self.max_steps + 1):
            response = await self._think(schemas, cancel_token)
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            text = response.text
            answerable = [c for c in response.invalid_tool_calls if c.id]
            declared = list(response.tool_calls) + [
                ToolCall(id=c.id, name=c.name or "unknown", arguments={}) for c in answerable
            ]

            # Record tool calls even with empty text so tool results have a parent
            if text or declared:
                self.memory.add_message(Message.assistant(text, declared))

            if not declared:
                self.record_thought(step, text or "(empty response)")
                return text or DEFAULT_RESULT

            outputs = await self._act(step, text, response.tool_calls, answerable, cancel_token)

            if any(call.name == TERMINATE_TOOL_NAME for call in response.tool_calls):
                logger.debug(f"[{self.name}] terminate called at step {step}")
                return text or "\n".join(outputs) or DEFAULT_RESULT

        raise MaxStepsExceededError(self.name, self.max_steps)

    async def _think(
        self,
        schemas: List[dict],
        cancel_token: Optional[CancellationToken],
    ) -> "LLMResponse":
        try:
            return await self.gateway.ask_with_tools(
                self.memory.context_messages(),
                schemas,
                self.tool_choice,
                cancel_token=cancel_token,
            )
        except GatewayError as e:
            raise ExecutionFailedError(f"Think phase failed for agent '{self.name}': {e}") from e

    async def _act(
        self,
        step: int,
        text: str,
        calls: List[ToolCall],
        invalid: List["InvalidToolCall"],
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[str]:
        outputs: List[str] = []

        for index, call in enumerate(calls):
            if cancel_token is not None and cancel_token.cancelled:
                # Every declared call still gets a tool message so memory stays sendable
                for pending in calls[index:]:
                    self.memory.add_message(Message.tool("已取消", pending.id, pending.name))
                for bad in invalid:
                    self.memory.add_message(Message.tool("已取消", bad.id or "", bad.name or "unknown"))
                cancel_token.raise_if_cancelled()
            result = await self.tools.execute(call.name, call.arguments, allowlist=self.allowed_tools)
            if result.success:
                content = result.output or "执行完成"
            else:
                content = f"工具 {call.name} 执行失败: {result.error}"

            self.memory.add_message(Message.tool(content, call.id, call.name))
            self._shared_context.set(f"last_{call.name}_result", content)
            self.record_thought(step, text or f"调用工具 {call.name}", call.name, call.arguments, content)
            if call.name != TERMINATE_TOOL_NAME:
                outputs.append(content)

        for bad in invalid:
            content = f"工具调用无效: {bad.error}"
            self.memory.add_message(Message.tool(content, bad.id or "", bad.name or "unknown"))
            self.record_thought(step, content, bad.name)

        return outputs

    def _context_summary(self) -> str:
        limit = self.settings.context_value_max_chars
        lines = []
        for key, value in self._shared_context.items():
            if key.startswith("last_"):
                continue
            text = json.dumps(value, ensure_ascii=False) if isinstance(value, dict) else str(value)
            if len(text) > limit:
                text = text[:limit] + "..."
            lines.append(f"{key}: {text}")
        if not lines:
            return ""
        return CONTEXT_HEADER + "\n" + "\n".join(lines)
