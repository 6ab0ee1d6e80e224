"""
Fake model backends.

`ScriptedGateway` stands in for LLMGateway in agent and flow tests;
`completion` and `tool_call_completion` build wire-format bodies for
tests that drive the real gateway through httpx.MockTransport.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from travelmaster.core.messages import Message, ToolCall, validate_message_sequence
from travelmaster.integrations.llm_gateway import LLMResponse
from travelmaster.integrations.monitor import UsageMonitor

Step = Union[LLMResponse, str, Exception, Callable[[List[Message]], Any]]


def text_response(content: str) -> LLMResponse:
    return LLMResponse(content=content)


def tool_response(name: str, arguments: Optional[Dict[str, Any]] = None, *, call_id: str = "call_1", content: str = "") -> LLMResponse:
    return LLMResponse(content=content, tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments or {})])


class ScriptedGateway:
    """
    Replays a fixed list of steps; the last step repeats once the list runs out.

    Every request is checked against the tool-message ordering rule, the
    same way the real gateway checks it before sending.
    """

    def __init__(self, steps: Sequence[Step] = (), chat_steps: Sequence[Step] = ()) -> None:
        self.steps = list(steps)
        self.chat_steps = list(chat_steps)
        self.ask_calls: List[List[Message]] = []
        self.chat_calls: List[List[Message]] = []
        self.monitor = UsageMonitor()

    @staticmethod
    def _next(steps: List[Step], index: int):
        if not steps:
            raise AssertionError("ScriptedGateway has no scripted response")
        return steps[min(index, len(steps) - 1)]

    async def _resolve(self, step: Step, messages: List[Message]):
        if isinstance(step, Exception):
            raise step
        if callable(step):
            step = step(messages)
            if hasattr(step, "__await__"):
                step = await step
        return step

    async def ask_with_tools(self, messages, tools, tool_choice="auto", *, cancel_token=None) -> LLMResponse:
        messages = list(messages)
        validate_message_sequence(messages)
        self.ask_calls.append(messages)
        step = await self._resolve(self._next(self.steps, len(self.ask_calls) - 1), messages)
        return text_response(step) if isinstance(step, str) else step

    async def chat(self, messages, *, cancel_token=None) -> str:
        messages = list(messages)
        validate_message_sequence(messages)
        self.chat_calls.append(messages)
        step = await self._resolve(self._next(self.chat_steps, len(self.chat_calls) - 1), messages)
        return step.content if isinstance(step, LLMResponse) else step


def completion(content: Optional[str] = None, tool_calls: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "id": "chatcmpl-test",
        "choices": [{"index": 0, "message": message, "finish_reason": "tool_calls" if tool_calls else "stop"}],
        "usage": {"prompt_tokens": 100, "completion_tokens": 20, "total_tokens": 120},
    }


def wire_tool_call(name: str, arguments: Any, call_id: str = "call_1") -> Dict[str, Any]:
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments, ensure_ascii=False)
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}


def tool_call_completion(name: str, arguments: Any, call_id: str = "call_1") -> Dict[str, Any]:
    return completion(None, [wire_tool_call(name, arguments, call_id)])
