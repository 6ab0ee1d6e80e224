"""
Synthesis agent - turns the accumulated flow context into one answer.
"""

import json
import re
from typing import TYPE_CHECKING, Any, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from travelmaster.agent.base import BaseAgent
from travelmaster.core.cancellation import CancellationToken
from travelmaster.core.context import SharedContext
from travelmaster.core.messages import Message
from travelmaster.errors import ExecutionFailedError, GatewayError
from travelmaster.tools.capabilities import WorkerCapability

if TYPE_CHECKING:
    from travelmaster.integrations.llm_gateway import LLMGateway

SYNTHESIS_SYSTEM_PROMPT = """你是旅行规划的整合专家。你会收到用户的原始请求和各个专业助手的执行结果，
请把它们整合成一份连贯、可执行的旅行方案。

只输出一个 JSON 对象，格式如下：
{
  "message": "面向用户的完整回答",
  "plan_data": {
    "budget_status": "预算是否充足的说明",
    "itinerary": ["按天的行程安排"],
    "risk_warnings": ["需要注意的风险"],
    "highlights": ["行程亮点"],
    "alternatives": ["备选方案"]
  },
  "thoughts": "你的整合思路"
}"""

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class PlanData(BaseModel):
    model_config = ConfigDict(extra="allow")

    budget_status: Optional[Any] = None
    itinerary: List[Any] = Field(default_factory=list)
    risk_warnings: List[Any] = Field(default_factory=list)
    highlights: List[Any] = Field(default_factory=list)
    alternatives: List[Any] = Field(default_factory=list)


class HybridResponse(BaseModel):
    """Conversational text plus an optional structured plan."""

    message: str
    plan_data: Optional[PlanData] = None
    thoughts: Optional[str] = None


def parse_hybrid_response(raw: str) -> HybridResponse:
    """
    Parse the model's JSON answer, falling back to plain text.

    Code fences around the JSON are tolerated.
    """
    text = _FENCE.sub("", (raw or "").strip()).strip()
    try:
        return HybridResponse.model_validate(json.loads(text))
    except ValueError as e:
        logger.warning(f"Synthesis output is not structured JSON ({e}); using raw text")
        return HybridResponse(message=(raw or "").strip())


def summarize_context(context: SharedContext) -> str:
    """Render task results and cost figures for the synthesis prompt."""
    sections: List[str] = []

    for key, value in context.items():
        if key.startswith("task_") and key.endswith("_result"):
            sections.append(f"### {key[5:-7]}\n{value}")

    figures = []
    for key, _ in context.items():
        amount = context.get_number(key)
        if key.startswith("extracted_") and key.endswith("_cost") and amount is not None:
            figures.append(f"- {key}: ¥{amount:.0f}")
    budget = context.get_number("user_budget")
    if budget is not None:
        figures.append(f"- user_budget: ¥{budget:.0f}")
    if figures:
        sections.append("### 费用信息\n" + "\n".join(figures))

    return "\n\n".join(sections)


class SynthesisAgent(BaseAgent):
    """Emits the flow's final structured answer from the shared context."""

    def __init__(
        self,
        gateway: "LLMGateway",
        *,
        name: str = "synthesis",
        system_prompt: str = SYNTHESIS_SYSTEM_PROMPT,
    ):
        super().__init__(
            name,
            "整合各助手结果，生成最终旅行方案",
            {WorkerCapability.TEXT_GENERATION, WorkerCapability.DATA_ANALYSIS},
        )
        self.gateway = gateway
        self.system_prompt = system_prompt
        self.last_response: Optional[HybridResponse] = None

    async def synthesize(
        self,
        request: str,
        context: SharedContext,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> HybridResponse:
        self.set_shared_context(context)
        await self.run(request, cancel_token=cancel_token)
        return self.last_response or HybridResponse(message="")

    async def _execute(self, request: str, cancel_token: Optional[CancellationToken]) -> str:
        self.last_response = None
        prompt = f"用户请求：{request}\n\n上下文数据：\n{summarize_context(self._shared_context) or '（无）'}"
        messages = [Message.system(self.system_prompt), Message.user(prompt)]

        try:
            raw = await self.gateway.chat(messages, cancel_token=cancel_token)
        except GatewayError as e:
            raise ExecutionFailedError(f"Synthesis failed: {e}") from e

        self.last_response = parse_hybrid_response(raw)
        self.record_thought(1, self.last_response.thoughts or "synthesized final answer")
        return self.last_response.message
