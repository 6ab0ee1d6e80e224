"""
Language-model gateway.

Talks to an OpenAI-compatible chat-completions endpoint:
- builds one request per call from the conversation and tool schemas
- retries transient failures with jittered exponential backoff
- normalizes tool calls into `ToolCall` objects
- records every attempt in a `UsageMonitor`
"""

from __future__ import annotations

import asyncio
import json
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

import httpx
from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from travelmaster.config.models import LLMConfig
from travelmaster.core.cancellation import CancellationToken
from travelmaster.core.messages import Message, MessageRole, ToolCall, validate_message_sequence
from travelmaster.errors import (
    ApiError,
    GatewayError,
    GatewayTimeoutError,
    HttpStatusError,
    InvalidResponseError,
    InvalidToolCallError,
    NetworkError,
    RetriesExhaustedError,
    ServiceUnavailableError,
)
from travelmaster.integrations.monitor import UsageMonitor

ToolChoice = Union[str, Dict[str, Any]]

_TOOL_CHOICE_KEYWORDS = ("auto", "required", "none")


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class InvalidToolCall:
    """A tool call the model sent that could not be normalized."""
    id: Optional[str]
    name: Optional[str]
    error: str


@dataclass
class LLMResponse:
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    invalid_tool_calls: List[InvalidToolCall] = field(default_factory=list)
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None

    @property
    def text(self) -> str:
        return (self.content or "").strip()

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


def function_tool_choice(name: str) -> Dict[str, Any]:
    """Force the model to call one specific function."""
    return {"type": "function", "function": {"name": name}}


class JitteredBackoff(wait_base):
    """`min(max_delay, base * multiplier**attempt * jitter)`, jitter in [low, high]."""

    def __init__(
        self,
        base: float,
        multiplier: float,
        max_delay: float,
        jitter: Tuple[float, float] = (0.8, 1.2),
        uniform: Callable[[float, float], float] = random.uniform,
    ):
        self.base = base
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter = jitter
        self._uniform = uniform

    def __call__(self, retry_state: RetryCallState) -> float:
        attempt = max(0, retry_state.attempt_number - 1)
        delay = self.base * (self.multiplier ** attempt) * self._uniform(*self.jitter)
        return min(self.max_delay, delay)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, GatewayError) and exc.retryable


class LLMGateway:
    """
    Chat / tool-call client with retry and usage tracking.

    Args:
        config: Connection, sampling and retry settings
        monitor: Usage monitor to record attempts in (a private one if omitted)
        transport: Optional httpx transport (tests pass `httpx.MockTransport`)
        sleep: Awaitable used between retries
    """

    def __init__(
        self,
        config: LLMConfig,
        *,
        monitor: Optional[UsageMonitor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.config = config
        self.monitor = monitor or UsageMonitor()
        self._transport = transport
        self._sleep = sleep or asyncio.sleep
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def endpoint(self) -> str:
        base = self.config.base_url.rstrip("/")
        if base.endswith("/chat/completions"):
            return base
        return f"{base}/chat/completions"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.request_timeout_seconds),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: Sequence[Message],
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Plain chat completion.

        Returns:
            The assistant text

        Raises:
            InvalidResponseError: If the model returned no text
        """
        payload = self._build_payload(messages)
        response = await self._send(payload, cancel_token)
        if not response.text:
            raise InvalidResponseError("Model returned an empty message")
        return response.content or ""

    async def ask_with_tools(
        self,
        messages: Sequence[Message],
        tools: Sequence[Dict[str, Any]],
        tool_choice: ToolChoice = "auto",
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> LLMResponse:
        """
        Chat completion that may return tool calls.

        Args:
            messages: Conversation, oldest first
            tools: OpenAI-format function schemas
            tool_choice: "auto", "required", "none", a function name or a raw choice dict

        Returns:
            LLMResponse with text and/or tool calls
        """
        payload = self._build_payload(messages, tools=tools, tool_choice=tool_choice)
        return await self._send(payload, cancel_token)

    def estimate_cost(self, usage: Optional[TokenUsage]) -> float:
        if usage is None:
            return 0.0
        return (
            usage.prompt_tokens / 1000 * self.config.input_cost_per_1k
            + usage.completion_tokens / 1000 * self.config.output_cost_per_1k
        )

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_payload(
        self,
        messages: Sequence[Message],
        *,
        tools: Optional[Sequence[Dict[str, Any]]] = None,
        tool_choice: Optional[ToolChoice] = None,
    ) -> Dict[str, Any]:
        validate_message_sequence(messages)

        cfg = self.config
        payload: Dict[str, Any] = {
            "model": cfg.model,
            "messages": [self.format_message(m) for m in messages],
            "max_tokens": cfg.max_tokens,
            "temperature": cfg.temperature,
            "top_p": cfg.top_p,
            "frequency_penalty": cfg.frequency_penalty,
            "presence_penalty": cfg.presence_penalty,
        }
        if tools:
            payload["tools"] = list(tools)
            payload["tool_choice"] = self._normalize_tool_choice(tool_choice or "auto")
        return payload

    @staticmethod
    def _normalize_tool_choice(choice: ToolChoice) -> ToolChoice:
        if isinstance(choice, dict):
            return choice
        if choice in _TOOL_CHOICE_KEYWORDS:
            return choice
        return function_tool_choice(str(choice))

    @staticmethod
    def format_message(message: Message) -> Dict[str, Any]:
        """Serialize a message into the wire format."""
        data: Dict[str, Any] = {"role": message.role.value, "content": message.content}

        if message.role == MessageRole.ASSISTANT and message.tool_calls:
            data["content"] = message.content or None
            data["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in message.tool_calls
            ]
        elif message.role == MessageRole.TOOL and message.metadata:
            data["tool_call_id"] = message.metadata.tool_call_id
            if message.metadata.tool_name:
                data["name"] = message.metadata.tool_name

        return data

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def _send(
        self,
        payload: Dict[str, Any],
        cancel_token: Optional[CancellationToken],
    ) -> LLMResponse:
        cfg = self.config
        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(cfg.max_retries + 1),
            wait=JitteredBackoff(cfg.base_delay_seconds, cfg.backoff_multiplier, cfg.max_delay_seconds),
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry,
            reraise=True,
        )

        attempts = 0
        logger.debug(
            f"LLM request: model={cfg.model} messages={len(payload['messages'])} "
            f"tools={len(payload.get('tools', []))}"
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled()
                    attempts += 1
                    response = await self._attempt(payload)
        except GatewayError as e:
            if e.retryable:
                logger.error(f"LLM request failed after {attempts} attempts: {e}")
                raise RetriesExhaustedError(attempts, cause=e) from e
            logger.error(f"LLM request failed: {e}")
            raise

        return response

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"LLM attempt {retry_state.attempt_number} failed ({exc}); retrying in {delay:.2f}s"
        )

    async def _attempt(self, payload: Dict[str, Any]) -> LLMResponse:
        start = time.monotonic()
        try:
            response = await self._post(payload)
        except GatewayError as e:
            self.monitor.record(
                success=False,
                duration_seconds=time.monotonic() - start,
                error=f"{type(e).__name__}: {e}",
            )
            raise

        usage = response.usage
        self.monitor.record(
            success=True,
            duration_seconds=time.monotonic() - start,
            tokens=usage.total_tokens if usage else 0,
            cost=self.estimate_cost(usage),
        )
        return response

    async def _post(self, payload: Dict[str, Any]) -> LLMResponse:
        client = await self._get_client()
        try:
            resp = await client.post(self.endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error: {e}") from e

        if resp.status_code >= 400:
            # Never log API keys; include only status and a small excerpt.
            excerpt = (resp.text or "")[:500]
            if resp.status_code == 503:
                raise ServiceUnavailableError(excerpt)
            raise HttpStatusError(resp.status_code, excerpt)

        try:
            data = resp.json()
        except ValueError as e:
            raise InvalidResponseError("Response body is not valid JSON") from e

        return self._parse_response(data)

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def _parse_response(self, data: Any) -> LLMResponse:
        if not isinstance(data, dict):
            raise InvalidResponseError("Response body is not a JSON object")

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ApiError(message or "Unknown API error")

        choices = data.get("choices")
        first = choices[0] if isinstance(choices, list) and choices else None
        message = first.get("message") if isinstance(first, dict) else None
        if not isinstance(message, dict):
            raise InvalidResponseError("Response is missing choices[0].message")

        content = message.get("content")
        if content is not None and not isinstance(content, str):
            content = str(content)

        tool_calls: List[ToolCall] = []
        invalid: List[InvalidToolCall] = []
        for raw in message.get("tool_calls") or []:
            parsed = self._parse_tool_call(raw)
            if isinstance(parsed, ToolCall):
                tool_calls.append(parsed)
            else:
                invalid.append(parsed)

        if invalid:
            logger.warning(f"Discarded {len(invalid)} invalid tool call(s): {[i.error for i in invalid]}")
            if not tool_calls and not (content or "").strip():
                raise InvalidToolCallError("; ".join(i.error for i in invalid))

        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            invalid_tool_calls=invalid,
            usage=self._parse_usage(data.get("usage")),
            finish_reason=first.get("finish_reason"),
        )

    @staticmethod
    def _parse_tool_call(raw: Any) -> Union[ToolCall, InvalidToolCall]:
        if not isinstance(raw, dict):
            return InvalidToolCall(id=None, name=None, error="tool call is not an object")

        call_id = raw.get("id")
        function = raw.get("function") if isinstance(raw.get("function"), dict) else {}
        name = function.get("name")
        if not call_id or not name:
            return InvalidToolCall(
                id=call_id or None,
                name=name or None,
                error="tool call is missing id or function name",
            )

        arguments = function.get("arguments")
        if arguments is None or arguments == "":
            return ToolCall(id=str(call_id), name=str(name), arguments={})
        if isinstance(arguments, dict):
            return ToolCall(id=str(call_id), name=str(name), arguments=arguments)
        if isinstance(arguments, str):
            try:
                parsed = json.loads(arguments)
            except ValueError:
                return InvalidToolCall(id=str(call_id), name=str(name), error=f"arguments of '{name}' are not valid JSON")
            if isinstance(parsed, dict):
                return ToolCall(id=str(call_id), name=str(name), arguments=parsed)
        return InvalidToolCall(id=str(call_id), name=str(name), error=f"arguments of '{name}' are not a JSON object")

    @staticmethod
    def _parse_usage(raw: Any) -> Optional[TokenUsage]:
        if not isinstance(raw, dict):
            return None
        try:
            prompt = int(raw.get("prompt_tokens") or 0)
            completion = int(raw.get("completion_tokens") or 0)
            total = int(raw.get("total_tokens") or (prompt + completion))
        except (TypeError, ValueError):
            return None
        return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)
