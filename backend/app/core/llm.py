from __future__ import annotations

import json
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

import httpx

from ..observability.domain_metrics import stream_frames_skipped_total, tool_invocations_total
from ..observability.logging import get_logger
from ..tools.base import Tool, index_tools
from .config import ConfigurationError, GenerationSettings
from .sse import aiter_sse

logger = get_logger("core.llm")

DONE_MARKER = "[DONE]"


class LLMError(Exception):
    """Raised when the generation provider returns an error or the stream breaks."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.retryable = retryable


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolInvocation:
    name: str
    arguments: Dict[str, Any]
    ok: bool
    result: Dict[str, Any]


@dataclass(frozen=True)
class StreamCompleted:
    finish_reason: Optional[str] = None


StreamEvent = Union[TextDelta, ToolInvocation, StreamCompleted]


class GenerationState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


class AnswerStream:
    """
    Single-use async iterator over one generation.

    idle -> streaming -> completed | errored. A consumer that closes the
    stream early (client disconnect) leaves it `cancelled`.
    """

    def __init__(self, factory: Callable[[], AsyncIterator[StreamEvent]]) -> None:
        self.state = GenerationState.IDLE
        self._factory = factory
        self._iterator: Optional[AsyncIterator[StreamEvent]] = None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._iterator is not None:
            raise RuntimeError("AnswerStream can only be consumed once")
        self._iterator = self._iterate()
        return self._iterator

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        self.state = GenerationState.STREAMING
        inner = self._factory()
        try:
            async for event in inner:
                if isinstance(event, StreamCompleted):
                    self.state = GenerationState.COMPLETED
                yield event
            self.state = GenerationState.COMPLETED
        except Exception:
            self.state = GenerationState.ERRORED
            raise
        finally:
            if self.state is GenerationState.STREAMING:
                self.state = GenerationState.CANCELLED
            await inner.aclose()  # type: ignore[attr-defined]

    async def aclose(self) -> None:
        if self._iterator is not None:
            await self._iterator.aclose()  # type: ignore[attr-defined]
        elif self.state is GenerationState.IDLE:
            self.state = GenerationState.CANCELLED


@dataclass
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class _RoundState:
    """Accumulates one chat-completions stream: text, tool calls, finish reason."""

    text: List[str] = field(default_factory=list)
    calls: Dict[int, _PendingToolCall] = field(default_factory=dict)
    finish_reason: Optional[str] = None
    terminated: bool = False

    def apply(self, chunk: Dict[str, Any]) -> str:
        """
        Fold one decoded frame into the round. Frames of the wrong shape
        raise ValueError and are skipped by the caller.
        """
        choices = chunk.get("choices")
        if not choices:
            return ""
        if not isinstance(choices, list) or not isinstance(choices[0], dict):
            raise ValueError("'choices' is not a list of objects")
        choice = choices[0]

        delta = choice.get("delta") or {}
        if not isinstance(delta, dict):
            raise ValueError("'delta' is not an object")
        tool_deltas = delta.get("tool_calls") or []
        if not isinstance(tool_deltas, list) or not all(
            isinstance(t, dict) and isinstance(t.get("function") or {}, dict)
            for t in tool_deltas
        ):
            raise ValueError("'tool_calls' is not a list of call objects")

        if choice.get("finish_reason"):
            self.finish_reason = choice["finish_reason"]

        for tool_delta in tool_deltas:
            index = int(tool_delta.get("index", 0))
            pending = self.calls.setdefault(index, _PendingToolCall(id=f"call_{index}"))
            if tool_delta.get("id"):
                pending.id = str(tool_delta["id"])
            function = tool_delta.get("function") or {}
            if function.get("name"):
                pending.name = str(function["name"])
            arguments = function.get("arguments") or ""
            pending.arguments += arguments if isinstance(arguments, str) else json.dumps(arguments)

        content = delta.get("content")
        if isinstance(content, str) and content:
            self.text.append(content)
            return content
        return ""

    def tool_calls(self) -> List[_PendingToolCall]:
        return [self.calls[i] for i in sorted(self.calls)]


class GroundedAnswerGenerator:
    """
    Streams an answer from an OpenAI-compatible chat-completions endpoint.

    Tool calls requested by the model are executed between rounds and their
    results fed back; a failing tool never aborts the answer.
    """

    def __init__(
        self,
        cfg: GenerationSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not cfg.api_key:
            raise ConfigurationError(
                "Missing chat API key (set OPENAI_API_KEY or GEMINI_API_KEY)"
            )
        self.cfg = cfg
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(cfg.timeout_seconds, connect=10.0)
        )
        self._owns_client = http_client is None

    def generate(
        self,
        system_instruction: str,
        user_message: str,
        tools: Sequence[Tool] = (),
    ) -> AnswerStream:
        registry = index_tools(tools)
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system_instruction},
            {"role": "user", "content": user_message},
        ]
        return AnswerStream(lambda: self._run(messages, registry))

    async def _run(
        self,
        messages: List[Dict[str, Any]],
        registry: Dict[str, Tool],
    ) -> AsyncIterator[StreamEvent]:
        tool_specs = [tool.to_openai_spec() for tool in registry.values()]
        rounds = 0

        while True:
            state = _RoundState()
            async with aclosing(self._stream_round(messages, tool_specs, state)) as texts:
                async for text in texts:
                    yield TextDelta(text)

            calls = state.tool_calls()
            if not calls:
                if not state.terminated:
                    logger.info("Upstream stream ended without a terminal marker")
                yield StreamCompleted(finish_reason=state.finish_reason)
                return

            if rounds >= self.cfg.max_tool_rounds:
                logger.warning(
                    "Tool round limit reached, ending generation",
                    extra={"max_tool_rounds": self.cfg.max_tool_rounds},
                )
                yield StreamCompleted(finish_reason="tool_round_limit")
                return
            rounds += 1

            messages.append(
                {
                    "role": "assistant",
                    "content": "".join(state.text) or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments},
                        }
                        for call in calls
                    ],
                }
            )
            for call in calls:
                invocation = await self._invoke_tool(call, registry)
                yield invocation
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": json.dumps(invocation.result, default=str),
                    }
                )

    async def _stream_round(
        self,
        messages: List[Dict[str, Any]],
        tool_specs: List[Dict[str, Any]],
        state: _RoundState,
    ) -> AsyncIterator[str]:
        url = self.cfg.base_url.rstrip("/") + "/chat/completions"
        payload: Dict[str, Any] = {
            "model": self.cfg.model,
            "messages": messages,
            "stream": True,
        }
        if tool_specs:
            payload["tools"] = tool_specs
        headers = {
            "Authorization": f"Bearer {self.cfg.api_key}",
            "Accept": "text/event-stream",
        }

        try:
            async with self._client.stream("POST", url, json=payload, headers=headers) as resp:
                if resp.status_code != 200:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise LLMError(
                        f"Chat completion returned status {resp.status_code}: {body[:300]}",
                        status_code=resp.status_code,
                        body=body,
                    )

                async with aclosing(aiter_sse(resp.aiter_bytes())) as events:
                    async for sse in events:
                        if sse.data.strip() == DONE_MARKER:
                            state.terminated = True
                            return

                        chunk = self._decode_frame(sse.data)
                        if chunk is None:
                            continue
                        if chunk.get("error"):
                            raise LLMError(f"Upstream stream error: {chunk['error']}")

                        try:
                            text = state.apply(chunk)
                        except (AttributeError, LookupError, TypeError, ValueError) as exc:
                            logger.warning("Skipping malformed stream frame", extra={"error": str(exc)})
                            stream_frames_skipped_total.inc()
                            continue
                        if text:
                            yield text
        except httpx.TimeoutException as exc:
            raise LLMError("Chat completion timed out", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise LLMError(f"Chat completion request failed: {exc}") from exc

    @staticmethod
    def _decode_frame(data: str) -> Optional[Dict[str, Any]]:
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            chunk = None
        if not isinstance(chunk, dict):
            logger.warning("Skipping undecodable stream frame", extra={"frame": data[:200]})
            stream_frames_skipped_total.inc()
            return None
        return chunk

    async def _invoke_tool(
        self,
        call: _PendingToolCall,
        registry: Dict[str, Tool],
    ) -> ToolInvocation:
        tool = registry.get(call.name)
        arguments: Dict[str, Any] = {}
        try:
            if tool is None:
                raise LookupError(f"Unknown tool: {call.name}")
            parsed = json.loads(call.arguments or "{}")
            if not isinstance(parsed, dict):
                raise ValueError("tool arguments must be a JSON object")
            arguments = parsed
            result = await tool.execute(arguments)
        except Exception as exc:
            logger.warning(
                "Tool invocation failed",
                extra={"tool": call.name, "error": str(exc)},
            )
            tool_invocations_total.labels(tool=call.name, status="error").inc()
            return ToolInvocation(
                name=call.name,
                arguments=arguments,
                ok=False,
                result={"success": False, "error": str(exc)},
            )

        tool_invocations_total.labels(tool=call.name, status="ok").inc()
        logger.info("Tool invocation succeeded", extra={"tool": call.name})
        return ToolInvocation(name=call.name, arguments=arguments, ok=True, result=result)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
