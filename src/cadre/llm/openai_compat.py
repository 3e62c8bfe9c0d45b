"""Client for OpenAI-compatible chat completion servers."""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from cadre.llm.client import CompletionResponse, Message, StreamChunk, ToolCall, Usage

logger = logging.getLogger(__name__)


class OpenAICompatibleClient:
    """LLM client for any server exposing ``/v1/chat/completions``.

    OpenAI itself, vLLM, SGLang, Ollama and llama.cpp all speak this
    protocol, so one client covers them; subclasses only change defaults.
    """

    def __init__(
        self,
        model: str,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: int = 120,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        default_params: dict[str, Any] | None = None,
    ) -> None:
        """Initialise the client.

        Args:
            model: Model name served by the backend.
            base_url: Endpoint including ``/v1``; ``None`` uses the OpenAI API.
            api_key: API key (many local backends ignore it but the SDK requires one).
            timeout: Request timeout in seconds.
            temperature: Default sampling temperature.
            max_tokens: Default completion token limit.
            default_params: Generation parameters sent with every request.
        """
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.default_params = dict(default_params or {})
        self.client = AsyncOpenAI(base_url=base_url, api_key=api_key or "none", timeout=timeout)

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert internal Message format to OpenAI format."""
        openai_messages: list[dict[str, Any]] = []

        for msg in messages:
            message_dict: dict[str, Any] = {
                "role": msg.role,
                "content": msg.content,
            }

            if msg.tool_calls:
                message_dict["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in msg.tool_calls
                ]

            if msg.tool_call_id:
                message_dict["tool_call_id"] = msg.tool_call_id
            if msg.name:
                message_dict["name"] = msg.name

            openai_messages.append(message_dict)

        return openai_messages

    @staticmethod
    def _parse_arguments(raw: str | None) -> dict[str, Any]:
        if not raw:
            return {}
        try:
            args = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Model sent non-JSON tool arguments: %r", raw[:200])
            return {"_raw": raw}
        return args if isinstance(args, dict) else {"value": args}

    def _parse_tool_calls(self, tool_calls: Any) -> list[ToolCall]:
        """Parse tool calls from an OpenAI-compatible response."""
        if not tool_calls:
            return []

        return [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=self._parse_arguments(tc.function.arguments),
            )
            for tc in tool_calls
        ]

    def _build_params(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None,
        temperature: float | None,
        max_tokens: int | None,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            **self.default_params,
            **params,
            "model": self.model,
            "messages": self._convert_messages(messages),
            "temperature": temperature if temperature is not None else self.temperature,
        }

        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"

        limit = max_tokens or self.max_tokens
        if limit:
            request["max_tokens"] = limit

        return request

    async def complete(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **params: Any,
    ) -> CompletionResponse:
        """Generate a completion.

        Args:
            messages: Conversation history.
            tools: Available tools in OpenAI function format.
            temperature: Sampling temperature override.
            max_tokens: Maximum tokens to generate.
            **params: Extra generation parameters.

        Returns:
            CompletionResponse with content, optional tool calls and usage.
        """
        request = self._build_params(messages, tools, temperature, max_tokens, params)
        response = await self.client.chat.completions.create(**request)

        choice = response.choices[0]
        message = choice.message
        tool_calls = self._parse_tool_calls(message.tool_calls)

        usage = None
        if response.usage is not None:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
            )

        return CompletionResponse(
            content=message.content or "",
            tool_calls=tool_calls if tool_calls else None,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    async def stream_complete(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **params: Any,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion.

        Tool call fragments are accumulated by index and delivered on the
        final chunk, once their JSON arguments are complete.

        Yields:
            Content deltas, then a final ``done`` chunk.
        """
        request = self._build_params(messages, tools, temperature, max_tokens, params)
        request["stream"] = True
        request["stream_options"] = {"include_usage": True}

        stream = await self.client.chat.completions.create(**request)

        pending: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None
        usage: Usage | None = None

        async for chunk in stream:
            if chunk.usage is not None:
                usage = Usage(
                    input_tokens=chunk.usage.prompt_tokens or 0,
                    output_tokens=chunk.usage.completion_tokens or 0,
                )
            if not chunk.choices:
                continue

            choice = chunk.choices[0]
            delta = choice.delta
            if choice.finish_reason:
                finish_reason = choice.finish_reason

            for tc in delta.tool_calls or []:
                slot = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if tc.id:
                    slot["id"] = tc.id
                if tc.function is not None:
                    if tc.function.name:
                        slot["name"] += tc.function.name
                    if tc.function.arguments:
                        slot["arguments"] += tc.function.arguments

            if delta.content:
                yield StreamChunk(content=delta.content)

        tool_calls = [
            ToolCall(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                arguments=self._parse_arguments(slot["arguments"]),
            )
            for index, slot in sorted(pending.items())
        ]

        yield StreamChunk(
            done=True,
            tool_calls=tool_calls,
            finish_reason=finish_reason or ("tool_calls" if tool_calls else "stop"),
            usage=usage,
        )
