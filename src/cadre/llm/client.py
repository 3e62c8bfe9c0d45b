"""LLM client protocol and data types."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class ToolCall:
    """A tool call requested by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None  # For tool response messages
    name: str | None = None  # Tool name for tool response messages

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in self.tool_calls
            ]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.name:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        tool_calls = None
        if data.get("tool_calls"):
            tool_calls = [ToolCall(**tc) for tc in data["tool_calls"]]
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            tool_calls=tool_calls,
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


@dataclass
class Usage:
    """Token usage reported by the backend."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class CompletionResponse:
    """Response from LLM completion."""

    content: str
    tool_calls: list[ToolCall] | None = None
    finish_reason: str = "stop"
    usage: Usage | None = None


@dataclass
class StreamChunk:
    """An incremental piece of a streamed completion.

    Content deltas arrive with ``done=False``. The last chunk has
    ``done=True`` and carries the assembled tool calls, finish reason and
    usage, if the backend reported any.
    """

    content: str = ""
    done: bool = False
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    usage: Usage | None = None


class LLMClient(Protocol):
    """Protocol for LLM client implementations.

    ``params`` is an opaque bag of backend-specific generation parameters
    (``top_p``, ``seed``, ``stop`` ...) passed through untouched.
    """

    async def complete(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **params: Any,
    ) -> CompletionResponse:
        """Generate a completion from the LLM.

        Args:
            messages: Conversation history
            tools: Available tools in OpenAI function format
            temperature: Sampling temperature override
            max_tokens: Maximum tokens to generate
            **params: Extra generation parameters

        Returns:
            CompletionResponse with content and optional tool calls
        """
        ...

    def stream_complete(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **params: Any,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion from the LLM.

        Yields:
            Content deltas, then a final chunk with ``done=True``
        """
        ...
