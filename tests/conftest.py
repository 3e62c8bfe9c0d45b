"""Pytest configuration and shared fixtures."""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from cadre.config.schema import CadreConfig
from cadre.llm.client import CompletionResponse, Message, StreamChunk
from cadre.storage.in_memory import InMemoryStorage
from cadre.storage.sqlite import SQLiteStorage

Scripted = CompletionResponse | str | Exception | Callable[[list[Message], Any], Any]


class MockLLM:
    """Scripted LLM client.

    Each call consumes the next scripted item: a CompletionResponse, a
    plain string (becomes the content), an exception (raised) or a callable
    taking ``(messages, tools)`` and returning one of those.
    """

    def __init__(self, responses: list[Scripted], delay: float = 0.0):
        self.responses = list(responses)
        self.delay = delay
        self.call_count = 0
        self.calls: list[dict[str, Any]] = []

    def _next(self, messages: list[Message], tools: Any, **params: Any) -> CompletionResponse:
        self.calls.append({"messages": list(messages), "tools": tools, **params})
        if self.call_count >= len(self.responses):
            raise AssertionError(f"MockLLM ran out of responses after {self.call_count} calls")
        item = self.responses[self.call_count]
        self.call_count += 1

        if callable(item) and not isinstance(item, CompletionResponse):
            item = item(messages, tools)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return CompletionResponse(content=item)
        return item

    async def complete(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **params: Any,
    ) -> CompletionResponse:
        if self.delay:
            await asyncio.sleep(self.delay)
        return self._next(messages, tools, temperature=temperature, max_tokens=max_tokens)

    async def stream_complete(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **params: Any,
    ):
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self._next(messages, tools, temperature=temperature, max_tokens=max_tokens)
        words = response.content.split(" ")
        for i, word in enumerate(words):
            yield StreamChunk(content=word if i == len(words) - 1 else word + " ")
        yield StreamChunk(
            done=True,
            tool_calls=list(response.tool_calls or []),
            finish_reason=response.finish_reason,
            usage=response.usage,
        )

    def system_prompt(self, call: int = 0) -> str:
        """System message content sent on the given call."""
        messages = self.calls[call]["messages"]
        return messages[0].content if messages and messages[0].role == "system" else ""


@pytest.fixture
def make_llm() -> Callable[..., MockLLM]:
    """Factory for scripted mock LLM clients."""
    return MockLLM


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def sqlite_storage(tmp_path) -> SQLiteStorage:
    return SQLiteStorage(tmp_path / "cadre.db")


@pytest.fixture
def default_config() -> CadreConfig:
    """Provide a default configuration for tests."""
    return CadreConfig()
