"""Base types for the tool system."""

import asyncio
import inspect
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # JSON Schema type
    description: str
    required: bool = True
    enum: list[str] | None = None
    items: dict[str, Any] | None = None  # Item schema for "array" parameters


@dataclass
class ToolSchema:
    """JSON Schema representation of a tool for LLM function calling."""

    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)
    requires_confirmation: bool = False

    def parameters_schema(self) -> dict[str, Any]:
        """Build the JSON Schema object describing the parameters."""
        properties: dict[str, Any] = {}
        required = []

        for param in self.parameters:
            param_schema: dict[str, Any] = {
                "type": param.type,
                "description": param.description,
            }
            if param.enum:
                param_schema["enum"] = param.enum
            if param.items:
                param_schema["items"] = param.items

            properties[param.name] = param_schema

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format.

        Returns:
            Dictionary matching OpenAI's function schema format
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema(),
            },
        }


# Handlers declaring this parameter receive the run's mutable session state
STATE_PARAMETER = "session_state"

# Handlers may be plain functions or coroutine functions
ToolFunction = Callable[..., Any] | Callable[..., Awaitable[Any]]


def render_tool_output(value: Any) -> str:
    """Render a handler's return value as text for the model."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if hasattr(value, "model_dump_json"):
        return value.model_dump_json()
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


@dataclass
class Tool:
    """A tool that the agent can use."""

    schema: ToolSchema
    fn: ToolFunction

    @property
    def name(self) -> str:
        return self.schema.name

    @property
    def requires_confirmation(self) -> bool:
        return self.schema.requires_confirmation

    @property
    def accepts_state(self) -> bool:
        """Whether the handler takes the run's ``session_state`` mapping."""
        try:
            return STATE_PARAMETER in inspect.signature(self.fn).parameters
        except (TypeError, ValueError):
            return False

    async def execute(self, **kwargs: Any) -> str:
        """Execute the tool with given arguments.

        Synchronous handlers run in a worker thread so they never block
        the event loop.

        Args:
            **kwargs: Tool arguments

        Returns:
            Tool execution result as string
        """
        if inspect.iscoroutinefunction(self.fn):
            result = await self.fn(**kwargs)
        else:
            result = await asyncio.to_thread(self.fn, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        return render_tool_output(result)


class ToolStatus(StrEnum):
    """Outcome of a tool invocation."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    DENIED = "denied"


@dataclass
class ToolResult:
    """Result of a tool invocation, failures included.

    Failures are data: ``content`` holds the message fed back to the model.
    """

    tool_call_id: str
    name: str
    content: str
    status: ToolStatus = ToolStatus.SUCCESS
    arguments: dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def is_error(self) -> bool:
        return self.status != ToolStatus.SUCCESS
