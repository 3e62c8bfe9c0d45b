"""Tool registration and dispatch."""

import asyncio
import inspect
import logging
import time
import types
from collections.abc import Callable, Iterable, Iterator
from typing import Any, Union, get_type_hints

from cadre.errors import DuplicateTool, UnknownTool
from cadre.tools.base import (
    STATE_PARAMETER,
    Tool,
    ToolFunction,
    ToolParameter,
    ToolResult,
    ToolSchema,
    ToolStatus,
)

logger = logging.getLogger(__name__)


def _python_type_to_json_schema(py_type: Any) -> str:
    """Convert Python type hint to JSON Schema type.

    Args:
        py_type: Python type annotation

    Returns:
        JSON Schema type string
    """
    # Unwrap Optional/Union (both typing.Union and PEP 604 unions)
    args = getattr(py_type, "__args__", None)
    origin = getattr(py_type, "__origin__", None)
    if args and (origin is Union or isinstance(py_type, types.UnionType)):
        non_none = [arg for arg in args if arg is not type(None)]
        if non_none:
            py_type = non_none[0]
            origin = getattr(py_type, "__origin__", None)

    # list[str], dict[str, Any] ...
    if origin is not None:
        py_type = origin

    type_map = {
        str: "string",
        int: "integer",
        float: "number",
        bool: "boolean",
        list: "array",
        tuple: "array",
        dict: "object",
    }

    return type_map.get(py_type, "string")


def _parameter_descriptions(doc: str | None) -> dict[str, str]:
    """Pull ``name: description`` lines out of a docstring."""
    descriptions: dict[str, str] = {}
    if not doc:
        return descriptions
    for line in doc.split("\n"):
        line = line.strip()
        name, sep, rest = line.partition(":")
        name = name.split(" ")[0]
        if sep and name.isidentifier() and rest.strip():
            descriptions.setdefault(name, rest.strip())
    return descriptions


def build_tool(
    fn: ToolFunction,
    description: str | None = None,
    requires_confirmation: bool = False,
    name: str | None = None,
) -> Tool:
    """Build a Tool by introspecting a function's signature and docstring.

    Args:
        fn: Sync or async handler
        description: Tool description (defaults to the docstring's first line)
        requires_confirmation: Whether a human must approve each call
        name: Tool name (defaults to the function name)

    Returns:
        Tool instance
    """
    hints = get_type_hints(fn)
    sig = inspect.signature(fn)
    param_docs = _parameter_descriptions(fn.__doc__)

    parameters: list[ToolParameter] = []
    for param_name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        if param_name == STATE_PARAMETER:
            continue

        parameters.append(
            ToolParameter(
                name=param_name,
                type=_python_type_to_json_schema(hints.get(param_name, str)),
                description=param_docs.get(param_name, f"Parameter {param_name}"),
                required=param.default is inspect.Parameter.empty,
            )
        )

    if description is None:
        doc = (fn.__doc__ or "").strip()
        description = doc.split("\n")[0] if doc else fn.__name__

    schema = ToolSchema(
        name=name or fn.__name__,
        description=description,
        parameters=parameters,
        requires_confirmation=requires_confirmation,
    )
    return Tool(schema=schema, fn=fn)


def tool(
    description: str | None = None,
    requires_confirmation: bool = False,
    name: str | None = None,
) -> Callable[[ToolFunction], Tool]:
    """Decorator turning a function into a Tool.

    Example:
        @tool(description="Delete a file", requires_confirmation=True)
        async def delete_file(path: str) -> str:
            '''Remove a file.

            Args:
                path: File to delete
            '''
            ...
    """

    def decorator(fn: ToolFunction) -> Tool:
        return build_tool(
            fn,
            description=description,
            requires_confirmation=requires_confirmation,
            name=name,
        )

    return decorator


class ToolRegistry:
    """Name-to-tool map with schema export and failure-isolating dispatch.

    Registration is expected at setup time; lookups and invocations are
    safe from concurrent runs.
    """

    def __init__(self, tools: Iterable[Tool | ToolFunction] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for item in tools or []:
            self.register(item)

    def register(self, item: Tool | ToolFunction) -> Tool:
        """Register a tool (or a plain function, introspected into one).

        Raises:
            DuplicateTool: If a tool with the same name exists
        """
        new_tool = item if isinstance(item, Tool) else build_tool(item)
        if new_tool.name in self._tools:
            raise DuplicateTool(f"Tool '{new_tool.name}' already registered")
        self._tools[new_tool.name] = new_tool
        return new_tool

    def tool(
        self,
        description: str | None = None,
        requires_confirmation: bool = False,
        name: str | None = None,
    ) -> Callable[[ToolFunction], Tool]:
        """Decorator registering the function in this registry."""

        def decorator(fn: ToolFunction) -> Tool:
            return self.register(
                build_tool(
                    fn,
                    description=description,
                    requires_confirmation=requires_confirmation,
                    name=name,
                )
            )

        return decorator

    def resolve(self, name: str) -> Tool:
        """Get a registered tool by name.

        Raises:
            UnknownTool: If no tool has that name
        """
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownTool(f"Unknown tool '{name}'") from None

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def schemas(self) -> list[dict[str, Any]]:
        """Tool schemas in OpenAI function format."""
        return [t.schema.to_openai_format() for t in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))

    async def invoke(
        self,
        target: Tool,
        arguments: dict[str, Any],
        tool_call_id: str = "",
        timeout: float | None = None,
        session_state: dict[str, Any] | None = None,
    ) -> ToolResult:
        """Execute a tool, converting every failure into a ToolResult.

        Cancellation is not a failure and propagates to the caller.

        Args:
            target: Tool returned by :meth:`resolve`
            arguments: Arguments chosen by the model
            tool_call_id: ID of the originating tool call
            timeout: Seconds before the call is abandoned
            session_state: Run state handed to handlers that declare it

        Returns:
            ToolResult with status success, error or timeout
        """
        start = time.perf_counter()
        kwargs = dict(arguments)
        if session_state is not None and target.accepts_state:
            kwargs[STATE_PARAMETER] = session_state

        def result(content: str, status: ToolStatus) -> ToolResult:
            return ToolResult(
                tool_call_id=tool_call_id,
                name=target.name,
                content=content,
                status=status,
                arguments=arguments,
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        try:
            if timeout is not None:
                output = await asyncio.wait_for(target.execute(**kwargs), timeout=timeout)
            else:
                output = await target.execute(**kwargs)
        except TimeoutError:
            logger.warning("Tool '%s' timed out after %.1fs", target.name, timeout)
            return result(f"Error: Tool '{target.name}' timed out after {timeout}s", ToolStatus.TIMEOUT)
        except TypeError as e:
            logger.warning("Tool '%s' got invalid arguments: %s", target.name, e)
            return result(
                f"Error: Invalid arguments for tool '{target.name}': {e}", ToolStatus.ERROR
            )
        except Exception as e:
            logger.warning("Tool '%s' failed: %s", target.name, e)
            return result(
                f"Error executing tool '{target.name}': {type(e).__name__}: {e}",
                ToolStatus.ERROR,
            )

        return result(output, ToolStatus.SUCCESS)
