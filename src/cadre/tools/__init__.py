"""Tool descriptors, the tool registry and the human approval gate.

Tools wrap sync or async handlers with a JSON Schema description for LLM
function calling. A :class:`ToolRegistry` resolves model-requested names to
tools and turns handler failures into data; tools flagged
``requires_confirmation`` are held at an :class:`ApprovalGate` (or a plain
callback) until a human decides.

Usage::

    from cadre.tools import ToolRegistry, tool

    @tool(description="Add two numbers")
    def add(a: int, b: int) -> int:
        return a + b

    registry = ToolRegistry([add])
"""

from cadre.tools.approval import (
    ApprovalDecision,
    ApprovalGate,
    ApprovalRequest,
    ApprovalStatus,
)
from cadre.tools.base import Tool, ToolParameter, ToolResult, ToolSchema, ToolStatus
from cadre.tools.registry import ToolRegistry, build_tool, tool

__all__ = [
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalRequest",
    "ApprovalStatus",
    "Tool",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "ToolSchema",
    "ToolStatus",
    "build_tool",
    "tool",
]
