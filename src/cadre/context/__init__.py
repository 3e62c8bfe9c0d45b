"""Context assembly and token budgeting."""

from cadre.context.assembler import (
    AssembledContext,
    CompressionPolicy,
    ContextAssembler,
    render_content,
)
from cadre.context.tokens import estimate_tokens, estimate_total_tokens

__all__ = [
    "AssembledContext",
    "CompressionPolicy",
    "ContextAssembler",
    "estimate_tokens",
    "estimate_total_tokens",
    "render_content",
]
