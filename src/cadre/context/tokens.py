"""Token estimation for context budgeting."""

import json

from cadre.llm.client import Message


def estimate_tokens(message: Message) -> int:
    """Estimate token count for a message.

    Uses a simple heuristic: ~4 characters per token.

    Args:
        message: Message to estimate tokens for

    Returns:
        Estimated token count
    """
    text = message.content or ""

    if message.tool_calls:
        for tc in message.tool_calls:
            text += tc.name + json.dumps(tc.arguments)

    # Per-message framing overhead
    return len(text) // 4 + 4


def estimate_total_tokens(messages: list[Message]) -> int:
    """Estimate total token count for a list of messages."""
    return sum(estimate_tokens(msg) for msg in messages)
