"""User memories and session summaries maintained by secondary model calls."""

from cadre.memory.manager import MemoryManager, MemoryOperation, MemoryUpdate
from cadre.memory.summary import SessionSummarizer

__all__ = ["MemoryManager", "MemoryOperation", "MemoryUpdate", "SessionSummarizer"]
