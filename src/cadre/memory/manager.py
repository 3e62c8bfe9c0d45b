"""User memory extraction.

After a run, a secondary model call reads the new exchange together with
the user's current memories and answers with add/update/delete operations,
which are applied to the memory store.
"""

import logging
from typing import Literal

from pydantic import BaseModel, Field

from cadre.llm.client import LLMClient, Message
from cadre.storage.base import MemoryStore
from cadre.storage.schema import MemoryRecord, utcnow
from cadre.validation import schema_instructions, validate_payload

logger = logging.getLogger(__name__)

MEMORY_INSTRUCTIONS = """\
You maintain a list of durable facts about a user: preferences, personal \
details, goals and anything else worth remembering across conversations.

Read the conversation and the existing memories, then decide what to change:
- "add" a new fact that is not covered yet
- "update" an existing memory (by memory_id) whose content changed
- "delete" an existing memory (by memory_id) that is no longer true

Only record information about the user. Return an empty list of operations \
when nothing should change."""


class MemoryOperation(BaseModel):
    op: Literal["add", "update", "delete"]
    memory_id: str | None = None
    memory: str | None = None
    topics: list[str] = Field(default_factory=list)


class MemoryUpdate(BaseModel):
    operations: list[MemoryOperation] = Field(default_factory=list)


class MemoryManager:
    """Keeps a user's memories current using a model."""

    def __init__(
        self,
        llm: LLMClient,
        store: MemoryStore,
        instructions: str = MEMORY_INSTRUCTIONS,
    ):
        self.llm = llm
        self.store = store
        self.instructions = instructions

    def _prompt(self, memories: list[MemoryRecord], conversation: list[Message]) -> list[Message]:
        if memories:
            existing = "\n".join(f"- [{m.memory_id}] {m.memory}" for m in memories)
        else:
            existing = "(none)"

        transcript = "\n".join(
            f"{m.role}: {m.content}" for m in conversation if m.role in ("user", "assistant") and m.content
        )
        return [
            Message(
                role="system",
                content=f"{self.instructions}\n\n{schema_instructions(MemoryUpdate)}",
            ),
            Message(
                role="user",
                content=f"<existing_memories>\n{existing}\n</existing_memories>\n\n"
                f"<conversation>\n{transcript}\n</conversation>",
            ),
        ]

    async def extract(self, user_id: str, conversation: list[Message]) -> list[MemoryOperation]:
        """Ask the model which memory operations the conversation implies.

        Raises:
            SchemaMismatch: The model's answer was not a valid operation list
        """
        memories = self.store.list_memories(user_id)
        response = await self.llm.complete(self._prompt(memories, conversation), temperature=0)
        update = validate_payload(response.content, MemoryUpdate)
        return update.operations

    def apply(self, user_id: str, operations: list[MemoryOperation]) -> int:
        """Apply operations to the store.

        Updates and deletes of unknown ids are skipped.

        Returns:
            Number of operations applied
        """
        existing = {m.memory_id: m for m in self.store.list_memories(user_id)}
        applied = 0

        for operation in operations:
            if operation.op == "add":
                if not operation.memory:
                    continue
                self.store.upsert_memory(
                    user_id, MemoryRecord(memory=operation.memory, topics=operation.topics)
                )
            elif operation.op == "update":
                current = existing.get(operation.memory_id or "")
                if current is None or not operation.memory:
                    logger.debug("Skipping update of unknown memory %s", operation.memory_id)
                    continue
                self.store.upsert_memory(
                    user_id,
                    current.model_copy(
                        update={
                            "memory": operation.memory,
                            "topics": operation.topics or current.topics,
                            "updated_at": utcnow(),
                        }
                    ),
                )
            else:
                if not operation.memory_id or not self.store.delete_memory(user_id, operation.memory_id):
                    logger.debug("Skipping delete of unknown memory %s", operation.memory_id)
                    continue
            applied += 1

        return applied

    async def update(self, user_id: str, conversation: list[Message]) -> int:
        """Extract and apply memory operations for one exchange."""
        operations = await self.extract(user_id, conversation)
        applied = self.apply(user_id, operations)
        logger.info("Applied %d memory operations for user %s", applied, user_id)
        return applied
