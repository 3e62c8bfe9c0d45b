"""Per-turn context assembly.

The assembler turns a session's history, the user's memories, knowledge
search results and static instructions into the ordered message list sent
to the model. It never writes anything: the same inputs always produce the
same bundle, and a failing retriever only costs the knowledge section.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from cadre.context.tokens import estimate_total_tokens
from cadre.errors import RunWarning, WarningCode
from cadre.knowledge.base import KnowledgeRetriever, Passage, rank_passages
from cadre.llm.client import Message
from cadre.storage.schema import MemoryRecord, RunRecord, RunStatus, SessionRecord

logger = logging.getLogger(__name__)

_DIGEST_CHARS = 200


def render_content(value: Any) -> str:
    """Render run input or output as message text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if hasattr(value, "model_dump_json"):
        return value.model_dump_json()
    return json.dumps(value, default=str, sort_keys=True)


def _clip(text: str, limit: int = _DIGEST_CHARS) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


@dataclass
class CompressionPolicy:
    """Replace older history with one summary once the context gets too big."""

    max_context_tokens: int = 6000
    keep_last_runs: int = 2


@dataclass
class AssembledContext:
    """Everything a model invocation sees, plus how it was built."""

    messages: list[Message]
    history: list[RunRecord] = field(default_factory=list)
    passages: list[Passage] = field(default_factory=list)
    memories: list[MemoryRecord] = field(default_factory=list)
    summary: str | None = None
    compressed_runs: int = 0
    warnings: list[RunWarning] = field(default_factory=list)

    @property
    def estimated_tokens(self) -> int:
        return estimate_total_tokens(self.messages)


class ContextAssembler:
    """Builds the message bundle for a single run."""

    def __init__(
        self,
        instructions: str = "",
        add_history_to_context: bool = True,
        num_history_runs: int | None = None,
        search_knowledge: bool = False,
        knowledge: KnowledgeRetriever | None = None,
        knowledge_top_k: int = 5,
        knowledge_filters: dict[str, Any] | None = None,
        retrieval_timeout: float | None = None,
        compression: CompressionPolicy | None = None,
        add_session_state_to_context: bool = False,
    ):
        self.instructions = instructions
        self.add_history_to_context = add_history_to_context
        self.num_history_runs = num_history_runs
        self.search_knowledge = search_knowledge and knowledge is not None
        self.knowledge = knowledge
        self.knowledge_top_k = knowledge_top_k
        self.knowledge_filters = knowledge_filters
        self.retrieval_timeout = retrieval_timeout
        self.compression = compression
        self.add_session_state_to_context = add_session_state_to_context

    def select_history(self, runs: list[RunRecord]) -> list[RunRecord]:
        """Pick the completed runs to replay, oldest first."""
        if not self.add_history_to_context:
            return []
        completed = [r for r in runs if r.status == RunStatus.COMPLETED]
        if self.num_history_runs is None:
            return completed
        if self.num_history_runs <= 0:
            return []
        return completed[-self.num_history_runs :]

    async def retrieve(self, query: str) -> tuple[list[Passage], list[RunWarning]]:
        """Search knowledge, degrading to no passages on any failure."""
        if not self.search_knowledge or self.knowledge is None or not query.strip():
            return [], []

        try:
            search = self.knowledge.search(query, self.knowledge_top_k, self.knowledge_filters)
            if self.retrieval_timeout is not None:
                passages = await asyncio.wait_for(search, timeout=self.retrieval_timeout)
            else:
                passages = await search
        except TimeoutError:
            logger.warning("Knowledge search timed out after %ss", self.retrieval_timeout)
            return [], [
                RunWarning(
                    WarningCode.KNOWLEDGE_UNAVAILABLE,
                    f"Knowledge search timed out after {self.retrieval_timeout}s",
                )
            ]
        except Exception as e:
            logger.warning("Knowledge search failed: %s", e)
            return [], [
                RunWarning(WarningCode.KNOWLEDGE_UNAVAILABLE, f"Knowledge search failed: {e}")
            ]

        return rank_passages(list(passages), self.knowledge_top_k), []

    async def assemble(
        self,
        input_text: str,
        session: SessionRecord | None = None,
        runs: list[RunRecord] | None = None,
        memories: list[MemoryRecord] | None = None,
        state: dict[str, Any] | None = None,
        extra_instructions: list[str] | None = None,
    ) -> AssembledContext:
        """Assemble the context for one run.

        Args:
            input_text: The current user input
            session: Session the run belongs to (for its summary and state)
            runs: The session's persisted runs in submission order
            memories: Memories of the active user
            state: Session state to render (defaults to the session's)
            extra_instructions: Additional system sections (role, output format)

        Returns:
            AssembledContext with the ordered messages
        """
        history = self.select_history(runs or [])
        passages, warnings = await self.retrieve(input_text)
        memories = list(memories or [])
        if state is None and session is not None:
            state = session.state

        context = self._build(input_text, history, passages, memories, state, extra_instructions)
        context.warnings.extend(warnings)

        policy = self.compression
        if policy is None or context.estimated_tokens <= policy.max_context_tokens:
            return context

        keep = min(policy.keep_last_runs, len(history))
        dropped = history[: len(history) - keep]
        if not dropped:
            return context

        kept = history[len(history) - keep :]
        if session is not None and session.summary is not None:
            summary = session.summary.summary
        else:
            summary = self._digest(dropped)

        logger.info("Compressed %d history runs into a summary", len(dropped))
        compressed = self._build(
            input_text, kept, passages, memories, state, extra_instructions, summary=summary
        )
        compressed.warnings.extend(warnings)
        compressed.compressed_runs = len(dropped)
        return compressed

    def _build(
        self,
        input_text: str,
        history: list[RunRecord],
        passages: list[Passage],
        memories: list[MemoryRecord],
        state: dict[str, Any] | None,
        extra_instructions: list[str] | None,
        summary: str | None = None,
    ) -> AssembledContext:
        sections = [self.instructions.strip()] if self.instructions.strip() else []
        sections.extend(s.strip() for s in extra_instructions or [] if s.strip())

        if memories:
            lines = "\n".join(f"- {m.memory}" for m in memories)
            sections.append(
                "<memories_from_previous_interactions>\n"
                f"{lines}\n"
                "</memories_from_previous_interactions>"
            )

        if self.add_session_state_to_context and state:
            rendered = json.dumps(state, default=str, sort_keys=True, indent=2)
            sections.append(f"<session_state>\n{rendered}\n</session_state>")

        if summary:
            sections.append(f"<conversation_summary>\n{summary}\n</conversation_summary>")

        if passages:
            lines = "\n\n".join(
                f"[{i}] ({p.document_id}#{p.chunk_id}, score {p.score:.3f})\n{p.content}"
                for i, p in enumerate(passages, 1)
            )
            sections.append(
                "Use the following knowledge if it helps answer the request.\n"
                f"<knowledge>\n{lines}\n</knowledge>"
            )

        messages: list[Message] = []
        if sections:
            messages.append(Message(role="system", content="\n\n".join(sections)))

        for run in history:
            messages.append(Message(role="user", content=render_content(run.input)))
            messages.append(Message(role="assistant", content=render_content(run.output)))

        messages.append(Message(role="user", content=input_text))

        return AssembledContext(
            messages=messages,
            history=list(history),
            passages=list(passages),
            memories=list(memories),
            summary=summary,
        )

    @staticmethod
    def _digest(runs: list[RunRecord]) -> str:
        lines = [f"Earlier in this conversation ({len(runs)} exchanges):"]
        for run in runs:
            lines.append(f"- User: {_clip(render_content(run.input))}")
            lines.append(f"  Assistant: {_clip(render_content(run.output))}")
        return "\n".join(lines)
