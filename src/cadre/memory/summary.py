"""Running session summaries."""

import logging

from pydantic import BaseModel, Field

from cadre.context.assembler import render_content
from cadre.llm.client import LLMClient, Message
from cadre.storage.schema import RunRecord, RunStatus, SessionSummary
from cadre.validation import SchemaMismatch, schema_instructions, validate_payload

logger = logging.getLogger(__name__)

SUMMARY_INSTRUCTIONS = """\
Summarize the conversation so far so it can replace the full transcript. \
Keep names, decisions, open questions and facts the assistant will need \
later. Be concise."""


class _SummaryResponse(BaseModel):
    summary: str
    topics: list[str] = Field(default_factory=list)


class SessionSummarizer:
    """Regenerates a session's summary from its completed runs."""

    def __init__(self, llm: LLMClient, instructions: str = SUMMARY_INSTRUCTIONS):
        self.llm = llm
        self.instructions = instructions

    async def summarize(
        self,
        runs: list[RunRecord],
        previous: SessionSummary | None = None,
    ) -> SessionSummary:
        """Build a new summary.

        The previous summary is folded in, so callers can pass only the runs
        since it was written.
        """
        transcript = []
        for run in runs:
            if run.status != RunStatus.COMPLETED:
                continue
            transcript.append(f"user: {render_content(run.input)}")
            transcript.append(f"assistant: {render_content(run.output)}")

        parts = []
        if previous is not None:
            parts.append(f"<previous_summary>\n{previous.summary}\n</previous_summary>")
        parts.append("<conversation>\n" + "\n".join(transcript) + "\n</conversation>")

        messages = [
            Message(
                role="system",
                content=f"{self.instructions}\n\n{schema_instructions(_SummaryResponse)}",
            ),
            Message(role="user", content="\n\n".join(parts)),
        ]
        response = await self.llm.complete(messages, temperature=0)

        try:
            parsed = validate_payload(response.content, _SummaryResponse)
        except SchemaMismatch:
            # Plain-text answers are still usable as a summary
            logger.debug("Summary response was not JSON; storing it as text")
            text = response.content.strip()
            if not text:
                raise
            return SessionSummary(summary=text)

        return SessionSummary(summary=parsed.summary, topics=parsed.topics)
