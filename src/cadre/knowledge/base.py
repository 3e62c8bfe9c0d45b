"""Knowledge passages, the retriever protocol and result ranking."""

from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field


class Passage(BaseModel):
    """A chunk of an indexed document, as returned by a search."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_id: str
    content: str
    score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    seq: int = 0  # insertion order within the index


class KnowledgeRetriever(Protocol):
    """Similarity search over an embedded document index."""

    async def search(
        self,
        query: str,
        k: int = 5,
        filters: dict[str, Any] | None = None,
    ) -> list[Passage]:
        """Return up to ``k`` passages, best match first."""
        ...


def rank_passages(passages: list[Passage], k: int | None = None) -> list[Passage]:
    """Order passages by score, newest first on ties, then by insertion order.

    Passages without a ``created_at`` sort after dated ones of equal score.
    """

    def key(p: Passage) -> tuple[float, int, float, int]:
        has_date = p.created_at is not None
        timestamp = p.created_at.timestamp() if p.created_at else 0.0
        return (-p.score, 0 if has_date else 1, -timestamp, p.seq)

    ranked = sorted(passages, key=key)
    return ranked[:k] if k is not None else ranked
