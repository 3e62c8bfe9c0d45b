"""Knowledge retrieval for retrieval-augmented runs.

- :class:`KnowledgeRetriever` - protocol the context assembler searches through
- :class:`ChromaKnowledgeBase` - chunked document index on ChromaDB
- :class:`SentenceTransformerEmbedding` / :class:`OllamaEmbedding` - embedders
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from cadre.knowledge.base import KnowledgeRetriever, Passage, rank_passages
from cadre.knowledge.embeddings import (
    EmbeddingClient,
    OllamaEmbedding,
    SentenceTransformerEmbedding,
)

if TYPE_CHECKING:
    from cadre.config.schema import KnowledgeConfig
    from cadre.knowledge.chroma import ChromaKnowledgeBase


def create_knowledge_base(config: KnowledgeConfig) -> ChromaKnowledgeBase:
    """Build the configured ChromaDB knowledge base."""
    from cadre.knowledge.chroma import ChromaKnowledgeBase

    embedder: EmbeddingClient
    if config.embedding_provider == "ollama":
        embedder = OllamaEmbedding(model=config.embedding_model, host=config.ollama_host)
    else:
        embedder = SentenceTransformerEmbedding(model_name=config.embedding_model)

    return ChromaKnowledgeBase(
        embedder=embedder,
        collection_name=config.collection_name,
        persist_directory=config.persist_directory,
        chunk_size=config.chunk_size,
    )


__all__ = [
    "EmbeddingClient",
    "KnowledgeRetriever",
    "OllamaEmbedding",
    "Passage",
    "SentenceTransformerEmbedding",
    "create_knowledge_base",
    "rank_passages",
]
