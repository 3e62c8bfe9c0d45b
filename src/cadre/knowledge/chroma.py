"""ChromaDB-backed knowledge base."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

import chromadb

from cadre.knowledge.base import Passage, rank_passages
from cadre.knowledge.embeddings import EmbeddingClient

logger = logging.getLogger(__name__)

# Metadata keys the knowledge base reserves for itself
_RESERVED = {"document_id", "chunk_id", "created_at", "seq"}


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 100) -> list[str]:
    """Split text into overlapping chunks, preferring paragraph and sentence breaks."""
    text = text.strip()
    if not text:
        return []
    if len(text) <= chunk_size:
        return [text]

    chunks = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        if end < len(text):
            window = text[start:end]
            for sep in ("\n\n", "\n", ". "):
                cut = window.rfind(sep)
                if cut > chunk_size // 2:
                    end = start + cut + len(sep)
                    break
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= len(text):
            break
        start = max(end - overlap, start + 1)
    return chunks


def _where(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    if not filters:
        return None
    if len(filters) == 1:
        return dict(filters)
    return {"$and": [{key: value} for key, value in filters.items()]}


class ChromaKnowledgeBase:
    """Document index stored in a ChromaDB collection.

    Documents are chunked, embedded with the given client and stored with
    their document id, chunk id, insertion sequence and optional creation
    time, which :func:`rank_passages` uses to break score ties.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        collection_name: str = "cadre_knowledge",
        persist_directory: str | Path | None = None,
        chunk_size: int = 1000,
        chunk_overlap: int = 100,
    ):
        """Initialize the knowledge base.

        Args:
            embedder: Embedding client for documents and queries
            collection_name: Name of the ChromaDB collection
            persist_directory: Directory for persistent storage (None = in-memory)
            chunk_size: Characters per chunk
            chunk_overlap: Characters shared by consecutive chunks
        """
        self.embedder = embedder
        self.collection_name = collection_name
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

        if persist_directory is None:
            self.client = chromadb.EphemeralClient()
        else:
            persist_path = Path(persist_directory).expanduser().resolve()
            persist_path.mkdir(parents=True, exist_ok=True)
            self.client = chromadb.PersistentClient(path=str(persist_path))

        self.collection = self.client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    async def add_document(
        self,
        text: str,
        document_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> list[str]:
        """Chunk, embed and index a document.

        Args:
            text: Document text
            document_id: Stable id (generated if omitted)
            metadata: Scalar metadata usable in search filters
            created_at: Document date, used to break ranking ties

        Returns:
            IDs of the stored chunks
        """
        document_id = document_id or str(uuid4())
        chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)
        if not chunks:
            return []

        embeddings = await self.embedder.embed(chunks)
        base_seq = self.collection.count()

        ids, metadatas = [], []
        for index, _chunk in enumerate(chunks):
            chunk_id = f"{document_id}:{index}"
            meta = {k: v for k, v in (metadata or {}).items() if k not in _RESERVED}
            meta.update(document_id=document_id, chunk_id=chunk_id, seq=base_seq + index)
            if created_at is not None:
                meta["created_at"] = created_at.isoformat()
            ids.append(chunk_id)
            metadatas.append(meta)

        self.collection.add(
            ids=ids,
            embeddings=embeddings,  # type: ignore[arg-type]
            documents=chunks,
            metadatas=metadatas,  # type: ignore[arg-type]
        )
        logger.debug("Indexed document %s as %d chunks", document_id, len(chunks))
        return ids

    async def search(
        self,
        query: str,
        k: int = 5,
        filters: dict[str, Any] | None = None,
    ) -> list[Passage]:
        """Search for the passages most similar to ``query``."""
        total = self.collection.count()
        if total == 0 or k <= 0:
            return []

        query_embedding = await self.embedder.embed_single(query)
        results = self.collection.query(
            query_embeddings=[query_embedding],  # type: ignore[arg-type]
            n_results=min(k, total),
            where=_where(filters),
        )

        # ChromaDB returns results in a batched format
        documents = results["documents"][0] if results["documents"] else []
        metadatas = results["metadatas"][0] if results["metadatas"] else []
        distances = results["distances"][0] if results["distances"] else []

        passages = []
        for doc, meta, distance in zip(documents, metadatas, distances, strict=False):
            meta = dict(meta or {})
            created_at = meta.pop("created_at", None)
            seq = int(meta.pop("seq", 0))
            passages.append(
                Passage(
                    document_id=str(meta.pop("document_id", "")),
                    chunk_id=str(meta.pop("chunk_id", "")),
                    content=doc,
                    # Cosine distance -> similarity
                    score=1.0 - float(distance),
                    metadata=meta,
                    created_at=datetime.fromisoformat(created_at) if created_at else None,
                    seq=seq,
                )
            )

        return rank_passages(passages, k)

    def delete_document(self, document_id: str) -> None:
        self.collection.delete(where={"document_id": document_id})

    def count(self) -> int:
        count_result: int = self.collection.count()
        return count_result

    def clear(self) -> None:
        """Drop and recreate the collection."""
        self.client.delete_collection(name=self.collection_name)
        self.collection = self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )
