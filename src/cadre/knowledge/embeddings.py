"""Embedding clients used to index and query the knowledge base."""

import asyncio
from typing import Any, Protocol

import httpx
import numpy as np


class EmbeddingClient(Protocol):
    """Protocol for embedding generation clients."""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate one embedding vector per input text."""
        ...

    async def embed_single(self, text: str) -> list[float]: ...

    @property
    def model_name(self) -> str: ...


class SentenceTransformerEmbedding:
    """Local embeddings via sentence-transformers.

    The model loads lazily on first use and encoding runs in a worker
    thread, so constructing the client is cheap.
    """

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-MiniLM-L6-v2",
        device: str | None = None,
        cache_dir: str | None = None,
    ):
        self._model_name = model_name
        self._device = device
        self._cache_dir = cache_dir
        self._model: Any = None

    def _load_model(self) -> Any:
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(
                self._model_name,
                device=self._device,
                cache_folder=self._cache_dir,
            )
        return self._model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        model = await asyncio.to_thread(self._load_model)
        raw = await asyncio.to_thread(model.encode, texts)

        if isinstance(raw, np.ndarray):
            return raw.tolist()
        return [emb.tolist() if isinstance(emb, np.ndarray) else list(emb) for emb in raw]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    @property
    def model_name(self) -> str:
        return self._model_name


class OllamaEmbedding:
    """Embeddings from an Ollama server's ``/api/embed`` endpoint."""

    def __init__(
        self,
        model: str = "nomic-embed-text",
        host: str = "http://localhost:11434",
        timeout: int = 30,
    ):
        self._model = model
        self._host = host.rstrip("/")
        self._timeout = timeout

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts in one request.

        Raises:
            httpx.HTTPError: If the server is unreachable or answers with an error
        """
        if not texts:
            return []

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                f"{self._host}/api/embed",
                json={"model": self._model, "input": texts},
            )
            response.raise_for_status()
            return response.json()["embeddings"]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    @property
    def model_name(self) -> str:
        return self._model
