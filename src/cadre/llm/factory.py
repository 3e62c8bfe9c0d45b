"""Factory function for creating LLM clients from configuration."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from cadre.llm.ollama import OllamaClient
from cadre.llm.openai_compat import OpenAICompatibleClient

if TYPE_CHECKING:
    from cadre.config.schema import CadreConfig

DEFAULT_BASE_URLS = {
    "ollama": "http://localhost:11434/v1",
    "vllm": "http://localhost:8000/v1",
}


def create_llm_client(config: CadreConfig, model: str | None = None) -> OpenAICompatibleClient:
    """Create an LLM client based on configuration.

    Args:
        config: cadre configuration.
        model: Optional model name overriding ``config.model.name``.

    Returns:
        An LLM client for the configured backend.

    Raises:
        ValueError: If the backend is not recognised.
    """
    backend = config.inference.backend
    name = model or config.model.name
    base_url = config.inference.base_url or DEFAULT_BASE_URLS.get(backend)

    if backend == "ollama":
        return OllamaClient(
            model=name,
            base_url=base_url or DEFAULT_BASE_URLS["ollama"],
            timeout=config.inference.timeout,
            temperature=config.model.temperature,
            max_tokens=config.model.max_tokens,
            default_params=config.model.generation_params,
        )
    elif backend in ("openai", "vllm"):
        api_key = config.inference.api_key or os.environ.get("OPENAI_API_KEY")
        return OpenAICompatibleClient(
            model=name,
            base_url=base_url,
            api_key=api_key,
            timeout=config.inference.timeout,
            temperature=config.model.temperature,
            max_tokens=config.model.max_tokens,
            default_params=config.model.generation_params,
        )
    else:
        raise ValueError(f"Unknown inference backend: {backend}")
