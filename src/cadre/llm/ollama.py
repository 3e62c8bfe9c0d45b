"""Ollama LLM client using its OpenAI-compatible API."""

from typing import Any

from cadre.llm.openai_compat import OpenAICompatibleClient


class OllamaClient(OpenAICompatibleClient):
    """LLM client for a local Ollama server.

    Ollama doesn't check API keys, so a placeholder is sent to satisfy the SDK.
    """

    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434/v1",
        timeout: int = 120,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        default_params: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            model=model,
            base_url=base_url,
            api_key="ollama",
            timeout=timeout,
            temperature=temperature,
            max_tokens=max_tokens,
            default_params=default_params,
        )
