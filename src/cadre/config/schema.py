"""Pydantic models for cadre.yaml configuration."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class ModelConfig(BaseModel):
    """LLM model configuration."""

    name: str = Field(default="qwen2.5:7b", description="Model name served by the backend")
    temperature: float = Field(default=0.7, description="Sampling temperature", ge=0.0, le=2.0)
    max_tokens: int | None = Field(
        default=None, description="Maximum completion tokens (None = backend default)", ge=1
    )
    generation_params: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra backend-specific generation parameters passed through untouched",
    )


class InferenceConfig(BaseModel):
    """Inference backend configuration."""

    backend: Literal["ollama", "openai", "vllm"] = Field(
        default="ollama",
        description="Inference backend to use",
    )
    base_url: str | None = Field(
        default=None,
        description="OpenAI-compatible endpoint including /v1 (None = backend default)",
    )
    api_key: str | None = Field(
        default=None,
        description="API key; falls back to the OPENAI_API_KEY environment variable",
    )
    timeout: int = Field(default=120, description="Request timeout in seconds", ge=1)


class AgentConfig(BaseModel):
    """Run engine defaults."""

    instructions: str = Field(
        default="You are a helpful AI assistant. Use the available tools when they help.",
        description="Static instructions placed in the system message",
    )
    add_history_to_context: bool = Field(
        default=True, description="Replay previous runs of the session into the context"
    )
    num_history_runs: int | None = Field(
        default=5, description="How many previous runs to replay (None = all)", ge=0
    )
    add_session_state_to_context: bool = Field(
        default=False, description="Render the session state into the system message"
    )
    max_tool_iterations: int = Field(
        default=10, description="Maximum tool/model cycles per run", ge=1, le=100
    )
    model_timeout: float | None = Field(
        default=120.0, description="Per-call model timeout in seconds", gt=0
    )
    tool_timeout: float | None = Field(
        default=60.0, description="Per-call tool timeout in seconds", gt=0
    )
    retrieval_timeout: float | None = Field(
        default=10.0, description="Knowledge search timeout in seconds", gt=0
    )
    requires_confirmation: bool = Field(
        default=False, description="Require approval before every tool call"
    )


class ToolsConfig(BaseModel):
    """Built-in tools offered to CLI agents."""

    filesystem: bool = Field(default=True, description="Enable read/write file tools")


class StorageConfig(BaseModel):
    """Session and memory persistence configuration."""

    backend: Literal["memory", "sqlite"] = Field(
        default="sqlite", description="Storage backend for sessions and memories"
    )
    path: str = Field(default="~/.cadre/cadre.db", description="Path to the SQLite database")


class KnowledgeConfig(BaseModel):
    """Knowledge retrieval configuration."""

    enabled: bool = Field(default=False, description="Search knowledge on every run")
    collection_name: str = Field(default="cadre_knowledge", description="ChromaDB collection")
    persist_directory: str | None = Field(
        default=None, description="Directory for persistent vector storage (None = in-memory)"
    )
    embedding_provider: Literal["sentence-transformers", "ollama"] = Field(
        default="sentence-transformers",
        description="Embedding provider: local sentence-transformers or an Ollama server",
    )
    embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Embedding model name",
    )
    ollama_host: str = Field(
        default="http://localhost:11434", description="Ollama host for embeddings"
    )
    top_k: int = Field(default=5, description="Passages added to the context", ge=1, le=50)
    chunk_size: int = Field(default=1000, description="Characters per indexed chunk", ge=100)


class MemoryConfig(BaseModel):
    """User memory configuration."""

    enabled: bool = Field(default=False, description="Extract user memories after each run")
    mode: Literal["background", "awaited"] = Field(
        default="background",
        description="Run memory extraction as a background task or before returning",
    )


class SummaryConfig(BaseModel):
    """Session summary configuration."""

    enabled: bool = Field(default=False, description="Maintain a running session summary")
    every_n_runs: int = Field(
        default=5, description="Regenerate the summary after this many runs", ge=1
    )


class CompressionConfig(BaseModel):
    """Context compression configuration."""

    enabled: bool = Field(default=False, description="Compress history over the threshold")
    max_context_tokens: int = Field(
        default=6000, description="Estimated token threshold for compression", ge=256
    )
    keep_last_runs: int = Field(
        default=2, description="Most recent runs kept verbatim when compressing", ge=0
    )


class TeamConfig(BaseModel):
    """Team coordination defaults."""

    max_rounds: int = Field(default=5, description="Maximum delegation rounds", ge=1, le=50)
    share_session_with_members: bool = Field(
        default=False, description="Give members access to the team session history"
    )


class NamedAgentConfig(BaseModel):
    """A named agent blueprint."""

    name: str = Field(description="Unique agent name")
    description: str = Field(default="", description="What the agent is good at")
    instructions: str = Field(description="Instructions for this agent")
    model: str | None = Field(default=None, description="Model override")
    tools: list[str] = Field(default_factory=list, description="Names of tools to enable")
    max_tool_iterations: int = Field(default=10, ge=1, le=100)
    search_knowledge: bool = Field(default=False, description="Search the knowledge base")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="WARNING")
    rich: bool = Field(default=True, description="Use rich formatting for console logs")


class CadreConfig(BaseModel):
    """Root configuration model for cadre.yaml."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    team: TeamConfig = Field(default_factory=TeamConfig)
    agents: list[NamedAgentConfig] = Field(
        default_factory=list, description="Named agent blueprints"
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
