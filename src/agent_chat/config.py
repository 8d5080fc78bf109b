"""Configuration models for the agent chat service."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parent.parent.parent


class ChunkingConfig(BaseModel):
    """Configures recursive character chunking of ingested documents."""

    chunk_size: int = Field(default=1000, ge=50)
    chunk_overlap: int = Field(default=200, ge=0)
    separators: list[str] = Field(default_factory=lambda: ["\n\n", "\n", " ", ""])


class RetrievalConfig(BaseModel):
    """Configures nearest-chunk lookup."""

    top_k: int = Field(default=1, ge=1)


class AgentConfig(BaseModel):
    """Configures the orchestration loop and its event stream."""

    max_iterations: int | None = Field(default=None, ge=1)
    stream_buffer_size: int = Field(default=64, ge=1)


class Settings(BaseSettings):
    """Process-level settings read from the environment or a `.env` file."""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_CHAT_",
        env_file=ROOT_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "AGENT_CHAT_OPENAI_API_KEY"),
    )
    llm_model: str = "gpt-4o-mini"
    embeddings_model: str = "text-embedding-3-small"
    database_path: str = "agent_chat.db"
    log_level: str = "INFO"
    tool_timeout_seconds: float = Field(default=30.0, gt=0.0)
    host: str = "127.0.0.1"
    port: int = 8000

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
