"""Configuration models and YAML loading."""

from __future__ import annotations

import os
import re
from typing import Any

import chardet
import yaml
from loguru import logger
from pydantic import BaseModel, Field, model_validator

from .context.sections import SectionKind


def _reject_parent_segments(path: str, field_name: str) -> str:
    normalized = os.path.normpath(path)
    parts = normalized.replace("\\", "/").split("/")
    if ".." in parts:
        raise ValueError(f"{field_name} must not contain '..' components: {path!r}")
    return normalized


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    sqlite_db_path: str = "./data/assistant.db"
    sessions_root: str = "./data/sessions"

    @model_validator(mode="after")
    def _validate_paths(self) -> "StorageConfig":
        self.sqlite_db_path = _reject_parent_segments(
            self.sqlite_db_path, "sqlite_db_path"
        )
        self.sessions_root = _reject_parent_segments(self.sessions_root, "sessions_root")
        return self


class EmbeddingConfig(BaseModel):
    """Embedding model configuration."""

    model: str = "nomic-ai/nomic-embed-text-v2-moe"
    dimension: int = 768
    trust_remote_code: bool = False


class RecallConfig(BaseModel):
    """Memory recall and ranking configuration."""

    limit: int = 5
    min_similarity: float = 0.4
    semantic_multiplier: int = 2  # Vector search fetches limit * multiplier
    keyword_score: float = 0.3
    tag_boost: float = 0.5
    decay_half_life_days: float = 42.0
    history_messages_for_tags: int = 3


def _default_priorities() -> dict[SectionKind, int]:
    return {
        SectionKind.SYSTEM_INSTRUCTIONS: 100,
        SectionKind.USER_QUERY: 90,
        SectionKind.NOTES: 80,
        SectionKind.TOOLS: 70,
        SectionKind.MEMORIES: 60,
        SectionKind.HISTORY: 50,
    }


class BudgetConfig(BaseModel):
    """Prompt token budget configuration."""

    capacity_tokens: int = 8192
    response_reserve_tokens: int = 1024
    priorities: dict[SectionKind, int] = Field(default_factory=_default_priorities)

    @property
    def prompt_capacity(self) -> int:
        return max(0, self.capacity_tokens - self.response_reserve_tokens)


class RouterConfig(BaseModel):
    """Tool routing configuration."""

    remote_timeout_seconds: float = 30.0
    loop_max_repeats: int = 3
    loop_window_size: int = 12
    approval_timeout_seconds: float | None = 300.0


class LoopConfig(BaseModel):
    """Conversation loop configuration."""

    max_turns: int = 10
    auto_continue: bool = False
    system_instructions: str = "You are a helpful assistant with access to tools."


class ModelConfig(BaseModel):
    """Model provider configuration (any OpenAI-compatible endpoint)."""

    base_url: str | None = None
    api_key: str = "not-needed"
    model: str = "gpt-4o"
    utility_model: str | None = None
    temperature: float = 0.7
    token_model: str | None = "gpt-4"  # None uses character-based estimation


class CoreConfig(BaseModel):
    """Top-level configuration."""

    log_level: str = "INFO"
    log_file: str | None = None
    storage: StorageConfig = Field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    recall: RecallConfig = Field(default_factory=RecallConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)


def load_text_file_with_guess_encoding(file_path: str) -> str | None:
    """Load a text file, trying common encodings before falling back to chardet."""
    for encoding in ("utf-8", "utf-8-sig", "ascii"):
        try:
            with open(file_path, "r", encoding=encoding) as file:
                return file.read()
        except UnicodeDecodeError:
            continue
    try:
        with open(file_path, "rb") as file:
            raw_data = file.read()
        detected = chardet.detect(raw_data)
        if detected["encoding"]:
            return raw_data.decode(detected["encoding"])
    except (OSError, UnicodeDecodeError, LookupError) as e:
        logger.error(f"Error detecting encoding for config file {file_path}: {e}")
    return None


def read_yaml(config_path: str) -> dict[str, Any]:
    """Read a YAML configuration file with ``${ENV_VAR}`` substitution.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Configuration data as a dictionary.

    Raises:
        FileNotFoundError: If the configuration file is not found.
        IOError: If the configuration file cannot be read.
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    content = load_text_file_with_guess_encoding(config_path)
    if content is None:
        raise IOError(f"Failed to read configuration file: {config_path}")

    # Unset variables are left as-is
    pattern = re.compile(r"\$\{(\w+)\}")
    content = pattern.sub(lambda m: os.getenv(m.group(1), m.group(0)), content)

    try:
        return yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        logger.critical(f"Error parsing YAML file: {e}")
        raise


def load_config(config_path: str | None = None) -> CoreConfig:
    """Load and validate configuration; defaults when no path is given."""
    if config_path is None:
        return CoreConfig()
    data = read_yaml(config_path)
    config = CoreConfig.model_validate(data)
    logger.info(f"Loaded configuration from {config_path}")
    return config
