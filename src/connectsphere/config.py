"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 60


class AssistantConfig(BaseModel):
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 400
    temperature: float = 0.7
    rag_timeout_seconds: float = 3.0
    offline_message: str = "I'm currently offline. Please try again later."
    error_message: str = "I'm having trouble processing your request right now."
    empty_reply_message: str = "I processed your request. Is there anything else I can help with?"


class EmbeddingConfig(BaseModel):
    api_key: str = ""
    model: str = "models/text-embedding-004"
    chunk_size: int = 800
    chunk_overlap: int = 100
    timeout_seconds: float = 15.0


class CacheConfig(BaseModel):
    # Seconds per namespace.
    ttl: dict[str, float] = Field(
        default_factory=lambda: {
            "settings": 120.0,
            "consultant": 60.0,
            "profile": 120.0,
            "dashboard": 60.0,
            "history": 30.0,
        }
    )
    sweep_interval_seconds: int = 60
    rag_ttl_seconds: float = 300.0
    rag_max_entries: int = 200


class ConversationConfig(BaseModel):
    max_messages: int = 100
    retention_days: int = 2
    cleanup_interval_hours: int = 6
    initial_cleanup_delay_minutes: int = 5
    delete_batch_size: int = 450


class BookingConfig(BaseModel):
    timezone: str = "Asia/Kolkata"
    min_lead_minutes: int = 30
    scan_days: int = 14
    dates_per_page: int = 3
    state_ttl_minutes: int = 30
    state_sweep_minutes: int = 10


class ChannelConfig(BaseModel):
    reconnect_delay_seconds: float = 5.0
    init_timeout_seconds: float = 10.0
    init_gap_seconds: float = 2.0
    startup_delay_seconds: float = 3.0


class SchedulerServiceConfig(BaseModel):
    timezone: str = "Asia/Kolkata"


class StorageConfig(BaseModel):
    db_path: str = "./data/connectsphere.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    anthropic: Optional[AnthropicConfig] = None
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    booking: BookingConfig = Field(default_factory=BookingConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    scheduler: SchedulerServiceConfig = Field(default_factory=SchedulerServiceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(raw_data.get("data_dir", "./data"))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    # An unset ${ANTHROPIC_API_KEY} means "no AI backend", not a literal key
    anthropic = data.get("anthropic")
    if isinstance(anthropic, dict) and _ENV_VAR_PATTERN.fullmatch(str(anthropic.get("api_key", ""))):
        data["anthropic"] = None
    embedding = data.get("embedding")
    if isinstance(embedding, dict) and _ENV_VAR_PATTERN.fullmatch(str(embedding.get("api_key", ""))):
        embedding["api_key"] = ""

    return AppConfig(**data)
