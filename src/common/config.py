"""
Configuration loader for the chat dispatch project.

Loads settings from config.yaml. Environment variables are used ONLY for secrets.
Following PROJECT_RULES.md security rules - never log secrets.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field

LOGGING_KEYS = (
    "level",
    "enable_pretty_print",
    "save_to_file",
    "log_file_path",
    "max_log_file_size",
    "backup_count",
)


class PipelineConfig(BaseModel):
    """Configuration for the dispatch pipeline."""

    event_queue_capacity: int = Field(
        default=100, ge=1, description="Capacity of the shared event output (backpressure bound)"
    )
    max_concurrent_dispatches: Optional[int] = Field(
        default=None, ge=1, description="Ceiling on dispatches running a backend at once"
    )
    dispatch_timeout: Optional[float] = Field(
        default=None, gt=0, description="Per-dispatch backend timeout in seconds"
    )


class BackendConfig(BaseModel):
    """Configuration for conversational backends."""

    active: str = Field(
        default="openai", description="Active backend (scripted|openai|openrouter|anthropic)"
    )

    # OpenAI settings
    openai_base_url: Optional[str] = Field(default=None, description="OpenAI API base URL")
    openai_max_tokens: Optional[int] = Field(default=None, description="OpenAI max tokens limit")

    # OpenRouter speaks the OpenAI protocol
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1", description="OpenRouter API base URL"
    )
    openrouter_max_tokens: Optional[int] = Field(
        default=None, description="OpenRouter max tokens limit"
    )

    # Anthropic settings
    anthropic_max_tokens: int = Field(default=4096, description="Anthropic max tokens limit")

    # Scripted backend settings
    scripted_chunk_count: int = Field(default=5, ge=1, description="Chunks emitted per request")
    scripted_chunk_delay: float = Field(
        default=0.01, ge=0, description="Delay between scripted chunks in seconds"
    )


class ChatConfig(BaseModel):
    """Defaults applied to new chat turns."""

    model: str = Field(default="gpt-4", description="Model identifier sent with each request")
    temperature: float = Field(default=0.7, ge=0, le=2, description="Sampling temperature")
    system_prompt: Optional[str] = Field(default=None, description="Default system prompt")


class StorageConfig(BaseModel):
    """Configuration for session and settings persistence."""

    store_dir: str = Field(default="data", description="Directory holding sessions and settings")


class Config(BaseModel):
    """Main configuration object."""

    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_level: str = Field(default="INFO", description="Logging level")
    enable_pretty_print: bool = Field(
        default=False, description="Enable custom pretty print for debugging"
    )
    save_to_file: bool = Field(default=False, description="Save logs to file")
    log_file_path: str = Field(default="chat.log", description="Log file path (relative to root)")
    max_log_file_size: int = Field(
        default=10485760, description="Max log file size in bytes (10MB)"
    )
    backup_count: int = Field(default=5, description="Number of backup log files to keep")


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from YAML file.

    Environment variables are used ONLY for secrets (API keys), not configuration.

    Args:
        config_path: Path to config.yaml file. Defaults to ./config.yaml

    Returns:
        Loaded configuration object
    """
    if config_path is None:
        config_path = Path("config.yaml")

    config_data: Dict[str, Any] = {}

    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

    # Nested logging block maps onto the flat fields
    logging_config = config_data.pop("logging", None) or {}
    for key in LOGGING_KEYS:
        if key in logging_config:
            target = "log_level" if key == "level" else key
            config_data[target] = logging_config[key]

    return Config(**config_data)
