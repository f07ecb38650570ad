"""
Backend construction from configuration.

Strict mode: the configured backend is built or startup fails. There is no
fallback to another provider.
"""

import os

from backends.anthropic_backend import AnthropicBackend
from backends.base import ChatBackend
from backends.openai_backend import OpenAIBackend
from backends.scripted import ScriptedBackend, default_chunks
from common.config import BackendConfig
from common.logging import get_logger

logger = get_logger(__name__)

API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

AVAILABLE_BACKENDS = ("scripted", *API_KEY_ENV)


def _api_key(provider: str) -> str:
    env_var = API_KEY_ENV[provider]
    api_key = os.getenv(env_var)
    if not api_key:
        raise ValueError(f"{env_var} environment variable not set")
    return api_key


def create_backend(config: BackendConfig) -> ChatBackend:
    """
    Build the active backend.

    Raises:
        ValueError: Unknown backend name, or its API key is missing
    """
    active = config.active.lower()

    if active == "scripted":
        backend: ChatBackend = ScriptedBackend(
            chunks=default_chunks(config.scripted_chunk_count),
            delay=config.scripted_chunk_delay,
        )
    elif active == "openai":
        backend = OpenAIBackend(
            api_key=_api_key("openai"),
            base_url=config.openai_base_url,
            max_tokens=config.openai_max_tokens,
        )
    elif active == "openrouter":
        backend = OpenAIBackend(
            api_key=_api_key("openrouter"),
            base_url=config.openrouter_base_url,
            max_tokens=config.openrouter_max_tokens,
            name="openrouter",
        )
    elif active == "anthropic":
        backend = AnthropicBackend(
            api_key=_api_key("anthropic"), max_tokens=config.anthropic_max_tokens
        )
    else:
        raise ValueError(
            f"Unknown backend '{config.active}'. Available backends: {list(AVAILABLE_BACKENDS)}"
        )

    logger.info(event="backend_selected", backend=backend.name)
    return backend
