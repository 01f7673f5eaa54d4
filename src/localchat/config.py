import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from localchat.errors import LocalChatError

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434"
DEFAULT_CONTEXT_LENGTH = 4096
CONTEXT_SIZES = (4096, 8192, 16384, 32768, 65536, 131072)

PROVIDERS = ("ollama", "openai", "anthropic", "gemini", "groq", "xai")

MODEL_ALIASES = {
    "4o": "gpt-4o",
    "4o-mini": "gpt-4o-mini",
    "sonnet": "claude-sonnet-4-20250514",
    "haiku": "claude-3-5-haiku-20241022",
    "flash": "gemini/gemini-2.5-flash",
    "llama-groq": "groq/llama-3.3-70b-versatile",
    "grok": "xai/grok-2-latest",
}

API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "groq": "GROQ_API_KEY",
    "xai": "XAI_API_KEY",
}


class ConfigError(LocalChatError):
    pass


def get_optional_env(name: str, default: str) -> str:
    return os.environ.get(name, default)


def resolve_model_alias(name: str) -> str:
    return MODEL_ALIASES.get(name.lower(), name)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


@dataclass
class ChatConfig:
    ollama_endpoint: str = field(
        default_factory=lambda: get_optional_env("OLLAMA_ENDPOINT", DEFAULT_OLLAMA_ENDPOINT)
    )
    model: str | None = field(default_factory=lambda: os.environ.get("LOCALCHAT_MODEL") or None)
    provider: str = field(default_factory=lambda: get_optional_env("LOCALCHAT_PROVIDER", "ollama"))
    context_size: int = DEFAULT_CONTEXT_LENGTH
    data_dir: str = field(
        default_factory=lambda: get_optional_env("LOCALCHAT_DATA_DIR", "data/localchat")
    )
    request_timeout: float = 120.0

    @classmethod
    def from_env(cls) -> "ChatConfig":
        return cls(context_size=_int_env("LOCALCHAT_CONTEXT_SIZE", DEFAULT_CONTEXT_LENGTH))

    def api_key_for(self, provider: str | None = None) -> str | None:
        env_name = API_KEY_ENV.get(provider or self.provider)
        if env_name is None:
            return None
        return os.environ.get(env_name) or None

    def validate(self) -> None:
        endpoint = (self.ollama_endpoint or "").strip()
        if not endpoint:
            raise ConfigError("ollama_endpoint is required")
        parsed = urlparse(endpoint)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"ollama_endpoint must be an http(s) URL, got {endpoint!r}")
        if self.context_size < 1:
            raise ConfigError("context_size must be a positive integer")
        if self.provider not in PROVIDERS:
            raise ConfigError(f"Unknown provider: {self.provider}")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be > 0")
        logger.debug("Configuration validated successfully")
