"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"

ALLOWED_MODELS = (
    "claude-3-5-haiku-20241022",
    "claude-3-5-sonnet-20241022",
    "claude-3-7-sonnet-20250219",
    "claude-sonnet-4-20250514",
    "claude-opus-4-20250514",
)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass
class Settings:
    """Application settings."""

    default_model: str = DEFAULT_MODEL
    max_rounds: int = 20

    # Per-call timeouts in seconds
    llm_timeout: float = 60.0
    image_timeout: float = 90.0
    store_timeout: float = 10.0

    # Base64-encoded size accepted for a generated image
    image_max_encoded_bytes: int = 1_400_000
    # Serialized size of a single stored task record
    store_max_payload_bytes: int = 2 * 1024 * 1024

    anthropic_api_key: str | None = None
    openai_api_key: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        return cls(
            default_model=os.getenv("TASKFLOW_DEFAULT_MODEL", DEFAULT_MODEL),
            max_rounds=_env_int("TASKFLOW_MAX_ROUNDS", 20),
            llm_timeout=_env_float("TASKFLOW_LLM_TIMEOUT", 60.0),
            image_timeout=_env_float("TASKFLOW_IMAGE_TIMEOUT", 90.0),
            store_timeout=_env_float("TASKFLOW_STORE_TIMEOUT", 10.0),
            image_max_encoded_bytes=_env_int("TASKFLOW_IMAGE_MAX_BYTES", 1_400_000),
            store_max_payload_bytes=_env_int("TASKFLOW_STORE_MAX_BYTES", 2 * 1024 * 1024),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
        )

    def select_model(self, requested: str | None) -> str:
        """Return the requested model if it is allowed, otherwise the default."""
        if requested and requested in ALLOWED_MODELS:
            return requested
        return self.default_model


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
