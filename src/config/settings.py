"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings


class ConfigurationError(RuntimeError):
    """Raised when the process environment cannot produce a usable config."""


class Settings(BaseSettings):
    # Upstream credential, injected server-side into every upstream request
    api_key: str

    # Allowed CORS origin. Empty = any origin (origin gate disabled)
    client_domain: str = ""
    port: int = 3000

    # Rate limiting (fixed window per client IP)
    rate_limit_window_ms: int = 15 * 60 * 1000
    rate_limit_max: int = 100

    # Upstream game metadata API
    upstream_base_url: str = "https://api.rawg.io/api"
    upstream_timeout_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"
    audit_log_file: str = ""  # Empty = stdout only

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "frozen": True,
    }

    @field_validator("api_key")
    @classmethod
    def _api_key_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("API_KEY must not be empty")
        return value

    @field_validator("rate_limit_window_ms", "rate_limit_max")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @property
    def window_seconds(self) -> float:
        return self.rate_limit_window_ms / 1000

    @property
    def allowed_origin(self) -> str:
        """Configured origin without a trailing slash, as browsers send it."""
        return self.client_domain.strip().rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def load_settings() -> Settings:
    """Load settings once, turning validation failures into ConfigurationError."""
    try:
        return get_settings()
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]).upper() for err in e.errors() if err["loc"])
        raise ConfigurationError(f"Invalid configuration: {fields or e}") from e
