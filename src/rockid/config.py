"""Configuration: frozen Config resolved from arguments and the environment."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Literal

from dotenv import load_dotenv

from rockid.errors import ConfigurationError
from rockid.providers.openai import DEFAULT_MODELS
from rockid.retry import RetryPolicy

load_dotenv()

Mode = Literal["backend", "upstream"]

_BACKEND_URL_ENV = "ROCKID_BACKEND_URL"
_SHARED_SECRET_ENV = "ROCKID_SHARED_SECRET"
_PUBLIC_BASE_URL_ENV = "ROCKID_PUBLIC_BASE_URL"
_API_KEY_ENV = "OPENAI_API_KEY"


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one client or backend process.

    ``mode="backend"`` sends requests to the backend proxy (client side);
    ``mode="upstream"`` calls the provider directly (backend side, or a
    client with its own key). Secrets are auto-resolved from the
    environment when left as *None*.

    Example:
        config = Config(mode="upstream")
        # api_key is resolved from OPENAI_API_KEY
    """

    mode: Mode = "backend"
    #: Auto-resolved from ``ROCKID_BACKEND_URL`` when *None*.
    backend_url: str | None = None
    #: Auto-resolved from ``ROCKID_SHARED_SECRET`` when *None*.
    shared_secret: str | None = None
    #: Auto-resolved from ``OPENAI_API_KEY`` when *None*.
    api_key: str | None = None
    #: Base URL the provider uses to fetch stored images (backend only).
    #: Auto-resolved from ``ROCKID_PUBLIC_BASE_URL`` when *None*.
    public_base_url: str | None = None
    models: tuple[str, ...] = DEFAULT_MODELS
    timeout_s: float = 30.0
    max_tokens: int = 2000
    temperature: float = 0.5
    use_mock: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Auto-resolve secrets and validate configuration."""
        if self.mode not in ("backend", "upstream"):
            raise ConfigurationError(
                f"Unknown mode: {self.mode!r}",
                hint="Supported modes: 'backend', 'upstream'",
            )
        if not self.models:
            raise ConfigurationError(
                "At least one model identifier is required",
                hint="Models are tried in order until one is not deprecated.",
            )
        object.__setattr__(self, "models", tuple(self.models))
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This is the per-attempt network timeout in seconds.",
            )
        if self.max_tokens < 1:
            raise ConfigurationError(
                f"max_tokens must be >= 1, got {self.max_tokens}",
            )
        if not 0 <= self.temperature <= 2:
            raise ConfigurationError(
                f"temperature must be within [0, 2], got {self.temperature}",
            )

        for attr, env_var in (
            ("backend_url", _BACKEND_URL_ENV),
            ("shared_secret", _SHARED_SECRET_ENV),
            ("api_key", _API_KEY_ENV),
            ("public_base_url", _PUBLIC_BASE_URL_ENV),
        ):
            if getattr(self, attr) is None:
                object.__setattr__(self, attr, os.environ.get(env_var) or None)

        if self.use_mock:
            return
        if self.mode == "upstream" and not self.api_key:
            raise ConfigurationError(
                "API key required for upstream mode",
                hint=f"Set {_API_KEY_ENV} environment variable or pass api_key=...",
            )
        if self.mode == "backend":
            if not self.backend_url:
                raise ConfigurationError(
                    "Backend URL required for backend mode",
                    hint=f"Set {_BACKEND_URL_ENV} or pass backend_url=...",
                )
            if not self.shared_secret:
                raise ConfigurationError(
                    "Shared secret required for backend mode",
                    hint=f"Set {_SHARED_SECRET_ENV} or pass shared_secret=...",
                )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(mode={self.mode!r}, backend_url={self.backend_url!r}, "
            f"shared_secret={'[REDACTED]' if self.shared_secret else None}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"models={self.models!r}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
