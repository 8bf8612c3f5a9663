"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from lexkb.embedding.encoder import DEFAULT_MODEL, DEFAULT_OPENAI_MODEL
from lexkb.errors import ConfigurationError
from lexkb.models import CACHE_VERSION

EmbeddingBackend = Literal["local", "openai", "stub"]


@dataclass(slots=True)
class AppConfig:
    kb_dir: Path = Path("kb")
    cache_path: Path = Path("data/kb-index.json")
    cache_version: int = CACHE_VERSION
    chunk_chars: int = 2500
    overlap: int = 250
    search_ttl: float = 60.0
    search_cache_size: int = 128
    top_k: int = 5
    embedding_backend: EmbeddingBackend = "local"
    model_name: str = DEFAULT_MODEL
    openai_model: str = DEFAULT_OPENAI_MODEL
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    admin_key: str = ""
    build_timeout: float = 600.0
    warm_start: bool = True

    def __post_init__(self) -> None:
        self.kb_dir = Path(self.kb_dir)
        self.cache_path = Path(self.cache_path)
        if self.chunk_chars <= 0:
            raise ConfigurationError(f"chunk_chars must be positive, got {self.chunk_chars}")
        if self.overlap < 0:
            raise ConfigurationError(f"overlap must not be negative, got {self.overlap}")
        if self.overlap >= self.chunk_chars:
            raise ConfigurationError(
                f"overlap ({self.overlap}) must be smaller than chunk_chars ({self.chunk_chars})"
            )
        if self.top_k < 1:
            raise ConfigurationError(f"top_k must be at least 1, got {self.top_k}")
        if self.search_cache_size < 1:
            raise ConfigurationError("search_cache_size must be at least 1")
        if self.build_timeout <= 0:
            raise ConfigurationError("build_timeout must be positive")

    def resolve_kb_dir(self, base_dir: Path | None = None) -> Path:
        if self.kb_dir.is_absolute() or base_dir is None:
            return self.kb_dir
        return base_dir / self.kb_dir

    def resolve_cache_path(self, base_dir: Path | None = None) -> Path:
        if self.cache_path.is_absolute() or base_dir is None:
            return self.cache_path
        return base_dir / self.cache_path

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping of the configuration with the admin secrets masked."""
        data = asdict(self)
        for secret in ("admin_key", "openai_api_key"):
            if data[secret]:
                data[secret] = "***"
        return {key: str(value) if isinstance(value, Path) else value for key, value in data.items()}


class EnvSettings(BaseSettings):
    """Settings read from ``LEXKB_*`` environment variables and a ``.env`` file.

    Every field defaults to ``None`` so only explicitly provided values
    override the ``AppConfig`` defaults.
    """

    model_config = SettingsConfigDict(env_prefix="LEXKB_", env_file=".env", extra="ignore")

    kb_dir: Path | None = None
    cache_path: Path | None = None
    cache_version: int | None = None
    chunk_chars: int | None = None
    overlap: int | None = None
    search_ttl: float | None = None
    search_cache_size: int | None = None
    top_k: int | None = None
    embedding_backend: EmbeddingBackend | None = None
    model_name: str | None = None
    openai_model: str | None = None
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LEXKB_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    openai_base_url: str | None = None
    admin_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LEXKB_ADMIN_KEY", "ADMIN_KEY"),
    )
    build_timeout: float | None = None
    warm_start: bool | None = None


def load_config(**overrides: Any) -> AppConfig:
    """Build an ``AppConfig`` from defaults, the environment and explicit overrides.

    Overrides set to ``None`` are ignored so CLI options can be passed through
    unconditionally.
    """
    values = {key: value for key, value in EnvSettings().model_dump().items() if value is not None}
    values.update({key: value for key, value in overrides.items() if value is not None})
    return AppConfig(**values)
