# askdocs/config.py
from __future__ import annotations
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class Settings(BaseSettings):
    """
    Global app settings.

    Required values come from the environment (or .env).
    Nothing is read at import time; use get_settings() at first use.
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # LLM (OpenAI-compatible /chat/completions)
    LLM_API_KEY: Optional[str] = None
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.0
    LLM_TIMEOUT: float = 120.0

    # Embeddings (sentence-transformers model name or local snapshot)
    EMBEDDING_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"

    # Chroma: remote server when CHROMA_HOST is set, local path otherwise
    CHROMA_COLLECTION: str = "connect"
    CHROMA_HOST: Optional[str] = None
    CHROMA_PORT: int = 8000
    CHROMA_SSL: bool = False
    CHROMA_API_KEY: Optional[str] = None
    CHROMA_PATH: str = "data/chroma"

    # Answering
    PRODUCT_NAME: str = "PDQ Connect"
    TOP_K: int = 4
    CONTEXT_MAX_CHARS: int = 0
    PROPAGATE_CONTEXT: bool = True
    ANSWER_STREAMING: bool = False

    # Indexer
    SITEMAP_URL: str = "https://connect.pdq.com/hc/sitemap.xml"
    CRAWL_DELAY_SECONDS: float = 2.0
    CHUNK_SIZE: int = 2000
    CHUNK_OVERLAP: int = 200

    @field_validator("LLM_API_KEY", "CHROMA_COLLECTION", mode="after")
    def _not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("must not be blank")
        return v.strip() if v is not None else v

    @field_validator("TOP_K", "CHUNK_SIZE", mode="after")
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("CONTEXT_MAX_CHARS", "CHUNK_OVERLAP", mode="after")
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @model_validator(mode="after")
    def _check_overlap(self) -> "Settings":
        if self.CHUNK_OVERLAP >= self.CHUNK_SIZE:
            raise ValueError("CHUNK_OVERLAP must be smaller than CHUNK_SIZE")
        return self

    def require_llm(self) -> str:
        if not self.LLM_API_KEY:
            raise ConfigurationError("Invalid configuration: LLM_API_KEY is not set")
        return self.LLM_API_KEY

    def ensure_chroma_path(self) -> str:
        Path(self.CHROMA_PATH).mkdir(parents=True, exist_ok=True)
        return self.CHROMA_PATH


def _describe(exc: PydanticValidationError) -> str:
    # field names and reasons only, never the offending values
    parts = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ())) or "settings"
        parts.append(f"{field}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    try:
        return Settings()
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {_describe(exc)}") from exc
