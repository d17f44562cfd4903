"""Process settings for siteqa.

Settings are read from the environment once, at startup, and passed to the
components that need them. Nothing in the core reads ``os.environ`` directly.
"""

import os
from typing import List, Optional

from pydantic import BaseModel, Field

from services.errors import ConfigurationError


def _get_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y"}


def _get_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    """Application settings."""

    # Upstream services
    openai_api_key: str = Field(default="", description="API key for embeddings and generation")
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_dim: int = Field(default=1536, description="Expected embedding dimension")
    chat_model: str = Field(default="gpt-4o")
    normalize_model: str = Field(default="gpt-4o-mini")
    temperature: float = Field(default=0.2)
    max_output_tokens: int = Field(default=500)
    request_timeout: float = Field(default=20.0, description="Seconds, for fetches and upstream calls")

    # Site being answered about
    site_name: str = Field(default="the website")
    sitemap_url: str = Field(default="")
    site_prefix: str = Field(default="", description="Only urls starting with this prefix are indexed")
    url_cap: int = Field(default=2000)
    index_concurrency: int = Field(default=3)
    user_agent: str = Field(default="siteqa-indexer/1.0")

    # Storage
    sqlite_path: str = Field(default="data/siteqa.db")
    retrieval_config_path: Optional[str] = None

    # HTTP surface
    admin_token: str = Field(default="")
    allowed_origins: List[str] = Field(default_factory=list)

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            embedding_model=os.getenv("SITEQA_EMBEDDING_MODEL", "text-embedding-3-small"),
            embedding_dim=int(os.getenv("SITEQA_EMBEDDING_DIM", "1536")),
            chat_model=os.getenv("SITEQA_CHAT_MODEL", "gpt-4o"),
            normalize_model=os.getenv("SITEQA_NORMALIZE_MODEL", "gpt-4o-mini"),
            temperature=float(os.getenv("SITEQA_TEMPERATURE", "0.2")),
            max_output_tokens=int(os.getenv("SITEQA_MAX_OUTPUT_TOKENS", "500")),
            request_timeout=float(os.getenv("SITEQA_REQUEST_TIMEOUT", "20")),
            site_name=os.getenv("SITEQA_SITE_NAME", "the website"),
            sitemap_url=os.getenv("SITEQA_SITEMAP_URL", ""),
            site_prefix=os.getenv("SITEQA_SITE_PREFIX", ""),
            url_cap=int(os.getenv("SITEQA_URL_CAP", "2000")),
            index_concurrency=int(os.getenv("SITEQA_INDEX_CONCURRENCY", "3")),
            user_agent=os.getenv("SITEQA_USER_AGENT", "siteqa-indexer/1.0"),
            sqlite_path=os.getenv("SQLITE_PATH", "data/siteqa.db"),
            retrieval_config_path=os.getenv("SITEQA_RETRIEVAL_CONFIG") or None,
            admin_token=os.getenv("ADMIN_TOKEN", "").strip(),
            allowed_origins=_get_list(os.getenv("ALLOWED_ORIGINS")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_get_bool(os.getenv("LOG_JSON"), False),
        )

    def require_admin_token(self) -> str:
        """Return the admin token or fail fast when it is not configured."""
        token = (self.admin_token or "").strip()
        if not token:
            raise ConfigurationError("ADMIN_TOKEN is not set; admin routes cannot be served")
        return token

    def require_openai_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")
        return self.openai_api_key
