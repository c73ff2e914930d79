"""
Environment-based settings for the ingestion client and the OpenSearch store.

    INGEST_MAX_BATCH_ITEMS=500 INGEST_FLUSH_INTERVAL=0.5 python app.py
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .policy import RetryPolicy


class IngestSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="INGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # batching
    max_batch_items: int = Field(default=1000, gt=0)
    max_batch_bytes: int = Field(default=5 * 1024 * 1024, gt=0)
    flush_interval: float = Field(default=1.0, gt=0, description="Seconds after the first buffered item")
    workers: int = Field(default=2, gt=0)

    # retries
    max_attempts: int = Field(default=5, ge=1)
    initial_backoff_ms: int = Field(default=100, ge=0)
    max_backoff_ms: int = Field(default=10_000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=0.2, ge=0.0, le=1.0)

    # shutdown
    shutdown_timeout: float = Field(default=30.0, gt=0)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_backoff_ms=self.initial_backoff_ms,
            max_backoff_ms=self.max_backoff_ms,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.jitter,
        )


class OpenSearchSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="OPENSEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    hosts: str = Field(default="https://localhost:9200", description="Comma-separated host URLs")
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    use_ssl: bool = True
    verify_certs: bool = False
    timeout: float = 30.0
    refresh: Optional[str] = Field(default=None, description="Bulk refresh policy: true|false|wait_for")

    @property
    def host_list(self) -> List[str]:
        return [h.strip() for h in self.hosts.split(",") if h.strip()]


@lru_cache()
def get_settings() -> IngestSettings:
    return IngestSettings()


@lru_cache()
def get_opensearch_settings() -> OpenSearchSettings:
    return OpenSearchSettings()
