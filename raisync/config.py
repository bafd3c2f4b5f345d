from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

DEFAULT_DB_URL = "sqlite:///raisync.db"
DEFAULT_API_URL = "https://your.api"
DEFAULT_BATCH_SIZE = 25
DEFAULT_REQUEST_TIMEOUT_S = 30.0


@dataclass
class StoreConfig:
    db_url: str = DEFAULT_DB_URL
    echo: bool = False

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if not self.db_url:
            raise ValueError("db_url must be a non-empty SQLAlchemy URL")


@dataclass
class SyncConfig:
    api_url: str
    user_id: str
    batch_size: int = DEFAULT_BATCH_SIZE
    request_timeout_s: float | None = DEFAULT_REQUEST_TIMEOUT_S
    acknowledged_statuses: frozenset[str] = field(
        default_factory=lambda: frozenset({"applied"})
    )

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if not self.api_url:
            raise ValueError("api_url must be set")
        if not self.user_id:
            raise ValueError("user_id must be set; the server scopes private data by user")
        if not isinstance(self.batch_size, int) or self.batch_size <= 0:
            raise ValueError("batch_size must be a positive integer (> 0)")
        if self.request_timeout_s is not None and self.request_timeout_s <= 0:
            raise ValueError(
                "request_timeout_s must be > 0; use None to disable the timeout"
            )
        self.api_url = self.api_url.rstrip("/")
        self.acknowledged_statuses = frozenset(self.acknowledged_statuses)
        if not self.acknowledged_statuses:
            raise ValueError("acknowledged_statuses cannot be empty")


def store_config_from_env(environ: Mapping[str, str] | None = None) -> StoreConfig:
    """Store configuration from RAISYNC_DB_URL."""
    env = os.environ if environ is None else environ
    return StoreConfig(db_url=env.get("RAISYNC_DB_URL") or DEFAULT_DB_URL)


def sync_config_from_env(environ: Mapping[str, str] | None = None) -> SyncConfig:
    """
    Sync configuration from RAISYNC_API_URL, RAISYNC_USER_ID,
    RAISYNC_BATCH_SIZE and RAISYNC_REQUEST_TIMEOUT_S.

    An empty or zero RAISYNC_REQUEST_TIMEOUT_S disables the request timeout.

    Raises:
        ValueError: If a value is missing or malformed
    """
    env = os.environ if environ is None else environ

    raw_batch = env.get("RAISYNC_BATCH_SIZE")
    batch_size = int(raw_batch) if raw_batch else DEFAULT_BATCH_SIZE

    timeout: float | None = DEFAULT_REQUEST_TIMEOUT_S
    if "RAISYNC_REQUEST_TIMEOUT_S" in env:
        raw_timeout = env["RAISYNC_REQUEST_TIMEOUT_S"]
        timeout = float(raw_timeout) if raw_timeout else None
        if timeout == 0:
            timeout = None

    return SyncConfig(
        api_url=env.get("RAISYNC_API_URL") or DEFAULT_API_URL,
        user_id=env.get("RAISYNC_USER_ID", ""),
        batch_size=batch_size,
        request_timeout_s=timeout,
    )


def load_config_from_env(
    environ: Mapping[str, str] | None = None,
) -> tuple[StoreConfig, SyncConfig]:
    """
    Build store and sync configuration from RAISYNC_* environment variables.

    Recognised variables:
        RAISYNC_DB_URL, RAISYNC_API_URL, RAISYNC_USER_ID,
        RAISYNC_BATCH_SIZE, RAISYNC_REQUEST_TIMEOUT_S

    Raises:
        ValueError: If a value is missing or malformed
    """
    return store_config_from_env(environ), sync_config_from_env(environ)
