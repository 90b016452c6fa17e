"""
Configuration management for logmirror.

All configuration comes from environment variables (prefix LOGMIRROR_),
loaded with pydantic-settings. Settings can also be constructed directly
in code, which is what the test suite does.

Invariants:
    - All settings have sensible defaults for local development
    - Postgres backends require an explicit DSN
    - The DSN is never logged

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Keep factory functions here thin; backends own their own behaviour
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings

if TYPE_CHECKING:
    from .notify.base import Channel
    from .notify.notifier import ChangeNotifier
    from .reactive import ComputationGraph

logger = logging.getLogger(__name__)


class StoreBackend(str, Enum):
    """Supported log store backends."""

    SQLITE = "sqlite"
    POSTGRES = "postgres"


class ChannelBackend(str, Enum):
    """Supported notification channel backends."""

    MEMORY = "memory"
    POSTGRES = "postgres"


class Settings(BaseSettings):
    """logmirror configuration loaded from environment."""

    # Log store
    store_backend: StoreBackend = Field(default=StoreBackend.SQLITE)
    sqlite_path: str = Field(default="logmirror.db", description="SQLite database file")
    sqlite_busy_timeout_ms: int = Field(default=5000)
    sqlite_wal_mode: bool = Field(default=True)
    postgres_dsn: Optional[str] = Field(default=None, description="libpq connection string")

    # Notification channel
    channel_backend: ChannelBackend = Field(default=ChannelBackend.MEMORY)
    channel_name: str = Field(default="logmirror")
    fallback_poll_interval: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds without a notification before the notifier polls anyway",
    )

    # Sync engine
    sync_on_append: bool = Field(default=True, description="Catch up the mirror after each append")

    # Observability
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="text or json")

    model_config = {"env_prefix": "LOGMIRROR_"}

    def validate_backends(self) -> None:
        """Validate backend consistency.

        Raises:
            ValueError: If a postgres backend is selected without a DSN
        """
        uses_postgres = (
            self.store_backend == StoreBackend.POSTGRES
            or self.channel_backend == ChannelBackend.POSTGRES
        )
        if uses_postgres and not self.postgres_dsn:
            raise ValueError("LOGMIRROR_POSTGRES_DSN is required when a postgres backend is selected")

    def log_config(self) -> None:
        """Log configuration (without the DSN)."""
        logger.info(
            "logmirror configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "sqlite_path": self.sqlite_path
                if self.store_backend == StoreBackend.SQLITE
                else None,
                "channel_backend": self.channel_backend.value,
                "channel_name": self.channel_name,
                "fallback_poll_interval": self.fallback_poll_interval,
                "sync_on_append": self.sync_on_append,
                "log_level": self.log_level,
            },
        )


def setup_logging(settings: Settings) -> None:
    """Configure the root logger from settings.

    Args:
        settings: Application settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("psycopg").setLevel(logging.WARNING)


def create_channel(settings: Settings) -> "Channel":
    """Factory function to create a notification channel from configuration.

    Raises:
        ValueError: If the backend is not supported or misconfigured
    """
    if settings.channel_backend == ChannelBackend.MEMORY:
        from .notify.memory import InMemoryChannel

        return InMemoryChannel()
    elif settings.channel_backend == ChannelBackend.POSTGRES:
        if not settings.postgres_dsn:
            raise ValueError("LOGMIRROR_POSTGRES_DSN is required when channel_backend=postgres")
        from .notify.postgres import PostgresChannel

        return PostgresChannel(settings.postgres_dsn)
    else:
        raise ValueError(f"Unsupported channel backend: {settings.channel_backend}")


def create_notifier(
    settings: Settings,
    channel: "Channel",
    graph: "ComputationGraph",
) -> "ChangeNotifier":
    """Build a ChangeNotifier using the configured channel name and fallback interval."""
    from .notify.notifier import ChangeNotifier

    return ChangeNotifier(
        channel,
        graph,
        name=settings.channel_name,
        fallback_poll_interval=settings.fallback_poll_interval,
    )
