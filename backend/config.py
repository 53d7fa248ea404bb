"""Application configuration loaded from environment variables."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """intervals-sync server settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Storage: embedded SQLite file unless a remote database URL is configured
    sqlite_path: Path = Path("./data/intervals.db")
    remote_database_url: str = ""
    remote_database_auth_token: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    trusted_proxy_ips: list[str] = Field(default_factory=list)

    # Auth
    sync_password: str = ""
    auth_rate_limit_capacity: float = Field(default=2.0, gt=0)
    auth_rate_limit_refill_per_second: float = Field(default=0.5, gt=0)

    @property
    def uses_remote_database(self) -> bool:
        return bool(self.remote_database_url)

    @property
    def database_url(self) -> str:
        """SQLAlchemy async URL for the selected storage backend.

        The remote auth token, if any, goes where the driver expects it: the
        ``authToken`` query parameter for SQLite-family (libsql) URLs, the
        connection password for everything else (e.g. ``postgresql+asyncpg``).
        """
        if not self.remote_database_url:
            return f"sqlite+aiosqlite:///{self.sqlite_path}"
        url = make_url(self.remote_database_url)
        if self.remote_database_auth_token:
            if url.get_backend_name() == "sqlite":
                url = url.update_query_dict({"authToken": self.remote_database_auth_token})
            else:
                url = url.set(password=self.remote_database_auth_token)
        return url.render_as_string(hide_password=False)

    def log_security_posture(self) -> None:
        """Report the storage backend and whether the password gate is enabled."""
        if self.uses_remote_database:
            display_url = (
                make_url(self.remote_database_url)
                .difference_update_query(["authToken"])
                .render_as_string(hide_password=True)
            )
            logger.info("Using remote database: %s", display_url)
        else:
            logger.info("Using SQLite database: %s", self.sqlite_path)

        if self.sync_password:
            logger.info("Password authentication enabled")
        else:
            logger.warning("No SYNC_PASSWORD set - backend is open to anyone who can reach it")
