"""
Configuration and settings for the order service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

TRUTHY_VALUES = ("1", "true", "yes", "on")


class Settings(BaseSettings):
    """Environment-backed settings, read once at process start."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="")
    port: int = Field(default=3000)
    log_level: str = Field(default="INFO")

    # Firestore (preferred backend)
    use_firestore: bool = Field(default=False)
    firebase_credentials: Optional[str] = Field(default=None)
    firebase_project_id: Optional[str] = Field(default=None)
    firestore_collection: str = Field(default="orders")

    # Relational backend (MySQL/MariaDB expected, any SQLAlchemy URL accepted)
    database_url: Optional[str] = Field(default=None)
    use_mysql: Optional[str] = Field(default=None)
    db_host: str = Field(default="127.0.0.1")
    db_port: int = Field(default=3306)
    db_user: str = Field(default="root")
    db_pass: str = Field(default="")
    db_name: str = Field(default="khata_book")

    # Local fallback
    data_file: str = Field(default="orders.json")
    local_storage_key: str = Field(default="khataBookOrders")
    use_in_memory_backends: bool = Field(default=False)

    # Change notifications
    poll_interval_seconds: float = Field(default=2.0, gt=0)

    @property
    def firestore_configured(self) -> bool:
        return bool(
            self.use_firestore or self.firebase_credentials or self.firebase_project_id
        )

    @property
    def sql_configured(self) -> bool:
        """
        MySQL is attempted unless USE_MYSQL is set to something other than
        a truthy value. An explicit DATABASE_URL always enables it.
        """
        if self.database_url:
            return True
        flag = (self.use_mysql or "").strip().lower()
        return not flag or flag in TRUTHY_VALUES

    def sql_url(self) -> str:
        if self.database_url:
            return self.database_url
        return URL.create(
            "mysql+pymysql",
            username=self.db_user,
            password=self.db_pass or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        ).render_as_string(hide_password=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
