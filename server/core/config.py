"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1024, le=65535)
    debug: bool = Field(default=False)

    # Security
    cors_origins: List[str] = Field(default=["http://localhost:5173"])

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/campus.db")
    database_echo: bool = Field(default=False)
    database_pool_size: int = Field(default=20, ge=5, le=100)
    database_max_overflow: int = Field(default=30, ge=10, le=100)

    # User profile cache
    user_cache_capacity: int = Field(default=500, ge=1)
    user_cache_ttl: int = Field(default=7200, ge=0)  # seconds, 0 = never expire

    # Chat message buffer
    message_buffer_debounce_ms: int = Field(default=750, ge=1)
    max_chats_per_user: int = Field(default=30, ge=1)

    # Upstream university API
    userinfo_url: str = Field(default="")
    upstream_timeout: int = Field(default=10, ge=1, le=120)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    # Periodic cleanup
    cleanup_enabled: bool = Field(default=True)
    cleanup_interval: int = Field(default=300, ge=1)

    # Memory monitor
    memory_sample_interval: int = Field(default=60, ge=1)
    memory_warn_rss_mb: int = Field(default=500, ge=1)

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
