"""
Application configuration settings
"""

import logging
from pathlib import Path
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


# Project root directory (parent of stocktracker/)
PROJECT_ROOT = Path(__file__).parent.parent

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Environment
    environment: str = "development"

    # Database
    database_url: str = f"sqlite:///{(PROJECT_ROOT / 'portfolio.db').resolve()}"

    # Application
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:3000"]

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # CSV import
    max_upload_size: int = 5 * 1024 * 1024  # 5MB
    max_import_rows: int = 1000

    # Cost basis policy
    include_fees_in_cost_basis: bool = True

    # Market data
    quote_cache_ttl: int = 60  # seconds
    quote_max_workers: int = 5
    quote_timeout_seconds: float = 10.0

    # Response caches
    portfolio_cache_ttl: int = 120  # seconds
    performance_cache_ttl: int = 600  # seconds

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields from environment

    @field_validator('database_url', mode='after')
    @classmethod
    def ensure_absolute_db_path(cls, v: str) -> str:
        """
        Ensure database URL uses absolute path for SQLite databases.

        Relative SQLite paths are resolved against the project root so the
        database lands in the same place whatever the working directory.
        In-memory databases are left untouched.
        """
        if not v.startswith("sqlite:///"):
            return v

        db_path_str = v.replace("sqlite:///", "")
        if not db_path_str or db_path_str == ":memory:":
            return v

        db_path = Path(db_path_str)
        if db_path.is_absolute():
            return v

        absolute_path = (PROJECT_ROOT / db_path).resolve()
        return f"sqlite:///{absolute_path}"

    @field_validator('log_level', mode='after')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.environment.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def cors_origins_list(self) -> List[str]:
        """Get CORS origins as a list"""
        if isinstance(self.cors_origins, str):
            return [origin.strip() for origin in self.cors_origins.split(",")]
        return self.cors_origins


# Global settings instance
settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once, optionally mirroring to ``settings.log_file``."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=getattr(logging, level or settings.log_level),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
