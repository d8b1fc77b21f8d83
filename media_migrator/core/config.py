"""
Application configuration using pydantic-settings.
"""
import logging
from typing import Optional

from pydantic import field_validator, model_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SQLITE_URL = "sqlite:///./media.db"
STORAGE_PROVIDER_DATABASE = "database"
STORAGE_PROVIDER_FILESYSTEM = "filesystem"


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "Media Migrator"
    app_version: str = "0.1.0"
    environment: str = "development"

    # Database Configuration
    # Primary database URL (defaults to SQLite)
    database_url: str = DEFAULT_SQLITE_URL

    # PostgreSQL override (optional - for advanced users)
    postgres_url: Optional[str] = None

    # Media storage
    media_root: str = "./media"
    # Provider key used when the "Media.Storage.Provider" setting is absent
    media_storage_provider: str = STORAGE_PROVIDER_DATABASE

    # Migration
    migration_batch_size: int = 1000
    # Changing either value after a run breaks the "destination exists" check
    storage_id_width: int = 7
    storage_fanout_length: int = 4
    image_header_read_limit: int = 256 * 1024

    # Logging
    log_level: str = "INFO"
    log_dir: str = "./logs"
    log_to_file: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def database_type(self) -> str:
        """Detect database type from configuration."""
        if self.postgres_url:
            return "postgresql"

        if self.database_url.startswith(("postgresql", "postgres")):
            return "postgresql"

        return "sqlite"

    @property
    def effective_database_url(self) -> str:
        """Get the effective database URL based on configuration hierarchy."""
        # Priority 1: Explicit PostgreSQL URL
        if self.postgres_url:
            return self.postgres_url

        # Priority 2: Primary database URL (defaults to SQLite)
        return self.database_url

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate primary database URL."""
        if not v or not v.strip():
            logger.info(
                "DATABASE_URL not provided; defaulting to SQLite at %s", DEFAULT_SQLITE_URL
            )
            return DEFAULT_SQLITE_URL

        url = v.strip()
        if url.startswith(("sqlite", "postgresql", "postgres")):
            return url

        logger.warning(
            "DATABASE_URL uses unsupported or untested dialect '%s'. Proceed with caution.",
            url.split("://", 1)[0]
        )
        return url

    @field_validator('postgres_url')
    @classmethod
    def validate_postgres_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate PostgreSQL override URL."""
        if not v or not v.strip():
            return None

        url = v.strip()
        if not url.startswith(("postgresql", "postgres")):
            raise ValueError(
                "POSTGRES_URL must be a PostgreSQL URL (postgresql:// or postgres://)"
            )
        return url

    @field_validator('media_storage_provider')
    @classmethod
    def validate_media_storage_provider(cls, v: str) -> str:
        """Normalize the storage provider key."""
        v = v.strip().lower()
        if v not in (STORAGE_PROVIDER_DATABASE, STORAGE_PROVIDER_FILESYSTEM):
            raise ValueError(
                "MEDIA_STORAGE_PROVIDER must be either 'database' or 'filesystem'. "
                f"Got: {v}"
            )
        return v

    @field_validator('migration_batch_size')
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        """Validate the page size of the migration pager."""
        if v <= 0:
            raise ValueError("MIGRATION_BATCH_SIZE must be a positive integer")
        if v > 50000:
            logger.warning(
                f"MIGRATION_BATCH_SIZE is {v}. Large batches increase the migration working set."
            )
        return v

    @field_validator('storage_id_width', 'storage_fanout_length', 'image_header_read_limit')
    @classmethod
    def validate_positive(cls, v: int, info: ValidationInfo) -> int:
        """Validate storage layout values are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name.upper()} must be a positive integer")
        return v

    @model_validator(mode='after')
    def validate_storage_layout(self) -> 'Settings':
        """The fan-out prefix is cut from the zero-padded identifier."""
        if self.storage_fanout_length > self.storage_id_width:
            raise ValueError(
                "STORAGE_FANOUT_LENGTH cannot exceed STORAGE_ID_WIDTH "
                f"({self.storage_fanout_length} > {self.storage_id_width})"
            )
        return self


# Create settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get settings instance."""
    return settings
