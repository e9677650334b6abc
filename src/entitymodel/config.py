"""
entitymodel configuration management using pydantic-settings.

Naming conventions and convention switches can be tuned through
ENTITYMODEL_* environment variables or a .env file.
"""

import logging
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Library settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ENTITYMODEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level used by configure_logging",
    )

    # Naming conventions
    key_property_name: str = Field(
        default="Id",
        description="Conventional primary key name and foreign key suffix",
    )
    shadow_name_ordinal_start: int = Field(
        default=1,
        ge=0,
        description="First ordinal appended to a synthesized name that is already taken",
    )

    # Convention switches
    discover_keys: bool = Field(
        default=True,
        description="Detect primary keys named Id or <TypeName>Id",
    )
    discover_relationships: bool = Field(
        default=True,
        description="Pair reference and collection members into relationships",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept standard logging level names only."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("key_property_name")
    @classmethod
    def validate_key_property_name(cls, v: str) -> str:
        """The key suffix is spliced into property names, so it must be an identifier."""
        if not v or not v.isidentifier():
            raise ValueError("key_property_name must be a valid identifier")
        return v


# Global settings instance
settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for applications embedding the library."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format=LOG_FORMAT,
    )
