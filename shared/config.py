"""Base configuration with pydantic-settings.

Services subclass ``BaseSettings`` and declare the fields they need,
using the field helpers below for values shared across services.

Usage in service:
    from shared.config import BaseSettings, supabase_url_field

    class Settings(BaseSettings):
        supabase_url: str = supabase_url_field(required=True)

    settings = Settings()
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings as PydanticBaseSettings, SettingsConfigDict


class BaseSettings(PydanticBaseSettings):
    """Base application settings.

    All fields here are optional with sensible defaults.
    Services inherit this and make required fields mandatory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    service_name: str = Field(
        default="unknown",
        description="Service name for structured logging",
    )
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v


# === Field definitions for reuse in service configs ===


def supabase_url_field(required: bool = True):
    """Supabase project URL field definition."""
    if required:
        return Field(
            ...,
            description="Supabase project URL (PostgREST lives under /rest/v1)",
            examples=["https://abcd1234.supabase.co"],
        )
    return Field(
        default=None,
        description="Supabase project URL (optional)",
    )


def supabase_key_field(required: bool = True):
    """Supabase service-role key field definition."""
    if required:
        return Field(
            ...,
            description="Supabase service-role API key",
        )
    return Field(
        default="",
        description="Supabase service-role API key (optional)",
    )
