"""Application configuration management using Pydantic Settings.

This module defines the `Settings` class, which loads configuration parameters
from environment variables and a `.env` file. It centralizes the tunable
parameters of trace interpretation: the re-declaration dedup window, the set
of journey event instances that are interpreted, journey name cleanup and
logging levels.

The `get_settings` function provides a cached, singleton instance of the
configuration, ensuring consistent settings throughout the application.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict as _SettingsConfigDict

DEFAULT_SUPPORTED_EVENT_INSTANCES = [
    "Event:AUTH",
    "Event:API",
    "Event:SELFASSERTED",
    "Event:ClaimsExchange",
]
DEFAULT_JOURNEY_NAME_PREFIXES = ["B2C_1A_", "DEV_", "PROD_", "TEST_", "GlobalApp_"]


class Settings(BaseSettings):
    """Defines all application configuration parameters.

    Values are loaded from environment variables or a `.env` file. List
    settings accept comma-separated strings so they can be supplied from the
    environment without JSON quoting.
    """

    model_config = _SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Logging & runtime behavior
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    DEBUG: bool = Field(
        default=False,
        description="Enable verbose per-clip debug logging during interpretation",
    )

    # ---------------- Interpretation -----------------
    DEDUP_THRESHOLD_MS: int = Field(
        default=1000,
        description=(
            "Window in milliseconds within which a repeated declaration of the same "
            "journey/step pair is treated as the same visit rather than a new one."
        ),
    )
    # Use Any type to prevent Pydantic Settings JSON decoding; validator converts to list[str]
    SUPPORTED_EVENT_INSTANCES: Any = Field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_EVENT_INSTANCES),
        description=(
            "Comma-separated list of Headers event instances that are interpreted. "
            "Records whose event instance is not listed are ignored."
        ),
    )
    JOURNEY_NAME_PREFIXES: Any = Field(
        default_factory=lambda: list(DEFAULT_JOURNEY_NAME_PREFIXES),
        description=(
            "Comma-separated policy id prefixes stripped when deriving the display "
            "name of the root journey."
        ),
    )

    # ---------------- Grouping -----------------
    SPLIT_ON_AUTH_RESTART: bool = Field(
        default=False,
        description=(
            "If true, the flow grouper starts a new flow whenever a correlation id "
            "sees a second Event:AUTH record. Default groups strictly by correlation id."
        ),
    )

    @field_validator("SUPPORTED_EVENT_INSTANCES", "JOURNEY_NAME_PREFIXES", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated string into list of stripped strings.

        Supports both direct list input (from code/tests) and comma-separated
        string input (from environment variables). Empty strings result in
        empty list.
        """
        if isinstance(v, list):
            return [s.strip() for s in v if s.strip()]
        if isinstance(v, str):
            if not v.strip():
                return []
            return [s.strip() for s in v.split(",") if s.strip()]
        return []

    @model_validator(mode="after")
    def check_interpretation_settings(self) -> "Settings":
        """Reject settings that would make interpretation meaningless."""
        if self.DEDUP_THRESHOLD_MS < 0:
            raise ValueError("DEDUP_THRESHOLD_MS must be >= 0")
        if not self.SUPPORTED_EVENT_INSTANCES:
            raise ValueError("SUPPORTED_EVENT_INSTANCES must list at least one event instance")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, singleton instance of the application settings.

    Provides a clearer error if environment values are invalid.
    """
    try:
        return Settings()
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())) or 'settings'}: {err.get('msg')}"
            for err in e.errors()
        )
        raise RuntimeError(f"Invalid configuration: {problems}") from e
