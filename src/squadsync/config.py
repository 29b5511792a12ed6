"""
Runtime settings for clients and the relay server.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


def _default_storage_path() -> str:
    return str(Path.home() / ".squadsync" / "storage.json")


class Settings(BaseModel):
    """Tunable timers, sizes and endpoints."""

    room_capacity: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of presentation slots in a room"
    )
    roll_delay: float = Field(
        default=2.0,
        ge=0.0,
        le=10.0,
        description="Seconds between the roll-start signal and the result broadcast"
    )
    roll_safety_timeout: float = Field(
        default=5.0,
        gt=0.0,
        le=60.0,
        description="Upper bound on the rolling indicator without a confirming update"
    )
    validation_settle: float = Field(
        default=1.2,
        ge=0.0,
        le=30.0,
        description="Seconds to let the presence directory populate before validating a join"
    )
    disband_delay: float = Field(
        default=2.0,
        ge=0.0,
        le=30.0,
        description="Seconds the room-closed notice stays visible before teardown"
    )
    connect_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Seconds to wait for the first SUBSCRIBED status"
    )
    subscribe_timeout: float = Field(
        default=5.0,
        gt=0.0,
        le=60.0,
        description="Seconds a websocket channel waits for the subscribe ack"
    )
    reconnect_backoff: float = Field(
        default=1.0,
        gt=0.0,
        le=60.0,
        description="Initial delay before a dropped websocket reconnects"
    )
    reconnect_backoff_max: float = Field(
        default=15.0,
        gt=0.0,
        le=300.0,
        description="Ceiling for the reconnect delay"
    )
    history_size: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Roll history entries kept per client"
    )
    relay_url: str = Field(
        default="ws://localhost:8000/realtime",
        description="Websocket relay endpoint"
    )
    storage_path: str = Field(
        default_factory=_default_storage_path,
        description="JSON file used for local persistence"
    )
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    log_level: str = "info"

    @field_validator('reconnect_backoff_max')
    @classmethod
    def validate_backoff_max(cls, v, info):
        """Validate the backoff ceiling is not below the initial delay."""
        initial = info.data.get('reconnect_backoff', 1.0)
        if v < initial:
            raise ValueError(f'reconnect_backoff_max ({v}) must be >= reconnect_backoff ({initial})')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        return v.lower()

    @classmethod
    def from_env(cls, prefix: str = "SQUADSYNC_") -> "Settings":
        """Build settings from ``SQUADSYNC_*`` environment variables."""
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is not None:
                values[name] = raw
        # HOST/PORT/LOG_LEVEL are honoured unprefixed for hosting platforms
        for name in ("host", "port", "log_level"):
            raw = os.getenv(name.upper())
            if raw is not None and name not in values:
                values[name] = raw
        return cls(**values)


# Default configuration instance
default_settings = Settings()


def create_settings(**overrides) -> Settings:
    """Create Settings with optional overrides."""
    config_dict = default_settings.model_dump()
    config_dict.update(overrides)
    return Settings(**config_dict)
