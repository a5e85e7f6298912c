"""Application configuration for the relay and the mesh client."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])
    log_level: str = Field(default="INFO")

    relay_host: str = Field(default="0.0.0.0")
    relay_port: int = Field(default=5000)
    relay_url: str = Field(default="ws://localhost:5000/ws")

    stun_urls: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["stun:stun.l.google.com:19302"])
    turn_url: str = Field(default="turn:openrelay.metered.ca:80")
    turn_username: str = Field(default="openrelayproject")
    turn_credential: str = Field(default="openrelayproject")

    camera_devices: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["/dev/video0"])
    camera_format: str = Field(default="v4l2")
    microphone_device: str = Field(default="default")
    microphone_format: str = Field(default="pulse")

    @field_validator("cors_allow_origins", "stun_urls", "camera_devices", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        """Allow comma-separated env values for list settings."""

        if isinstance(value, str):
            parts = [item.strip() for item in value.split(",") if item.strip()]
            return parts
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
