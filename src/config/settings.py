"""Application-wide configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")
    port: int = Field(default=8080, description="Port the HTTP server listens on.")

    # ElevenLabs Conversational AI
    elevenlabs_api_key: str | None = Field(default=None)
    elevenlabs_agent_id: str | None = Field(default=None)
    elevenlabs_api_base_url: str = Field(default="https://api.elevenlabs.io")
    agent_output_format: str = Field(
        default="ulaw_8000",
        description="Value of the output_format query parameter appended to the signed URL.",
    )
    agent_connect_timeout_s: float = Field(default=10.0, gt=0)
    agent_http_timeout_s: float = Field(default=10.0, gt=0)

    # Twilio Media Streams
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL used in the <Stream> TwiML (e.g. https://<ngrok>.ngrok-free.app).",
    )
    default_caller_name: str = Field(default="Caller")
    beep_on_start: bool = Field(
        default=False,
        description="If true, plays a short test beep to the caller when the stream starts.",
    )

    # Relay timing
    readiness_fallback_ms: int = Field(default=1500, ge=0)
    frame_interval_ms: int = Field(default=20, gt=0)
    frame_bytes: int = Field(default=160, gt=0)
    outbound_queue_max_frames: int = Field(
        default=3000,
        gt=0,
        description="Upper bound on queued outbound frames (3000 frames = 60s of audio).",
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()


@dataclass(frozen=True)
class ElevenLabsConfig:
    api_key: str
    agent_id: str
    api_base_url: str


def get_elevenlabs_config(settings: Settings | None = None) -> ElevenLabsConfig:
    settings = settings or get_settings()
    if not settings.elevenlabs_api_key or not settings.elevenlabs_agent_id:
        raise ValueError("Missing ELEVENLABS_API_KEY or ELEVENLABS_AGENT_ID")

    return ElevenLabsConfig(
        api_key=settings.elevenlabs_api_key,
        agent_id=settings.elevenlabs_agent_id,
        api_base_url=settings.elevenlabs_api_base_url.rstrip("/"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
