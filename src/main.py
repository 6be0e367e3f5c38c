"""Entry point for the Twilio to ElevenLabs media relay service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import health_router
from api.routes import router as api_router
from config.settings import get_elevenlabs_config, get_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        get_elevenlabs_config()
    except ValueError as exc:
        LOGGER.error("%s; calls will be rejected until configured", exc)
    yield


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Voice Agent Media Relay",
    description="Bridges Twilio Media Streams to an ElevenLabs Conversational AI agent.",
    lifespan=lifespan,
)
app.include_router(health_router)
app.include_router(api_router, prefix="/api")


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
