from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture()
def settings():
    from config.settings import Settings

    # Long pacer interval: tests drive ticks by hand unless they opt in.
    return Settings(
        _env_file=None,
        elevenlabs_api_key="xi-test",
        elevenlabs_agent_id="agent_123",
        readiness_fallback_ms=60_000,
        frame_interval_ms=60_000,
    )


@pytest.fixture(scope="session")
def app():
    # Must be set before importing modules that read settings.
    os.environ["ELEVENLABS_API_KEY"] = "xi-test"
    os.environ["ELEVENLABS_AGENT_ID"] = "agent_123"
    os.environ.pop("PUBLIC_BASE_URL", None)

    import importlib

    from config.settings import get_settings

    get_settings.cache_clear()
    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
