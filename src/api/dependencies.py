"""Shared FastAPI dependencies.

Separated so tests can override the upstream collaborators without touching
the route modules.
"""

from __future__ import annotations

from functools import lru_cache, partial

from config.settings import get_settings
from integrations.elevenlabs_client import ElevenLabsUrlIssuer
from relay.session import ConnectAgent, IssueTarget
from relay.transport import connect_agent


@lru_cache(maxsize=1)
def _issuer_factory() -> ElevenLabsUrlIssuer:
    return ElevenLabsUrlIssuer(get_settings())


def get_target_issuer() -> IssueTarget:
    return _issuer_factory()


def get_agent_connector() -> ConnectAgent:
    return partial(connect_agent, timeout_s=get_settings().agent_connect_timeout_s)
