from __future__ import annotations

import asyncio
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from integrations.elevenlabs_client import ElevenLabsUrlIssuer, with_output_format
from relay.errors import UpstreamConnectError


def _issuer(settings, handler) -> ElevenLabsUrlIssuer:
    return ElevenLabsUrlIssuer(settings, transport=httpx.MockTransport(handler))


def test_issues_signed_url(settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"signed_url": "wss://api.elevenlabs.io/v1/convai/conversation?token=t"})

    url = asyncio.run(_issuer(settings, handler)())

    assert url == "wss://api.elevenlabs.io/v1/convai/conversation?token=t"
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/v1/convai/conversation/get_signed_url"
    assert request.url.params["agent_id"] == "agent_123"
    assert request.headers["xi-api-key"] == "xi-test"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401, json={"detail": "unauthorized"}),
        httpx.Response(200, json={"unexpected": True}),
        httpx.Response(200, json=["signed_url"]),
        httpx.Response(200, text="<html>"),
    ],
)
def test_bad_responses_raise_upstream_error(settings, response: httpx.Response) -> None:
    with pytest.raises(UpstreamConnectError):
        asyncio.run(_issuer(settings, lambda request: response).issue_agent_connection_target())


def test_transport_errors_raise_upstream_error(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route to host", request=request)

    with pytest.raises(UpstreamConnectError):
        asyncio.run(_issuer(settings, handler).issue_agent_connection_target())


def test_missing_credentials_raise_upstream_error(settings) -> None:
    settings.elevenlabs_api_key = None

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(UpstreamConnectError, match="ELEVENLABS_API_KEY"):
        asyncio.run(_issuer(settings, handler).issue_agent_connection_target())


def test_with_output_format_keeps_existing_query() -> None:
    url = with_output_format("wss://host/v1/convai/conversation?agent_id=a&conversation_signature=s", "ulaw_8000")
    query = parse_qs(urlsplit(url).query)
    assert query == {"agent_id": ["a"], "conversation_signature": ["s"], "output_format": ["ulaw_8000"]}


def test_with_output_format_replaces_previous_value() -> None:
    url = with_output_format("wss://host/path?output_format=pcm_16000", "ulaw_8000")
    assert urlsplit(url).query == "output_format=ulaw_8000"
