"""Signed conversation URLs for ElevenLabs Conversational AI agents."""

from __future__ import annotations

import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from config.settings import Settings, get_elevenlabs_config, get_settings
from relay.errors import UpstreamConnectError

LOGGER = logging.getLogger(__name__)

SIGNED_URL_PATH = "/v1/convai/conversation/get_signed_url"


class ElevenLabsUrlIssuer:
    """Fetches a one-shot authenticated websocket URL for the configured agent."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport

    async def __call__(self) -> str:
        return await self.issue_agent_connection_target()

    async def issue_agent_connection_target(self) -> str:
        try:
            cfg = get_elevenlabs_config(self._settings)
        except ValueError as exc:
            raise UpstreamConnectError(str(exc)) from exc

        async with httpx.AsyncClient(
            base_url=cfg.api_base_url,
            timeout=self._settings.agent_http_timeout_s,
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(
                    SIGNED_URL_PATH,
                    params={"agent_id": cfg.agent_id},
                    headers={"xi-api-key": cfg.api_key},
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                LOGGER.error("Failed to get signed URL: %s", exc)
                raise UpstreamConnectError(f"Failed to get signed URL: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamConnectError("Signed URL response is not JSON") from exc
        signed_url = data.get("signed_url") if isinstance(data, dict) else None
        if not signed_url:
            raise UpstreamConnectError("No signed_url in response")
        return str(signed_url)


def with_output_format(url: str, output_format: str) -> str:
    """Return ``url`` with ``output_format`` set, keeping other query parameters."""

    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "output_format"]
    query.append(("output_format", output_format))
    return urlunsplit(parts._replace(query=urlencode(query)))
