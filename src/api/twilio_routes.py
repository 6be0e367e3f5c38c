"""Twilio Media Streams integration.

This module provides:
- Inbound call webhook returning TwiML that connects the call to our media stream.
- The media stream websocket, which relays the call to the voice agent.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from urllib.parse import urlsplit
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from api.dependencies import get_agent_connector, get_target_issuer
from config.settings import get_settings
from relay.session import ConnectAgent, IssueTarget, MediaRelaySession
from relay.transport import TwilioSocket

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])

CONTEXT_PARAMS = ("Date", "Time", "Name", "Contact_Details")


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _attr(value: str) -> str:
    return escape(value, {'"': "&quot;"})


def _twiml_connect_stream(*, stream_url: str, parameters: dict[str, str] | None = None) -> str:
    # Twilio drops query strings on the stream URL; custom values travel as
    # <Parameter> children and come back in the start event's customParameters.
    params = "".join(
        f"<Parameter name=\"{_attr(name)}\" value=\"{_attr(value)}\" />" for name, value in (parameters or {}).items()
    )
    url = _attr(stream_url)
    stream = f"<Stream url=\"{url}\">{params}</Stream>" if params else f"<Stream url=\"{url}\" />"
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"{stream}"
        "</Connect>"
        "</Response>"
    )


def _stream_host(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        parsed = urlsplit(settings.public_base_url)
        return parsed.netloc or parsed.path.rstrip("/")
    return request.headers.get("host") or request.url.netloc


def build_dynamic_context(params: dict[str, str], *, now: datetime | None = None) -> dict[str, str]:
    """Caller metadata for the agent, with defaults for anything missing."""

    now = now or datetime.now(timezone.utc)
    return {
        "Date": params.get("Date") or now.date().isoformat(),
        "Time": params.get("Time") or now.astimezone().strftime("%H:%M"),
        "Name": params.get("Name") or get_settings().default_caller_name,
        "Contact_Details": params.get("Contact_Details") or "",
    }


@router.api_route("/incoming-call", methods=["GET", "POST"])
async def twilio_incoming_call(request: Request) -> Response:
    host = _stream_host(request)
    stream_url = f"wss://{host}/api/twilio/media-stream"
    context = {key: request.query_params[key] for key in CONTEXT_PARAMS if request.query_params.get(key)}
    return _twiml_response(_twiml_connect_stream(stream_url=stream_url, parameters=context))


@router.websocket("/media-stream")
async def twilio_media_stream(
    websocket: WebSocket,
    issue_target: IssueTarget = Depends(get_target_issuer),
    connect_agent: ConnectAgent = Depends(get_agent_connector),
) -> None:
    await websocket.accept()
    LOGGER.info("Twilio connected to media stream")

    # Query values seed the context; the start event's customParameters override them.
    session = MediaRelaySession(
        TwilioSocket(websocket),
        build_dynamic_context(dict(websocket.query_params)),
        issue_target=issue_target,
        connect_agent=connect_agent,
    )
    try:
        await session.run()
    except Exception:
        # One call failing must not take the server down.
        LOGGER.exception("[%s] Media relay crashed", session.call.label)
        await session.shutdown()
