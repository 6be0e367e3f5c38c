"""ElevenLabs Conversational AI message vocabulary.

The agent emits some logical events under more than one envelope shape.
``parse_agent_message`` resolves every inbound message against an ordered
list of recognizers and returns one typed event, so handlers never look at
raw field names.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from relay.errors import MalformedMessageError

INITIATION_METADATA = "conversation_initiation_metadata"


@dataclass(frozen=True, slots=True)
class AgentReady:
    conversation_id: str | None = None
    agent_output_audio_format: str | None = None
    user_input_audio_format: str | None = None


@dataclass(frozen=True, slots=True)
class AgentAudio:
    audio_b64: str
    event_id: int | None = None


@dataclass(frozen=True, slots=True)
class AgentInterruption:
    event_id: int | None = None


@dataclass(frozen=True, slots=True)
class AgentPing:
    event_id: int | str | None
    ping_ms: int | None = None


@dataclass(frozen=True, slots=True)
class AgentIgnored:
    kind: str


AgentEvent = Union[AgentReady, AgentAudio, AgentInterruption, AgentPing, AgentIgnored]


def _sub(message: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = message.get(key)
    return value if isinstance(value, dict) else {}


def _as_ready(message: Mapping[str, Any]) -> AgentReady | None:
    if not (
        message.get("type") == INITIATION_METADATA
        or message.get("event") == INITIATION_METADATA
        or f"{INITIATION_METADATA}_event" in message
    ):
        return None
    meta = _sub(message, f"{INITIATION_METADATA}_event")
    return AgentReady(
        conversation_id=meta.get("conversation_id"),
        agent_output_audio_format=meta.get("agent_output_audio_format"),
        user_input_audio_format=meta.get("user_input_audio_format"),
    )


def _as_audio(message: Mapping[str, Any]) -> AgentAudio | None:
    if message.get("type") != "audio":
        return None
    audio_event = _sub(message, "audio_event")
    payload = audio_event.get("audio_base_64") or message.get("audio") or ""
    return AgentAudio(audio_b64=str(payload), event_id=audio_event.get("event_id"))


def _as_interruption(message: Mapping[str, Any]) -> AgentInterruption | None:
    if message.get("type") != "interruption":
        return None
    return AgentInterruption(event_id=_sub(message, "interruption_event").get("event_id"))


def _as_ping(message: Mapping[str, Any]) -> AgentPing | None:
    if message.get("type") != "ping":
        return None
    ping_event = _sub(message, "ping_event")
    return AgentPing(event_id=ping_event.get("event_id"), ping_ms=ping_event.get("ping_ms"))


# Order matters: the readiness shapes are checked first because the metadata
# field may appear on an envelope with any (or no) type tag.
RECOGNIZERS: tuple[Callable[[Mapping[str, Any]], AgentEvent | None], ...] = (
    _as_ready,
    _as_audio,
    _as_interruption,
    _as_ping,
)


def parse_agent_message(text: str | bytes) -> AgentEvent:
    try:
        message = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedMessageError(f"invalid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedMessageError("expected a JSON object")

    for recognize in RECOGNIZERS:
        event = recognize(message)
        if event is not None:
            return event
    return AgentIgnored(kind=str(message.get("type") or message.get("event") or "unknown"))


def initiation_client_data(dynamic_variables: Mapping[str, str]) -> dict[str, Any]:
    return {
        "type": "conversation_initiation_client_data",
        "dynamic_variables": dict(dynamic_variables),
    }


def user_audio_chunk(audio: bytes) -> dict[str, Any]:
    return {"user_audio_chunk": base64.b64encode(audio).decode("ascii")}


def pong(event_id: int | str) -> dict[str, Any]:
    return {"type": "pong", "event_id": event_id}
