"""Twilio Media Streams message vocabulary.

Inbound messages are parsed into small typed events; outbound messages are
built by the ``*_message`` helpers. Field names follow the Twilio wire format.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Union

from relay.errors import MalformedMessageError


@dataclass(frozen=True, slots=True)
class MediaFormat:
    encoding: str = "audio/x-mulaw"
    sample_rate: int = 8000
    channels: int = 1

    @property
    def is_narrowband_mulaw(self) -> bool:
        return self.encoding == "audio/x-mulaw" and self.sample_rate == 8000 and self.channels == 1


@dataclass(frozen=True, slots=True)
class TelephonyStart:
    stream_sid: str
    call_sid: str | None
    media_format: MediaFormat
    custom_parameters: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TelephonyMedia:
    payload: str
    track: str | None = None

    def decode(self) -> bytes:
        try:
            return base64.b64decode(self.payload, validate=True)
        except ValueError as exc:
            raise MalformedMessageError(f"invalid base64 media payload: {exc}") from exc


@dataclass(frozen=True, slots=True)
class TelephonyStop:
    stream_sid: str | None


@dataclass(frozen=True, slots=True)
class TelephonyOther:
    event: str


TelephonyEvent = Union[TelephonyStart, TelephonyMedia, TelephonyStop, TelephonyOther]


def _load_object(text: str | bytes) -> dict[str, Any]:
    try:
        message = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedMessageError(f"invalid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedMessageError("expected a JSON object")
    return message


def _parse_media_format(raw: Any) -> MediaFormat:
    if not isinstance(raw, dict):
        return MediaFormat()
    try:
        return MediaFormat(
            encoding=str(raw.get("encoding") or "audio/x-mulaw"),
            sample_rate=int(raw.get("sampleRate") or 8000),
            channels=int(raw.get("channels") or 1),
        )
    except (TypeError, ValueError) as exc:
        raise MalformedMessageError(f"invalid mediaFormat: {raw!r}") from exc


def parse_telephony_message(text: str | bytes) -> TelephonyEvent:
    message = _load_object(text)
    event = str(message.get("event") or "")

    if event == "start":
        start = message.get("start")
        if not isinstance(start, dict):
            raise MalformedMessageError("start event without start object")
        stream_sid = start.get("streamSid") or message.get("streamSid")
        if not stream_sid:
            raise MalformedMessageError("start event without streamSid")
        params = start.get("customParameters") or {}
        return TelephonyStart(
            stream_sid=str(stream_sid),
            call_sid=start.get("callSid"),
            media_format=_parse_media_format(start.get("mediaFormat")),
            custom_parameters={str(k): str(v) for k, v in params.items()} if isinstance(params, dict) else {},
        )

    if event == "media":
        media = message.get("media")
        if not isinstance(media, dict) or not isinstance(media.get("payload"), str):
            raise MalformedMessageError("media event without payload")
        return TelephonyMedia(payload=media["payload"], track=media.get("track"))

    if event == "stop":
        return TelephonyStop(stream_sid=message.get("streamSid"))

    return TelephonyOther(event=event)


def media_message(stream_sid: str, frame: bytes) -> dict[str, Any]:
    return {
        "event": "media",
        "streamSid": stream_sid,
        "media": {"payload": base64.b64encode(frame).decode("ascii")},
    }


def clear_message(stream_sid: str) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_sid}


def mark_message(stream_sid: str, name: str) -> dict[str, Any]:
    return {"event": "mark", "streamSid": stream_sid, "mark": {"name": name}}
