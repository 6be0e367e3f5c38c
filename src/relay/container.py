"""Detect and strip audio containers around agent-produced mu-law audio.

Twilio only plays raw 8 kHz mono mu-law. Agents normally emit exactly that,
but some configurations wrap it in a WAV header, and misconfigured ones emit
MP3 or Ogg. WAV mu-law is unwrapped; compressed containers are rejected so
that malformed bytes never reach the caller.
"""

from __future__ import annotations

import base64
import binascii
import logging
import struct
from dataclasses import dataclass

from relay.errors import EmptyInputError, MalformedMessageError, UnsupportedContainerError

LOGGER = logging.getLogger(__name__)

WAVE_FORMAT_MULAW = 7
EXPECTED_SAMPLE_RATE = 8000
EXPECTED_CHANNELS = 1


@dataclass(frozen=True, slots=True)
class WavInfo:
    audio_format: int
    channels: int
    sample_rate: int
    bits_per_sample: int


@dataclass(frozen=True, slots=True)
class NormalizedAudio:
    samples: bytes
    note: str
    wav: WavInfo | None = None


def _is_wav(buf: bytes) -> bool:
    return len(buf) >= 12 and buf[0:4] == b"RIFF" and buf[8:12] == b"WAVE"


def _is_mp3(buf: bytes) -> bool:
    if buf[:3] == b"ID3":
        return True
    # MPEG audio frame sync (11 set bits) plus a header with no reserved
    # fields. 0xFF is also mu-law silence, so the sync alone is not enough.
    if len(buf) < 4 or buf[0] != 0xFF or (buf[1] & 0xE0) != 0xE0:
        return False
    version = (buf[1] >> 3) & 0x03
    layer = (buf[1] >> 1) & 0x03
    bitrate_index = buf[2] >> 4
    sample_rate_index = (buf[2] >> 2) & 0x03
    return version != 0x01 and layer != 0x00 and bitrate_index not in (0x00, 0x0F) and sample_rate_index != 0x03


def _is_ogg(buf: bytes) -> bool:
    return buf[:4] == b"OggS"


def parse_wav(buf: bytes) -> tuple[WavInfo, bytes]:
    """Walk RIFF chunks until both ``fmt `` and ``data`` are found.

    Raises:
        UnsupportedContainerError: if the container is truncated or has no data chunk.
    """

    info: WavInfo | None = None
    data: bytes | None = None

    pos = 12
    while pos + 8 <= len(buf):
        chunk_id = buf[pos : pos + 4]
        (chunk_size,) = struct.unpack_from("<I", buf, pos + 4)
        start = pos + 8

        if chunk_id == b"fmt ":
            if start + 16 > len(buf):
                raise UnsupportedContainerError("wav-truncated-fmt")
            audio_format, channels, sample_rate = struct.unpack_from("<HHI", buf, start)
            (bits_per_sample,) = struct.unpack_from("<H", buf, start + 14)
            info = WavInfo(audio_format, channels, sample_rate, bits_per_sample)
        elif chunk_id == b"data":
            data = buf[start : start + chunk_size]

        if info is not None and data is not None:
            break

        # Chunks are word-aligned; odd sizes carry one pad byte.
        pos = start + chunk_size + (chunk_size % 2)

    if data is None:
        raise UnsupportedContainerError("wav-no-data-chunk")
    if info is None:
        raise UnsupportedContainerError("wav-no-fmt-chunk")
    return info, data


def normalize_agent_audio(buf: bytes | None) -> NormalizedAudio:
    """Return raw mu-law samples for ``buf``.

    Raises:
        EmptyInputError: if ``buf`` is empty or missing.
        UnsupportedContainerError: for MP3/Ogg, or WAV that is not mu-law.
    """

    if not buf:
        raise EmptyInputError()

    if _is_wav(buf):
        info, data = parse_wav(buf)
        if info.audio_format != WAVE_FORMAT_MULAW:
            raise UnsupportedContainerError(f"wav-not-ulaw(fmt={info.audio_format})")
        if info.sample_rate != EXPECTED_SAMPLE_RATE:
            LOGGER.warning(
                "WAV sample rate %s (expected %s); forwarding anyway",
                info.sample_rate,
                EXPECTED_SAMPLE_RATE,
            )
        if info.channels != EXPECTED_CHANNELS:
            LOGGER.warning("WAV has %s channels (expected mono); forwarding anyway", info.channels)
        return NormalizedAudio(samples=bytes(data), note="stripped-wav", wav=info)

    if _is_mp3(buf):
        raise UnsupportedContainerError("mp3-container")
    if _is_ogg(buf):
        raise UnsupportedContainerError("ogg-container")

    return NormalizedAudio(samples=bytes(buf), note="raw")


def normalize_agent_audio_b64(payload: str | None) -> NormalizedAudio:
    if not payload:
        raise EmptyInputError()
    try:
        buf = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedMessageError(f"invalid base64 audio: {exc}") from exc
    return normalize_agent_audio(buf)
