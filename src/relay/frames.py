from __future__ import annotations

from collections.abc import Iterator
from typing import Final

FRAME_MS: Final[int] = 20
FRAME_BYTES: Final[int] = 160  # 20ms of 8kHz mono mu-law


class FrameSequence:
    """Lazy view of a buffer sliced into fixed-size frames.

    Iterating again starts over from the first frame. Only the last frame may
    be shorter than ``frame_bytes``.
    """

    __slots__ = ("_raw", "_frame_bytes")

    def __init__(self, raw: bytes, frame_bytes: int = FRAME_BYTES) -> None:
        if frame_bytes <= 0:
            raise ValueError("frame_bytes must be > 0")
        self._raw = raw
        self._frame_bytes = frame_bytes

    def __iter__(self) -> Iterator[bytes]:
        raw = self._raw
        size = self._frame_bytes
        for offset in range(0, len(raw), size):
            yield raw[offset : offset + size]

    def __len__(self) -> int:
        return -(-len(self._raw) // self._frame_bytes)


def packetize(raw: bytes, frame_bytes: int = FRAME_BYTES) -> FrameSequence:
    return FrameSequence(raw, frame_bytes)
