"""Bounded FIFO of outbound audio frames.

The agent can produce audio much faster than real time. The queue keeps
insertion order and, once full, drops the OLDEST frame so that memory stays
bounded and the caller hears the freshest audio.
"""

from __future__ import annotations

from collections import deque


class OutboundFrameQueue:
    def __init__(self, *, max_frames: int) -> None:
        if max_frames <= 0:
            raise ValueError("max_frames must be > 0")
        self._max_frames = max_frames
        self._frames: deque[bytes] = deque()

    def append(self, frame: bytes) -> bool:
        """Append ``frame``; returns False if an older frame had to be dropped."""

        trimmed = False
        if len(self._frames) >= self._max_frames:
            self._frames.popleft()
            trimmed = True
        self._frames.append(frame)
        return not trimmed

    def popleft(self) -> bytes | None:
        if not self._frames:
            return None
        return self._frames.popleft()

    def clear(self) -> int:
        """Discard every queued frame; returns how many were discarded."""

        count = len(self._frames)
        self._frames.clear()
        return count

    @property
    def max_frames(self) -> int:
        return self._max_frames

    def __len__(self) -> int:
        return len(self._frames)
