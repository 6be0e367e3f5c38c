"""Real-time pacing of agent audio towards Twilio.

Agent audio arrives in bursts; Twilio expects it at playback speed. Flushing
a burst at once garbles playback and overflows the provider-side buffer, so
the pacer sends exactly one frame per interval from the session's queue.
"""

from __future__ import annotations

import asyncio
import logging
import time

from relay.errors import RelaySocketError
from relay.frames import FRAME_MS
from relay.models import CallSession, SessionState
from relay.telephony_protocol import media_message
from relay.transport import RelaySocket

LOGGER = logging.getLogger(__name__)


class OutboundPacer:
    def __init__(
        self,
        session: CallSession,
        telephony: RelaySocket,
        *,
        interval_ms: int = FRAME_MS,
    ) -> None:
        self._session = session
        self._telephony = telephony
        self._interval = interval_ms / 1000
        self._task: asyncio.Task | None = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start ticking. Only the first call has an effect."""

        if self._task is not None or self._stopped:
            return False
        self._task = asyncio.create_task(self._run(), name=f"pacer:{self._session.label}")
        LOGGER.info("[%s] Outbound pacer started (%.0fms)", self._session.label, self._interval * 1000)
        return True

    async def stop(self) -> None:
        self._stopped = True
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        LOGGER.info("[%s] Outbound pacer stopped", self._session.label)

    async def tick(self) -> bool:
        """Send at most one frame. Returns True if a frame was sent."""

        session = self._session
        if self._stopped or session.state is not SessionState.STREAMING:
            return False
        if not self._telephony.is_open:
            return False
        stream_sid = session.session_id
        if stream_sid is None:
            return False
        frame = session.outbound_queue.popleft()
        if frame is None:
            return False

        try:
            await self._telephony.send_json(media_message(stream_sid, frame))
        except RelaySocketError as exc:
            session.stats.outbound_send_failures += 1
            LOGGER.warning("[%s] Failed to send frame to telephony: %s", session.label, exc)
            return False

        session.stats.outbound_frames += 1
        session.stats.outbound_bytes += len(frame)
        return True

    async def _run(self) -> None:
        # Deadline-based: each tick targets start + n * interval, so jitter in
        # one tick does not accumulate.
        next_deadline = time.monotonic()
        while True:
            next_deadline += self._interval
            now = time.monotonic()
            if next_deadline < now:
                # Fell behind; re-anchor instead of bursting to catch up.
                next_deadline = now
            await asyncio.sleep(next_deadline - now)

            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("[%s] Pacer tick failed", self._session.label)
