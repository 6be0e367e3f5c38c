from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

LOGGER = logging.getLogger(__name__)


class ReadinessGate:
    """One-way latch that holds back caller audio until the agent is listening.

    The gate opens on the first ``mark_ready`` call, either from the agent's
    initiation metadata or from the fallback timer. It never closes again.
    """

    def __init__(
        self,
        fallback_ms: int = 1500,
        *,
        on_open: Callable[[str], None] | None = None,
        label: str = "-",
    ) -> None:
        self._fallback_s = fallback_ms / 1000
        self._on_open = on_open
        self.label = label
        self._event = asyncio.Event()
        self._timer: asyncio.TimerHandle | None = None
        self.opened_by: str | None = None

    def is_ready(self) -> bool:
        return self._event.is_set()

    def mark_ready(self, reason: str = "explicit") -> bool:
        """Open the gate. Returns True only for the call that opened it."""

        if self._event.is_set():
            return False
        self._event.set()
        self.opened_by = reason
        self.cancel()
        LOGGER.info("[%s] Readiness gate opened (%s)", self.label, reason)
        if self._on_open is not None:
            self._on_open(reason)
        return True

    def start_fallback(self) -> None:
        if self._event.is_set() or self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._fallback_s, self._fallback_fired)

    def _fallback_fired(self) -> None:
        self._timer = None
        if self.mark_ready("fallback"):
            LOGGER.warning(
                "[%s] No initiation metadata after %.0fms; streaming caller audio anyway",
                self.label,
                self._fallback_s * 1000,
            )

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def wait(self) -> None:
        await self._event.wait()
