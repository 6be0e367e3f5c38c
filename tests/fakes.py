from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from typing import Any

from relay.errors import RelaySocketError
from relay.transport import RelaySocket


class FakeSocket(RelaySocket):
    """In-memory socket: tests feed inbound messages and inspect what was sent."""

    def __init__(self, side: str) -> None:
        self.side = side
        self.sent: list[dict[str, Any]] = []
        self.sent_at: list[float] = []
        self.closed = False
        self.fail_sends = 0
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return not self.closed

    def feed(self, message: dict[str, Any] | str) -> None:
        self._incoming.put_nowait(json.dumps(message) if isinstance(message, dict) else message)

    def fail(self, error: Exception) -> None:
        self._incoming.put_nowait(error)

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    async def receive(self) -> str | None:
        item = await self._incoming.get()
        if item is None:
            self.closed = True
            return None
        if isinstance(item, Exception):
            self.closed = True
            raise item
        return item

    async def send_text(self, text: str) -> None:
        if self.closed:
            raise RelaySocketError(f"{self.side} closed")
        if self.fail_sends:
            self.fail_sends -= 1
            raise RelaySocketError(f"{self.side} send failed")
        self.sent.append(json.loads(text))
        self.sent_at.append(time.monotonic())

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def events(self, name: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("event") == name]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)
