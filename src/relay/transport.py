"""Uniform socket interface used by the relay session.

The telephony side is the server-side Starlette WebSocket that Twilio
connects to; the agent side is a ``websockets`` client connection. Both are
wrapped so the session sees the same receive/send/close surface and the same
error type.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, InvalidHandshake, InvalidURI
from websockets.protocol import State

from relay.errors import RelaySocketError, UpstreamConnectError

LOGGER = logging.getLogger(__name__)


class RelaySocket(ABC):
    """One side of a relayed call."""

    side: str = "socket"

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether sends are currently possible."""

    @abstractmethod
    async def receive(self) -> str | bytes | None:
        """Return the next message, or None once the peer closed cleanly.

        Raises:
            RelaySocketError: if the transport failed.
        """

    @abstractmethod
    async def send_text(self, text: str) -> None:
        """Send one text frame.

        Raises:
            RelaySocketError: if the transport failed.
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the socket; safe to call more than once."""

    async def send_json(self, message: dict[str, Any]) -> None:
        await self.send_text(json.dumps(message))


class TwilioSocket(RelaySocket):
    side = "telephony"

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    async def receive(self) -> str | None:
        try:
            return await self._ws.receive_text()
        except WebSocketDisconnect:
            self._closed = True
            return None
        except RuntimeError as exc:
            # Starlette raises RuntimeError when receiving after close.
            self._closed = True
            raise RelaySocketError(f"telephony receive failed: {exc}") from exc
        except KeyError as exc:
            # Starlette raises KeyError("text") when the frame is binary.
            raise RelaySocketError(f"telephony sent a non-text frame: {exc!r}") from exc

    async def send_text(self, text: str) -> None:
        try:
            await self._ws.send_text(text)
        except (WebSocketDisconnect, RuntimeError) as exc:
            raise RelaySocketError(f"telephony send failed: {exc}") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self._ws.close()
        except RuntimeError as exc:
            LOGGER.debug("Telephony socket already closed: %s", exc)


class AgentSocket(RelaySocket):
    side = "agent"

    def __init__(self, connection: ClientConnection) -> None:
        self._ws = connection

    @property
    def is_open(self) -> bool:
        return self._ws.state is State.OPEN

    async def receive(self) -> str | bytes | None:
        try:
            return await self._ws.recv()
        except ConnectionClosedOK:
            return None
        except ConnectionClosed as exc:
            raise RelaySocketError(f"agent connection lost: {exc}") from exc
        except RuntimeError as exc:
            # Concurrent recv or a protocol-level misuse.
            raise RelaySocketError(f"agent receive failed: {exc}") from exc

    async def send_text(self, text: str) -> None:
        try:
            await self._ws.send(text)
        except ConnectionClosed as exc:
            raise RelaySocketError(f"agent send failed: {exc}") from exc

    async def close(self) -> None:
        try:
            await self._ws.close()
        except ConnectionClosed as exc:
            LOGGER.debug("Agent socket already closed: %s", exc)


async def connect_agent(url: str, *, timeout_s: float = 10.0) -> AgentSocket:
    """Open the agent websocket.

    Raises:
        UpstreamConnectError: if the handshake fails or times out.
    """

    try:
        connection = await asyncio.wait_for(
            connect(
                url,
                max_size=16 * 1024 * 1024,
                ping_interval=20,
                ping_timeout=20,
                close_timeout=5,
            ),
            timeout=timeout_s,
        )
    except asyncio.TimeoutError as exc:
        raise UpstreamConnectError("agent connection timeout") from exc
    except (InvalidHandshake, InvalidURI, OSError) as exc:
        raise UpstreamConnectError(f"agent connection failed: {exc}") from exc

    return AgentSocket(connection)
