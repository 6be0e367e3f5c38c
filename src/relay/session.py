"""Per-call relay between a Twilio media stream and an ElevenLabs agent.

Each socket gets its own receive loop. Both loops post into one inbox that a
single coroutine drains, so socket events mutate the call state in arrival
order and one at a time. The pacer and the readiness fallback run on the same
event loop and never yield between checking and mutating state.

State machine::

    CONNECTING (await Twilio start, connect agent) -> AWAITING_READY -> STREAMING -> CLOSING -> CLOSED
         \\_________________________________________________________________/
              (telephony closed before start, or upstream connect failure)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from config.settings import Settings, get_settings
from integrations.elevenlabs_client import with_output_format
from relay.agent_protocol import (
    AgentAudio,
    AgentEvent,
    AgentIgnored,
    AgentInterruption,
    AgentPing,
    AgentReady,
    initiation_client_data,
    parse_agent_message,
    pong,
    user_audio_chunk,
)
from relay.container import normalize_agent_audio_b64
from relay.errors import (
    EmptyInputError,
    MalformedMessageError,
    RelayError,
    RelaySocketError,
    UnsupportedContainerError,
)
from relay.frames import packetize
from relay.gate import ReadinessGate
from relay.models import CallSession, SessionState
from relay.pacer import OutboundPacer
from relay.queues import OutboundFrameQueue
from relay.telephony_protocol import (
    TelephonyEvent,
    TelephonyMedia,
    TelephonyOther,
    TelephonyStart,
    TelephonyStop,
    clear_message,
    mark_message,
    media_message,
    parse_telephony_message,
)
from relay.transport import RelaySocket
from telephony.tones import beep_ulaw

LOGGER = logging.getLogger(__name__)

IssueTarget = Callable[[], Awaitable[str]]
ConnectAgent = Callable[[str], Awaitable[RelaySocket]]

# Informational Twilio events that need no handling.
_QUIET_TELEPHONY_EVENTS = frozenset({"connected", "mark", "dtmf"})


@dataclass(frozen=True, slots=True)
class _Received:
    side: str
    message: str | bytes


@dataclass(frozen=True, slots=True)
class _Closed:
    side: str
    error: RelaySocketError | None = None


class MediaRelaySession:
    def __init__(
        self,
        telephony: RelaySocket,
        dynamic_context: Mapping[str, str],
        *,
        issue_target: IssueTarget,
        connect_agent: ConnectAgent,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.call = CallSession(
            dynamic_context=dynamic_context,
            outbound_queue=OutboundFrameQueue(max_frames=self._settings.outbound_queue_max_frames),
        )
        self._telephony = telephony
        self._agent: RelaySocket | None = None
        self._issue_target = issue_target
        self._connect_agent = connect_agent

        self.gate = ReadinessGate(
            self._settings.readiness_fallback_ms,
            on_open=self._on_gate_open,
            label=self.call.label,
        )
        self.pacer = OutboundPacer(self.call, telephony, interval_ms=self._settings.frame_interval_ms)

        self._inbox: asyncio.Queue[_Received | _Closed] = asyncio.Queue()
        self._readers: list[asyncio.Task] = []
        self._logged_first_agent_audio = False

    @property
    def state(self) -> SessionState:
        return self.call.state

    async def run(self) -> None:
        """Relay the call until either side goes away."""

        try:
            if not await self._await_stream_start():
                LOGGER.info("[%s] Telephony closed before the stream started", self.call.label)
                return
            LOGGER.info("[%s] Stream context=%s", self.call.label, dict(self.call.dynamic_context))
            await self._connect()
            self._readers = [
                asyncio.create_task(self._read_loop(self._telephony), name=f"telephony-rx:{self.call.local_id}"),
                asyncio.create_task(self._read_loop(self._agent), name=f"agent-rx:{self.call.local_id}"),
            ]
            await self._process_inbox()
        except RelayError as exc:
            LOGGER.error("[%s] stage=%s %s", self.call.label, exc.stage, exc.detail)
        finally:
            await self.shutdown()

    async def _await_stream_start(self) -> bool:
        """Consume telephony messages up to and including ``start``.

        Twilio delivers ``<Parameter>`` values only in the start event, and the
        agent must receive them in its first message. Returns False if the
        telephony socket closed first.
        """

        while self.call.session_id is None:
            message = await self._telephony.receive()
            if message is None:
                return False
            try:
                await self.handle_telephony_event(parse_telephony_message(message))
            except MalformedMessageError as exc:
                LOGGER.warning("[%s] Ignoring malformed telephony message: %s", self.call.label, exc.detail)
        return True

    async def _connect(self) -> None:
        url = with_output_format(await self._issue_target(), self._settings.agent_output_format)
        self._agent = await self._connect_agent(url)
        LOGGER.info("[%s] Connected to agent; sending dynamic variables", self.call.label)
        await self._agent.send_json(initiation_client_data(self.call.dynamic_context))
        self._transition(SessionState.AWAITING_READY)
        self.gate.start_fallback()

    def _transition(self, new_state: SessionState) -> None:
        old_state = self.call.state
        if old_state is new_state or old_state is SessionState.CLOSED:
            return
        self.call.state = new_state
        LOGGER.debug("[%s] %s -> %s", self.call.label, old_state.value, new_state.value)

    def _on_gate_open(self, reason: str) -> None:
        if self.call.state is SessionState.AWAITING_READY:
            self._transition(SessionState.STREAMING)

    async def _read_loop(self, socket: RelaySocket) -> None:
        try:
            while True:
                message = await socket.receive()
                if message is None:
                    break
                self._inbox.put_nowait(_Received(socket.side, message))
        except RelaySocketError as exc:
            self._inbox.put_nowait(_Closed(socket.side, exc))
            return
        except Exception as exc:
            # Any reader failure must still end the session.
            LOGGER.exception("[%s] Unexpected %s receive failure", self.call.label, socket.side)
            self._inbox.put_nowait(_Closed(socket.side, RelaySocketError(f"{socket.side} receive failed: {exc!r}")))
            return
        self._inbox.put_nowait(_Closed(socket.side))

    async def _process_inbox(self) -> None:
        while self.call.is_active:
            item = await self._inbox.get()
            if isinstance(item, _Closed):
                if item.error is not None:
                    LOGGER.error(
                        "[%s] stage=%s %s socket failed: %s",
                        self.call.label,
                        item.error.stage,
                        item.side,
                        item.error.detail,
                    )
                else:
                    LOGGER.info("[%s] %s socket closed", self.call.label, item.side.capitalize())
                return

            try:
                if item.side == self._telephony.side:
                    await self.handle_telephony_event(parse_telephony_message(item.message))
                else:
                    await self.handle_agent_event(parse_agent_message(item.message))
            except MalformedMessageError as exc:
                LOGGER.warning("[%s] Ignoring malformed %s message: %s", self.call.label, item.side, exc.detail)

    async def _send(self, socket: RelaySocket | None, message: dict[str, Any]) -> bool:
        if socket is None or not self.call.is_active or not socket.is_open:
            return False
        try:
            await socket.send_json(message)
        except RelaySocketError as exc:
            LOGGER.warning("[%s] Send to %s failed: %s", self.call.label, socket.side, exc.detail)
            return False
        return True

    # Telephony side

    async def handle_telephony_event(self, event: TelephonyEvent) -> None:
        call = self.call
        if isinstance(event, TelephonyMedia):
            await self._forward_caller_audio(event)
        elif isinstance(event, TelephonyStart):
            call.session_id = event.stream_sid
            call.call_sid = event.call_sid
            call.media_format = event.media_format
            self.gate.label = call.label
            if call.state is SessionState.CONNECTING:
                self._apply_custom_parameters(event.custom_parameters)
            LOGGER.info(
                "[%s] Stream started (callSid=%s, format=%s)",
                call.label,
                event.call_sid,
                event.media_format,
            )
            if not event.media_format.is_narrowband_mulaw:
                LOGGER.warning("[%s] Unexpected media format %s; expected 8kHz mono mu-law", call.label, event.media_format)
            self.pacer.start()
            if self._settings.beep_on_start:
                await self.send_beep()
        elif isinstance(event, TelephonyStop):
            LOGGER.info("[%s] Stream stopped", call.label)
            await self.pacer.stop()
        elif isinstance(event, TelephonyOther):
            if event.event in _QUIET_TELEPHONY_EVENTS:
                LOGGER.debug("[%s] Telephony event: %s", call.label, event.event)
            else:
                LOGGER.info("[%s] Unhandled telephony event: %s", call.label, event.event)

    def _apply_custom_parameters(self, params: Mapping[str, str]) -> None:
        context = dict(self.call.dynamic_context)
        updates = {key: value for key, value in params.items() if key in context and value}
        if updates:
            context.update(updates)
            self.call.dynamic_context = MappingProxyType(context)

    async def _forward_caller_audio(self, event: TelephonyMedia) -> None:
        if event.track and event.track != "inbound":
            return
        stats = self.call.stats
        if not self.gate.is_ready() or self._agent is None or not self._agent.is_open:
            stats.inbound_dropped_not_ready += 1
            return

        audio = event.decode()
        if await self._send(self._agent, user_audio_chunk(audio)):
            stats.inbound_frames += 1
            stats.inbound_bytes += len(audio)

    async def send_beep(self, label: str = "beep_test") -> None:
        stream_sid = self.call.session_id
        if stream_sid is None:
            return
        await self._send(self._telephony, clear_message(stream_sid))
        await self._send(self._telephony, media_message(stream_sid, beep_ulaw()))
        await self._send(self._telephony, mark_message(stream_sid, label))

    # Agent side

    async def handle_agent_event(self, event: AgentEvent) -> None:
        if isinstance(event, AgentAudio):
            self._enqueue_agent_audio(event)
        elif isinstance(event, AgentPing):
            if event.event_id is not None:
                await self._send(self._agent, pong(event.event_id))
        elif isinstance(event, AgentReady):
            self._on_agent_ready(event)
        elif isinstance(event, AgentInterruption):
            await self._interrupt()
        elif isinstance(event, AgentIgnored):
            LOGGER.debug("[%s] Ignoring agent message: %s", self.call.label, event.kind)

    def _on_agent_ready(self, event: AgentReady) -> None:
        LOGGER.info(
            "[%s] Agent initialized (conversation=%s, agent_output=%s, user_input=%s)",
            self.call.label,
            event.conversation_id,
            event.agent_output_audio_format,
            event.user_input_audio_format,
        )
        expected = self._settings.agent_output_format
        if event.agent_output_audio_format and event.agent_output_audio_format != expected:
            LOGGER.warning(
                "[%s] Agent output format is %s, expected %s",
                self.call.label,
                event.agent_output_audio_format,
                expected,
            )
        self.gate.mark_ready("initiation-metadata")

    def _enqueue_agent_audio(self, event: AgentAudio) -> None:
        call = self.call
        if not call.is_active:
            return
        call.stats.agent_audio_chunks += 1
        try:
            audio = normalize_agent_audio_b64(event.audio_b64)
        except (EmptyInputError, UnsupportedContainerError, MalformedMessageError) as exc:
            call.stats.agent_audio_rejected += 1
            LOGGER.warning("[%s] Dropping agent audio (%s); not sending to telephony", call.label, exc.detail)
            return

        if not self._logged_first_agent_audio:
            self._logged_first_agent_audio = True
            LOGGER.info(
                "[%s] First agent audio: %s (len=%d, %s)",
                call.label,
                audio.samples[:16].hex(),
                len(audio.samples),
                audio.note,
            )

        call.stats.agent_audio_bytes += len(audio.samples)
        trimmed = 0
        for frame in packetize(audio.samples, self._settings.frame_bytes):
            if not call.outbound_queue.append(frame):
                trimmed += 1
        if trimmed:
            call.stats.outbound_trimmed += trimmed
            LOGGER.warning(
                "[%s] Outbound queue full (%d frames); dropped %d oldest frames",
                call.label,
                call.outbound_queue.max_frames,
                trimmed,
            )

    async def _interrupt(self) -> None:
        call = self.call
        # Drop what has not been sent yet, otherwise it would play after the clear.
        cleared = call.outbound_queue.clear()
        call.stats.outbound_cleared += cleared
        if call.session_id is None:
            LOGGER.info("[%s] Interruption before stream start; nothing to clear", call.label)
            return
        LOGGER.info("[%s] Interruption; clearing telephony playback (%d queued frames dropped)", call.label, cleared)
        await self._send(self._telephony, clear_message(call.session_id))

    # Teardown

    async def shutdown(self) -> None:
        call = self.call
        if call.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self._transition(SessionState.CLOSING)

        self.gate.cancel()
        await self.pacer.stop()

        current = asyncio.current_task()
        readers = [task for task in self._readers if task is not current]
        for task in readers:
            task.cancel()
        await asyncio.gather(*readers, return_exceptions=True)

        for socket in (self._agent, self._telephony):
            if socket is None:
                continue
            try:
                await socket.close()
            except RelaySocketError as exc:
                LOGGER.debug("[%s] Closing %s socket failed: %s", call.label, socket.side, exc.detail)

        self._transition(SessionState.CLOSED)
        LOGGER.info("[%s] Session closed; stats=%s", call.label, call.stats.as_dict())
