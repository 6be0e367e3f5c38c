from __future__ import annotations

import asyncio
import base64

from fakes import FakeSocket, wait_until

from relay.models import CallSession, SessionState
from relay.pacer import OutboundPacer
from relay.queues import OutboundFrameQueue


def _streaming_call(stream_sid: str | None = "MZ001") -> CallSession:
    return CallSession(
        dynamic_context={},
        outbound_queue=OutboundFrameQueue(max_frames=100),
        state=SessionState.STREAMING,
        session_id=stream_sid,
    )


def _payloads(socket: FakeSocket) -> list[bytes]:
    return [base64.b64decode(m["media"]["payload"]) for m in socket.events("media")]


def test_ticks_preserve_fifo_order() -> None:
    async def scenario():
        call = _streaming_call()
        telephony = FakeSocket("telephony")
        pacer = OutboundPacer(call, telephony)
        for frame in (b"A" * 160, b"B" * 160, b"C" * 160):
            call.outbound_queue.append(frame)

        assert [await pacer.tick() for _ in range(4)] == [True, True, True, False]
        assert _payloads(telephony) == [b"A" * 160, b"B" * 160, b"C" * 160]
        assert {m["streamSid"] for m in telephony.sent} == {"MZ001"}
        assert call.stats.outbound_frames == 3

    asyncio.run(scenario())


def test_tick_waits_for_stream_sid() -> None:
    async def scenario():
        call = _streaming_call(stream_sid=None)
        telephony = FakeSocket("telephony")
        pacer = OutboundPacer(call, telephony)
        call.outbound_queue.append(b"A")

        assert await pacer.tick() is False
        assert telephony.sent == []
        assert len(call.outbound_queue) == 1

    asyncio.run(scenario())


def test_tick_is_noop_unless_streaming() -> None:
    async def scenario():
        call = _streaming_call()
        call.state = SessionState.CLOSING
        telephony = FakeSocket("telephony")
        call.outbound_queue.append(b"A")

        assert await OutboundPacer(call, telephony).tick() is False
        assert telephony.sent == []

    asyncio.run(scenario())


def test_send_failure_does_not_stop_later_ticks() -> None:
    async def scenario():
        call = _streaming_call()
        telephony = FakeSocket("telephony")
        telephony.fail_sends = 1
        pacer = OutboundPacer(call, telephony)
        call.outbound_queue.append(b"A")
        call.outbound_queue.append(b"B")

        assert await pacer.tick() is False
        assert await pacer.tick() is True
        assert _payloads(telephony) == [b"B"]
        assert call.stats.outbound_send_failures == 1

    asyncio.run(scenario())


def test_loop_paces_one_frame_per_interval() -> None:
    async def scenario():
        call = _streaming_call()
        telephony = FakeSocket("telephony")
        pacer = OutboundPacer(call, telephony, interval_ms=20)
        for frame in (b"A", b"B", b"C"):
            call.outbound_queue.append(frame)

        assert pacer.start() is True
        assert pacer.start() is False
        await wait_until(lambda: len(telephony.sent) == 3)
        await pacer.stop()

        assert _payloads(telephony) == [b"A", b"B", b"C"]
        gaps = [b - a for a, b in zip(telephony.sent_at, telephony.sent_at[1:])]
        assert all(gap >= 0.010 for gap in gaps)

    asyncio.run(scenario())


def test_stop_cancels_pending_sends() -> None:
    async def scenario():
        call = _streaming_call()
        telephony = FakeSocket("telephony")
        pacer = OutboundPacer(call, telephony, interval_ms=20)
        pacer.start()
        await pacer.stop()
        await pacer.stop()

        call.outbound_queue.append(b"A")
        await asyncio.sleep(0.06)

        assert telephony.sent == []
        assert pacer.running is False
        assert pacer.start() is False

    asyncio.run(scenario())
