from __future__ import annotations

import secrets
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType

from relay.queues import OutboundFrameQueue
from relay.telephony_protocol import MediaFormat


class SessionState(str, Enum):
    CONNECTING = "connecting"
    AWAITING_READY = "awaiting_ready"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class RelayStats:
    """Per-call counters. Diagnostic only."""

    inbound_frames: int = 0
    inbound_bytes: int = 0
    inbound_dropped_not_ready: int = 0
    agent_audio_chunks: int = 0
    agent_audio_bytes: int = 0
    agent_audio_rejected: int = 0
    outbound_frames: int = 0
    outbound_bytes: int = 0
    outbound_send_failures: int = 0
    outbound_trimmed: int = 0
    outbound_cleared: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class CallSession:
    dynamic_context: Mapping[str, str]
    outbound_queue: OutboundFrameQueue
    state: SessionState = SessionState.CONNECTING
    session_id: str | None = None
    call_sid: str | None = None
    media_format: MediaFormat | None = None
    stats: RelayStats = field(default_factory=RelayStats)
    local_id: str = field(default_factory=lambda: secrets.token_hex(4))

    def __post_init__(self) -> None:
        self.dynamic_context = MappingProxyType(dict(self.dynamic_context))

    @property
    def label(self) -> str:
        """Identifier used in log lines; the stream sid once known."""

        return self.session_id or f"local:{self.local_id}"

    @property
    def is_active(self) -> bool:
        return self.state not in (SessionState.CLOSING, SessionState.CLOSED)
