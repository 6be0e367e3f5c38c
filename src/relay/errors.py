"""Failure taxonomy for the media relay.

Payload-level errors (empty input, unsupported container, malformed message)
are dropped by the session and never end a call. Upstream and socket errors
are fatal to the session that raised them, and only to that session.
"""

from __future__ import annotations


class RelayError(Exception):
    stage: str = "relay"
    fatal: bool = False
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class EmptyInputError(RelayError):
    stage = "normalize"
    default_detail = "empty"


class UnsupportedContainerError(RelayError):
    stage = "normalize"
    default_detail = "unsupported-container"


class MalformedMessageError(RelayError):
    stage = "parse"
    default_detail = "Malformed message"


class UpstreamConnectError(RelayError):
    stage = "connect"
    fatal = True
    default_detail = "Could not connect to the voice agent"


class RelaySocketError(RelayError):
    stage = "transport"
    fatal = True
    default_detail = "Socket transport failed"
