from __future__ import annotations

import json

import pytest

from relay.agent_protocol import (
    AgentAudio,
    AgentIgnored,
    AgentInterruption,
    AgentPing,
    AgentReady,
    initiation_client_data,
    parse_agent_message,
    pong,
    user_audio_chunk,
)
from relay.errors import MalformedMessageError


@pytest.mark.parametrize(
    "message",
    [
        {
            "type": "conversation_initiation_metadata",
            "conversation_initiation_metadata_event": {
                "conversation_id": "conv_1",
                "agent_output_audio_format": "ulaw_8000",
                "user_input_audio_format": "ulaw_8000",
            },
        },
        {"event": "conversation_initiation_metadata"},
        {"conversation_initiation_metadata_event": {"conversation_id": "conv_1"}},
    ],
)
def test_every_readiness_shape_is_recognized(message) -> None:
    event = parse_agent_message(json.dumps(message))
    assert isinstance(event, AgentReady)


def test_readiness_carries_formats() -> None:
    event = parse_agent_message(
        json.dumps(
            {
                "type": "conversation_initiation_metadata",
                "conversation_initiation_metadata_event": {
                    "conversation_id": "conv_1",
                    "agent_output_audio_format": "pcm_16000",
                },
            }
        )
    )
    assert event == AgentReady(conversation_id="conv_1", agent_output_audio_format="pcm_16000")


def test_audio_message() -> None:
    event = parse_agent_message(json.dumps({"type": "audio", "audio_event": {"audio_base_64": "//8=", "event_id": 3}}))
    assert event == AgentAudio(audio_b64="//8=", event_id=3)


def test_audio_message_falls_back_to_top_level_field() -> None:
    event = parse_agent_message(json.dumps({"type": "audio", "audio": "//8="}))
    assert event == AgentAudio(audio_b64="//8=")


def test_interruption_and_ping() -> None:
    assert parse_agent_message(json.dumps({"type": "interruption", "interruption_event": {"event_id": 9}})) == (
        AgentInterruption(event_id=9)
    )
    assert parse_agent_message(json.dumps({"type": "ping", "ping_event": {"event_id": 42, "ping_ms": 50}})) == (
        AgentPing(event_id=42, ping_ms=50)
    )


def test_unknown_types_are_ignored() -> None:
    event = parse_agent_message(json.dumps({"type": "agent_response", "agent_response_event": {}}))
    assert event == AgentIgnored(kind="agent_response")


@pytest.mark.parametrize("text", ["{", "null", '"audio"'])
def test_malformed_agent_messages_raise(text: str) -> None:
    with pytest.raises(MalformedMessageError):
        parse_agent_message(text)


def test_outbound_agent_messages() -> None:
    assert initiation_client_data({"Name": "Ada"}) == {
        "type": "conversation_initiation_client_data",
        "dynamic_variables": {"Name": "Ada"},
    }
    assert user_audio_chunk(b"\xff\xff") == {"user_audio_chunk": "//8="}
    assert pong(42) == {"type": "pong", "event_id": 42}
