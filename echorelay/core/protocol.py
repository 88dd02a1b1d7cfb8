"""Frame codec for the relay transport.

Control events are JSON text frames::

    {"event": "connect", "data": {"session_id": 1}}

Audio events are a single binary frame, so a unit is never split::

    [2-byte big-endian header length][JSON AudioFrameHeader][payload bytes]
"""

import struct

from pydantic import ValidationError

from echorelay.core.exceptions import ProtocolError
from echorelay.core.models import (
    BINARY_EVENTS,
    AudioFrameHeader,
    AudioUnit,
    EventMessage,
    EventName,
)

_HEADER_LEN = struct.Struct(">H")

Frame = str | bytes
Payload = dict | AudioUnit


def encode_control(event: EventName, data: dict | None = None) -> str:
    """Encode a control event as a JSON text frame."""
    if event in BINARY_EVENTS:
        raise ProtocolError(f"{event} carries audio and must be sent as a binary frame")
    return EventMessage(event=event, data=data or {}).model_dump_json()


def encode_audio(event: EventName, unit: AudioUnit) -> bytes:
    """Encode an audio unit as one binary frame."""
    if event not in BINARY_EVENTS:
        raise ProtocolError(f"{event} does not carry audio")
    header = AudioFrameHeader(
        event=event,
        mime_type=unit.mime_type,
        captured_at=unit.captured_at,
    ).model_dump_json().encode("utf-8")
    return _HEADER_LEN.pack(len(header)) + header + unit.data


def encode(event: EventName, payload: Payload | None = None) -> Frame:
    """Encode any event, choosing the frame type from the payload."""
    if isinstance(payload, AudioUnit):
        return encode_audio(event, payload)
    return encode_control(event, payload)


def decode(frame: Frame) -> tuple[EventName, Payload]:
    """Decode a text or binary frame into ``(event, payload)``.

    Raises:
        ProtocolError: If the frame is malformed or names an unknown event.
    """
    if isinstance(frame, str):
        try:
            msg = EventMessage.model_validate_json(frame)
        except ValidationError as exc:
            raise ProtocolError(f"Invalid control frame: {exc.error_count()} error(s)") from None
        if msg.event in BINARY_EVENTS:
            raise ProtocolError(f"{msg.event} must be sent as a binary frame")
        return msg.event, msg.data

    if len(frame) < _HEADER_LEN.size:
        raise ProtocolError("Binary frame is shorter than its length prefix")
    (header_len,) = _HEADER_LEN.unpack_from(frame)
    body_start = _HEADER_LEN.size + header_len
    if len(frame) < body_start:
        raise ProtocolError("Binary frame header is truncated")
    try:
        header = AudioFrameHeader.model_validate_json(frame[_HEADER_LEN.size : body_start])
    except ValidationError as exc:
        raise ProtocolError(f"Invalid audio frame header: {exc.error_count()} error(s)") from None
    if header.event not in BINARY_EVENTS:
        raise ProtocolError(f"{header.event} cannot carry audio")

    unit = AudioUnit(
        data=bytes(frame[body_start:]),
        mime_type=header.mime_type,
        captured_at=header.captured_at,
    )
    return header.event, unit
