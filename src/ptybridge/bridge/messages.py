"""Wire messages sent by the client over the terminal WebSocket.

Every client frame is a JSON object discriminated by its ``type`` field::

    {"type": "stdin", "payload": "ls -la\\r"}
    {"type": "resize", "cols": 120, "rows": 40}

Server output travels the other way as raw text frames with no envelope.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ptybridge.bridge.errors import DecodeError


class StdinMessage(BaseModel):
    type: Literal["stdin"] = "stdin"
    payload: str = Field(description="Raw characters to send to the shell")


class ResizeMessage(BaseModel):
    type: Literal["resize"] = "resize"
    cols: int = Field(gt=0, le=65535)
    rows: int = Field(gt=0, le=65535)


InboundMessage = Annotated[
    Union[StdinMessage, ResizeMessage],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def decode_message(raw: str | bytes) -> StdinMessage | ResizeMessage:
    """Parse one client frame.

    Raises:
        DecodeError: If the frame is not JSON, not an object, carries an
            unknown ``type`` or has fields of the wrong shape.
    """
    try:
        return _inbound_adapter.validate_json(raw)
    except ValidationError as e:
        raise DecodeError(f"Malformed message: {e.error_count()} error(s)") from e
