"""Pydantic message envelopes exchanged over the relay.

Every frame is one JSON object with a ``type`` discriminant. Inbound frames
are decoded into a closed set of variants (``my_name_is``, ``who_is``) plus
an :class:`OpaqueMessage` catch-all that carries the original object so it
can be relayed without interpretation.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import MY_NAME_IS, PLAYER_JOINED, PLAYER_LEFT, WELCOME, WHO_IS
from .errors import ProtocolError

# -----------------------------
# Roster entries
# -----------------------------


class Player(BaseModel):
    """Public view of a connected client."""

    id: str
    name: str


# -----------------------------
# Envelopes
# -----------------------------


class Envelope(BaseModel):
    """Fields shared by every message."""

    # Unknown extra fields are kept so that re-broadcast envelopes are not trimmed.
    model_config = ConfigDict(extra="allow")

    type: str
    clientId: Optional[str] = None


class WelcomeMessage(Envelope):
    type: Literal["welcome"] = WELCOME
    users: List[Player] = Field(default_factory=list)


class MyNameIsMessage(Envelope):
    type: Literal["my_name_is"] = MY_NAME_IS
    name: str

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value


class PlayerJoinedMessage(Envelope):
    type: Literal["player_joined"] = PLAYER_JOINED
    player: Player


class PlayerLeftMessage(Envelope):
    type: Literal["player_left"] = PLAYER_LEFT


class WhoIsMessage(Envelope):
    type: Literal["who_is"] = WHO_IS
    queryClientId: str


class OpaqueMessage(Envelope):
    """Any message whose type the relay does not interpret.

    ``raw`` is the inbound JSON object exactly as received.
    """

    model_config = ConfigDict(extra="ignore")

    raw: Dict[str, Any]


InboundMessage = Union[MyNameIsMessage, WhoIsMessage, OpaqueMessage]

# Inbound types that can be decoded strictly; everything else is opaque.
_INBOUND_VARIANTS = {
    MY_NAME_IS: MyNameIsMessage,
    WHO_IS: WhoIsMessage,
}

# -----------------------------
# REST response models
# -----------------------------


class RoomSummary(BaseModel):
    room: str
    pending: int
    connected: int


class RoomDetail(RoomSummary):
    players: List[Player] = Field(default_factory=list)


# -----------------------------
# Wire helpers
# -----------------------------


def decode_message(text: str, strict: Iterable[str] = (MY_NAME_IS, WHO_IS)) -> InboundMessage:
    """Decode one inbound text frame.

    Only the types listed in *strict* are validated into their variants; any
    other type, known or not, comes back as an :class:`OpaqueMessage`.

    Raises
    ------
    ProtocolError
        If *text* is not a JSON object with a string ``type`` or a strictly
        decoded variant fails validation.
    """
    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError("message is not a JSON object")
    msg_type = data.get("type")
    if not isinstance(msg_type, str):
        raise ProtocolError("message has no string 'type'")

    variant = _INBOUND_VARIANTS.get(msg_type) if msg_type in strict else None
    if variant is None:
        client_id = data.get("clientId")
        return OpaqueMessage(
            type=msg_type,
            clientId=client_id if isinstance(client_id, str) else None,
            raw=data,
        )
    try:
        return variant.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError(f"invalid {msg_type!r} message: {exc.error_count()} error(s)") from exc


def encode_message(message: Envelope) -> str:
    """Serialize *message* to the JSON text of a single frame."""
    if isinstance(message, OpaqueMessage):
        return json.dumps(message.raw)
    return message.model_dump_json(exclude_none=True)


__all__ = [
    "Player",
    "Envelope",
    "WelcomeMessage",
    "MyNameIsMessage",
    "PlayerJoinedMessage",
    "PlayerLeftMessage",
    "WhoIsMessage",
    "OpaqueMessage",
    "InboundMessage",
    "RoomSummary",
    "RoomDetail",
    "decode_message",
    "encode_message",
]
