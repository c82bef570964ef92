"""Exception taxonomy for the relay.

Every failure is contained at the connection-task boundary: these exceptions
decide how a single connection ends, never whether the process keeps going.
"""
from __future__ import annotations


class RelayError(Exception):
    """Base class for all relay errors."""


class ProtocolError(RelayError):
    """An inbound frame could not be decoded into an envelope.

    Recovered locally by ignoring the frame; never reported to the peer.
    """


class HandshakeTimeout(RelayError):
    """The client did not introduce itself before the handshake deadline."""


class LivenessTimeout(RelayError):
    """No traffic was received from a connected client for too long."""


class TransportError(RelayError):
    """Reading from or writing to a channel failed."""


class ChannelClosed(TransportError):
    """The peer closed the channel."""

    def __init__(self, code: int = 1000, reason: str = "") -> None:
        super().__init__(f"channel closed ({code}) {reason}".strip())
        self.code = code
        self.reason = reason


class RegistryInvariantViolation(RelayError):
    """The room registry refused an operation; indicates a server bug."""

    def __init__(self, room_key: str, client_id: str, message: str) -> None:
        super().__init__(f"[{room_key}] {client_id}: {message}")
        self.room_key = room_key
        self.client_id = client_id


class DuplicateClient(RegistryInvariantViolation):
    def __init__(self, room_key: str, client_id: str) -> None:
        super().__init__(room_key, client_id, "client id already registered")


class NotPending(RegistryInvariantViolation):
    def __init__(self, room_key: str, client_id: str) -> None:
        super().__init__(room_key, client_id, "client id is not pending")


__all__ = [
    "RelayError",
    "ProtocolError",
    "HandshakeTimeout",
    "LivenessTimeout",
    "TransportError",
    "ChannelClosed",
    "RegistryInvariantViolation",
    "DuplicateClient",
    "NotPending",
]
