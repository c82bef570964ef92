"""Per-room client registry.

Each room keeps two disjoint collections keyed by client id: *pending*
(accepted, handshake not finished) and *connected* (joined). All operations
run under a single lock and never await, so each one is atomic with respect
to every other, whichever task or thread calls it.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .channel import MessageChannel
from .constants import PLACEHOLDER_NAME
from .errors import DuplicateClient, NotPending

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    """A client as known to the registry.

    ``channel`` is owned by the connection lifecycle; the registry only keeps
    a reference for lookup and broadcast.
    """

    id: str
    channel: MessageChannel = field(compare=False, repr=False)
    name: str = PLACEHOLDER_NAME

    def with_name(self, name: str) -> "ClientInfo":
        return replace(self, name=name)


class _Room:
    __slots__ = ("pending", "connected")

    def __init__(self) -> None:
        self.pending: Dict[str, ClientInfo] = {}
        self.connected: Dict[str, ClientInfo] = {}

    def is_empty(self) -> bool:
        return not self.pending and not self.connected


class RoomRegistry:
    """Thread-safe mapping of room key to pending/connected clients."""

    def __init__(self) -> None:
        self._rooms: Dict[str, _Room] = {}
        self._lock = threading.Lock()

    # -------------------- Membership -------------------- #

    def ensure_room(self, room_key: str) -> None:
        with self._lock:
            self._rooms.setdefault(room_key, _Room())

    def add_pending(self, room_key: str, client: ClientInfo) -> None:
        """Register *client* as pending, creating the room if needed.

        Raises
        ------
        DuplicateClient
            If the id is already pending or connected in that room.
        """
        with self._lock:
            room = self._rooms.setdefault(room_key, _Room())
            if client.id in room.pending or client.id in room.connected:
                raise DuplicateClient(room_key, client.id)
            room.pending[client.id] = client

    def promote(self, room_key: str, client: ClientInfo) -> None:
        """Move *client* from pending to connected, storing the given instance.

        Raises
        ------
        NotPending
            If the id is not currently pending in that room.
        """
        with self._lock:
            room = self._rooms.get(room_key)
            if room is None or client.id not in room.pending:
                raise NotPending(room_key, client.id)
            del room.pending[client.id]
            room.connected[client.id] = client

    def remove(self, room_key: str, client_id: str) -> bool:
        """Drop *client_id* from the room. Absent ids are ignored.

        Returns ``True`` if something was removed. Rooms left empty are pruned.
        """
        with self._lock:
            room = self._rooms.get(room_key)
            if room is None:
                return False
            removed = room.pending.pop(client_id, None) is not None
            removed = room.connected.pop(client_id, None) is not None or removed
            if room.is_empty():
                del self._rooms[room_key]
                logger.debug("Pruned empty room %s", room_key)
            return removed

    # -------------------- Queries -------------------- #

    def list_connected(self, room_key: str) -> List[ClientInfo]:
        """Snapshot of connected clients whose channel is still open."""
        with self._lock:
            room = self._rooms.get(room_key)
            if room is None:
                return []
            clients = list(room.connected.values())
        return [c for c in clients if c.channel.is_open]

    def lookup(self, room_key: str, client_id: str) -> Optional[ClientInfo]:
        """Return the *connected* client with that id, or ``None``."""
        with self._lock:
            room = self._rooms.get(room_key)
            if room is None:
                return None
            return room.connected.get(client_id)

    def room_keys(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def counts(self, room_key: str) -> Tuple[int, int]:
        """``(pending, connected)`` sizes for *room_key*; zeros if unknown."""
        with self._lock:
            room = self._rooms.get(room_key)
            if room is None:
                return 0, 0
            return len(room.pending), len(room.connected)

    def has_room(self, room_key: str) -> bool:
        with self._lock:
            return room_key in self._rooms


__all__ = ["ClientInfo", "RoomRegistry"]
