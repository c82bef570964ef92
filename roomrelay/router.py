"""Envelope delivery: directed sends and room broadcasts."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .channel import MessageChannel
from .registry import RoomRegistry
from .schemas import Envelope, Player, PlayerJoinedMessage, WelcomeMessage, encode_message

logger = logging.getLogger(__name__)


class MessageRouter:
    """Builds outbound envelopes and writes them to room members.

    Delivery is best-effort. A failed write is logged and reported through the
    return value; it never raises, so one dead peer cannot abort a broadcast.
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    async def send(self, channel: MessageChannel, envelope: Envelope) -> bool:
        """Serialize and write *envelope* to a single channel."""
        return await self._send_text(channel, encode_message(envelope))

    async def _send_text(self, channel: MessageChannel, text: str) -> bool:
        try:
            await channel.send(text)
        except Exception as exc:
            logger.warning("Dropping message for closed or failing peer: %s", exc)
            return False
        return True

    async def send_welcome(self, room_key: str, channel: MessageChannel, client_id: str) -> bool:
        """Send the current roster of *room_key* to a newly accepted client."""
        users = [Player(id=c.id, name=c.name) for c in self.registry.list_connected(room_key)]
        return await self.send(channel, WelcomeMessage(clientId=client_id, users=users))

    async def broadcast(
        self,
        room_key: str,
        envelope: Envelope,
        exclude: Optional[MessageChannel] = None,
    ) -> int:
        """Deliver *envelope* to every connected member except *exclude*.

        Returns the number of members the envelope was written to.
        """
        text = encode_message(envelope)
        recipients = [c for c in self.registry.list_connected(room_key) if c.channel is not exclude]
        if not recipients:
            return 0
        results = await asyncio.gather(*(self._send_text(c.channel, text) for c in recipients))
        delivered = sum(1 for ok in results if ok)
        logger.debug("Broadcast %s to %d/%d member(s)", envelope.type, delivered, len(recipients))
        return delivered

    async def reply_who_is(self, room_key: str, channel: MessageChannel, query_client_id: str) -> bool:
        """Answer a ``who_is`` query on *channel* only.

        Nothing is sent if *query_client_id* is not a connected member.
        """
        client = self.registry.lookup(room_key, query_client_id)
        if client is None:
            logger.debug("who_is for unknown client %s dropped", query_client_id)
            return False
        reply = PlayerJoinedMessage(
            clientId=client.id,
            player=Player(id=client.id, name=client.name),
        )
        return await self.send(channel, reply)


__all__ = ["MessageRouter"]
