"""Per-connection state machine.

A :class:`ConnectionLifecycle` drives one accepted channel through

    ACCEPTED -> HANDSHAKING -> CONNECTED -> CLOSING -> CLOSED

A client must introduce itself with ``my_name_is`` within the handshake
timeout. Once connected, the inbound read is raced against the ping interval;
every expiry of the interval checks how long the client has been silent and
drops it once the idle threshold is exceeded. Because the check only runs
when an interval elapses, a silent client is detected between
``idle_timeout`` and ``idle_timeout + ping_interval`` after its last frame.

Whatever ends the connection, teardown removes the client from the registry
exactly once and announces ``player_left`` only for clients that had joined.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from typing import Optional

from .channel import MessageChannel
from .constants import (
    CLOSE_GOING_AWAY,
    CLOSE_INTERNAL_ERROR,
    CLOSE_NORMAL,
    CLOSE_POLICY_VIOLATION,
    CLOSED_REASON,
    HANDSHAKE_TIMEOUT_REASON,
    HANDSHAKE_TIMEOUT_S,
    IDLE_TIMEOUT_REASON,
    IDLE_TIMEOUT_S,
    INTERNAL_ERROR_REASON,
    MY_NAME_IS,
    PING_INTERVAL_S,
    WHO_IS,
)
from .errors import (
    ChannelClosed,
    HandshakeTimeout,
    LivenessTimeout,
    ProtocolError,
    RegistryInvariantViolation,
    TransportError,
)
from .log import log_context
from .registry import ClientInfo, RoomRegistry
from .router import MessageRouter
from .schemas import (
    MyNameIsMessage,
    Player,
    PlayerJoinedMessage,
    PlayerLeftMessage,
    WhoIsMessage,
    decode_message,
)

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    ACCEPTED = "accepted"
    HANDSHAKING = "handshaking"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


class ConnectionLifecycle:
    """Runs a single client connection from accept to teardown."""

    def __init__(
        self,
        room_key: str,
        channel: MessageChannel,
        registry: RoomRegistry,
        router: MessageRouter,
        *,
        client_id: Optional[str] = None,
        handshake_timeout: float = HANDSHAKE_TIMEOUT_S,
        ping_interval: float = PING_INTERVAL_S,
        idle_timeout: float = IDLE_TIMEOUT_S,
    ):
        self.room_key = room_key
        self.channel = channel
        self.registry = registry
        self.router = router
        self.client = ClientInfo(id=client_id or uuid.uuid4().hex, channel=channel)
        self.handshake_timeout = handshake_timeout
        self.ping_interval = ping_interval
        self.idle_timeout = idle_timeout

        self.state = ConnectionState.ACCEPTED
        self.joined = False
        self._registered = False
        self._last_activity = time.monotonic()
        self._close_code = CLOSE_NORMAL
        self._close_reason = CLOSED_REASON

    # ---------------------------------------------------------------------
    # Entry point
    # ---------------------------------------------------------------------

    async def run(self) -> ConnectionState:
        """Drive the connection until it closes. Never raises on connection failures."""
        with log_context(room=self.room_key, client_id=self.client.id):
            try:
                await self._accept()
                await self._handshake()
                await self._message_loop()
            except HandshakeTimeout:
                logger.info("Handshake timed out after %.1fs", self.handshake_timeout)
                self._set_close(CLOSE_POLICY_VIOLATION, HANDSHAKE_TIMEOUT_REASON)
            except LivenessTimeout as exc:
                logger.info("Client timeout: %s", exc)
                self._set_close(CLOSE_GOING_AWAY, IDLE_TIMEOUT_REASON)
            except ChannelClosed as exc:
                logger.info("Peer closed connection (%s)", exc.code)
            except TransportError as exc:
                logger.warning("Socket error: %s", exc)
            except RegistryInvariantViolation:
                logger.error("Registry refused client; aborting connection", exc_info=True)
                self._set_close(CLOSE_INTERNAL_ERROR, INTERNAL_ERROR_REASON)
            except Exception:
                logger.exception("Unexpected error while handling connection")
                self._set_close(CLOSE_INTERNAL_ERROR, INTERNAL_ERROR_REASON)
            finally:
                await self._teardown()
        return self.state

    def _set_close(self, code: int, reason: str) -> None:
        self._close_code = code
        self._close_reason = reason

    # ---------------------------------------------------------------------
    # States
    # ---------------------------------------------------------------------

    async def _accept(self) -> None:
        self.registry.ensure_room(self.room_key)
        self.registry.add_pending(self.room_key, self.client)
        self._registered = True
        await self.router.send_welcome(self.room_key, self.channel, self.client.id)
        logger.info("Pending client connecting")
        self.state = ConnectionState.HANDSHAKING

    async def _handshake(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.handshake_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise HandshakeTimeout()
            try:
                text = await self.channel.receive(timeout=remaining)
            except asyncio.TimeoutError as exc:
                raise HandshakeTimeout() from exc
            if text is None:
                continue
            try:
                message = decode_message(text, strict=(MY_NAME_IS,))
            except ProtocolError as exc:
                logger.debug("Ignoring malformed handshake message: %s", exc)
                continue
            if isinstance(message, MyNameIsMessage):
                break
            logger.debug("Ignoring %r before handshake", message.type)

        self._last_activity = time.monotonic()
        self.client = self.client.with_name(message.name)
        self.registry.promote(self.room_key, self.client)
        self.joined = True
        self.state = ConnectionState.CONNECTED

        joined = PlayerJoinedMessage(
            clientId=self.client.id,
            player=Player(id=self.client.id, name=self.client.name),
        )
        await self.router.broadcast(self.room_key, joined, exclude=self.channel)
        logger.info("Joined as %r", self.client.name)

    async def _message_loop(self) -> None:
        read_task: Optional[asyncio.Future] = None
        try:
            while True:
                if read_task is None:
                    read_task = asyncio.ensure_future(self.channel.receive())
                done, _ = await asyncio.wait({read_task}, timeout=self.ping_interval)
                if not done:
                    idle = time.monotonic() - self._last_activity
                    if idle > self.idle_timeout:
                        raise LivenessTimeout(f"no traffic for {idle:.1f}s")
                    continue

                finished, read_task = read_task, None
                text = finished.result()
                self._last_activity = time.monotonic()
                if text is None:
                    continue
                await self._dispatch(text)
        finally:
            if read_task is not None:
                read_task.cancel()
                await asyncio.wait({read_task})

    async def _dispatch(self, text: str) -> None:
        logger.debug("Received: %s", text)
        try:
            message = decode_message(text, strict=(WHO_IS,))
        except ProtocolError as exc:
            logger.debug("Ignoring malformed message: %s", exc)
            return

        if isinstance(message, WhoIsMessage):
            await self.router.reply_who_is(self.room_key, self.channel, message.queryClientId)
            return
        await self.router.broadcast(self.room_key, message, exclude=self.channel)

    async def _teardown(self) -> None:
        if self.joined:
            self.state = ConnectionState.CLOSING
        if self._registered:
            self.registry.remove(self.room_key, self.client.id)
        if self.channel.is_open:
            await self.channel.close(self._close_code, self._close_reason)
        if self.joined:
            await self.router.broadcast(self.room_key, PlayerLeftMessage(clientId=self.client.id))
            logger.info("Client disconnected")
        self.state = ConnectionState.CLOSED


__all__ = ["ConnectionLifecycle", "ConnectionState"]
