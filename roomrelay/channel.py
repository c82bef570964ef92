"""Bidirectional text-message channels.

The lifecycle and router only talk to :class:`MessageChannel`; the FastAPI
websocket endpoint wraps each accepted socket in a :class:`WebSocketChannel`.
"""
from __future__ import annotations

import abc
import asyncio
import logging
from typing import Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from .constants import CLOSE_NORMAL, CLOSED_REASON
from .errors import ChannelClosed, TransportError

logger = logging.getLogger(__name__)


class MessageChannel(abc.ABC):
    """One peer's message stream, as seen by the relay core."""

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        ...

    @abc.abstractmethod
    async def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        """Wait for the next frame.

        Returns the text of a text frame, or ``None`` for a non-text frame.
        Raises :class:`ChannelClosed` when the peer closes,
        :class:`TransportError` on any other read failure and
        :class:`asyncio.TimeoutError` if *timeout* elapses first.
        """

    @abc.abstractmethod
    async def send(self, text: str) -> None:
        """Write one text frame; raises :class:`TransportError` on failure."""

    @abc.abstractmethod
    async def close(self, code: int = CLOSE_NORMAL, reason: str = CLOSED_REASON) -> None:
        """Close gracefully. Idempotent and never raises."""


class WebSocketChannel(MessageChannel):
    """:class:`MessageChannel` over an accepted Starlette/FastAPI websocket.

    Writes are serialised with a per-connection lock because broadcasts from
    other connection tasks may target this socket at any time.
    """

    def __init__(self, websocket: WebSocket):
        self._ws = websocket
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    async def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        if timeout is None:
            return await self._receive_frame()
        return await asyncio.wait_for(self._receive_frame(), timeout)

    async def _receive_frame(self) -> Optional[str]:
        try:
            message = await self._ws.receive()
        except Exception as exc:
            raise TransportError(f"receive failed: {exc}") from exc

        if message["type"] == "websocket.disconnect":
            raise ChannelClosed(
                code=message.get("code", CLOSE_NORMAL),
                reason=message.get("reason") or "",
            )
        text = message.get("text")
        if text is None:
            return None  # binary frame
        return text

    async def send(self, text: str) -> None:
        if not self.is_open:
            raise TransportError("send on a closed channel")
        async with self._send_lock:
            try:
                await self._ws.send_text(text)
            except Exception as exc:
                raise TransportError(f"send failed: {exc}") from exc

    async def close(self, code: int = CLOSE_NORMAL, reason: str = CLOSED_REASON) -> None:
        if self._closed:
            return
        self._closed = True
        if (
            self._ws.client_state == WebSocketState.DISCONNECTED
            or self._ws.application_state == WebSocketState.DISCONNECTED
        ):
            return
        async with self._send_lock:
            try:
                await self._ws.close(code=code, reason=reason)
            except Exception as exc:
                logger.debug("Ignoring websocket close failure: %s", exc)


__all__ = ["MessageChannel", "WebSocketChannel"]
