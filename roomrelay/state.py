"""Centralised in-memory runtime state.

Singletons shared by the whole application so routers can simply import
them without worrying about circular imports.
"""
from __future__ import annotations

from .registry import RoomRegistry
from .router import MessageRouter

registry = RoomRegistry()
message_router = MessageRouter(registry)

__all__ = ["registry", "message_router"]
