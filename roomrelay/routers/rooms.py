"""Read-only views of live rooms."""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, HTTPException

from ..schemas import Player, RoomDetail, RoomSummary
from ..state import registry

router = APIRouter(prefix="", tags=["rooms"])


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/rooms", response_model=List[RoomSummary])
async def list_rooms():
    result: List[RoomSummary] = []
    for key in sorted(registry.room_keys()):
        pending, connected = registry.counts(key)
        result.append(RoomSummary(room=key, pending=pending, connected=connected))
    return result


@router.get("/rooms/{room_key}", response_model=RoomDetail)
async def get_room(room_key: str):
    if not registry.has_room(room_key):
        raise HTTPException(status_code=404, detail="Room not found")
    pending, connected = registry.counts(room_key)
    players = [Player(id=c.id, name=c.name) for c in registry.list_connected(room_key)]
    return RoomDetail(room=room_key, pending=pending, connected=connected, players=players)
