"""Process configuration sourced from environment variables.

Only bootstrap concerns live here (listen address, logging, CORS). Protocol
timings are fixed in ``roomrelay.constants``.
"""
from __future__ import annotations

import os
from typing import List

HOST = os.getenv("RELAY_HOST", "0.0.0.0")
PORT = int(os.getenv("RELAY_PORT", "5000"))
RELOAD = os.getenv("RELAY_RELOAD", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = (os.getenv("RELAY_LOG_LEVEL", "INFO") or "INFO").upper()
LOG_FORMAT = os.getenv(
    "RELAY_LOG_FORMAT",
    "%(levelname)s %(asctime)s [%(name)s] [%(room)s/%(client_id)s] %(message)s",
)
LOG_DATEFMT = os.getenv("RELAY_LOG_DATEFMT", "%Y-%m-%d %H:%M:%S")


def _split_csv(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


CORS_ORIGINS: List[str] = _split_csv(os.getenv("RELAY_CORS_ORIGINS", "*"))

__all__ = [
    "HOST",
    "PORT",
    "RELOAD",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "LOG_DATEFMT",
    "CORS_ORIGINS",
]
