"""Logging setup and per-connection log context.

Each connection task runs inside :func:`log_context`, so every record emitted
while handling it carries the room key and client id without threading them
through every log call.
"""
from __future__ import annotations

import contextlib
import logging
from contextvars import ContextVar, Token
from typing import Iterator, List, Optional, Tuple

from . import config

_ROOM: ContextVar[str] = ContextVar("room", default="-")
_CLIENT_ID: ContextVar[str] = ContextVar("client_id", default="-")

# Root handler created by configure_logging, if any.
_handler: Optional[logging.Handler] = None


def set_log_context(
    *, room: Optional[str] = None, client_id: Optional[str] = None
) -> List[Tuple[ContextVar, Token]]:
    tokens: List[Tuple[ContextVar, Token]] = []
    if room is not None:
        tokens.append((_ROOM, _ROOM.set(room)))
    if client_id is not None:
        tokens.append((_CLIENT_ID, _CLIENT_ID.set(client_id)))
    return tokens


def reset_log_context(tokens: List[Tuple[ContextVar, Token]]) -> None:
    for var, token in reversed(tokens):
        var.reset(token)


@contextlib.contextmanager
def log_context(*, room: Optional[str] = None, client_id: Optional[str] = None) -> Iterator[None]:
    """Apply *room* / *client_id* to every record logged inside the block."""
    tokens = set_log_context(room=room, client_id=client_id)
    try:
        yield
    finally:
        reset_log_context(tokens)


def install_log_context() -> None:
    """Install a LogRecord factory that injects the context fields (once)."""
    if getattr(install_log_context, "_installed", False):
        return

    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.room = _ROOM.get()
        record.client_id = _CLIENT_ID.get()
        return record

    logging.setLogRecordFactory(record_factory)
    install_log_context._installed = True  # type: ignore[attr-defined]


def configure_logging(level: Optional[str] = None) -> None:
    """Initialise root logging once per process.

    Handlers installed by the host (test harness, embedding application) are
    left untouched; only the handler created here gets the relay format.
    """
    global _handler
    level = (level or config.LOG_LEVEL).upper()
    install_log_context()
    root_logger = logging.getLogger()
    if _handler is None and not root_logger.handlers:
        _handler = logging.StreamHandler()
        root_logger.addHandler(_handler)
    if _handler is not None:
        _handler.setFormatter(logging.Formatter(config.LOG_FORMAT, datefmt=config.LOG_DATEFMT))
        root_logger.setLevel(level)
    logging.getLogger("roomrelay").setLevel(level)


__all__ = [
    "configure_logging",
    "install_log_context",
    "log_context",
    "reset_log_context",
    "set_log_context",
]
