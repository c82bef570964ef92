DEFAULT_ROOM = "default"

# Name carried by a client until it completes the handshake.
PLACEHOLDER_NAME = "temp"

# Message type discriminants understood by the relay.
WELCOME = "welcome"
MY_NAME_IS = "my_name_is"
PLAYER_JOINED = "player_joined"
PLAYER_LEFT = "player_left"
WHO_IS = "who_is"

# Connection timing, in seconds.
HANDSHAKE_TIMEOUT_S = 5.0
PING_INTERVAL_S = 10.0
IDLE_TIMEOUT_S = 30.0

# WebSocket close codes (RFC 6455) and reasons.
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011
HANDSHAKE_TIMEOUT_REASON = "Timeout waiting for player-info"
IDLE_TIMEOUT_REASON = "Idle timeout"
INTERNAL_ERROR_REASON = "Internal error"
CLOSED_REASON = "Closed"

__all__ = [
    "DEFAULT_ROOM",
    "PLACEHOLDER_NAME",
    "WELCOME",
    "MY_NAME_IS",
    "PLAYER_JOINED",
    "PLAYER_LEFT",
    "WHO_IS",
    "HANDSHAKE_TIMEOUT_S",
    "PING_INTERVAL_S",
    "IDLE_TIMEOUT_S",
    "CLOSE_NORMAL",
    "CLOSE_GOING_AWAY",
    "CLOSE_POLICY_VIOLATION",
    "CLOSE_INTERNAL_ERROR",
    "HANDSHAKE_TIMEOUT_REASON",
    "IDLE_TIMEOUT_REASON",
    "INTERNAL_ERROR_REASON",
    "CLOSED_REASON",
]
