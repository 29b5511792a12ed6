"""Session constants and utilities"""

from enum import Enum


class Mode(str, Enum):
    """Which loadout fields a roll fills."""
    FULL = "FULL"
    LEGENDS_ONLY = "LEGENDS_ONLY"
    WEAPONS_ONLY = "WEAPONS_ONLY"
    ROLES = "ROLES"


class Phase(str, Enum):
    """Client lifecycle phases."""
    SETUP = "SETUP"
    CONNECTING = "CONNECTING"
    VALIDATING = "VALIDATING"
    ACTIVE = "ACTIVE"
    LEAVING = "LEAVING"
    DISBANDED = "DISBANDED"


# Channel statuses reported by a transport
STATUS_SUBSCRIBED = "SUBSCRIBED"
STATUS_TIMED_OUT = "TIMED_OUT"
STATUS_CLOSED = "CLOSED"

# Broadcast events
EVENT_ROLL_START = "GAME_ROLL_START"
EVENT_GAME_UPDATE = "GAME_UPDATE"
EVENT_CHAT = "CHAT"
EVENT_ROOM_CLOSED = "ROOM_CLOSED"
EVENT_SCORE_UPDATE = "SCORE_UPDATE"
EVENT_SCORE_CLEAR = "SCORE_CLEAR"

# Permission kinds
PERMISSION_REROLL = "reroll"
PERMISSION_DEPLOY = "deploy"

TOPIC_PREFIX = "apex-room:"
ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
ROOM_CODE_PATTERN = r"^[A-Z0-9]{4,10}$"

MAX_NAME_LENGTH = 30
MAX_CHAT_LENGTH = 200

# Local storage keys
STORAGE_PLAYER_NAME = "apex_player_name"
STORAGE_ROOM_STYLE = "apex_room_style"
STORAGE_USER_EXCLUDES = "apex_user_excludes"
STORAGE_MUTED = "apex_muted"
STORAGE_PLAYER_RANKS = "apex_player_ranks"


def topic_for(room_code: str) -> str:
    return f"{TOPIC_PREFIX}{room_code}"
