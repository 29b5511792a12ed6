"""Participant identity and room codes"""

import random
import re
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from .constants import MAX_NAME_LENGTH, ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH, ROOM_CODE_PATTERN
from .errors import INVALID_NAME, INVALID_ROOM_CODE, raise_error

_ROOM_CODE_RE = re.compile(ROOM_CODE_PATTERN)


def generate_room_code(rng: Optional[random.Random] = None) -> str:
    r = rng if rng is not None else random
    return "".join(r.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def normalize_room_code(code: Optional[str]) -> str:
    """Upper-case and validate a room code typed by a user."""
    normalized = (code or "").strip().upper()
    if not _ROOM_CODE_RE.match(normalized):
        raise_error(INVALID_ROOM_CODE, f"Invalid room code: {code!r}")
    return normalized


def validate_display_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise_error(INVALID_NAME, "Display name is required")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise_error(INVALID_NAME, f"Display name must be at most {MAX_NAME_LENGTH} characters")
    return cleaned


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class IdentityRegistry:
    """
    Hands out one participant identity per room for the life of the process.

    Rejoining the same room reuses both the id and the original join order,
    so a reconnecting client lands back in the same slot.
    """

    def __init__(self):
        self._identities: Dict[str, Tuple[str, str]] = {}

    def identity_for(self, room_code: str) -> Tuple[str, str]:
        """Return ``(participant_id, join_order)`` for a room, creating it on first use."""
        if room_code not in self._identities:
            self._identities[room_code] = (uuid.uuid4().hex[:12], utc_timestamp())
        return self._identities[room_code]

    def forget(self, room_code: str):
        self._identities.pop(room_code, None)

    def __contains__(self, room_code: str) -> bool:
        return room_code in self._identities
