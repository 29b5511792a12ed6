"""
Ephemeral feeds derived from the broadcast stream: chat and roll history.

Neither feed is replicated on its own. Both are rebuilt locally from the
same events that carry chat messages and session snapshots.
"""

import copy
import logging
import time
import uuid
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from .constants import EVENT_CHAT, MAX_CHAT_LENGTH
from .errors import INVALID_MESSAGE, NOT_CONNECTED, raise_error
from .models import ChatMessage, Loadout, RollHistoryEntry
from .serialization import parse_chat, serialize_chat
from .transport import Channel

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 5


class RollHistory:
    """Ring buffer of applied loadout snapshots, newest first."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_SIZE):
        self._entries: Deque[RollHistoryEntry] = deque(maxlen=capacity)

    def record(self, loadouts: Dict[str, Loadout], timestamp: Optional[float] = None) -> RollHistoryEntry:
        entry = RollHistoryEntry(
            timestamp=timestamp if timestamp is not None else time.time(),
            loadouts=copy.deepcopy(loadouts),
        )
        self._entries.appendleft(entry)
        return entry

    def entries(self) -> List[RollHistoryEntry]:
        return list(self._entries)

    def latest(self) -> Optional[RollHistoryEntry]:
        return self._entries[0] if self._entries else None

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class ChatLog:
    """Chat messages in receipt order."""

    def __init__(self):
        self._messages: List[ChatMessage] = []
        self._ids = set()

    def append(self, message: ChatMessage) -> bool:
        """Append a message; returns False if its id was already present."""
        if message.id in self._ids:
            return False
        self._ids.add(message.id)
        self._messages.append(message)
        return True

    async def send(self, channel: Optional[Channel], sender_id: str, sender_name: str, text: str) -> ChatMessage:
        """
        Post a chat message.

        The message is appended locally before the broadcast goes out;
        the relay does not echo it back to the sender.
        """
        cleaned = (text or "").strip()
        if not cleaned:
            raise_error(INVALID_MESSAGE, "Message is empty")
        if len(cleaned) > MAX_CHAT_LENGTH:
            raise_error(INVALID_MESSAGE, f"Message is longer than {MAX_CHAT_LENGTH} characters")
        if channel is None:
            raise_error(NOT_CONNECTED, "Not in a room")

        message = ChatMessage(
            id=uuid.uuid4().hex,
            sender_id=sender_id,
            sender_name=sender_name,
            text=cleaned,
            timestamp=time.time(),
        )
        self.append(message)
        await channel.send(EVENT_CHAT, serialize_chat(message))
        return message

    def receive(self, payload: Any) -> Optional[ChatMessage]:
        message = parse_chat(payload)
        if message is None:
            return None
        if not self.append(message):
            logger.debug(f"Duplicate chat message {message.id} ignored")
            return None
        return message

    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    def clear(self):
        self._messages.clear()
        self._ids.clear()

    def __len__(self) -> int:
        return len(self._messages)
