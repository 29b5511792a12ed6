"""
Realtime transport contract.

A transport hands out channels bound to a topic. Channels deliver
broadcasts at most once, in no particular order, never back to the
sender, and keep a presence directory of tracked clients.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

BroadcastHandler = Callable[[Any], Any]
PresenceHandler = Callable[[], Any]
StatusCallback = Callable[[str], Any]


class Channel(ABC):
    """Base channel with handler registration and guarded dispatch."""

    def __init__(self, topic: str, presence_key: Optional[str] = None):
        self.topic = topic
        self.presence_key = presence_key or topic
        self._broadcast_handlers: Dict[str, List[BroadcastHandler]] = defaultdict(list)
        self._presence_handlers: List[PresenceHandler] = []
        self._status_callback: Optional[StatusCallback] = None

    def on_broadcast(self, event: str, handler: BroadcastHandler) -> "Channel":
        self._broadcast_handlers[event].append(handler)
        return self

    def on_presence_sync(self, handler: PresenceHandler) -> "Channel":
        self._presence_handlers.append(handler)
        return self

    @abstractmethod
    async def subscribe(self, callback: Optional[StatusCallback] = None) -> None:
        """Open the channel; statuses are reported through ``callback``."""
        pass

    @abstractmethod
    async def unsubscribe(self) -> None:
        pass

    @abstractmethod
    async def track(self, record: Dict[str, Any]) -> None:
        """Publish this client's presence record."""
        pass

    @abstractmethod
    async def untrack(self) -> None:
        pass

    @abstractmethod
    async def send(self, event: str, payload: Any = None) -> None:
        """Fire-and-forget broadcast to every other subscriber."""
        pass

    @abstractmethod
    def presence_state(self) -> Dict[str, List[Dict[str, Any]]]:
        """Current presence directory as ``{presence_key: [record, ...]}``."""
        pass

    # Dispatch helpers used by implementations. Handler failures stop here.

    async def _dispatch_broadcast(self, event: str, payload: Any):
        for handler in list(self._broadcast_handlers.get(event, [])):
            await self._call(handler, payload, label=f"broadcast {event}")

    async def _dispatch_presence(self):
        for handler in list(self._presence_handlers):
            await self._call(handler, label="presence sync")

    async def _dispatch_status(self, status: str):
        if self._status_callback is not None:
            await self._call(self._status_callback, status, label=f"status {status}")

    async def _call(self, handler, *args, label: str = ""):
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Handler for {label} on {self.topic} failed: {e}")


class Transport(ABC):
    """Factory for channels."""

    @abstractmethod
    def channel(self, topic: str, presence_key: Optional[str] = None) -> Channel:
        pass
