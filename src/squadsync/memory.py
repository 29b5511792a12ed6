"""
In-process relay implementing the transport contract.

Useful for tests and for running several clients inside one event loop.
Delivery is scheduled on the loop rather than done inline, so a send
returns before any peer has seen the message.
"""

import asyncio
import copy
import itertools
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set

from .constants import STATUS_CLOSED, STATUS_SUBSCRIBED, STATUS_TIMED_OUT
from .transport import Channel, StatusCallback, Transport

logger = logging.getLogger(__name__)

# (event, payload, receiving channel) -> True to drop the message
DropPredicate = Callable[[str, Any, "MemoryChannel"], bool]


class MemoryRelay:
    """Shared broker: topic membership, presence and message delivery."""

    def __init__(self):
        self.subscribers: Dict[str, List["MemoryChannel"]] = defaultdict(list)
        self.presence: Dict[str, Dict[int, tuple]] = defaultdict(dict)
        self.drop: Optional[DropPredicate] = None
        self.accept_subscriptions = True
        self.sent: List[tuple] = []
        self._pending: Set[asyncio.Task] = set()

    def _schedule(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self):
        """Wait until every scheduled delivery has run."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def join(self, channel: "MemoryChannel"):
        if channel not in self.subscribers[channel.topic]:
            self.subscribers[channel.topic].append(channel)
        self._schedule(channel._dispatch_status(STATUS_SUBSCRIBED))

    def leave(self, channel: "MemoryChannel"):
        members = self.subscribers.get(channel.topic, [])
        if channel in members:
            members.remove(channel)
        if self.presence[channel.topic].pop(channel.ref, None) is not None:
            self._sync_presence(channel.topic)

    def set_presence(self, channel: "MemoryChannel", record: Optional[Dict[str, Any]]):
        if record is None:
            self.presence[channel.topic].pop(channel.ref, None)
        else:
            self.presence[channel.topic][channel.ref] = (channel.presence_key, copy.deepcopy(record))
        self._sync_presence(channel.topic)

    def snapshot(self, topic: str) -> Dict[str, List[Dict[str, Any]]]:
        state: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for key, record in self.presence.get(topic, {}).values():
            state[key].append(copy.deepcopy(record))
        return dict(state)

    def _sync_presence(self, topic: str):
        for member in list(self.subscribers.get(topic, [])):
            self._schedule(member._dispatch_presence())

    def publish(self, sender: "MemoryChannel", event: str, payload: Any):
        self.sent.append((sender.topic, event, copy.deepcopy(payload)))
        for member in list(self.subscribers.get(sender.topic, [])):
            if member is sender:
                continue
            if self.drop is not None and self.drop(event, payload, member):
                logger.debug(f"Dropped {event} to {member.ref} on {sender.topic}")
                continue
            self._schedule(member._dispatch_broadcast(event, copy.deepcopy(payload)))

    def interrupt(self, channel: "MemoryChannel", status: str = STATUS_TIMED_OUT):
        """Report a transient outage to one channel."""
        self._schedule(channel._dispatch_status(status))

    def restore(self, channel: "MemoryChannel"):
        """Report the channel as subscribed again after an outage."""
        self._schedule(channel._dispatch_status(STATUS_SUBSCRIBED))


class MemoryChannel(Channel):
    _refs = itertools.count(1)

    def __init__(self, relay: MemoryRelay, topic: str, presence_key: Optional[str] = None):
        super().__init__(topic, presence_key)
        self.relay = relay
        self.ref = next(self._refs)
        self.subscribed = False

    async def subscribe(self, callback: Optional[StatusCallback] = None) -> None:
        self._status_callback = callback
        if not self.relay.accept_subscriptions:
            # Stays pending, as a relay that never answers would
            return
        self.subscribed = True
        self.relay.join(self)

    async def unsubscribe(self) -> None:
        if not self.subscribed:
            return
        self.subscribed = False
        self.relay.leave(self)
        await self._dispatch_status(STATUS_CLOSED)
        self._status_callback = None

    async def track(self, record: Dict[str, Any]) -> None:
        if self.subscribed:
            self.relay.set_presence(self, record)

    async def untrack(self) -> None:
        if self.subscribed:
            self.relay.set_presence(self, None)

    async def send(self, event: str, payload: Any = None) -> None:
        if not self.subscribed:
            logger.debug(f"Send of {event} on closed channel {self.topic} ignored")
            return
        self.relay.publish(self, event, payload)

    def presence_state(self) -> Dict[str, List[Dict[str, Any]]]:
        return self.relay.snapshot(self.topic)


class MemoryTransport(Transport):
    def __init__(self, relay: Optional[MemoryRelay] = None):
        self.relay = relay if relay is not None else MemoryRelay()

    def channel(self, topic: str, presence_key: Optional[str] = None) -> MemoryChannel:
        return MemoryChannel(self.relay, topic, presence_key)
