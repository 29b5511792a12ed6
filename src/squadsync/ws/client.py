"""
Websocket client transport for the relay.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config import Settings, default_settings
from ..constants import STATUS_CLOSED, STATUS_SUBSCRIBED, STATUS_TIMED_OUT
from ..transport import Channel, StatusCallback, Transport
from .events import (
    BroadcastFrame, BroadcastMessageFrame, ErrorFrame, PresenceSyncFrame, StatusFrame,
    SubscribeFrame, TrackFrame, UnsubscribeFrame, UntrackFrame,
    decode_frame, encode_frame, parse_outbound_frame
)

logger = logging.getLogger(__name__)


class WebSocketChannel(Channel):
    """
    Channel backed by one websocket connection to the relay.

    A background task owns the connection. When it drops, the channel
    reports CLOSED, waits with exponential backoff, reconnects,
    resubscribes and republishes the last tracked record. Sends made
    while disconnected are dropped.
    """

    def __init__(self, url: str, topic: str, presence_key: Optional[str] = None,
                 settings: Settings = default_settings):
        super().__init__(topic, presence_key)
        self.url = url
        self.settings = settings
        self._ws = None
        self._runner: Optional[asyncio.Task] = None
        self._acked: Optional[asyncio.Event] = None
        self._presence: Dict[str, List[Dict[str, Any]]] = {}
        self._record: Optional[Dict[str, Any]] = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def subscribe(self, callback: Optional[StatusCallback] = None) -> None:
        self._status_callback = callback
        self._closing = False
        self._runner = asyncio.get_running_loop().create_task(self._run())

    async def _run(self):
        delay = self.settings.reconnect_backoff
        while not self._closing:
            try:
                async with websockets.connect(self.url) as ws:
                    self._ws = ws
                    self._acked = asyncio.Event()
                    await ws.send(encode_frame(SubscribeFrame(topic=self.topic, presence_key=self.presence_key)))
                    reader = asyncio.get_running_loop().create_task(self._read(ws))

                    try:
                        await asyncio.wait_for(self._acked.wait(), timeout=self.settings.subscribe_timeout)
                    except asyncio.TimeoutError:
                        logger.warning(f"No subscribe ack for {self.topic} within {self.settings.subscribe_timeout}s")
                        reader.cancel()
                        await self._dispatch_status(STATUS_TIMED_OUT)
                    else:
                        delay = self.settings.reconnect_backoff
                        if self._record is not None:
                            await ws.send(encode_frame(TrackFrame(record=self._record)))
                        await reader
            except asyncio.CancelledError:
                raise
            except (OSError, WebSocketException) as e:
                logger.warning(f"Relay connection for {self.topic} failed: {e}")
            finally:
                self._ws = None

            if self._closing:
                break

            self._presence = {}
            await self._dispatch_status(STATUS_CLOSED)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.settings.reconnect_backoff_max)

    async def _read(self, ws):
        try:
            async for raw in ws:
                try:
                    frame = parse_outbound_frame(decode_frame(raw))
                except ValueError as e:
                    logger.warning(f"Ignoring bad frame on {self.topic}: {e}")
                    continue
                await self._handle_frame(frame)
        except ConnectionClosed:
            logger.info(f"Relay closed connection for {self.topic}")

    async def _handle_frame(self, frame):
        if isinstance(frame, StatusFrame):
            if frame.status == STATUS_SUBSCRIBED and self._acked is not None:
                self._acked.set()
            await self._dispatch_status(frame.status)
        elif isinstance(frame, BroadcastMessageFrame):
            await self._dispatch_broadcast(frame.event, frame.payload)
        elif isinstance(frame, PresenceSyncFrame):
            self._presence = frame.state
            await self._dispatch_presence()
        elif isinstance(frame, ErrorFrame):
            logger.warning(f"Relay rejected a frame on {self.topic}: [{frame.code.value}] {frame.message}")

    async def _write(self, frame) -> bool:
        ws = self._ws
        if ws is None:
            return False
        try:
            await ws.send(encode_frame(frame))
            return True
        except ConnectionClosed:
            logger.debug(f"Frame dropped, connection for {self.topic} closed")
            return False

    async def unsubscribe(self) -> None:
        self._closing = True
        ws = self._ws
        if ws is not None:
            await self._write(UnsubscribeFrame())
            await ws.close()
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None
        self._presence = {}
        await self._dispatch_status(STATUS_CLOSED)
        self._status_callback = None

    async def track(self, record: Dict[str, Any]) -> None:
        self._record = dict(record)
        await self._write(TrackFrame(record=self._record))

    async def untrack(self) -> None:
        self._record = None
        await self._write(UntrackFrame())

    async def send(self, event: str, payload: Any = None) -> None:
        if not await self._write(BroadcastFrame(event=event, payload=payload)):
            logger.debug(f"Broadcast {event} dropped while disconnected from {self.topic}")

    def presence_state(self) -> Dict[str, List[Dict[str, Any]]]:
        return {key: [dict(record) for record in records] for key, records in self._presence.items()}


class WebSocketTransport(Transport):
    def __init__(self, url: Optional[str] = None, settings: Settings = default_settings):
        self.url = url or settings.relay_url
        self.settings = settings

    def channel(self, topic: str, presence_key: Optional[str] = None) -> WebSocketChannel:
        return WebSocketChannel(self.url, topic, presence_key, self.settings)
