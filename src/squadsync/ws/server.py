"""
FastAPI websocket relay: topic fan-out plus a presence directory.

The relay keeps no session state. It forwards broadcasts to the other
members of a topic and tells everyone who is present; clients do the rest.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..constants import STATUS_CLOSED, STATUS_SUBSCRIBED
from .events import (
    BroadcastFrame, ErrorCode, SubscribeFrame, TrackFrame, UnsubscribeFrame, UntrackFrame,
    create_broadcast_frame, create_error_frame, create_presence_frame, create_status_frame,
    decode_frame, encode_frame, parse_inbound_frame
)

logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(title="SquadSync Relay", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class NotSubscribedError(Exception):
    pass


class RelayManager:
    """Tracks topic membership and presence for open websockets."""

    def __init__(self):
        self.topic_connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self.connection_topics: Dict[WebSocket, str] = {}
        self.connection_keys: Dict[WebSocket, str] = {}
        self.presence: Dict[str, Dict[WebSocket, Dict[str, Any]]] = defaultdict(dict)

    async def subscribe(self, websocket: WebSocket, topic: str, presence_key: Optional[str] = None):
        """Add a connection to a topic, leaving any previous one."""
        if websocket in self.connection_topics:
            await self._leave(websocket)

        self.topic_connections[topic].add(websocket)
        self.connection_topics[websocket] = topic
        self.connection_keys[websocket] = presence_key or topic
        logger.info(f"Connection subscribed to {topic} ({len(self.topic_connections[topic])} member(s))")

        await self._send(websocket, create_status_frame(STATUS_SUBSCRIBED, topic))
        await self._send(websocket, create_presence_frame(self.presence_snapshot(topic)))

    async def unsubscribe(self, websocket: WebSocket):
        topic = await self._leave(websocket)
        await self._send(websocket, create_status_frame(STATUS_CLOSED, topic))

    async def _leave(self, websocket: WebSocket) -> Optional[str]:
        topic = self.disconnect(websocket)
        if topic:
            await self.sync_presence(topic)
        return topic

    def disconnect(self, websocket: WebSocket) -> Optional[str]:
        """Forget a connection; returns the topic it was on, if any."""
        topic = self.connection_topics.pop(websocket, None)
        self.connection_keys.pop(websocket, None)
        if topic is None:
            return None

        self.topic_connections[topic].discard(websocket)
        self.presence[topic].pop(websocket, None)

        # Clean up empty topics
        if not self.topic_connections[topic]:
            del self.topic_connections[topic]
            self.presence.pop(topic, None)
            logger.info(f"Topic {topic} is empty")
        return topic

    def _topic_of(self, websocket: WebSocket) -> str:
        topic = self.connection_topics.get(websocket)
        if topic is None:
            raise NotSubscribedError("Subscribe to a topic first")
        return topic

    async def track(self, websocket: WebSocket, record: Dict[str, Any]):
        topic = self._topic_of(websocket)
        self.presence[topic][websocket] = record
        await self.sync_presence(topic)

    async def untrack(self, websocket: WebSocket):
        topic = self._topic_of(websocket)
        if self.presence[topic].pop(websocket, None) is not None:
            await self.sync_presence(topic)

    async def broadcast(self, websocket: WebSocket, event: str, payload: Any):
        """Send a message to every other member of the sender's topic."""
        topic = self._topic_of(websocket)
        frame = create_broadcast_frame(event, payload)
        for member in list(self.topic_connections.get(topic, ())):
            if member is websocket:
                continue
            await self._send(member, frame)

    def presence_snapshot(self, topic: str) -> Dict[str, List[Dict[str, Any]]]:
        state: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for member, record in self.presence.get(topic, {}).items():
            state[self.connection_keys.get(member, topic)].append(record)
        return dict(state)

    async def sync_presence(self, topic: str):
        frame = create_presence_frame(self.presence_snapshot(topic))
        for member in list(self.topic_connections.get(topic, ())):
            await self._send(member, frame)

    async def _send(self, websocket: WebSocket, frame: BaseModel):
        try:
            await websocket.send_text(encode_frame(frame))
        except Exception as e:
            logger.error(f"Error sending to connection: {e}")
            # Remove dead connection
            topic = self.disconnect(websocket)
            if topic:
                await self.sync_presence(topic)

    def stats(self) -> Dict[str, int]:
        return {
            "topics": len(self.topic_connections),
            "connections": len(self.connection_topics),
        }


manager = RelayManager()


@app.get("/")
async def root():
    return {"message": "SquadSync Relay", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", **manager.stats()}


async def handle_frame(websocket: WebSocket, frame):
    """Dispatch one parsed frame."""
    if isinstance(frame, SubscribeFrame):
        await manager.subscribe(websocket, frame.topic, frame.presence_key)
    elif isinstance(frame, UnsubscribeFrame):
        await manager.unsubscribe(websocket)
    elif isinstance(frame, TrackFrame):
        await manager.track(websocket, frame.record)
    elif isinstance(frame, UntrackFrame):
        await manager.untrack(websocket)
    elif isinstance(frame, BroadcastFrame):
        await manager.broadcast(websocket, frame.event, frame.payload)
    else:
        raise ValueError(f"Unhandled frame type: {type(frame)}")


@app.websocket("/realtime")
async def realtime_endpoint(websocket: WebSocket):
    """Main relay endpoint."""
    await websocket.accept()
    logger.info("WebSocket connection accepted")

    try:
        while True:
            raw_data = await websocket.receive_text()

            try:
                frame = parse_inbound_frame(decode_frame(raw_data))
                await handle_frame(websocket, frame)
            except ValueError as e:
                await websocket.send_text(encode_frame(create_error_frame(ErrorCode.INVALID_FRAME, str(e))))
            except NotSubscribedError as e:
                await websocket.send_text(encode_frame(create_error_frame(ErrorCode.NOT_SUBSCRIBED, str(e))))

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        topic = manager.disconnect(websocket)
        if topic:
            await manager.sync_presence(topic)
