"""
Relay wire frames and validation.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

import orjson
from pydantic import BaseModel, Field

from ..constants import STATUS_CLOSED, STATUS_SUBSCRIBED, STATUS_TIMED_OUT


class FrameType(str, Enum):
    """Client to relay frame types."""
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    TRACK = "track"
    UNTRACK = "untrack"
    BROADCAST = "broadcast"


class OutboundFrameType(str, Enum):
    """Relay to client frame types."""
    STATUS = "status"
    BROADCAST = "broadcast"
    PRESENCE_SYNC = "presence_sync"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Error codes for rejected frames."""
    INVALID_FRAME = "INVALID_FRAME"
    NOT_SUBSCRIBED = "NOT_SUBSCRIBED"
    INTERNAL = "INTERNAL"


# Inbound frame models
class BaseFrame(BaseModel):
    """Base frame model."""
    type: FrameType


class SubscribeFrame(BaseFrame):
    """Join a topic."""
    type: FrameType = FrameType.SUBSCRIBE
    topic: str = Field(..., min_length=1, max_length=100)
    presence_key: Optional[str] = Field(default=None, max_length=100)


class UnsubscribeFrame(BaseFrame):
    """Leave the current topic."""
    type: FrameType = FrameType.UNSUBSCRIBE


class TrackFrame(BaseFrame):
    """Publish or replace this connection's presence record."""
    type: FrameType = FrameType.TRACK
    record: Dict[str, Any]


class UntrackFrame(BaseFrame):
    """Withdraw this connection's presence record."""
    type: FrameType = FrameType.UNTRACK


class BroadcastFrame(BaseFrame):
    """Fan a message out to the rest of the topic."""
    type: FrameType = FrameType.BROADCAST
    event: str = Field(..., min_length=1, max_length=50)
    payload: Any = None


InboundFrame = Union[
    SubscribeFrame,
    UnsubscribeFrame,
    TrackFrame,
    UntrackFrame,
    BroadcastFrame
]


# Outbound frame models
class StatusFrame(BaseModel):
    """Channel lifecycle status."""
    type: OutboundFrameType = OutboundFrameType.STATUS
    status: str = Field(..., pattern=f"^({STATUS_SUBSCRIBED}|{STATUS_TIMED_OUT}|{STATUS_CLOSED})$")
    topic: Optional[str] = None


class BroadcastMessageFrame(BaseModel):
    """Broadcast delivered from another subscriber."""
    type: OutboundFrameType = OutboundFrameType.BROADCAST
    event: str
    payload: Any = None


class PresenceSyncFrame(BaseModel):
    """Full presence directory for the topic."""
    type: OutboundFrameType = OutboundFrameType.PRESENCE_SYNC
    state: Dict[str, List[Dict[str, Any]]]


class ErrorFrame(BaseModel):
    """Rejected frame."""
    type: OutboundFrameType = OutboundFrameType.ERROR
    code: ErrorCode
    message: str


OutboundFrame = Union[
    StatusFrame,
    BroadcastMessageFrame,
    PresenceSyncFrame,
    ErrorFrame
]


def parse_inbound_frame(data: Dict[str, Any]) -> InboundFrame:
    """
    Parse raw frame data into the matching frame model.

    Args:
        data: Decoded JSON object received from a client

    Returns:
        Parsed frame model

    Raises:
        ValueError: If the frame type is unknown or the data is malformed
    """
    if not isinstance(data, dict):
        raise ValueError("Frame must be a JSON object")

    frame_type = data.get("type")
    if not frame_type:
        raise ValueError("Missing frame type")

    try:
        frame_type = FrameType(frame_type)
    except ValueError:
        raise ValueError(f"Invalid frame type: {frame_type}")

    frame_map = {
        FrameType.SUBSCRIBE: SubscribeFrame,
        FrameType.UNSUBSCRIBE: UnsubscribeFrame,
        FrameType.TRACK: TrackFrame,
        FrameType.UNTRACK: UntrackFrame,
        FrameType.BROADCAST: BroadcastFrame,
    }

    try:
        return frame_map[frame_type](**data)
    except Exception as e:
        raise ValueError(f"Invalid frame data: {str(e)}")


def parse_outbound_frame(data: Dict[str, Any]) -> OutboundFrame:
    """Client-side counterpart of ``parse_inbound_frame``."""
    if not isinstance(data, dict):
        raise ValueError("Frame must be a JSON object")

    try:
        frame_type = OutboundFrameType(data.get("type"))
    except ValueError:
        raise ValueError(f"Invalid frame type: {data.get('type')}")

    frame_map = {
        OutboundFrameType.STATUS: StatusFrame,
        OutboundFrameType.BROADCAST: BroadcastMessageFrame,
        OutboundFrameType.PRESENCE_SYNC: PresenceSyncFrame,
        OutboundFrameType.ERROR: ErrorFrame,
    }

    try:
        return frame_map[frame_type](**data)
    except Exception as e:
        raise ValueError(f"Invalid frame data: {str(e)}")


def encode_frame(frame: BaseModel) -> str:
    return orjson.dumps(frame.model_dump(mode="json")).decode()


def decode_frame(raw: Union[str, bytes]) -> Any:
    """Decode JSON text; raises ValueError on bad input."""
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")


def create_status_frame(status: str, topic: Optional[str] = None) -> StatusFrame:
    return StatusFrame(status=status, topic=topic)


def create_error_frame(code: ErrorCode, message: str) -> ErrorFrame:
    return ErrorFrame(code=code, message=message)


def create_presence_frame(state: Dict[str, List[Dict[str, Any]]]) -> PresenceSyncFrame:
    return PresenceSyncFrame(state=state)


def create_broadcast_frame(event: str, payload: Any = None) -> BroadcastMessageFrame:
    return BroadcastMessageFrame(event=event, payload=payload)
