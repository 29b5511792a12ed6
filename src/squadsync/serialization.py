"""
Payload serialization and defensive decoding.

Every inbound broadcast payload goes through one of the ``parse_*``
helpers below. They never raise: anything that does not validate is
logged and comes back as ``None`` so the caller can drop it.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import MAX_CHAT_LENGTH, MAX_NAME_LENGTH, Mode
from .models import (
    ChatMessage, Loadout, MatchResult, Participant, Permissions,
    PlayerMatchStats, SessionState
)

logger = logging.getLogger(__name__)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class LoadoutPayload(_Payload):
    legend: Optional[str] = None
    primary: Optional[str] = None
    secondary: Optional[str] = None
    role: Optional[str] = None


class PermissionsPayload(_Payload):
    allow_others_reroll: Dict[str, bool] = Field(default_factory=dict)
    allow_others_deploy: Dict[str, bool] = Field(default_factory=dict)


class SessionStatePayload(_Payload):
    mode: Mode = Mode.FULL
    loadouts: Dict[str, LoadoutPayload] = Field(default_factory=dict)
    bans: Dict[str, List[str]] = Field(default_factory=dict)
    permissions: PermissionsPayload = Field(default_factory=PermissionsPayload)


class PresenceRecord(_Payload):
    """Presence record as tracked on the relay."""
    userId: str = Field(..., min_length=1)
    user_name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH)
    online_at: str = Field(..., min_length=1)
    excluded_ids: List[str] = Field(default_factory=list)


class ChatPayload(_Payload):
    id: str = Field(..., min_length=1)
    sender_id: str = Field(..., min_length=1)
    sender_name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH)
    text: str = Field(..., min_length=1, max_length=MAX_CHAT_LENGTH)
    timestamp: float


class PlayerMatchStatsPayload(_Payload):
    kills: int = Field(default=0, ge=0)
    assists: int = Field(default=0, ge=0)
    damage: int = Field(default=0, ge=0)
    participation: int = Field(default=0, ge=0)
    skill_bonus: int = 0
    tier: str = "Gold"
    rp: int = 0


class MatchResultPayload(_Payload):
    id: str = Field(..., min_length=1)
    team_placement: int = Field(..., ge=1, le=20)
    details: Dict[str, PlayerMatchStatsPayload] = Field(default_factory=dict)
    total_squad_rp: int = 0
    timestamp: float = 0.0


class ScoresPayload(_Payload):
    results: List[MatchResultPayload] = Field(default_factory=list)


def serialize_loadouts(loadouts: Dict[str, Loadout]) -> Dict[str, Dict[str, Any]]:
    return {participant_id: asdict(loadout) for participant_id, loadout in loadouts.items()}


def serialize_state(state: SessionState) -> Dict[str, Any]:
    """
    Serialize a session state into a full-replacement snapshot.

    Args:
        state: Session state to serialize

    Returns:
        JSON-safe dictionary carrying every field of the state
    """
    return {
        "mode": state.mode.value,
        "loadouts": serialize_loadouts(state.loadouts),
        "bans": {participant_id: list(banned) for participant_id, banned in state.bans.items()},
        "permissions": {
            "allow_others_reroll": dict(state.permissions.allow_others_reroll),
            "allow_others_deploy": dict(state.permissions.allow_others_deploy),
        },
    }


def parse_state(payload: Any) -> Optional[SessionState]:
    """Decode a GAME_UPDATE payload, or None if it is not a session state."""
    if not isinstance(payload, dict):
        logger.warning(f"Ignoring non-object state payload: {type(payload).__name__}")
        return None
    try:
        parsed = SessionStatePayload.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed state payload: {e.error_count()} error(s)")
        return None

    return SessionState(
        mode=parsed.mode,
        loadouts={
            participant_id: Loadout(**loadout.model_dump())
            for participant_id, loadout in parsed.loadouts.items()
        },
        bans={participant_id: list(banned) for participant_id, banned in parsed.bans.items()},
        permissions=Permissions(
            allow_others_reroll=dict(parsed.permissions.allow_others_reroll),
            allow_others_deploy=dict(parsed.permissions.allow_others_deploy),
        ),
    )


def build_presence_record(participant_id: str, display_name: str, join_order: str, exclusions) -> Dict[str, Any]:
    """Presence record this client publishes with ``track``."""
    return {
        "userId": participant_id,
        "user_name": display_name,
        "online_at": join_order,
        "excluded_ids": sorted(exclusions),
    }


def parse_presence_record(record: Any) -> Optional[Participant]:
    if not isinstance(record, dict):
        return None
    try:
        parsed = PresenceRecord.model_validate(record)
    except ValidationError:
        logger.warning(f"Skipping malformed presence record: {record!r}")
        return None
    return Participant(
        id=parsed.userId,
        display_name=parsed.user_name,
        join_order=parsed.online_at,
        exclusions=frozenset(parsed.excluded_ids),
    )


def serialize_chat(message: ChatMessage) -> Dict[str, Any]:
    return asdict(message)


def parse_chat(payload: Any) -> Optional[ChatMessage]:
    if not isinstance(payload, dict):
        return None
    try:
        parsed = ChatPayload.model_validate(payload)
    except ValidationError:
        logger.warning("Ignoring malformed chat payload")
        return None
    return ChatMessage(**parsed.model_dump())


def serialize_results(results: List[MatchResult]) -> Dict[str, Any]:
    return {"results": [asdict(result) for result in results]}


def parse_results(payload: Any) -> Optional[List[MatchResult]]:
    """Decode a SCORE_UPDATE payload into match results."""
    if not isinstance(payload, dict):
        return None
    try:
        parsed = ScoresPayload.model_validate(payload)
    except ValidationError:
        logger.warning("Ignoring malformed score payload")
        return None

    results = []
    for result in parsed.results:
        results.append(MatchResult(
            id=result.id,
            team_placement=result.team_placement,
            details={
                participant_id: PlayerMatchStats(**stats.model_dump())
                for participant_id, stats in result.details.items()
            },
            total_squad_rp=result.total_squad_rp,
            timestamp=result.timestamp,
        ))
    return results
