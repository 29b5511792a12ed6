"""
Slot resolution from presence snapshots.

The roster is never patched incrementally. Every presence sync hands the
whole snapshot to ``resolve_slots`` and the previous roster is discarded.
"""

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .models import Participant
from .serialization import parse_presence_record

logger = logging.getLogger(__name__)


def flatten_snapshot(snapshot: Dict[str, Iterable[dict]]) -> List[Participant]:
    """Flatten ``{presence_key: [record, ...]}`` into participants, dropping bad records."""
    participants = []
    if not isinstance(snapshot, dict):
        logger.warning(f"Presence snapshot is not a mapping: {type(snapshot).__name__}")
        return participants

    for records in snapshot.values():
        if not isinstance(records, (list, tuple)):
            continue
        for record in records:
            participant = parse_presence_record(record)
            if participant is not None:
                participants.append(participant)
    return participants


def resolve_slots(snapshot: Dict[str, Iterable[dict]], capacity: int) -> List[Participant]:
    """
    Compute the participant list with slots for a presence snapshot.

    Participants are ordered by ``join_order`` (ISO timestamps compare as
    strings). The sort is stable, so exact ties keep snapshot order.

    Args:
        snapshot: Presence directory as returned by ``Channel.presence_state``
        capacity: Number of slots in the room

    Returns:
        New list of participants sorted by join order, slot assigned
    """
    if capacity < 1:
        raise ValueError(f"Room capacity must be positive, got {capacity}")

    ordered = sorted(flatten_snapshot(snapshot), key=lambda p: p.join_order)

    # One seat per id; a client tracked twice keeps its earliest record
    seen = set()
    unique = []
    for participant in ordered:
        if participant.id in seen:
            continue
        seen.add(participant.id)
        unique.append(participant)

    return [replace(participant, slot=index % capacity) for index, participant in enumerate(unique)]


def find_participant(participants: List[Participant], participant_id: Optional[str]) -> Optional[Participant]:
    for participant in participants:
        if participant.id == participant_id:
            return participant
    return None


def slot_of(participants: List[Participant], participant_id: Optional[str]) -> Optional[int]:
    """Slot of a participant, or None while its presence is not registered yet."""
    participant = find_participant(participants, participant_id)
    return participant.slot if participant else None


def host_of(participants: List[Participant]) -> Optional[Participant]:
    """The host is whoever currently sorts first by join order."""
    return participants[0] if participants else None


def is_host(participants: List[Participant], participant_id: Optional[str]) -> bool:
    host = host_of(participants)
    return host is not None and host.id == participant_id
