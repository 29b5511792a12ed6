"""
Pure session state transitions.

Each function takes the current state and returns a new one. Nothing here
touches the network; the protocol applies the result and broadcasts it.
"""

import copy
import random
from typing import List, Optional, Set

from .catalog import split_exclusions
from .constants import PERMISSION_DEPLOY, PERMISSION_REROLL, Mode
from .errors import NOT_PERMITTED, raise_error
from .models import Participant, SessionState
from .randomizer import pick_loadout, roll_batch
from .slots import find_participant, host_of


def can_reroll(state: SessionState, actor_id: str, target_id: str) -> bool:
    """A seat can be rerolled by its owner, or by anyone if the owner allows it."""
    if actor_id == target_id:
        return True
    return bool(state.permissions.allow_others_reroll.get(target_id, False))


def can_deploy(state: SessionState, actor_id: str, participants: List[Participant]) -> bool:
    """
    Check whether an actor may trigger a full-session reroll.

    Only the host's own ``allow_others_deploy`` flag is consulted; the
    flags of every other participant are ignored.
    """
    host = host_of(participants)
    if host is None:
        return False
    if host.id == actor_id:
        return True
    return bool(state.permissions.allow_others_deploy.get(host.id, False))


def unavailable_legends(
    state: SessionState,
    participants: List[Participant],
    target_id: str,
    picked: Set[str] = frozenset()
) -> Set[str]:
    """
    Legends a seat may not receive.

    Args:
        state: Current session state
        participants: Resolved participant list
        target_id: Participant being rolled
        picked: Legends already held by other seats

    Returns:
        Union of the seat's bans, the owner's exclusions and ``picked``
    """
    bans = set(state.bans.get(target_id, []))
    participant = find_participant(participants, target_id)
    excluded_legends = set()
    if participant is not None:
        excluded_legends, _ = split_exclusions(participant.exclusions)
    return bans | excluded_legends | set(picked)


def _excluded_weapons(participants: List[Participant], target_id: str) -> Set[str]:
    participant = find_participant(participants, target_id)
    if participant is None:
        return set()
    _, weapon_ids = split_exclusions(participant.exclusions)
    return weapon_ids


def _other_picks(state: SessionState, target_id: str) -> Set[str]:
    return {
        loadout.legend
        for participant_id, loadout in state.loadouts.items()
        if participant_id != target_id and loadout.legend
    }


def reroll_participant(
    state: SessionState,
    participants: List[Participant],
    actor_id: str,
    target_id: str,
    rng: Optional[random.Random] = None
) -> SessionState:
    """Reroll a single seat, keeping its legend distinct from the other seats."""
    if not can_reroll(state, actor_id, target_id):
        raise_error(NOT_PERMITTED, f"{actor_id} may not reroll {target_id}")

    new_state = copy.deepcopy(state)
    unavailable = unavailable_legends(state, participants, target_id, _other_picks(state, target_id))
    new_state.loadouts[target_id] = pick_loadout(
        unavailable,
        _excluded_weapons(participants, target_id),
        state.mode,
        rng
    )
    return new_state


def ban_legend(
    state: SessionState,
    participants: List[Participant],
    actor_id: str,
    target_id: str,
    legend_id: str,
    rng: Optional[random.Random] = None
) -> SessionState:
    """
    Ban a legend for a seat and immediately reroll that seat.

    Args:
        state: Current session state
        participants: Resolved participant list
        actor_id: Participant performing the ban
        target_id: Seat the ban applies to
        legend_id: Legend to exclude from now on
        rng: Optional seeded random source

    Returns:
        New state with the ban recorded and the seat rerolled
    """
    if not can_reroll(state, actor_id, target_id):
        raise_error(NOT_PERMITTED, f"{actor_id} may not ban for {target_id}")

    new_state = copy.deepcopy(state)
    bans = new_state.bans.setdefault(target_id, [])
    if legend_id not in bans:
        bans.append(legend_id)

    unavailable = unavailable_legends(new_state, participants, target_id, _other_picks(new_state, target_id))
    new_state.loadouts[target_id] = pick_loadout(
        unavailable,
        _excluded_weapons(participants, target_id),
        new_state.mode,
        rng
    )
    return new_state


def roll_all(
    state: SessionState,
    participants: List[Participant],
    rng: Optional[random.Random] = None
) -> SessionState:
    """Roll every participant in slot order with unique legends across the batch."""
    seats = [
        (
            participant.id,
            unavailable_legends(state, participants, participant.id),
            _excluded_weapons(participants, participant.id),
        )
        for participant in participants
    ]
    new_state = copy.deepcopy(state)
    new_state.loadouts = roll_batch(seats, state.mode, rng)
    return new_state


def set_mode(
    state: SessionState,
    participants: List[Participant],
    actor_id: str,
    mode: Mode
) -> SessionState:
    if not can_deploy(state, actor_id, participants):
        raise_error(NOT_PERMITTED, f"{actor_id} may not change the mode")
    new_state = copy.deepcopy(state)
    new_state.mode = Mode(mode)
    return new_state


def set_permission(state: SessionState, actor_id: str, kind: str, value: bool) -> SessionState:
    """Set one of the actor's own permission flags."""
    new_state = copy.deepcopy(state)
    if kind == PERMISSION_REROLL:
        new_state.permissions.allow_others_reroll[actor_id] = bool(value)
    elif kind == PERMISSION_DEPLOY:
        new_state.permissions.allow_others_deploy[actor_id] = bool(value)
    else:
        raise ValueError(f"Unknown permission kind: {kind}")
    return new_state
