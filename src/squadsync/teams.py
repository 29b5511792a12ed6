"""
Team assembly for local (non-realtime) squads.
"""

import math
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class GamePreset:
    id: str
    name: str
    team_size: int


GAME_PRESETS: List[GamePreset] = [
    GamePreset("apex", "APEX LEGENDS", 3),
    GamePreset("lol", "LEAGUE OF LEGENDS", 5),
    GamePreset("valo", "VALORANT", 5),
    GamePreset("cs2", "CS:2", 5),
    GamePreset("overwatch", "OVERWATCH 2", 5),
    GamePreset("custom", "CUSTOM_PROTOCOL", 4),
]


def get_preset(preset_id: str) -> GamePreset:
    for preset in GAME_PRESETS:
        if preset.id == preset_id:
            return preset
    raise KeyError(f"Unknown game preset: {preset_id}")


def shuffle_players(players: Sequence[T], seed: Optional[int] = None) -> List[T]:
    """
    Shuffle players, deterministically if a seed is provided.

    Args:
        players: Players to shuffle
        seed: Optional seed for reproducible teams

    Returns:
        Shuffled copy of the players
    """
    players_copy = list(players)
    if seed is not None:
        random.Random(seed).shuffle(players_copy)
    else:
        random.shuffle(players_copy)
    return players_copy


def distribute_balanced(players: Sequence[T], max_per_team: int) -> List[List[T]]:
    """
    Split players into the fewest teams that respect ``max_per_team``.

    Uses ceil(n / max_per_team) teams filled round-robin, so team sizes
    never differ by more than one. Four players with a limit of three
    become two teams of two.
    """
    if max_per_team < 1:
        raise ValueError(f"max_per_team must be positive, got {max_per_team}")
    if not players:
        return []

    team_count = math.ceil(len(players) / max_per_team)
    return distribute_into_count(players, team_count)


def distribute_into_count(players: Sequence[T], team_count: int) -> List[List[T]]:
    """Deal players round-robin into exactly ``team_count`` teams."""
    if team_count < 1:
        raise ValueError(f"team_count must be positive, got {team_count}")

    teams: List[List[T]] = [[] for _ in range(team_count)]
    for index, player in enumerate(players):
        teams[index % team_count].append(player)
    return teams


def assemble_teams(
    players: Sequence[T],
    max_per_team: int,
    team_count: Optional[int] = None,
    seed: Optional[int] = None
) -> List[List[T]]:
    """Shuffle then split, either by size limit or into a fixed number of teams."""
    shuffled = shuffle_players(players, seed)
    if team_count is not None:
        return distribute_into_count(shuffled, team_count)
    return distribute_balanced(shuffled, max_per_team)
