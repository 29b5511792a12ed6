"""Session models and data structures"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from .constants import Mode


@dataclass(frozen=True)
class Participant:
    id: str
    display_name: str
    join_order: str  # ISO-8601 UTC timestamp, the only slot ordering key
    exclusions: FrozenSet[str] = frozenset()  # legend/weapon ids this player skips
    slot: Optional[int] = None


@dataclass
class Loadout:
    legend: Optional[str] = None
    primary: Optional[str] = None
    secondary: Optional[str] = None
    role: Optional[str] = None


@dataclass
class Permissions:
    allow_others_reroll: Dict[str, bool] = field(default_factory=dict)
    # Only the host's entry is consulted
    allow_others_deploy: Dict[str, bool] = field(default_factory=dict)


@dataclass
class SessionState:
    mode: Mode = Mode.FULL
    loadouts: Dict[str, Loadout] = field(default_factory=dict)
    bans: Dict[str, List[str]] = field(default_factory=dict)
    permissions: Permissions = field(default_factory=Permissions)


@dataclass
class RollHistoryEntry:
    timestamp: float
    loadouts: Dict[str, Loadout]


@dataclass
class ChatMessage:
    id: str
    sender_id: str
    sender_name: str
    text: str
    timestamp: float


@dataclass
class PlayerMatchStats:
    kills: int = 0
    assists: int = 0
    damage: int = 0
    participation: int = 0
    skill_bonus: int = 0
    tier: str = "Gold"
    rp: int = 0


@dataclass
class MatchResult:
    id: str
    team_placement: int
    details: Dict[str, PlayerMatchStats] = field(default_factory=dict)
    total_squad_rp: int = 0
    timestamp: float = 0.0
