"""
Ranked point tracking shared across the room.

Results travel the same way session snapshots do: the whole results list
is broadcast on every change and receivers replace theirs.
"""

import logging
import math
import time
import uuid
from typing import Any, Dict, List, Optional

from .constants import EVENT_SCORE_CLEAR, EVENT_SCORE_UPDATE
from .effects import EFFECT_SCORES, EffectBus
from .errors import NOT_CONNECTED, NOT_PERMITTED, raise_error
from .models import MatchResult, Participant, PlayerMatchStats
from .serialization import parse_results, serialize_results
from .slots import is_host
from .transport import Channel

logger = logging.getLogger(__name__)

RANK_TIERS = ['Rookie', 'Bronze', 'Silver', 'Gold', 'Platinum', 'Diamond', 'Master', 'Predator']

ENTRY_COSTS: Dict[str, int] = {
    'Rookie': 0,
    'Bronze': 10,
    'Silver': 20,
    'Gold': 38,
    'Platinum': 48,
    'Diamond': 65,
    'Master': 90,
    'Predator': 90,
}

PLACEMENT_POINTS: Dict[int, int] = {
    1: 125, 2: 100, 3: 75, 4: 55, 5: 45,
    6: 40, 7: 30, 8: 30, 9: 20, 10: 20,
    11: 10, 12: 10, 13: 10, 14: 10, 15: 10,
    16: 0, 17: 0, 18: 0, 19: 0, 20: 0,
}

# Value of one kill/assist/participation point, by placement
KP_VALUE_BY_PLACEMENT: Dict[int, int] = {
    1: 20, 2: 18, 3: 16, 4: 14, 5: 12,
    6: 10, 7: 10, 8: 10, 9: 8, 10: 8,
    11: 6, 12: 6, 13: 6, 14: 6, 15: 6,
    16: 4, 17: 4, 18: 4, 19: 4, 20: 4,
}

KP_CAP = 8
DEFAULT_TIER = 'Gold'


def calculate_rp(
    tier: str,
    placement: int,
    kills: int,
    assists: int,
    participation: int,
    skill_bonus: int = 0
) -> Dict[str, Any]:
    """
    Ranked points for one player in one match.

    Kill points are kills + assists + half the participations. The first
    eight are worth the full per-placement value, anything above that half.

    Returns:
        Dict with ``total`` and a ``breakdown`` of entry, placement, kp and skill
    """
    entry = ENTRY_COSTS.get(tier, 0)
    place_points = PLACEMENT_POINTS.get(placement, 0)
    kp_value = KP_VALUE_BY_PLACEMENT.get(placement, 10)

    raw_kp = kills + assists + participation * 0.5
    full_kp = min(raw_kp, KP_CAP)
    overflow_kp = max(0, raw_kp - KP_CAP)
    kp_points = full_kp * kp_value + overflow_kp * kp_value * 0.5

    total = place_points + kp_points + skill_bonus - entry
    return {
        "total": math.floor(total),
        "breakdown": {
            "entry": -entry,
            "placement": place_points,
            "kp": math.floor(kp_points),
            "skill": skill_bonus,
        },
    }


class ScoreBoard:
    """Local copy of the room's match results."""

    def __init__(self, effects: Optional[EffectBus] = None):
        self.results: List[MatchResult] = []
        self.effects = effects
        self.channel: Optional[Channel] = None

    def attach(self, channel: Channel):
        channel.on_broadcast(EVENT_SCORE_UPDATE, self.handle_update)
        channel.on_broadcast(EVENT_SCORE_CLEAR, self.handle_clear)
        self.channel = channel

    def detach(self):
        self.channel = None
        self.results = []

    def _announce(self):
        if self.effects is not None:
            self.effects.emit(EFFECT_SCORES, count=len(self.results))

    def handle_update(self, payload: Any) -> bool:
        results = parse_results(payload)
        if results is None:
            return False
        self.results = results
        self._announce()
        return True

    def handle_clear(self, payload: Any = None):
        self.results = []
        self._announce()

    async def record_match(
        self,
        team_placement: int,
        stats: Dict[str, PlayerMatchStats]
    ) -> MatchResult:
        """
        Score a match for every listed player and share the new results.

        Args:
            team_placement: Squad placement, 1-20
            stats: Per-participant stats; ``rp`` is filled in here

        Returns:
            The recorded MatchResult
        """
        if self.channel is None:
            raise_error(NOT_CONNECTED, "Not in a room")
        if not 1 <= team_placement <= 20:
            raise ValueError(f"Placement must be between 1 and 20, got {team_placement}")

        details = {}
        total = 0
        for participant_id, player_stats in stats.items():
            calc = calculate_rp(
                player_stats.tier,
                team_placement,
                player_stats.kills,
                player_stats.assists,
                player_stats.participation,
                player_stats.skill_bonus,
            )
            details[participant_id] = PlayerMatchStats(
                kills=player_stats.kills,
                assists=player_stats.assists,
                damage=player_stats.damage,
                participation=player_stats.participation,
                skill_bonus=player_stats.skill_bonus,
                tier=player_stats.tier,
                rp=calc["total"],
            )
            total += calc["total"]

        result = MatchResult(
            id=uuid.uuid4().hex[:9],
            team_placement=team_placement,
            details=details,
            total_squad_rp=total,
            timestamp=time.time(),
        )
        self.results = self.results + [result]
        self._announce()
        await self.channel.send(EVENT_SCORE_UPDATE, serialize_results(self.results))
        return result

    async def clear(self, actor_id: str, participants: List[Participant]):
        """Wipe the results for everyone. Host only."""
        if self.channel is None:
            raise_error(NOT_CONNECTED, "Not in a room")
        if not is_host(participants, actor_id):
            raise_error(NOT_PERMITTED, "Only the host can clear scores")
        self.results = []
        self._announce()
        await self.channel.send(EVENT_SCORE_CLEAR, {})

    def squad_total(self) -> int:
        return sum(result.total_squad_rp for result in self.results)

    def player_total(self, participant_id: str) -> int:
        return sum(
            result.details[participant_id].rp
            for result in self.results
            if participant_id in result.details
        )
