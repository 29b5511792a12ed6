"""
Loadout randomization under exclusion and uniqueness constraints.
"""

import random
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .catalog import LEGENDS, ROLES, Legend, Weapon, rollable_weapons
from .constants import Mode
from .models import Loadout

# (seat key, excluded legend ids, excluded weapon ids)
SeatRequest = Tuple[str, Set[str], Set[str]]


def _rng(rng: Optional[random.Random]):
    return rng if rng is not None else random


def pick_legend(excluded_legend_ids: Iterable[str] = (), rng: Optional[random.Random] = None) -> Legend:
    """
    Draw a legend uniformly from the pool minus the excluded ids.

    If the exclusions cover the whole pool the draw falls back to the full,
    unfiltered pool so a roll always yields a legend.
    """
    excluded = set(excluded_legend_ids)
    pool = [legend for legend in LEGENDS if legend.id not in excluded]
    if not pool:
        pool = LEGENDS
    return _rng(rng).choice(pool)


def pick_weapons(
    excluded_weapon_ids: Iterable[str] = (),
    rng: Optional[random.Random] = None
) -> Tuple[Weapon, Weapon]:
    """
    Draw a primary and a secondary weapon.

    The secondary prefers a weapon type different from the primary's, then
    any other weapon, and finally repeats the primary.
    """
    r = _rng(rng)
    excluded = set(excluded_weapon_ids)
    eligible = rollable_weapons()
    pool = [weapon for weapon in eligible if weapon.id not in excluded]
    if not pool:
        pool = eligible

    primary = r.choice(pool)

    candidates = [weapon for weapon in pool if weapon.weapon_type != primary.weapon_type]
    if not candidates:
        candidates = [weapon for weapon in pool if weapon.id != primary.id]
    secondary = r.choice(candidates) if candidates else primary

    return primary, secondary


def pick_role(rng: Optional[random.Random] = None) -> str:
    return _rng(rng).choice(ROLES)


def pick_loadout(
    excluded_legend_ids: Iterable[str] = (),
    excluded_weapon_ids: Iterable[str] = (),
    mode: Mode = Mode.FULL,
    rng: Optional[random.Random] = None
) -> Loadout:
    """
    Roll one loadout.

    Args:
        excluded_legend_ids: Legends this seat may not receive
        excluded_weapon_ids: Weapons this seat may not receive
        mode: Which fields to fill
        rng: Optional seeded source for reproducible rolls

    Returns:
        A new Loadout with only the fields the mode asks for
    """
    if mode == Mode.ROLES:
        return Loadout(role=pick_role(rng))

    loadout = Loadout()
    if mode in (Mode.FULL, Mode.LEGENDS_ONLY):
        loadout.legend = pick_legend(excluded_legend_ids, rng).id
    if mode in (Mode.FULL, Mode.WEAPONS_ONLY):
        primary, secondary = pick_weapons(excluded_weapon_ids, rng)
        loadout.primary = primary.id
        loadout.secondary = secondary.id
    return loadout


def roll_batch(
    seats: Sequence[SeatRequest],
    mode: Mode = Mode.FULL,
    rng: Optional[random.Random] = None
) -> Dict[str, Loadout]:
    """
    Roll several seats at once with no legend repeated inside the batch.

    Seats are rolled in the given order; legends picked earlier in the
    batch are added to every later seat's exclusions.
    """
    picked: List[str] = []
    results: Dict[str, Loadout] = {}
    for seat_key, excluded_legends, excluded_weapons in seats:
        unavailable = set(excluded_legends) | set(picked)
        loadout = pick_loadout(unavailable, excluded_weapons, mode, rng)
        if loadout.legend:
            picked.append(loadout.legend)
        results[seat_key] = loadout
    return results
