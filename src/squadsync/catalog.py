"""Legend, weapon and role tables used by the randomizer"""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Legend:
    id: str
    name: str
    legend_class: str  # Assault|Skirmisher|Recon|Support|Controller


@dataclass(frozen=True)
class Weapon:
    id: str
    name: str
    weapon_type: str  # Assault Rifle|SMG|LMG|Marksman|Sniper|Shotgun|Pistol
    ammo: str
    care_package: bool = False


LEGEND_CLASSES = ['Assault', 'Skirmisher', 'Recon', 'Support', 'Controller']

LEGENDS: List[Legend] = [
    Legend("bangalore", "Bangalore", "Assault"),
    Legend("fuse", "Fuse", "Assault"),
    Legend("ash", "Ash", "Assault"),
    Legend("mad_maggie", "Mad Maggie", "Assault"),
    Legend("ballistic", "Ballistic", "Assault"),
    Legend("wraith", "Wraith", "Skirmisher"),
    Legend("octane", "Octane", "Skirmisher"),
    Legend("horizon", "Horizon", "Skirmisher"),
    Legend("valkyrie", "Valkyrie", "Skirmisher"),
    Legend("pathfinder", "Pathfinder", "Skirmisher"),
    Legend("revenant", "Revenant", "Skirmisher"),
    Legend("alter", "Alter", "Skirmisher"),
    Legend("bloodhound", "Bloodhound", "Recon"),
    Legend("crypto", "Crypto", "Recon"),
    Legend("seer", "Seer", "Recon"),
    Legend("vantage", "Vantage", "Recon"),
    Legend("gibraltar", "Gibraltar", "Support"),
    Legend("lifeline", "Lifeline", "Support"),
    Legend("mirage", "Mirage", "Support"),
    Legend("loba", "Loba", "Support"),
    Legend("newcastle", "Newcastle", "Support"),
    Legend("conduit", "Conduit", "Support"),
    Legend("caustic", "Caustic", "Controller"),
    Legend("wattson", "Wattson", "Controller"),
    Legend("rampart", "Rampart", "Controller"),
    Legend("catalyst", "Catalyst", "Controller"),
]

WEAPONS: List[Weapon] = [
    Weapon("havoc", "Havoc Rifle", "Assault Rifle", "Energy"),
    Weapon("flatline", "VK-47 Flatline", "Assault Rifle", "Heavy"),
    Weapon("hemlok", "Hemlok Burst AR", "Assault Rifle", "Heavy"),
    Weapon("r301", "R-301 Carbine", "Assault Rifle", "Light"),
    Weapon("nemesis", "Nemesis Burst AR", "Assault Rifle", "Energy"),
    Weapon("alternator", "Alternator SMG", "SMG", "Light"),
    Weapon("prowler", "Prowler Burst PDW", "SMG", "Heavy"),
    Weapon("r99", "R-99 SMG", "SMG", "Light"),
    Weapon("volt", "Volt SMG", "SMG", "Energy"),
    Weapon("car", "C.A.R. SMG", "SMG", "Heavy"),
    Weapon("devotion", "Devotion LMG", "LMG", "Energy"),
    Weapon("lstar", "L-STAR EMG", "LMG", "Energy"),
    Weapon("spitfire", "M600 Spitfire", "LMG", "Light"),
    Weapon("rampage", "Rampage LMG", "LMG", "Heavy"),
    Weapon("g7_scout", "G7 Scout", "Marksman", "Light"),
    Weapon("triple_take", "Triple Take", "Marksman", "Energy"),
    Weapon("3030", "30-30 Repeater", "Marksman", "Heavy"),
    Weapon("bocek", "Bocek Compound Bow", "Marksman", "Sniper"),
    Weapon("charge_rifle", "Charge Rifle", "Sniper", "Sniper"),
    Weapon("longbow", "Longbow DMR", "Sniper", "Sniper"),
    Weapon("sentinel", "Sentinel", "Sniper", "Sniper"),
    Weapon("eva8", "EVA-8 Auto", "Shotgun", "Shotgun"),
    Weapon("mastiff", "Mastiff Shotgun", "Shotgun", "Shotgun"),
    Weapon("mozambique", "Mozambique", "Shotgun", "Shotgun"),
    Weapon("peacekeeper", "Peacekeeper", "Shotgun", "Shotgun"),
    Weapon("p2020", "P2020", "Pistol", "Light"),
    Weapon("re45", "RE-45 Auto", "Pistol", "Light"),
    Weapon("wingman", "Wingman", "Pistol", "Sniper"),
    # Care package drops never come out of a roll
    Weapon("kraber", "Kraber .50-Cal Sniper", "Sniper", "Sniper", care_package=True),
    Weapon("rampage_rev", "Rampage Revved", "LMG", "Heavy", care_package=True),
]

# Role-assignment sub-mode draws from the legend classes
ROLES: List[str] = list(LEGEND_CLASSES)

LEGENDS_BY_ID: Dict[str, Legend] = {legend.id: legend for legend in LEGENDS}
WEAPONS_BY_ID: Dict[str, Weapon] = {weapon.id: weapon for weapon in WEAPONS}


def get_legend(legend_id: Optional[str]) -> Optional[Legend]:
    if legend_id is None:
        return None
    return LEGENDS_BY_ID.get(legend_id)


def get_weapon(weapon_id: Optional[str]) -> Optional[Weapon]:
    if weapon_id is None:
        return None
    return WEAPONS_BY_ID.get(weapon_id)


def rollable_weapons() -> List[Weapon]:
    """Weapons eligible for a roll (care package category excluded)."""
    return [weapon for weapon in WEAPONS if not weapon.care_package]


def split_exclusions(item_ids) -> tuple:
    """Split a mixed exclusion set into (legend_ids, weapon_ids)."""
    legend_ids = {item for item in item_ids if item in LEGENDS_BY_ID}
    weapon_ids = {item for item in item_ids if item in WEAPONS_BY_ID}
    return legend_ids, weapon_ids
