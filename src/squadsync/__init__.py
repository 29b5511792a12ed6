"""
SquadSync: team assembly and a synchronized loadout randomizer.
"""

from .config import Settings, create_settings, default_settings
from .constants import Mode, Phase
from .errors import SessionError
from .lifecycle import SquadSession
from .memory import MemoryRelay, MemoryTransport
from .models import Loadout, Participant, SessionState

__version__ = "1.0.0"

__all__ = [
    "Loadout",
    "MemoryRelay",
    "MemoryTransport",
    "Mode",
    "Participant",
    "Phase",
    "SessionError",
    "SessionState",
    "Settings",
    "SquadSession",
    "create_settings",
    "default_settings",
]
