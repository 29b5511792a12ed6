"""
Convergence protocol for the replicated session state.

Every client keeps a full replica. Local actions compute the next state,
apply it, then broadcast the whole snapshot. Inbound snapshots always
replace the local replica; side effects fire only when the loadouts
actually changed, so replays and duplicate deliveries stay silent.

There are no versions or acknowledgements. When two clients publish at
nearly the same time, whichever snapshot a client applies last wins.
"""

import asyncio
import logging
import random
from typing import Any, List, Optional

from . import actions
from .config import Settings, default_settings
from .constants import EVENT_GAME_UPDATE, EVENT_ROLL_START, Mode
from .effects import EFFECT_ROLL_SUCCESS, EFFECT_ROLLING, EffectBus
from .errors import NOT_CONNECTED, NOT_PERMITTED, raise_error
from .feeds import RollHistory
from .models import Participant, SessionState
from .serialization import parse_state, serialize_state
from .store import SessionStore
from .transport import Channel

logger = logging.getLogger(__name__)


class ConvergenceProtocol:
    """Applies, gates and publishes session snapshots for one client."""

    def __init__(
        self,
        store: SessionStore,
        history: RollHistory,
        effects: EffectBus,
        settings: Settings = default_settings,
        rng: Optional[random.Random] = None
    ):
        self.store = store
        self.history = history
        self.effects = effects
        self.settings = settings
        self.rng = rng
        self.channel: Optional[Channel] = None
        self.participants: List[Participant] = []
        self.is_rolling = False
        self.muted = False
        self._safety_handle: Optional[asyncio.TimerHandle] = None

    def attach(self, channel: Channel):
        channel.on_broadcast(EVENT_ROLL_START, self.handle_roll_start)
        channel.on_broadcast(EVENT_GAME_UPDATE, self.handle_game_update)
        self.channel = channel

    def detach(self):
        self._set_rolling(False)
        self.channel = None
        self.participants = []

    def update_participants(self, participants: List[Participant]):
        self.participants = list(participants)

    # Inbound

    def apply_snapshot(self, new_state: SessionState) -> bool:
        """
        Replace the local replica, firing side effects only for real changes.

        Args:
            new_state: Full session snapshot, local or remote

        Returns:
            True if the loadouts differed from the local ones
        """
        current = self.store.get()
        changed = new_state.loadouts != current.loadouts

        if changed:
            self._set_rolling(False)
            self.effects.emit(EFFECT_ROLL_SUCCESS, sound=not self.muted)
            self.history.record(new_state.loadouts)
        else:
            logger.debug("Ghost update: loadouts unchanged, side effects suppressed")

        self.store.replace(new_state)
        return changed

    def handle_game_update(self, payload: Any) -> bool:
        new_state = parse_state(payload)
        if new_state is None:
            return False
        return self.apply_snapshot(new_state)

    def handle_roll_start(self, payload: Any = None):
        self._start_rolling()

    # Rolling indicator

    def _start_rolling(self):
        if not self.is_rolling:
            self.is_rolling = True
            self.effects.emit(EFFECT_ROLLING, active=True)
        self._cancel_safety_timer()
        loop = asyncio.get_running_loop()
        self._safety_handle = loop.call_later(self.settings.roll_safety_timeout, self._on_safety_timeout)

    def _on_safety_timeout(self):
        self._safety_handle = None
        if self.is_rolling:
            logger.info("No roll result arrived in time; clearing rolling indicator")
        self._set_rolling(False)

    def _set_rolling(self, active: bool):
        if not active:
            self._cancel_safety_timer()
        if self.is_rolling != active:
            self.is_rolling = active
            self.effects.emit(EFFECT_ROLLING, active=active)

    def _cancel_safety_timer(self):
        if self._safety_handle is not None:
            self._safety_handle.cancel()
            self._safety_handle = None

    # Local actions

    def _require_channel(self) -> Channel:
        if self.channel is None:
            raise_error(NOT_CONNECTED, "Not in a room")
        return self.channel

    async def commit(self, new_state: SessionState) -> SessionState:
        """Apply a locally computed state and broadcast it."""
        channel = self._require_channel()
        self.apply_snapshot(new_state)
        await channel.send(EVENT_GAME_UPDATE, serialize_state(new_state))
        return new_state

    async def reroll(self, actor_id: str, target_id: str) -> SessionState:
        self._require_channel()
        new_state = actions.reroll_participant(
            self.store.get(), self.participants, actor_id, target_id, self.rng
        )
        return await self.commit(new_state)

    async def ban(self, actor_id: str, target_id: str, legend_id: str) -> SessionState:
        self._require_channel()
        new_state = actions.ban_legend(
            self.store.get(), self.participants, actor_id, target_id, legend_id, self.rng
        )
        return await self.commit(new_state)

    async def set_mode(self, actor_id: str, mode: Mode) -> SessionState:
        self._require_channel()
        new_state = actions.set_mode(self.store.get(), self.participants, actor_id, mode)
        return await self.commit(new_state)

    async def set_permission(self, actor_id: str, kind: str, value: bool) -> SessionState:
        self._require_channel()
        new_state = actions.set_permission(self.store.get(), actor_id, kind, value)
        return await self.commit(new_state)

    async def deploy(self, actor_id: str) -> Optional[SessionState]:
        """
        Two-phase reroll of every seat.

        Announces the roll, waits ``roll_delay`` so every client shows the
        searching state, then computes all loadouts here, once, and
        publishes the result. Returns None if the channel went away
        during the wait.
        """
        channel = self._require_channel()
        if not actions.can_deploy(self.store.get(), actor_id, self.participants):
            raise_error(NOT_PERMITTED, f"{actor_id} may not deploy a full reroll")

        await channel.send(EVENT_ROLL_START, {})
        self._start_rolling()

        await asyncio.sleep(self.settings.roll_delay)

        if self.channel is not channel:
            logger.info("Channel closed during roll; result discarded")
            self._set_rolling(False)
            return None

        new_state = actions.roll_all(self.store.get(), self.participants, self.rng)
        self.apply_snapshot(new_state)
        self._set_rolling(False)
        await channel.send(EVENT_GAME_UPDATE, serialize_state(new_state))
        logger.info(f"Deployed reroll for {len(new_state.loadouts)} participant(s) on {channel.topic}")
        return new_state
