"""
Client session lifecycle.

SETUP -> CONNECTING -> VALIDATING -> ACTIVE -> (LEAVING | DISBANDED) -> SETUP

Creating a room skips VALIDATING. Joining waits for the presence
directory to settle and treats an empty room as one that does not exist,
since the relay cannot be asked whether a topic has anyone on it.
"""

import asyncio
import logging
import random
from typing import Any, Dict, Iterable, List, Optional

from .config import Settings, default_settings
from .constants import (
    EVENT_CHAT, EVENT_ROOM_CLOSED, STATUS_CLOSED, STATUS_SUBSCRIBED, STATUS_TIMED_OUT,
    STORAGE_MUTED, STORAGE_PLAYER_NAME, STORAGE_PLAYER_RANKS, STORAGE_ROOM_STYLE, STORAGE_USER_EXCLUDES,
    Mode, Phase, topic_for
)
from .effects import (
    EFFECT_CHAT, EFFECT_PHASE, EFFECT_ROOM_CLOSED, EFFECT_ROSTER,
    NOTICE_ERROR, NOTICE_INFO, NOTICE_WARNING, EffectBus
)
from .errors import (
    CONNECT_TIMEOUT, NOT_CONNECTED, NOT_PERMITTED, ROOM_NOT_FOUND, SessionError
)
from .feeds import ChatLog, RollHistory
from .identity import (
    IdentityRegistry, generate_room_code, normalize_room_code, validate_display_name
)
from .models import ChatMessage, MatchResult, Participant, PlayerMatchStats, SessionState
from .protocol import ConvergenceProtocol
from .scoring import ScoreBoard
from .serialization import build_presence_record
from .slots import host_of, is_host, resolve_slots, slot_of
from .storage import LocalStorage
from .store import SessionStore
from .transport import Channel, Transport

logger = logging.getLogger(__name__)

ROOM_STYLE_CREATE = "CREATE"
ROOM_STYLE_JOIN = "JOIN"


class SquadSession:
    """One client's view of a room, from setup to teardown."""

    def __init__(
        self,
        transport: Transport,
        settings: Settings = default_settings,
        storage: Optional[LocalStorage] = None,
        identities: Optional[IdentityRegistry] = None,
        rng: Optional[random.Random] = None
    ):
        self.transport = transport
        self.settings = settings
        self.storage = storage if storage is not None else LocalStorage(settings.storage_path)
        self.identities = identities if identities is not None else IdentityRegistry()
        self.rng = rng

        self.effects = EffectBus()
        self.store = SessionStore()
        self.history = RollHistory(settings.history_size)
        self.chat = ChatLog()
        self.scores = ScoreBoard(self.effects)
        self.protocol = ConvergenceProtocol(self.store, self.history, self.effects, settings, rng)
        self.protocol.muted = self.muted

        self.phase = Phase.SETUP
        self.channel: Optional[Channel] = None
        self.room_code: Optional[str] = None
        self.participant_id: Optional[str] = None
        self.join_order: Optional[str] = None
        self.display_name: Optional[str] = self.storage.get(STORAGE_PLAYER_NAME)
        self.participants: List[Participant] = []
        self.last_error: Optional[SessionError] = None
        self._subscribed: Optional[asyncio.Event] = None
        self._disband_task: Optional[asyncio.Task] = None

    # Derived views

    @property
    def state(self) -> SessionState:
        return self.store.get()

    @property
    def host(self) -> Optional[Participant]:
        return host_of(self.participants)

    @property
    def is_host(self) -> bool:
        return is_host(self.participants, self.participant_id)

    @property
    def slot(self) -> Optional[int]:
        """Own slot, or None while still joining."""
        return slot_of(self.participants, self.participant_id)

    @property
    def is_rolling(self) -> bool:
        return self.protocol.is_rolling

    @property
    def exclusions(self) -> frozenset:
        return frozenset(self.storage.get(STORAGE_USER_EXCLUDES, []))

    @property
    def muted(self) -> bool:
        return bool(self.storage.get(STORAGE_MUTED, False))

    def set_muted(self, muted: bool):
        self.storage.set(STORAGE_MUTED, bool(muted))
        self.protocol.muted = bool(muted)

    # Transitions

    def _set_phase(self, phase: Phase):
        if self.phase != phase:
            logger.info(f"Session phase {self.phase.value} -> {phase.value}")
            self.phase = phase
            self.effects.emit(EFFECT_PHASE, phase=phase.value)

    def _fail(self, code: str, message: str):
        error = SessionError(code, message)
        self.last_error = error
        self.effects.notice(message, NOTICE_ERROR)
        raise error

    async def create_room(self, display_name: str) -> str:
        """Open a fresh room and return its code."""
        name = validate_display_name(display_name)
        code = generate_room_code(self.rng)
        self.storage.set(STORAGE_ROOM_STYLE, ROOM_STYLE_CREATE)
        await self._connect(name, code, validate=False)
        return code

    async def join_room(self, display_name: str, room_code: str) -> str:
        """
        Join an existing room by code.

        Raises:
            SessionError: INVALID_NAME / INVALID_ROOM_CODE before any network
                action, ROOM_NOT_FOUND if nobody is in the room after the
                settle window, CONNECT_TIMEOUT if the relay never confirms.
        """
        name = validate_display_name(display_name)
        code = normalize_room_code(room_code)
        self.storage.set(STORAGE_ROOM_STYLE, ROOM_STYLE_JOIN)
        await self._connect(name, code, validate=True)
        return code

    async def _connect(self, name: str, code: str, validate: bool):
        if self.phase != Phase.SETUP:
            raise SessionError(NOT_PERMITTED, f"Cannot join while {self.phase.value}")

        self.last_error = None
        self.display_name = name
        self.storage.set(STORAGE_PLAYER_NAME, name)
        self.room_code = code
        first_visit = code not in self.identities
        self.participant_id, self.join_order = self.identities.identity_for(code)
        self._set_phase(Phase.CONNECTING)

        channel = self.transport.channel(topic_for(code), presence_key=code)
        self.protocol.attach(channel)
        self.scores.attach(channel)
        channel.on_broadcast(EVENT_CHAT, self._on_chat)
        channel.on_broadcast(EVENT_ROOM_CLOSED, self._on_room_closed)
        channel.on_presence_sync(self._on_presence_sync)
        self.channel = channel
        subscribed = asyncio.Event()
        self._subscribed = subscribed

        await channel.subscribe(self._on_status)
        try:
            await asyncio.wait_for(subscribed.wait(), timeout=self.settings.connect_timeout)
        except asyncio.TimeoutError:
            if self.channel is not channel:
                return
            await self._teardown()
            self._fail(CONNECT_TIMEOUT, f"Could not reach room {code}")

        # Left (and possibly joined elsewhere) while connecting
        if self.channel is not channel:
            logger.info(f"Connection to {code} abandoned")
            return

        if validate:
            self._set_phase(Phase.VALIDATING)
            await asyncio.sleep(self.settings.validation_settle)
            if self.channel is not channel:
                return
            present = sum(len(records) for records in channel.presence_state().values())
            if present == 0:
                logger.info(f"Room {code} has no presence after settle window")
                if first_visit:
                    self.identities.forget(code)
                await self._teardown()
                self._fail(ROOM_NOT_FOUND, f"Room {code} does not exist")

        await channel.track(self._presence_record())
        self._set_phase(Phase.ACTIVE)
        logger.info(f"Joined room {code} as {self.participant_id}")

    async def leave(self):
        """Voluntarily leave the room and go back to setup."""
        if self.phase == Phase.SETUP:
            return
        self._set_phase(Phase.LEAVING)
        await self._teardown()

    async def close_room(self):
        """Host only: tell everyone the room is closed, then leave."""
        channel = self._require_active()
        if not self.is_host:
            raise SessionError(NOT_PERMITTED, "Only the host can close the room")
        await channel.send(EVENT_ROOM_CLOSED, {})
        await self.leave()

    async def _teardown(self):
        channel = self.channel
        self.channel = None
        self.protocol.detach()
        self.scores.detach()

        if channel is not None:
            try:
                await channel.untrack()
                await channel.unsubscribe()
            except Exception as e:
                logger.warning(f"Error while closing channel {channel.topic}: {e}")

        if self._disband_task is not None and self._disband_task is not asyncio.current_task():
            self._disband_task.cancel()
        self._disband_task = None

        self.participants = []
        self.store.reset()
        self.history.clear()
        self.chat.clear()
        self.room_code = None
        if self._subscribed is not None:
            # Wake a connect that is still waiting on this channel
            self._subscribed.set()
        self._subscribed = None
        self._set_phase(Phase.SETUP)

    # Channel callbacks

    async def _on_status(self, status: str):
        if self.channel is None:
            return
        if status == STATUS_SUBSCRIBED:
            if self._subscribed is not None:
                self._subscribed.set()
            if self.phase == Phase.ACTIVE:
                # Relay lost our presence while we were away
                await self.channel.track(self._presence_record())
                self.effects.notice("Reconnected", NOTICE_INFO)
        elif status in (STATUS_TIMED_OUT, STATUS_CLOSED):
            logger.warning(f"Channel {self.channel.topic} reported {status}")
            self.effects.notice("Connection interrupted, reconnecting...", NOTICE_WARNING)

    def _on_presence_sync(self):
        if self.channel is None:
            return
        self.participants = resolve_slots(self.channel.presence_state(), self.settings.room_capacity)
        self.protocol.update_participants(self.participants)
        host = self.host
        self.effects.emit(
            EFFECT_ROSTER,
            participants=[participant.id for participant in self.participants],
            host_id=host.id if host else None,
        )

    def _on_chat(self, payload: Any):
        message = self.chat.receive(payload)
        if message is not None:
            self.effects.emit(EFFECT_CHAT, message=message)

    def _on_room_closed(self, payload: Any = None):
        if self.phase != Phase.ACTIVE:
            return
        self._set_phase(Phase.DISBANDED)
        self.effects.emit(EFFECT_ROOM_CLOSED)
        self.effects.notice("The host closed the room", NOTICE_WARNING)
        self._disband_task = asyncio.get_running_loop().create_task(self._disband_later())

    async def _disband_later(self):
        await asyncio.sleep(self.settings.disband_delay)
        if self.phase == Phase.DISBANDED:
            await self._teardown()

    # Presence

    def _presence_record(self) -> Dict[str, Any]:
        return build_presence_record(
            self.participant_id, self.display_name, self.join_order, self.exclusions
        )

    async def update_exclusions(self, item_ids: Iterable[str]):
        """Save the exclusion pool and republish presence if in a room."""
        self.storage.set(STORAGE_USER_EXCLUDES, sorted(set(item_ids)))
        if self.phase == Phase.ACTIVE and self.channel is not None:
            await self.channel.track(self._presence_record())

    # Actions

    def _require_active(self) -> Channel:
        if self.phase != Phase.ACTIVE or self.channel is None:
            raise SessionError(NOT_CONNECTED, "Not in a room")
        return self.channel

    async def reroll(self, target_id: Optional[str] = None) -> SessionState:
        self._require_active()
        return await self.protocol.reroll(self.participant_id, target_id or self.participant_id)

    async def ban(self, target_id: str, legend_id: str) -> SessionState:
        self._require_active()
        return await self.protocol.ban(self.participant_id, target_id, legend_id)

    async def deploy(self) -> Optional[SessionState]:
        self._require_active()
        return await self.protocol.deploy(self.participant_id)

    async def set_mode(self, mode: Mode) -> SessionState:
        self._require_active()
        return await self.protocol.set_mode(self.participant_id, mode)

    async def set_permission(self, kind: str, value: bool) -> SessionState:
        self._require_active()
        return await self.protocol.set_permission(self.participant_id, kind, value)

    async def send_chat(self, text: str) -> ChatMessage:
        channel = self._require_active()
        return await self.chat.send(channel, self.participant_id, self.display_name, text)

    @property
    def saved_ranks(self) -> Dict[str, str]:
        """Last rank tier entered per participant, used to prefill score entry."""
        return dict(self.storage.get(STORAGE_PLAYER_RANKS, {}))

    async def record_match(self, team_placement: int, stats: Dict[str, PlayerMatchStats]) -> MatchResult:
        self._require_active()
        result = await self.scores.record_match(team_placement, stats)
        self.storage.set(
            STORAGE_PLAYER_RANKS,
            {participant_id: player_stats.tier for participant_id, player_stats in stats.items()}
        )
        return result

    async def clear_scores(self):
        self._require_active()
        await self.scores.clear(self.participant_id, self.participants)
