"""
Tests for snapshot replication between clients over the in-memory relay.
"""

import asyncio
import random

import pytest
from squadsync.config import create_settings
from squadsync.constants import EVENT_GAME_UPDATE, EVENT_ROLL_START, PERMISSION_DEPLOY, Mode
from squadsync.effects import EFFECT_ROLL_SUCCESS, EFFECT_ROLLING, EffectBus
from squadsync.errors import NOT_CONNECTED, NOT_PERMITTED, SessionError
from squadsync.feeds import RollHistory
from squadsync.memory import MemoryRelay, MemoryTransport
from squadsync.models import Loadout, Participant, SessionState
from squadsync.protocol import ConvergenceProtocol
from squadsync.serialization import serialize_state
from squadsync.store import SessionStore

SETTINGS = create_settings(roll_delay=0.01, roll_safety_timeout=0.05)

PARTICIPANTS = [
    Participant("host", "Host", "2024-01-01T10:00:00+00:00", slot=0),
    Participant("guest", "Guest", "2024-01-01T10:00:01+00:00", slot=1),
]


def make_protocol(seed=None):
    return ConvergenceProtocol(
        SessionStore(), RollHistory(), EffectBus(), SETTINGS, random.Random(seed)
    )


async def make_client(relay, seed):
    protocol = make_protocol(seed)
    channel = MemoryTransport(relay).channel("apex-room:TEST01", "TEST01")
    protocol.attach(channel)
    protocol.update_participants(PARTICIPANTS)
    await channel.subscribe()
    return protocol


def sample_state(legend="wraith"):
    return SessionState(loadouts={"host": Loadout(legend=legend, primary="r99", secondary="eva8")})


def test_duplicate_snapshot_is_silent():
    """Applying the same snapshot twice fires side effects once."""
    protocol = make_protocol()

    assert protocol.apply_snapshot(sample_state())
    assert not protocol.apply_snapshot(sample_state())

    assert len(protocol.history) == 1
    assert protocol.effects.count(EFFECT_ROLL_SUCCESS) == 1


def test_unchanged_loadouts_still_replace_state():
    """Mode and permission changes land even when loadouts are identical."""
    protocol = make_protocol()
    protocol.apply_snapshot(sample_state())

    new_state = sample_state()
    new_state.mode = Mode.WEAPONS_ONLY
    new_state.permissions.allow_others_reroll["host"] = True

    assert not protocol.apply_snapshot(new_state)
    assert protocol.store.get().mode == Mode.WEAPONS_ONLY
    assert protocol.store.get().permissions.allow_others_reroll == {"host": True}
    assert len(protocol.history) == 1


def test_malformed_update_is_ignored():
    """Invalid game updates leave the replica untouched."""
    protocol = make_protocol()
    protocol.apply_snapshot(sample_state())

    assert not protocol.handle_game_update("not a state")
    assert not protocol.handle_game_update({"mode": "NOT_A_MODE"})
    assert protocol.store.get() == sample_state()


def test_remote_update_round_trip():
    """A serialized snapshot applies on the receiving side."""
    protocol = make_protocol()
    assert protocol.handle_game_update(serialize_state(sample_state("octane")))
    assert protocol.store.get().loadouts["host"].legend == "octane"


@pytest.mark.asyncio
async def test_safety_timeout_clears_rolling():
    """A roll start with no result clears itself after the safety timeout."""
    protocol = make_protocol()
    protocol.handle_roll_start({})
    assert protocol.is_rolling

    await asyncio.sleep(SETTINGS.roll_safety_timeout * 3)

    assert not protocol.is_rolling
    states = [effect.data["active"] for effect in protocol.effects.log if effect.effect == EFFECT_ROLLING]
    assert states == [True, False]


@pytest.mark.asyncio
async def test_deploy_reaches_every_client():
    """A deploy rolls once and converges every client."""
    relay = MemoryRelay()
    host = await make_client(relay, 1)
    guest = await make_client(relay, 2)
    await relay.drain()

    result = await host.deploy("host")
    await relay.drain()

    assert set(result.loadouts) == {"host", "guest"}
    assert guest.store.get() == host.store.get()
    assert not host.is_rolling
    assert not guest.is_rolling
    assert len(guest.history) == 1
    assert guest.effects.count(EFFECT_ROLL_SUCCESS) == 1

    events = [event for _, event, _ in relay.sent]
    assert events == [EVENT_ROLL_START, EVENT_GAME_UPDATE]


@pytest.mark.asyncio
async def test_guest_deploy_needs_host_flag():
    """Guests deploy only after the host sets its flag."""
    relay = MemoryRelay()
    host = await make_client(relay, 1)
    guest = await make_client(relay, 2)
    await relay.drain()

    with pytest.raises(SessionError) as exc:
        await guest.deploy("guest")
    assert exc.value.code == NOT_PERMITTED
    assert relay.sent == []

    await host.set_permission("host", PERMISSION_DEPLOY, True)
    await relay.drain()

    result = await guest.deploy("guest")
    await relay.drain()
    assert result is not None
    assert host.store.get() == guest.store.get()


@pytest.mark.asyncio
async def test_lost_update_converges_on_next_snapshot():
    """A dropped update is repaired by the next full snapshot."""
    relay = MemoryRelay()
    host = await make_client(relay, 1)
    guest = await make_client(relay, 2)
    await relay.drain()

    dropped = []

    def drop_first_update(event, payload, member):
        if event == EVENT_GAME_UPDATE and not dropped:
            dropped.append(payload)
            return True
        return False

    relay.drop = drop_first_update

    await host.reroll("host", "host")
    await relay.drain()
    assert guest.store.get() != host.store.get()

    await host.set_mode("host", Mode.LEGENDS_ONLY)
    await relay.drain()
    assert guest.store.get() == host.store.get()
    assert len(dropped) == 1


@pytest.mark.asyncio
async def test_concurrent_publishes_last_applied_wins():
    """Two near-simultaneous writes are not merged; each side keeps what it applied last."""
    relay = MemoryRelay()
    host = await make_client(relay, 1)
    guest = await make_client(relay, 2)
    await relay.drain()

    host_state = sample_state("wraith")
    guest_state = SessionState(loadouts={"guest": Loadout(legend="lifeline")})

    await host.commit(host_state)
    await guest.commit(guest_state)
    await relay.drain()

    assert host.store.get() == guest_state
    assert guest.store.get() == host_state


@pytest.mark.asyncio
async def test_deploy_discarded_when_channel_closes():
    """Leaving mid-roll discards the result."""
    relay = MemoryRelay()
    host = await make_client(relay, 1)
    await relay.drain()

    task = asyncio.ensure_future(host.deploy("host"))
    await asyncio.sleep(0)
    host.detach()

    assert await task is None
    assert not host.is_rolling
    events = [event for _, event, _ in relay.sent]
    assert events == [EVENT_ROLL_START]


@pytest.mark.asyncio
async def test_actions_need_a_channel():
    """Actions without a channel raise NOT_CONNECTED."""
    protocol = make_protocol()
    protocol.update_participants(PARTICIPANTS)

    with pytest.raises(SessionError) as exc:
        await protocol.deploy("host")
    assert exc.value.code == NOT_CONNECTED

    with pytest.raises(SessionError):
        await protocol.reroll("host", "host")
