"""
End-to-end session tests: several clients sharing one in-memory relay.
"""

import asyncio

import pytest
from squadsync.config import create_settings
from squadsync.constants import (
    PERMISSION_REROLL, STORAGE_PLAYER_NAME, STORAGE_ROOM_STYLE, Phase
)
from squadsync.effects import (
    EFFECT_CHAT, EFFECT_NOTICE, EFFECT_PHASE, EFFECT_ROLL_SUCCESS, EFFECT_ROOM_CLOSED
)
from squadsync.errors import (
    CONNECT_TIMEOUT, INVALID_NAME, INVALID_ROOM_CODE, NOT_CONNECTED, NOT_PERMITTED,
    ROOM_NOT_FOUND, SessionError
)
from squadsync.identity import IdentityRegistry
from squadsync.lifecycle import SquadSession
from squadsync.memory import MemoryRelay, MemoryTransport
from squadsync.models import Loadout, PlayerMatchStats, SessionState
from squadsync.storage import LocalStorage

SETTINGS = create_settings(
    roll_delay=0.01,
    roll_safety_timeout=0.05,
    validation_settle=0.05,
    disband_delay=0.05,
    connect_timeout=0.2,
)


def make_session(relay, identities=None, storage=None):
    storage = storage if storage is not None else LocalStorage()
    return SquadSession(MemoryTransport(relay), SETTINGS, storage=storage, identities=identities)


async def start_room(relay):
    """Host creates a room and a guest joins it."""
    host = make_session(relay)
    code = await host.create_room("Alice")
    await relay.drain()

    guest = make_session(relay)
    await guest.join_room("Bob", code)
    await relay.drain()
    return host, guest, code


def phases(session):
    return [effect.data["phase"] for effect in session.effects.log if effect.effect == EFFECT_PHASE]


def notices(session):
    return [effect.data["message"] for effect in session.effects.log if effect.effect == EFFECT_NOTICE]


@pytest.mark.asyncio
async def test_create_room_skips_validation():
    """Creating a room goes straight to ACTIVE as host."""
    relay = MemoryRelay()
    host = make_session(relay)

    code = await host.create_room("  Alice ")
    await relay.drain()

    assert len(code) == 6
    assert host.phase == Phase.ACTIVE
    assert phases(host) == [Phase.CONNECTING.value, Phase.ACTIVE.value]
    assert host.is_host
    assert host.slot == 0
    assert host.storage.get(STORAGE_PLAYER_NAME) == "Alice"
    assert host.storage.get(STORAGE_ROOM_STYLE) == "CREATE"


@pytest.mark.asyncio
async def test_join_missing_room_fails():
    """Joining a room nobody is in reports ROOM_NOT_FOUND and returns to setup."""
    relay = MemoryRelay()
    session = make_session(relay)

    with pytest.raises(SessionError) as exc:
        await session.join_room("Bob", "nope42")
    await relay.drain()

    assert exc.value.code == ROOM_NOT_FOUND
    assert session.phase == Phase.SETUP
    assert session.last_error.code == ROOM_NOT_FOUND
    assert session.channel is None
    assert "NOPE42" not in session.identities
    assert phases(session) == [
        Phase.CONNECTING.value, Phase.VALIDATING.value, Phase.SETUP.value
    ]
    assert relay.subscribers["apex-room:NOPE42"] == []


@pytest.mark.asyncio
async def test_join_existing_room():
    """A guest joining a live room takes the next slot."""
    relay = MemoryRelay()
    host, guest, code = await start_room(relay)

    assert guest.phase == Phase.ACTIVE
    assert guest.room_code == code
    assert Phase.VALIDATING.value in phases(guest)
    assert guest.slot == 1
    assert not guest.is_host
    assert host.host.id == host.participant_id
    assert guest.host.id == host.participant_id
    assert [p.id for p in host.participants] == [p.id for p in guest.participants]


@pytest.mark.asyncio
async def test_invalid_input_never_touches_the_network():
    """Bad names and codes fail before subscribing."""
    relay = MemoryRelay()
    session = make_session(relay)

    with pytest.raises(SessionError) as exc:
        await session.join_room("   ", "ABC123")
    assert exc.value.code == INVALID_NAME

    with pytest.raises(SessionError) as exc:
        await session.join_room("Bob", "??")
    assert exc.value.code == INVALID_ROOM_CODE

    assert session.phase == Phase.SETUP
    assert dict(relay.subscribers) == {}


@pytest.mark.asyncio
async def test_connect_timeout():
    """A relay that never confirms ends in CONNECT_TIMEOUT."""
    relay = MemoryRelay()
    relay.accept_subscriptions = False
    session = make_session(relay)

    with pytest.raises(SessionError) as exc:
        await session.create_room("Alice")

    assert exc.value.code == CONNECT_TIMEOUT
    assert session.phase == Phase.SETUP


@pytest.mark.asyncio
async def test_cannot_connect_twice():
    """A session already in a room cannot connect again."""
    relay = MemoryRelay()
    host = make_session(relay)
    await host.create_room("Alice")

    with pytest.raises(SessionError) as exc:
        await host.create_room("Alice")
    assert exc.value.code == NOT_PERMITTED


@pytest.mark.asyncio
async def test_actions_require_active_session():
    """Actions outside a room raise NOT_CONNECTED."""
    session = make_session(MemoryRelay())

    with pytest.raises(SessionError) as exc:
        await session.deploy()
    assert exc.value.code == NOT_CONNECTED

    with pytest.raises(SessionError):
        await session.send_chat("hello")


@pytest.mark.asyncio
async def test_deploy_syncs_all_clients():
    """A host deploy leaves every client with the same state."""
    relay = MemoryRelay()
    host, guest, _ = await start_room(relay)

    await host.deploy()
    await relay.drain()

    assert set(host.state.loadouts) == {host.participant_id, guest.participant_id}
    assert guest.state == host.state
    assert len(guest.history) == 1
    assert not guest.is_rolling


@pytest.mark.asyncio
async def test_guest_cannot_deploy_by_default():
    """Guests cannot deploy until the host allows it."""
    relay = MemoryRelay()
    _, guest, _ = await start_room(relay)

    with pytest.raises(SessionError) as exc:
        await guest.deploy()
    assert exc.value.code == NOT_PERMITTED


@pytest.mark.asyncio
async def test_reroll_permission_flows_to_other_clients():
    """A reroll permission granted by a guest lets the host reroll them."""
    relay = MemoryRelay()
    host, guest, _ = await start_room(relay)

    with pytest.raises(SessionError):
        await host.reroll(guest.participant_id)

    await guest.set_permission(PERMISSION_REROLL, True)
    await relay.drain()

    await host.reroll(guest.participant_id)
    await relay.drain()
    assert guest.participant_id in guest.state.loadouts
    assert guest.state == host.state


@pytest.mark.asyncio
async def test_leave_updates_roster():
    """Leaving clears local state and drops out of the roster."""
    relay = MemoryRelay()
    host, guest, _ = await start_room(relay)
    await host.deploy()
    await relay.drain()

    await guest.leave()
    await relay.drain()

    assert guest.phase == Phase.SETUP
    assert guest.state.loadouts == {}
    assert len(guest.history) == 0
    assert [p.id for p in host.participants] == [host.participant_id]


@pytest.mark.asyncio
async def test_host_role_moves_when_host_leaves():
    """The next joiner becomes host when the host leaves."""
    relay = MemoryRelay()
    host, guest, _ = await start_room(relay)

    await host.leave()
    await relay.drain()

    assert guest.is_host
    assert guest.slot == 0
    # Guest can now deploy without any flag set
    await guest.deploy()


@pytest.mark.asyncio
async def test_rejoin_keeps_identity():
    """Leaving and rejoining the same room reuses id and join order."""
    relay = MemoryRelay()
    identities = IdentityRegistry()
    host = make_session(relay)
    code = await host.create_room("Alice")
    await relay.drain()

    guest = make_session(relay, identities)
    await guest.join_room("Bob", code)
    await relay.drain()
    first_id = guest.participant_id

    await guest.leave()
    await relay.drain()
    await guest.join_room("Bob", code)
    await relay.drain()

    assert guest.participant_id == first_id
    assert guest.slot == 1


@pytest.mark.asyncio
async def test_close_room_disbands_guests():
    """Closing the room disbands guests and returns them to setup."""
    relay = MemoryRelay()
    host, guest, _ = await start_room(relay)

    with pytest.raises(SessionError) as exc:
        await guest.close_room()
    assert exc.value.code == NOT_PERMITTED

    await host.close_room()
    await relay.drain()

    assert host.phase == Phase.SETUP
    assert guest.phase == Phase.DISBANDED
    assert guest.effects.count(EFFECT_ROOM_CLOSED) == 1

    await asyncio.sleep(SETTINGS.disband_delay * 4)
    assert guest.phase == Phase.SETUP
    assert guest.channel is None


@pytest.mark.asyncio
async def test_interrupted_channel_recovers():
    """A channel outage warns, then reconnects and re-tracks presence."""
    relay = MemoryRelay()
    host, guest, _ = await start_room(relay)

    relay.interrupt(guest.channel)
    await relay.drain()
    assert "Connection interrupted, reconnecting..." in notices(guest)
    assert guest.phase == Phase.ACTIVE

    relay.restore(guest.channel)
    await relay.drain()
    assert "Reconnected" in notices(guest)
    assert len(host.participants) == 2


@pytest.mark.asyncio
async def test_chat_reaches_everyone_once():
    """Chat lands once on both sender and receiver."""
    relay = MemoryRelay()
    host, guest, _ = await start_room(relay)

    message = await host.send_chat("  gg  ")
    await relay.drain()

    assert message.text == "gg"
    assert [m.id for m in host.chat.messages()] == [message.id]
    assert [m.id for m in guest.chat.messages()] == [message.id]
    assert guest.effects.count(EFFECT_CHAT) == 1


@pytest.mark.asyncio
async def test_exclusions_are_republished():
    """Updated exclusions reach other clients and shape their rolls."""
    relay = MemoryRelay()
    host, guest, _ = await start_room(relay)

    await guest.update_exclusions(["wraith", "r99"])
    await relay.drain()

    entry = [p for p in host.participants if p.id == guest.participant_id][0]
    assert entry.exclusions == frozenset({"wraith", "r99"})

    for _ in range(10):
        await host.deploy()
        await relay.drain()
        loadout = host.state.loadouts[guest.participant_id]
        assert loadout.legend != "wraith"
        assert "r99" not in (loadout.primary, loadout.secondary)


@pytest.mark.asyncio
async def test_scores_are_shared():
    """Match results replicate and only the host clears them."""
    relay = MemoryRelay()
    host, guest, _ = await start_room(relay)

    stats = {
        host.participant_id: PlayerMatchStats(kills=3, assists=2, participation=2),
        guest.participant_id: PlayerMatchStats(kills=0, assists=0, participation=0),
    }
    result = await host.record_match(1, stats)
    await relay.drain()

    assert result.details[host.participant_id].rp == 207
    assert guest.scores.player_total(host.participant_id) == 207
    assert guest.scores.squad_total() == host.scores.squad_total()
    assert host.saved_ranks == {host.participant_id: "Gold", guest.participant_id: "Gold"}

    with pytest.raises(SessionError):
        await guest.clear_scores()

    await host.clear_scores()
    await relay.drain()
    assert guest.scores.results == []


def test_mute_preference():
    """Muting is stored and silences the success cue without hiding the reveal."""
    session = make_session(MemoryRelay())
    assert not session.muted
    session.set_muted(True)
    assert session.muted

    session.protocol.apply_snapshot(SessionState(loadouts={"p1": Loadout(legend="wraith")}))
    success = [effect for effect in session.effects.log if effect.effect == EFFECT_ROLL_SUCCESS]
    assert len(success) == 1
    assert success[0].data["sound"] is False


def test_success_cue_plays_when_unmuted():
    """An unmuted session asks for the success sound."""
    session = make_session(MemoryRelay())
    session.protocol.apply_snapshot(SessionState(loadouts={"p1": Loadout(legend="octane")}))
    success = [effect for effect in session.effects.log if effect.effect == EFFECT_ROLL_SUCCESS]
    assert success[0].data["sound"] is True


def test_mute_survives_a_new_session(tmp_path):
    """A session built later on the same storage starts muted."""
    storage = LocalStorage(str(tmp_path / "storage.json"))
    make_session(MemoryRelay(), storage=storage).set_muted(True)

    later = make_session(MemoryRelay(), storage=LocalStorage(str(tmp_path / "storage.json")))
    assert later.muted
    assert later.protocol.muted


@pytest.mark.asyncio
async def test_preferences_persist_at_configured_path(tmp_path):
    """Sessions without explicit storage use the settings' storage path."""
    settings = create_settings(
        validation_settle=0.05, connect_timeout=0.2, storage_path=str(tmp_path / "prefs.json")
    )
    relay = MemoryRelay()
    first = SquadSession(MemoryTransport(relay), settings)
    await first.create_room("Alice")
    await first.update_exclusions(["wraith"])
    await first.leave()

    second = SquadSession(MemoryTransport(relay), settings)
    assert second.display_name == "Alice"
    assert second.exclusions == frozenset({"wraith"})
    assert (tmp_path / "prefs.json").exists()


@pytest.mark.asyncio
async def test_abandoned_connect_leaves_next_room_alone():
    """A join that times out after the user moved to another room does not tear that room down."""
    relay = MemoryRelay()
    host = make_session(relay)
    code = await host.create_room("Alice")
    await relay.drain()

    guest = make_session(relay)
    relay.accept_subscriptions = False
    stale = asyncio.ensure_future(guest.join_room("Bob", "ZZZZ99"))
    await asyncio.sleep(0)
    assert guest.phase == Phase.CONNECTING

    await guest.leave()
    assert await stale == "ZZZZ99"

    relay.accept_subscriptions = True
    await guest.join_room("Bob", code)
    await relay.drain()
    await asyncio.sleep(SETTINGS.connect_timeout * 2)

    assert guest.phase == Phase.ACTIVE
    assert guest.room_code == code
    assert guest.last_error is None
    assert len(host.participants) == 2
