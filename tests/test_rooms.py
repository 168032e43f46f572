"""Tests for the record store and the room join transaction."""

import asyncio

import pytest

from playroom.errors import RoomFullError, TransactionAbortError
from playroom.games.connect4 import Connect4Adapter
from playroom.games.tictactoe import TicTacToeAdapter
from playroom.rooms import ROOM_TTL_SECONDS, join_or_create, normalize_room_id
from playroom.state import PlayerProfile
from playroom.store import SERVER_TIMESTAMP, Increment, InMemoryRecordStore, merge_patch


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


ALICE = PlayerProfile(name="Alice")
BOB = PlayerProfile(name="Bob", avatar_url="https://example.test/bob.png")
CAROL = PlayerProfile(name="Carol")


# ---------- Store ----------


def test_merge_patch_writes_nested_paths_and_deletes():
    record = {"scores": {"X": 10}, "chances": {"X": 3}, "winner": "X"}
    merged = merge_patch(
        record,
        {"scores/X": Increment(10), "chances/O": 2, "winner": None, "gameState/1-across": {"status": "correct"}},
    )
    assert merged == {
        "scores": {"X": 20},
        "chances": {"X": 3, "O": 2},
        "gameState": {"1-across": {"status": "correct"}},
    }
    assert record["scores"]["X"] == 10


def test_server_timestamp_resolves_on_commit():
    clock = FakeClock(500.0)
    store = InMemoryRecordStore(clock=clock)

    async def scenario():
        await store.set("rooms/A", {"createdAt": SERVER_TIMESTAMP})
        return await store.get("rooms/A")

    assert asyncio.run(scenario()) == {"createdAt": 500.0}


def test_subscription_sees_writes_in_order_and_removal():
    store = InMemoryRecordStore()

    async def scenario():
        subscription = store.subscribe("rooms/A")
        await store.set("rooms/A", {"n": 1})
        await store.update("rooms/A", {"n": 2})
        await store.remove("rooms/A")
        seen = subscription.drain()
        subscription.close()
        return seen

    assert asyncio.run(scenario()) == [None, {"n": 1}, {"n": 2}, None]


def test_aborted_transaction_leaves_record_untouched():
    store = InMemoryRecordStore()

    async def scenario():
        await store.set("rooms/A", {"n": 1})
        result = await store.transaction("rooms/A", lambda current: None)
        return result, await store.get("rooms/A")

    result, record = asyncio.run(scenario())
    assert result.committed is False
    assert result.snapshot == {"n": 1}
    assert record == {"n": 1}


def test_transaction_retries_then_gives_up():
    store = InMemoryRecordStore(max_retries=3)
    calls = []

    async def scenario():
        await store.set("rooms/A", {"n": 0})

        def bump(current):
            calls.append(current["n"])
            # Sneak in a competing write on every attempt.
            store._commit("rooms/A", {"n": current["n"] + 1})
            return {"n": -1}

        await store.transaction("rooms/A", bump)

    with pytest.raises(TransactionAbortError):
        asyncio.run(scenario())
    assert calls == [0, 1, 2]


# ---------- Join ----------


def test_normalize_room_id():
    assert normalize_room_id("  abc12 ") == "ABC12"
    with pytest.raises(ValueError):
        normalize_room_id("   ")
    with pytest.raises(ValueError):
        normalize_room_id("a/b")


def test_first_joiner_creates_room_as_x():
    clock = FakeClock()
    store = InMemoryRecordStore(clock=clock)
    adapter = TicTacToeAdapter()

    result = asyncio.run(join_or_create(store, adapter, "abc", ALICE, "dev-a"))
    assert result.seat == "X"
    assert result.created is True
    assert result.state.created_at == clock.now
    assert result.state.players["X"].name == "Alice"
    assert result.state.players["O"] is None
    assert store.paths() == ["tictactoe-games/ABC"]


def test_second_joiner_takes_o_and_third_is_rejected():
    store = InMemoryRecordStore(clock=FakeClock())
    adapter = TicTacToeAdapter()

    async def scenario():
        first = await join_or_create(store, adapter, "ROOM", ALICE, "dev-a")
        second = await join_or_create(store, adapter, "ROOM", BOB, "dev-b")
        with pytest.raises(RoomFullError):
            await join_or_create(store, adapter, "ROOM", CAROL, "dev-c")
        return first, second, await store.get(adapter.path("ROOM"))

    first, second, record = asyncio.run(scenario())
    assert (first.seat, second.seat) == ("X", "O")
    assert second.state.players["O"].avatar_url == BOB.avatar_url
    assert record["players"]["X"]["deviceId"] == "dev-a"
    assert record["players"]["O"]["deviceId"] == "dev-b"


def test_rejoin_returns_same_seat_without_changes():
    store = InMemoryRecordStore(clock=FakeClock())
    adapter = TicTacToeAdapter()

    async def scenario():
        await join_or_create(store, adapter, "ROOM", ALICE, "dev-a")
        await join_or_create(store, adapter, "ROOM", BOB, "dev-b")
        before = await store.get(adapter.path("ROOM"))
        again = await join_or_create(store, adapter, "ROOM", BOB, "dev-b")
        after = await store.get(adapter.path("ROOM"))
        return again, before, after

    again, before, after = asyncio.run(scenario())
    assert again.seat == "O"
    assert again.created is False
    assert before == after


def test_expired_room_is_recycled_for_the_joiner():
    clock = FakeClock()
    store = InMemoryRecordStore(clock=clock)
    adapter = Connect4Adapter()

    async def scenario():
        await join_or_create(store, adapter, "OLD", ALICE, "dev-a")
        await join_or_create(store, adapter, "OLD", BOB, "dev-b")
        clock.now += ROOM_TTL_SECONDS + 1
        return await join_or_create(store, adapter, "OLD", CAROL, "dev-c")

    result = asyncio.run(scenario())
    assert result.seat == "X"
    assert result.created is True
    assert result.state.players["X"].name == "Carol"
    assert result.state.players["O"] is None
    assert result.state.created_at == clock.now


def test_record_without_created_at_counts_as_expired():
    store = InMemoryRecordStore(clock=FakeClock())
    adapter = TicTacToeAdapter()

    async def scenario():
        await store.set(adapter.path("ROOM"), {"players": {"X": {"deviceId": "ghost", "name": "G"}}})
        return await join_or_create(store, adapter, "ROOM", ALICE, "dev-a")

    result = asyncio.run(scenario())
    assert result.seat == "X"
    assert result.created is True


def test_concurrent_joins_seat_each_device_once():
    store = InMemoryRecordStore(clock=FakeClock())
    adapter = TicTacToeAdapter()

    async def scenario():
        return await asyncio.gather(
            join_or_create(store, adapter, "RACE", ALICE, "dev-a"),
            join_or_create(store, adapter, "RACE", BOB, "dev-b"),
            join_or_create(store, adapter, "RACE", CAROL, "dev-c"),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())
    seats = sorted(r.seat for r in results if not isinstance(r, Exception))
    errors = [r for r in results if isinstance(r, Exception)]
    assert seats == ["O", "X"]
    assert len(errors) == 1
    assert isinstance(errors[0], RoomFullError)
