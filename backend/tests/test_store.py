"""Tests for the store contract, run against both MemoryStore and DuckDBStore."""
from datetime import datetime, timedelta, timezone

import pytest

from roomsync.errors import (
    RoomNotFoundError,
    StoreError,
    UniqueViolationError,
    UsernameConflictError,
)
from roomsync.store import ChangeType, DuckDBStore, MemoryStore, build_store, hash_session_token
from roomsync.config import StoreSettings


@pytest.fixture(params=["memory", "duckdb"])
def any_store(request, tmp_path):
    if request.param == "memory":
        store = MemoryStore()
    else:
        store = DuckDBStore(str(tmp_path / "rooms.duckdb"))
    yield store
    store.close()


class TestCrud:
    """Row insert/select/update/delete."""

    @pytest.mark.asyncio
    async def test_insert_assigns_id_and_created_at(self, any_store):
        """Server fills id, created_at and defaults."""
        room = await any_store.create_room("1234")
        row = await any_store.insert("messages", {
            "room_id": room["id"], "content": "hi", "author_name": "ravi",
        })
        assert row["id"]
        assert isinstance(row["created_at"], datetime)
        assert row["created_at"].tzinfo is not None
        assert row["type"] == "text"
        assert row["author_kind"] == "human"

    @pytest.mark.asyncio
    async def test_insert_into_missing_room_fails(self, any_store):
        """Room-scoped rows need an existing room."""
        with pytest.raises(RoomNotFoundError):
            await any_store.insert("messages", {
                "room_id": "nope", "content": "hi", "author_name": "ravi",
            })

    @pytest.mark.asyncio
    async def test_unknown_column_rejected(self, any_store):
        """Columns outside the table schema are a StoreError."""
        room = await any_store.create_room("1234")
        with pytest.raises(StoreError):
            await any_store.insert("messages", {
                "room_id": room["id"], "content": "hi", "author_name": "ravi", "color": "red",
            })

    @pytest.mark.asyncio
    async def test_unique_violation_on_duplicate_reaction(self, any_store):
        """Same (message, author, emoji) twice raises code 23505."""
        room = await any_store.create_room("1234")
        msg = await any_store.insert("messages", {
            "room_id": room["id"], "content": "hi", "author_name": "ravi",
        })
        reaction = {"room_id": room["id"], "message_id": msg["id"], "author_name": "anu", "emoji": "👍"}
        await any_store.insert("message_reactions", reaction)

        with pytest.raises(UniqueViolationError) as exc_info:
            await any_store.insert("message_reactions", dict(reaction))
        assert exc_info.value.code == "23505"

    @pytest.mark.asyncio
    async def test_select_ordering_and_membership(self, any_store):
        """order_by sorts, list values mean IN."""
        room = await any_store.create_room("1234")
        ids = []
        for text in ("a", "b", "c"):
            row = await any_store.insert("messages", {
                "room_id": room["id"], "content": text, "author_name": "ravi",
            })
            ids.append(row["id"])

        rows = await any_store.select("messages", {"room_id": room["id"]}, order_by="-created_at")
        assert [r["content"] for r in rows] == ["c", "b", "a"]

        subset = await any_store.select("messages", {"id": ids[:2]})
        assert {r["content"] for r in subset} == {"a", "b"}

    @pytest.mark.asyncio
    async def test_message_insert_refreshes_room_activity(self, any_store):
        """Posting a message bumps rooms.last_activity_at."""
        room = await any_store.create_room("1234")
        old = datetime.now(timezone.utc) - timedelta(hours=3)
        await any_store.update("rooms", {"id": room["id"]}, {"last_activity_at": old})

        await any_store.insert("messages", {
            "room_id": room["id"], "content": "hi", "author_name": "ravi",
        })
        refreshed = (await any_store.select("rooms", {"id": room["id"]}))[0]
        assert refreshed["last_activity_at"] > old

    @pytest.mark.asyncio
    async def test_room_delete_cascades(self, any_store, settle):
        """Deleting a room removes its messages, reactions and sessions with DELETE events."""
        room = await any_store.create_room("1234")
        msg = await any_store.insert("messages", {
            "room_id": room["id"], "content": "hi", "author_name": "ravi",
        })
        await any_store.insert("message_reactions", {
            "room_id": room["id"], "message_id": msg["id"], "author_name": "anu", "emoji": "🔥",
        })
        await any_store.create_room_session(room["id"], "token-1", "ravi")

        events = []
        any_store.subscribe("messages", room["id"], events.append)
        await any_store.delete("rooms", {"id": room["id"]})
        await settle()

        assert await any_store.select("messages") == []
        assert await any_store.select("message_reactions") == []
        assert await any_store.select("room_sessions") == []
        assert [e.type for e in events] == [ChangeType.DELETE]
        assert events[0].old["id"] == msg["id"]


class TestRealtime:
    """Change feed delivery."""

    @pytest.mark.asyncio
    async def test_delivery_is_never_inline(self, store, settle):
        """Paused delivery holds events until resume()."""
        room = await store.create_room("1234")
        events = []
        store.subscribe("messages", room["id"], events.append)

        store.realtime.pause()
        await store.insert("messages", {"room_id": room["id"], "content": "a", "author_name": "x"})
        await settle()
        assert events == []

        store.realtime.resume()
        await settle()
        assert [e.new["content"] for e in events] == ["a"]

    @pytest.mark.asyncio
    async def test_events_arrive_in_commit_order(self, store, settle):
        """Events for one room keep publish order."""
        room = await store.create_room("1234")
        events = []
        store.subscribe("messages", room["id"], events.append)

        store.realtime.pause()
        for text in ("1", "2", "3"):
            await store.insert("messages", {"room_id": room["id"], "content": text, "author_name": "x"})
        store.realtime.resume()
        await settle()

        assert [e.new["content"] for e in events] == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_feed_is_scoped_to_room(self, store, settle):
        """A room subscriber never sees another room's rows."""
        room_a = await store.create_room("1111")
        room_b = await store.create_room("2222")
        events = []
        store.subscribe("messages", room_a["id"], events.append)

        await store.insert("messages", {"room_id": room_b["id"], "content": "b", "author_name": "x"})
        await settle()
        assert events == []

    @pytest.mark.asyncio
    async def test_callback_error_does_not_reach_writer(self, store, settle):
        """A failing subscriber is logged; the insert still succeeds."""
        room = await store.create_room("1234")

        def boom(event):
            raise RuntimeError("subscriber bug")

        store.subscribe("messages", room["id"], boom)
        row = await store.insert("messages", {"room_id": room["id"], "content": "a", "author_name": "x"})
        await settle()
        assert row["content"] == "a"

    @pytest.mark.asyncio
    async def test_closed_subscription_stops_delivery(self, store, settle):
        """close() is idempotent and stops callbacks."""
        room = await store.create_room("1234")
        events = []
        sub = store.subscribe("messages", room["id"], events.append)
        sub.close()
        sub.close()

        await store.insert("messages", {"room_id": room["id"], "content": "a", "author_name": "x"})
        await settle()
        assert events == []
        assert store.realtime.subscriber_count("messages") == 0


class TestPresenceChannel:
    """Presence tracking and broadcasts."""

    @pytest.mark.asyncio
    async def test_track_syncs_full_state_to_everyone(self, store, settle):
        """Every channel receives the whole room state."""
        seen_a, seen_b = [], []
        chan_a = store.channel("room", "a").on_sync(seen_a.append)
        chan_b = store.channel("room", "b").on_sync(seen_b.append)

        await chan_a.track({"username": "ravi"})
        await chan_b.track({"username": "anu"})
        await settle()

        assert seen_a[-1] == {"a": {"username": "ravi"}, "b": {"username": "anu"}}
        assert seen_b[-1] == seen_a[-1]

        await chan_b.untrack()
        await settle()
        assert seen_a[-1] == {"a": {"username": "ravi"}}

    @pytest.mark.asyncio
    async def test_broadcast_skips_sender(self, store, settle):
        """Broadcasts reach other channels of the room only."""
        got_a, got_b = [], []
        chan_a = store.channel("room", "a").on_broadcast("ping", got_a.append)
        store.channel("room", "b").on_broadcast("ping", got_b.append)
        store.channel("other", "c").on_broadcast("ping", got_b.append)

        await chan_a.broadcast("ping", {"n": 1})
        await settle()

        assert got_a == []
        assert got_b == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_close_drops_tracked_state(self, store, settle):
        chan = store.channel("room", "a")
        await chan.track({"username": "ravi"})
        chan.close()
        assert store.presence.state("room") == {}


class TestRoomProcedures:
    """Server-side session and room procedures."""

    @pytest.mark.asyncio
    async def test_create_room_session_binds_once(self, any_store):
        """Same username refreshes, a different one conflicts."""
        room = await any_store.create_room("1234")
        first = await any_store.create_room_session(room["id"], "tok", "ravi")
        again = await any_store.create_room_session(room["id"], "tok", "ravi")
        assert again["id"] == first["id"]
        assert again["session_token_hash"] == hash_session_token("tok")

        with pytest.raises(UsernameConflictError):
            await any_store.create_room_session(room["id"], "tok", "someone-else")

    @pytest.mark.asyncio
    async def test_create_room_session_missing_room(self, any_store):
        with pytest.raises(RoomNotFoundError):
            await any_store.create_room_session("missing", "tok", "ravi")

    @pytest.mark.asyncio
    async def test_touch_and_delete_session(self, any_store):
        room = await any_store.create_room("1234")
        await any_store.create_room_session(room["id"], "tok", "ravi")

        assert await any_store.touch_room_session(room["id"], "tok") is True
        assert await any_store.delete_room_session(room["id"], "tok") is True
        assert await any_store.touch_room_session(room["id"], "tok") is False

    @pytest.mark.asyncio
    async def test_is_room_creator(self, any_store):
        """Only the creator token passes."""
        room = await any_store.create_room("1234", creator_token="creator")
        assert await any_store.is_room_creator(room["id"], "creator") is True
        assert await any_store.is_room_creator(room["id"], "guest") is False

        anonymous = await any_store.create_room("5678")
        assert await any_store.is_room_creator(anonymous["id"], "creator") is False

    @pytest.mark.asyncio
    async def test_duplicate_room_code(self, any_store):
        await any_store.create_room("1234")
        with pytest.raises(UniqueViolationError):
            await any_store.create_room("1234")

    @pytest.mark.asyncio
    async def test_delete_expired_rooms(self, any_store):
        """Only rooms idle past the cutoff are removed."""
        stale = await any_store.create_room("1111")
        fresh = await any_store.create_room("2222")
        long_ago = datetime.now(timezone.utc) - timedelta(hours=30)
        await any_store.update("rooms", {"id": stale["id"]}, {"last_activity_at": long_ago})

        cutoff = datetime.now(timezone.utc) - timedelta(hours=24)
        deleted = await any_store.delete_expired_rooms(cutoff)

        assert [r["code"] for r in deleted] == ["1111"]
        remaining = await any_store.select("rooms")
        assert [r["id"] for r in remaining] == [fresh["id"]]


def test_build_store_selects_backend(tmp_path):
    """build_store follows store.backend."""
    assert isinstance(build_store(StoreSettings()), MemoryStore)
    duck = build_store(StoreSettings(backend="duckdb", duckdb_path=str(tmp_path / "x.duckdb")))
    try:
        assert isinstance(duck, DuckDBStore)
    finally:
        duck.close()


def test_closed_duckdb_store_raises(tmp_path):
    duck = DuckDBStore(str(tmp_path / "x.duckdb"))
    duck.close()
    with pytest.raises(StoreError):
        duck._select_rows("rooms", None, None)
