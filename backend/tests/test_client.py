"""End-to-end tests for connect()/RoomConnection across several participants."""
import asyncio
import random

import pytest

from roomsync.assistant.base import Responder
from roomsync.client import RoomConnection, connect
from roomsync.config import SyncSettings
from roomsync.errors import SessionError
from roomsync.messages import ASSISTANT_NAME, MessageSyncEngine
from roomsync.presence import PresenceEngine
from roomsync.reactions import ReactionAggregator
from roomsync.session import IdentityStore, LeaveReason, RoomSessionManager, SessionState

CREATOR_TOKEN = "creator-token"


class FourResponder(Responder):
    async def respond(self, question, context):
        await asyncio.sleep(0)
        return "4"


async def _room(store, code="1234"):
    return await store.create_room(code, creator_token=CREATOR_TOKEN)


async def _connect(store, room, username, token=None, **kwargs) -> RoomConnection:
    return await connect(
        store, room["id"],
        session_token=token or f"{username}-token",
        username=username,
        settings=kwargs.pop("settings", SyncSettings(typing_idle_seconds=0.05)),
        **kwargs,
    )


class TestConnect:
    """Connection setup and teardown."""

    @pytest.mark.asyncio
    async def test_connect_with_identity_loads_history(self, store, tmp_path):
        room = await _room(store)
        await store.insert("messages", {"room_id": room["id"], "content": "earlier", "author_name": "anu"})
        identity = IdentityStore(str(tmp_path / "identity.json"))
        identity.set_username("ravi")

        conn = await connect(store, room["id"], identity=identity)

        assert conn.session.state == SessionState.ACTIVE
        assert conn.username == "ravi"
        assert [m.content for m in conn.messages.messages] == ["earlier"]
        await conn.close()

    @pytest.mark.asyncio
    async def test_connect_requires_username(self, store, tmp_path):
        room = await _room(store)
        identity = IdentityStore(str(tmp_path / "identity.json"))
        with pytest.raises(SessionError):
            await connect(store, room["id"], identity=identity)

    @pytest.mark.asyncio
    async def test_connect_to_missing_room(self, store):
        with pytest.raises(SessionError):
            await connect(store, "missing", session_token="tok", username="ravi")

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_leaves(self, store):
        room = await _room(store)
        async with await _connect(store, room, "ravi") as conn:
            assert len(await store.select("room_sessions")) == 1
        await conn.close()

        assert conn.closed
        assert conn.session.state == SessionState.LEFT
        assert await store.select("room_sessions") == []
        assert store.realtime.subscriber_count() == 0
        assert store.presence.state(room["id"]) == {}


class TestScenarios:
    """Multi-participant behaviour."""

    @pytest.mark.asyncio
    async def test_late_echo_collapses_into_one_entry(self, store, settle):
        """The echo arriving 300ms after the send does not duplicate the message."""
        room = await _room(store)
        ravi = await _connect(store, room, "ravi")

        store.realtime.pause()
        task = asyncio.create_task(ravi.send_text("hello"))
        await asyncio.sleep(0)
        assert [m.content for m in ravi.messages.messages] == ["hello"]
        assert await task is True

        await asyncio.sleep(0.3)
        store.realtime.resume()
        await settle()

        assert [m.content for m in ravi.messages.messages] == ["hello"]
        await ravi.close()

    @pytest.mark.asyncio
    async def test_no_duplicates_under_interleaving(self, store, settle):
        """Random echo latency still gives one entry per send, in order, everywhere."""
        room = await _room(store)
        ravi = await _connect(store, room, "ravi")
        anu = await _connect(store, room, "anu")
        rng = random.Random(7)

        sends = []
        for i in range(20):
            if rng.random() < 0.5:
                store.realtime.pause()
            sender = ravi if i % 2 == 0 else anu
            sends.append(asyncio.create_task(sender.send_text(f"msg {i % 3}")))
            if rng.random() < 0.5:
                await asyncio.sleep(0)
            if rng.random() < 0.5:
                store.realtime.resume()
        assert all(await asyncio.gather(*sends))
        store.realtime.resume()
        await settle(30)

        for conn in (ravi, anu):
            msgs = conn.messages.messages
            assert len(msgs) == 20
            assert len({m.id for m in msgs}) == 20
            assert not any(m.is_temporary for m in msgs)
            assert [m.created_at for m in msgs] == sorted(m.created_at for m in msgs)
        assert ravi.messages.message_ids == anu.messages.message_ids
        await ravi.close()
        await anu.close()

    @pytest.mark.asyncio
    async def test_reaction_toggle_twice_restores_state(self, store, settle):
        room = await _room(store)
        ravi = await _connect(store, room, "ravi")
        await ravi.send_text("react")
        await settle()
        message_id = ravi.messages.message_ids[0]
        before = ravi.reactions_for(message_id)

        await ravi.toggle_reaction(message_id, "👍")
        await ravi.toggle_reaction(message_id, "👍")
        await settle()

        assert ravi.reactions_for(message_id) == before
        await ravi.close()

    @pytest.mark.asyncio
    async def test_assistant_reply_seen_by_everyone(self, store, settle):
        room = await _room(store)
        ravi = await _connect(store, room, "ravi", responder=FourResponder())
        anu = await _connect(store, room, "anu")

        await ravi.send_text("@asu what is 2+2")
        await ravi.assistant.wait_idle()
        await settle()

        for conn in (ravi, anu):
            assert [(m.author_name, m.content) for m in conn.messages.messages] == [
                ("ravi", "@asu what is 2+2"),
                (ASSISTANT_NAME, "4"),
            ]
        assert anu.presence.ai_thinking is False
        await ravi.close()
        await anu.close()

    @pytest.mark.asyncio
    async def test_kicked_participant_leaves(self, store, settle):
        """A kicked user transitions to LEFT and its session row is removed, even mid-typing."""
        room = await _room(store)
        creator = await _connect(store, room, "ravi", token=CREATOR_TOKEN)
        anu = await _connect(store, room, "anu")
        reasons = []
        anu.add_left_listener(reasons.append)
        await settle()

        anu.on_input_change("I was about to say")
        await settle()
        assert creator.presence.typing_users == ["anu"]

        await creator.kick_user("anu")
        await settle()
        await anu.wait_closed()
        await settle()

        assert anu.session.state == SessionState.LEFT
        assert anu.session.leave_reason == LeaveReason.KICKED
        assert reasons == [LeaveReason.KICKED]
        assert anu.closed
        sessions = await store.select("room_sessions")
        assert [s["username"] for s in sessions] == ["ravi"]
        assert creator.presence.online_users == ["ravi"]
        assert creator.presence.typing_users == []
        await creator.close()

    @pytest.mark.asyncio
    async def test_room_deleted_forces_left(self, store, settle):
        room = await _room(store)
        ravi = await _connect(store, room, "ravi")
        reasons = []
        ravi.add_left_listener(reasons.append)

        await store.delete("rooms", {"id": room["id"]})
        await settle()
        await ravi.wait_closed()

        assert ravi.closed
        assert reasons == [LeaveReason.ROOM_DELETED]
        assert await ravi.send_text("anyone?") is False

    @pytest.mark.asyncio
    async def test_send_clears_typing(self, store, settle):
        room = await _room(store)
        ravi = await _connect(store, room, "ravi")
        ravi.on_input_change("hello")
        assert ravi.presence.is_typing

        await ravi.send_text("hello")
        assert ravi.presence.is_typing is False
        await ravi.close()


class TestSeenBy:
    """Read receipts for the viewer's own latest message."""

    @pytest.mark.asyncio
    async def test_latest_own_seen_by(self, store, settle):
        room = await _room(store)
        ravi = await _connect(store, room, "ravi")
        anu = await _connect(store, room, "anu")

        await ravi.send_text("did you read this?")
        await settle()
        assert ravi.latest_own_seen_by() == []

        anu.mark_seen()
        await settle()
        assert ravi.latest_own_seen_by() == ["anu"]
        assert anu.latest_own_seen_by() == []
        await ravi.close()
        await anu.close()

    @pytest.mark.asyncio
    async def test_seen_by_is_monotonic(self, store, settle):
        """Moving the read pointer forward never removes a reader from earlier messages."""
        room = await _room(store)
        ravi = await _connect(store, room, "ravi")
        anu = await _connect(store, room, "anu")
        for i in range(4):
            await ravi.send_text(f"m{i}")
        await settle()
        ids = ravi.messages.message_ids

        previous = {mid: set() for mid in ids}
        for pointer in ids:
            anu.mark_seen(pointer)
            await settle()
            for mid in ids:
                current = set(ravi.presence.get_seen_by(mid, ids, "ravi"))
                assert previous[mid] <= current
                previous[mid] = current
        assert all(previous[mid] == {"anu"} for mid in ids)
        await ravi.close()
        await anu.close()

    @pytest.mark.asyncio
    async def test_operations_before_active_are_noops(self, store):
        """Engines built on an inactive session do nothing."""
        room = await _room(store)
        session = RoomSessionManager(store, room["id"], "tok", "ravi")
        messages = MessageSyncEngine(store, session)
        reactions = ReactionAggregator(store, session)
        presence = PresenceEngine(store, session)

        assert await messages.send_text("hi") is False
        assert await reactions.toggle_reaction("m1", "👍") is False
        await presence.start()
        presence.mark_seen("m1")
        presence.set_typing(True)
        assert store.presence.state(room["id"]) == {}
        assert await store.select("messages") == []
        assert await store.select("message_reactions") == []

        # Nothing recorded while inactive leaks into the first published state
        assert await session.join() is True
        await presence.start()
        published = store.presence.state(room["id"])[presence.key]
        assert published["is_typing"] is False
        assert published["last_seen_message_id"] is None
        assert presence._typing_timer is None

        await presence.close()
        await session.leave()
