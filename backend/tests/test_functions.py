"""Tests for the /functions room endpoints."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from roomsync.assistant.base import Responder
from roomsync.errors import ResponderError
from roomsync.functions import set_responder, set_store
from roomsync.functions.passwords import hash_password, legacy_hash, verify_password
from roomsync.functions.rate_limit import RateLimiter
from roomsync.functions.router import reset_rate_limits
from roomsync.functions.router import router as functions_router
from roomsync.store import MemoryStore


class EchoResponder(Responder):
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def respond(self, question, context):
        self.calls.append((question, context))
        if self.error is not None:
            raise self.error
        return f"echo: {question}"


@pytest.fixture
def functions_store(monkeypatch):
    store = MemoryStore()
    set_store(store)
    set_responder(None)
    reset_rate_limits()
    monkeypatch.setattr("roomsync.functions.router.WRONG_PASSWORD_DELAY", (0, 0))
    yield store
    set_store(None)
    set_responder(None)
    reset_rate_limits()


@pytest.fixture
def client(functions_store):
    app = FastAPI()
    app.include_router(functions_router)
    return TestClient(app)


def _create(client, ip="10.0.0.1", **body):
    return client.post("/functions/create-room", json=body, headers={"x-forwarded-for": ip})


class TestCreateRoom:
    """POST /functions/create-room."""

    def test_public_room(self, client, functions_store):
        resp = _create(client, isPrivate=False)
        assert resp.status_code == 200
        room = resp.json()["room"]
        assert len(room["code"]) == 4 and room["code"].isdigit()
        assert room["room_type"] == "public"
        assert "password_hash" not in room

    def test_private_room_stores_salted_hash(self, client, functions_store):
        resp = _create(client, isPrivate=True, password="secret", sessionToken="creator")
        assert resp.status_code == 200

        row = asyncio.run(functions_store.select("rooms"))[0]
        assert row["room_type"] == "private"
        assert row["password_hash"].startswith("pbkdf2_sha256$")
        assert asyncio.run(functions_store.is_room_creator(row["id"], "creator")) is True

    @pytest.mark.parametrize("body", [
        {"isPrivate": "yes"},
        {},
        {"isPrivate": True},
        {"isPrivate": True, "password": ""},
        {"isPrivate": True, "password": "x" * 101},
    ])
    def test_invalid_input(self, client, body):
        assert _create(client, **body).status_code == 400

    def test_rate_limited_per_ip(self, client):
        for _ in range(10):
            assert _create(client, isPrivate=False).status_code == 200
        resp = _create(client, isPrivate=False)
        assert resp.status_code == 429
        assert "retryAfter" in resp.json()
        assert _create(client, ip="10.0.0.2", isPrivate=False).status_code == 200

    def test_code_collisions_retry(self, client, functions_store, monkeypatch):
        """A taken code is retried with a fresh one."""
        asyncio.run(functions_store.create_room("1111"))
        codes = iter(["1111", "2222"])
        monkeypatch.setattr("roomsync.functions.router.generate_room_code", lambda: next(codes))

        resp = _create(client, isPrivate=False)
        assert resp.status_code == 200
        assert resp.json()["room"]["code"] == "2222"

    def test_gives_up_after_five_collisions(self, client, functions_store, monkeypatch):
        asyncio.run(functions_store.create_room("1111"))
        monkeypatch.setattr("roomsync.functions.router.generate_room_code", lambda: "1111")

        resp = _create(client, isPrivate=False)
        assert resp.status_code == 500


class TestVerifyRoomPassword:
    """POST /functions/verify-room-password."""

    def _private_room(self, client):
        return _create(client, isPrivate=True, password="open sesame").json()["room"]

    def test_correct_password(self, client):
        room = self._private_room(client)
        resp = client.post("/functions/verify-room-password",
                           json={"roomCode": room["code"], "password": "open sesame"})
        assert resp.status_code == 200
        assert resp.json()["valid"] is True
        assert resp.json()["room"]["id"] == room["id"]

    def test_wrong_password(self, client):
        room = self._private_room(client)
        resp = client.post("/functions/verify-room-password",
                           json={"roomCode": room["code"], "password": "nope"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Incorrect password"

    def test_public_room_always_valid(self, client):
        room = _create(client, isPrivate=False).json()["room"]
        resp = client.post("/functions/verify-room-password",
                           json={"roomCode": room["code"], "password": "anything"})
        assert resp.json()["valid"] is True

    def test_unknown_room(self, client):
        resp = client.post("/functions/verify-room-password",
                           json={"roomCode": "9999", "password": "x"})
        assert resp.status_code == 404

    def test_legacy_hash_accepted(self, client, functions_store):
        asyncio.run(functions_store.create_room(
            "4321", room_type="private", password_hash=legacy_hash("old")
        ))
        resp = client.post("/functions/verify-room-password",
                           json={"roomCode": "4321", "password": "old"})
        assert resp.status_code == 200

    @pytest.mark.parametrize("body", [
        {"roomCode": "", "password": "x"},
        {"roomCode": "12345678901", "password": "x"},
        {"roomCode": "1234", "password": ""},
        {"roomCode": 1234, "password": "x"},
    ])
    def test_invalid_input(self, client, body):
        assert client.post("/functions/verify-room-password", json=body).status_code == 400

    def test_attempts_limited_per_room_and_ip(self, client):
        room = self._private_room(client)
        body = {"roomCode": room["code"], "password": "guess"}
        for _ in range(5):
            assert client.post("/functions/verify-room-password", json=body).status_code == 401
        assert client.post("/functions/verify-room-password", json=body).status_code == 429


class TestChatAI:
    """POST /functions/chat-ai."""

    def test_reply(self, client):
        responder = EchoResponder()
        set_responder(responder)
        resp = client.post("/functions/chat-ai", json={
            "message": "hi",
            "conversationContext": [{"username": "Asu", "content": "hello", "authorKind": "assistant"}],
        })
        assert resp.status_code == 200
        assert resp.json() == {"response": "echo: hi"}
        context = responder.calls[0][1]
        assert context[0].is_assistant is True

    def test_no_responder(self, client):
        resp = client.post("/functions/chat-ai", json={"message": "hi"})
        assert resp.status_code == 503

    @pytest.mark.parametrize("body", [{}, {"message": ""}, {"message": "x" * 2001}])
    def test_invalid_message(self, client, body):
        set_responder(EchoResponder())
        assert client.post("/functions/chat-ai", json=body).status_code == 400

    def test_responder_failure(self, client):
        set_responder(EchoResponder(error=ResponderError("boom")))
        resp = client.post("/functions/chat-ai", json={"message": "hi"})
        assert resp.status_code == 500
        assert resp.json()["errorType"] == "internal_error"

    def test_rate_limit_passthrough(self, client):
        set_responder(EchoResponder(error=ResponderError("busy", error_type="rate_limit", status_code=429)))
        resp = client.post("/functions/chat-ai", json={"message": "hi"})
        assert resp.status_code == 429
        assert resp.json()["errorType"] == "rate_limit"

    def test_requests_limited_per_ip(self, client):
        set_responder(EchoResponder())
        for _ in range(20):
            assert client.post("/functions/chat-ai", json={"message": "hi"}).status_code == 200
        assert client.post("/functions/chat-ai", json={"message": "hi"}).status_code == 429


class TestCleanupExpiredRooms:
    """POST /functions/cleanup-expired-rooms."""

    def test_deletes_only_expired(self, client, functions_store):
        stale = asyncio.run(functions_store.create_room("1111"))
        asyncio.run(functions_store.create_room("2222"))
        long_ago = datetime.now(timezone.utc) - timedelta(hours=25)
        asyncio.run(functions_store.update("rooms", {"id": stale["id"]}, {"last_activity_at": long_ago}))

        resp = client.post("/functions/cleanup-expired-rooms")

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "deleted": 1,
            "rooms": [{"id": stale["id"], "code": "1111"}],
        }


class TestPasswords:
    """Password hashing helpers."""

    def test_pbkdf2_round_trip_and_salt(self):
        first, second = hash_password("pw"), hash_password("pw")
        assert first != second
        assert verify_password("pw", first)
        assert not verify_password("other", first)

    def test_malformed_hash(self):
        assert not verify_password("pw", "pbkdf2_sha256$notanumber$salt$hash")
        assert not verify_password("pw", "")


class TestRateLimiter:
    """Fixed window limiter."""

    def test_window_resets(self):
        now = [0.0]
        limiter = RateLimiter(2, 60, clock=lambda: now[0])
        assert limiter.check("k") and limiter.check("k")
        assert not limiter.check("k")
        assert limiter.retry_after("k") == 60

        now[0] = 61.0
        assert limiter.check("k")

    def test_expired_windows_are_dropped(self):
        """Keys from finished windows do not accumulate."""
        now = [0.0]
        limiter = RateLimiter(5, 60, clock=lambda: now[0])
        for code in range(100):
            limiter.check(f"{code}:10.0.0.1")
        assert len(limiter) == 100

        now[0] = 61.0
        assert limiter.check("fresh")
        assert len(limiter) == 1
        assert limiter.retry_after("0:10.0.0.1") == 0


def test_health():
    from roomsync.main import app

    resp = TestClient(app).get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
