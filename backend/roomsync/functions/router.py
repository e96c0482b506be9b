"""Server-side room functions.

Endpoints:
    POST /functions/create-room            Create a public or private room
    POST /functions/verify-room-password   Check a private room's password
    POST /functions/chat-ai                Generate an assistant reply
    POST /functions/cleanup-expired-rooms  Delete rooms inactive past expiry

Errors are returned as ``{"error": ..., "errorType"?: ..., "retryAfter"?: ...}``
with the matching HTTP status so clients can show them verbatim.
"""
import asyncio
import logging
import random
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..assistant.base import ContextMessage
from ..config import get_config
from ..errors import ResponderError, StoreError, UniqueViolationError
from ..store.schema import utcnow
from .dependencies import get_responder, get_store
from .passwords import hash_password, verify_password
from .rate_limit import RateLimiter
from .schemas import (
    ChatAIRequest,
    ChatAIResponse,
    CleanupResponse,
    CreateRoomRequest,
    CreateRoomResponse,
    ExpiredRoom,
    RoomInfo,
    VerifyPasswordRequest,
    VerifyPasswordResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["functions"])

MAX_PASSWORD_LENGTH = 100
MAX_ROOM_CODE_LENGTH = 10
ROOM_CODE_ATTEMPTS = 5

# Delay before answering a wrong password, in seconds
WRONG_PASSWORD_DELAY = (0.5, 1.0)

_create_limiter: Optional[RateLimiter] = None
_password_limiter: Optional[RateLimiter] = None
_chat_limiter: Optional[RateLimiter] = None


def _limiters():
    global _create_limiter, _password_limiter, _chat_limiter
    if _create_limiter is None:
        rooms = get_config().rooms
        _create_limiter = RateLimiter(rooms.create_limit_per_hour, 3600)
        _password_limiter = RateLimiter(rooms.password_attempts_per_min, 60)
        _chat_limiter = RateLimiter(rooms.chat_ai_requests_per_min, 60)
    return _create_limiter, _password_limiter, _chat_limiter


def reset_rate_limits() -> None:
    """Drop all limiter state (for testing)."""
    global _create_limiter, _password_limiter, _chat_limiter
    _create_limiter = _password_limiter = _chat_limiter = None


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def generate_room_code() -> str:
    return "".join(random.choices("0123456789", k=4))


# =============================================================================
# Rooms
# =============================================================================


@router.post("/create-room", response_model=CreateRoomResponse)
async def create_room(request: Request):
    """Create a room with a unique 4-digit code.

    Private rooms require a 1-100 character password, stored as a salted
    PBKDF2 hash. Limited per client IP.
    """
    try:
        body = CreateRoomRequest.model_validate(await _json_body(request), strict=True)
    except ValidationError:
        return _error(400, "Invalid room type")

    if body.isPrivate:
        if not body.password:
            return _error(400, "Password required for private rooms")
        if len(body.password) > MAX_PASSWORD_LENGTH:
            return _error(400, f"Password must be 1-{MAX_PASSWORD_LENGTH} characters")

    limiter, _, _ = _limiters()
    ip = _client_ip(request)
    if not limiter.check(ip):
        return _error(
            429, "Too many room creations. Please try again later.",
            retryAfter=limiter.retry_after(ip),
        )

    store = get_store()
    password_hash = hash_password(body.password) if body.isPrivate else None
    for _ in range(ROOM_CODE_ATTEMPTS):
        code = generate_room_code()
        try:
            room = await store.create_room(
                code,
                room_type="private" if body.isPrivate else "public",
                password_hash=password_hash,
                creator_token=body.sessionToken,
            )
        except UniqueViolationError:
            logger.debug(f"Room code {code} already taken, retrying")
            continue
        except StoreError as e:
            logger.error(f"Room creation error: {e}")
            return _error(500, "Failed to create room")
        logger.info(f"Created {room['room_type']} room {room['code']}")
        return CreateRoomResponse(room=RoomInfo.from_row(room))

    return _error(500, "Failed to generate unique room code")


@router.post("/verify-room-password", response_model=VerifyPasswordResponse)
async def verify_room_password(request: Request):
    """Verify a room password; public rooms always verify."""
    try:
        body = VerifyPasswordRequest.model_validate(await _json_body(request), strict=True)
    except ValidationError:
        return _error(400, "Invalid room code or password")
    if not body.roomCode or len(body.roomCode) > MAX_ROOM_CODE_LENGTH:
        return _error(400, "Invalid room code")
    if not body.password or len(body.password) > MAX_PASSWORD_LENGTH:
        return _error(400, "Invalid password")

    _, limiter, _ = _limiters()
    key = f"{body.roomCode}:{_client_ip(request)}"
    if not limiter.check(key):
        return _error(
            429, "Too many password attempts. Please try again later.",
            retryAfter=limiter.retry_after(key),
        )

    try:
        room = await get_store().find_room_by_code(body.roomCode)
    except StoreError as e:
        logger.error(f"Database error verifying room {body.roomCode}: {e}")
        return _error(500, "Database error")
    if room is None:
        return _error(404, "Room not found")

    if room["room_type"] != "private":
        return VerifyPasswordResponse(valid=True, room=RoomInfo.from_row(room))
    if not room.get("password_hash"):
        return _error(400, "Room has no password set")

    if not verify_password(body.password, room["password_hash"]):
        await asyncio.sleep(random.uniform(*WRONG_PASSWORD_DELAY))
        return _error(401, "Incorrect password")
    return VerifyPasswordResponse(valid=True, room=RoomInfo.from_row(room))


@router.post("/cleanup-expired-rooms", response_model=CleanupResponse)
async def cleanup_expired_rooms():
    """Delete every room inactive for longer than the configured expiry."""
    expiry_hours = get_config().rooms.expiry_hours
    cutoff = utcnow() - timedelta(hours=expiry_hours)
    logger.info(f"Cleaning up rooms inactive since: {cutoff.isoformat()}")
    try:
        deleted = await get_store().delete_expired_rooms(cutoff)
    except StoreError as e:
        logger.error(f"Cleanup error: {e}")
        return _error(500, e.message)

    logger.info(f"Deleted {len(deleted)} expired rooms")
    return CleanupResponse(
        success=True,
        deleted=len(deleted),
        rooms=[ExpiredRoom(id=r["id"], code=r["code"]) for r in deleted],
    )


# =============================================================================
# Assistant
# =============================================================================


@router.post("/chat-ai", response_model=ChatAIResponse)
async def chat_ai(request: Request):
    """Answer an assistant question using the configured responder."""
    _, _, limiter = _limiters()
    ip = _client_ip(request)
    if not limiter.check(ip):
        return _error(429, "Too many requests. Please slow down!", errorType="rate_limit")

    try:
        body = ChatAIRequest.model_validate(await _json_body(request))
    except ValidationError:
        return _error(400, "Invalid message format")
    max_chars = get_config().rooms.max_ai_message_chars
    if not body.message or not body.message.strip() or len(body.message) > max_chars:
        return _error(400, "Invalid message format")

    responder = get_responder()
    if responder is None:
        return _error(503, "AI service is not configured.", errorType="unavailable")

    context = [ContextMessage.from_payload(item.model_dump()) for item in body.conversationContext]
    try:
        reply = await responder.respond(body.message.strip(), context)
    except ResponderError as e:
        logger.error(f"chat-ai error: {e}")
        status = e.status_code if e.status_code in (402, 429) else 500
        return _error(
            status, f"Sorry, I encountered an issue: {e.message}. Please try again!",
            errorType=e.error_type,
        )
    return ChatAIResponse(response=reply)
