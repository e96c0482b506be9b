"""Exception hierarchy shared by the sync engines, the store and the functions.

Transient write failures are rolled back by the engines and reported as a
``False`` return value; they only escape as exceptions from the store layer
itself. Session invalidation (kick, room deletion) is a state transition and
never raised.
"""
from typing import Optional


class RoomSyncError(Exception):
    """Base exception for all roomsync errors."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class StoreError(RoomSyncError):
    """Raised when a store read or write is rejected or the transport fails."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: int = 500):
        self.code = code
        super().__init__(message, status_code=status_code)


class UniqueViolationError(StoreError):
    """Raised when an insert collides with an existing unique key."""

    CODE = "23505"

    def __init__(self, table: str, key: tuple):
        self.table = table
        self.key = key
        super().__init__(
            f"duplicate key value violates unique constraint on {table}: {key}",
            code=self.CODE,
            status_code=409,
        )


class RoomNotFoundError(StoreError):
    """Raised when a room does not exist (never created or already expired)."""

    def __init__(self, room: str):
        self.room = room
        super().__init__(f"Room not found: {room}", status_code=404)


class UsernameConflictError(StoreError):
    """Raised when a session token tries to rebind to a different username."""

    def __init__(self, room_id: str, existing: str, requested: str):
        self.room_id = room_id
        self.existing = existing
        self.requested = requested
        super().__init__(
            f"Session in room {room_id} is bound to '{existing}', "
            f"cannot rebind to '{requested}'",
            status_code=409,
        )


class UploadError(RoomSyncError):
    """Raised when a blob upload fails or is rejected locally."""


class ResponderError(RoomSyncError):
    """Raised when the external text generator fails."""

    def __init__(self, message: str, error_type: str = "internal_error", status_code: int = 500):
        self.error_type = error_type
        super().__init__(message, status_code=status_code)


class SessionError(RoomSyncError):
    """Raised when a room connection cannot reach the Active session state."""

    def __init__(self, message: str):
        super().__init__(message, status_code=403)


class NotRoomCreatorError(RoomSyncError):
    """Raised when a creator-only operation is attempted by another session."""

    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"Only the room creator can do this in room {room_id}", status_code=403)
