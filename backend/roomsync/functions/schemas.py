"""Request/response bodies of the room functions.

Field names are camelCase on the wire to match existing clients.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class CreateRoomRequest(BaseModel):
    isPrivate: bool
    password: Optional[str] = None
    sessionToken: Optional[str] = None


class RoomInfo(BaseModel):
    """Public view of a room; never carries the password hash."""
    id: str
    code: str
    created_at: datetime
    room_type: str

    @classmethod
    def from_row(cls, row: dict) -> "RoomInfo":
        return cls(
            id=row["id"], code=row["code"],
            created_at=row["created_at"], room_type=row["room_type"],
        )


class CreateRoomResponse(BaseModel):
    room: RoomInfo


class VerifyPasswordRequest(BaseModel):
    roomCode: str
    password: str


class VerifyPasswordResponse(BaseModel):
    valid: bool
    room: RoomInfo


class ContextItem(BaseModel):
    username: str = ""
    content: str = ""
    authorKind: Optional[str] = None


class ChatAIRequest(BaseModel):
    message: Optional[str] = None
    conversationContext: List[ContextItem] = Field(default_factory=list)


class ChatAIResponse(BaseModel):
    response: str


class ExpiredRoom(BaseModel):
    id: str
    code: str


class CleanupResponse(BaseModel):
    success: bool
    deleted: int
    rooms: List[ExpiredRoom]
