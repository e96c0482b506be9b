"""Session identity and room participant lifecycle."""
from .identity import IdentityStore, generate_session_token
from .manager import LeaveReason, RoomSessionManager, SessionState

__all__ = [
    "IdentityStore",
    "generate_session_token",
    "LeaveReason",
    "RoomSessionManager",
    "SessionState",
]
