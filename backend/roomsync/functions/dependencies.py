"""Process-wide services shared by the room functions.

Set once by the application lifespan (or a test) and read by the router.
"""
from typing import Optional

from ..assistant.base import Responder
from ..errors import RoomSyncError
from ..store.base import Store

_store: Optional[Store] = None
_responder: Optional[Responder] = None


def set_store(store: Optional[Store]) -> None:
    global _store
    _store = store


def get_store() -> Store:
    if _store is None:
        raise RoomSyncError("Store is not initialised", status_code=503)
    return _store


def set_responder(responder: Optional[Responder]) -> None:
    global _responder
    _responder = responder


def get_responder() -> Optional[Responder]:
    return _responder
