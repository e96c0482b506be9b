"""Server-side room functions (FastAPI router in ``router``)."""
from .dependencies import get_responder, get_store, set_responder, set_store

__all__ = [
    "get_responder",
    "get_store",
    "set_responder",
    "set_store",
]
