"""roomsync: realtime chat-room state synchronization.

Usage:
    from roomsync.client import connect
    from roomsync.store import MemoryStore

    store = MemoryStore()
    room = await store.create_room("1234")
    conn = await connect(store, room["id"], session_token=token, username="ravi")
"""

__version__ = "0.1.0"
