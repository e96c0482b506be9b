"""Per-install session identity: an opaque token plus a chosen display name.

There is no server-side authentication. The token is generated once and
persisted in a small JSON file, the client-side counterpart of browser
local storage; the display name lives next to it.
"""
import json
import logging
import secrets
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Display names longer than this are truncated
MAX_USERNAME_LENGTH = 50


def generate_session_token() -> str:
    """Return 32 random bytes as 64 lowercase hex characters."""
    return secrets.token_hex(32)


class IdentityStore:
    """Reads and writes the session token and username file."""

    def __init__(self, path: str) -> None:
        self.path = Path(path).expanduser()
        self._data = self._read()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8")) or {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable identity file %s: %s", self.path, e)
            return {}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")

    @property
    def session_token(self) -> str:
        """The persisted token, created on first access."""
        token = self._data.get("session_token")
        if not token:
            token = generate_session_token()
            self._data["session_token"] = token
            self._write()
        return token

    @property
    def username(self) -> Optional[str]:
        return self._data.get("username") or None

    @property
    def has_username(self) -> bool:
        return bool(self.username)

    def set_username(self, name: str) -> str:
        trimmed = name.strip()[:MAX_USERNAME_LENGTH]
        self._data["username"] = trimmed
        self._write()
        return trimmed

    def clear_username(self) -> None:
        self._data.pop("username", None)
        self._write()
