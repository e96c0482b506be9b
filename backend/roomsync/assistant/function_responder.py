"""Responder calling the server-side ``chat-ai`` room function over HTTP.

Keeps model credentials on the server: the client only knows the function
URL. Error bodies ``{error, errorType}`` become ResponderError.
"""
import logging
from typing import List, Optional

import httpx

from ..errors import ResponderError
from .base import ContextMessage, Responder

logger = logging.getLogger(__name__)

CHAT_AI_PATH = "/functions/chat-ai"

# Default timeout for the chat-ai function (in seconds)
DEFAULT_TIMEOUT_SECONDS = 60.0


class FunctionResponder(Responder):
    """Responder posting to ``{base_url}/functions/chat-ai``."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def respond(self, question: str, context: List[ContextMessage]) -> str:
        payload = {
            "message": question,
            "conversationContext": [m.to_payload() for m in context],
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(CHAT_AI_PATH, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"chat-ai request failed: {e}")
            raise ResponderError(f"chat-ai request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code != 200:
            raise ResponderError(
                data.get("error") or f"chat-ai returned status {resp.status_code}",
                error_type=data.get("errorType", "internal_error"),
                status_code=resp.status_code,
            )

        reply = data.get("response")
        if not reply:
            raise ResponderError("AI returned an empty response")
        return reply
