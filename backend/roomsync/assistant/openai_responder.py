"""OpenAI-compatible chat-completions responder.

Works against OpenAI itself or any gateway exposing the same
``/v1/chat/completions`` API (set ``base_url``).

Usage:
    responder = OpenAIResponder(api_key="sk-...", model="gpt-4o-mini")
    reply = await responder.respond(question, context)
"""
import logging
from typing import List, Optional

from ..errors import ResponderError
from .base import ContextMessage, Responder
from .prompts import DEFAULT_CONTEXT_SIZE, build_chat_messages

logger = logging.getLogger(__name__)


class OpenAIResponder(Responder):
    """Responder using the official OpenAI async client.

    Attributes:
        api_key: API key for the endpoint.
        model: Chat model name.
        base_url: Optional gateway URL.
        max_tokens: Reply length cap.
    """

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 800,
        context_size: int = DEFAULT_CONTEXT_SIZE,
    ) -> None:
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.context_size = context_size
        self._client: Optional[object] = None

    def _get_client(self) -> object:
        """Get or create the OpenAI client.

        Raises:
            ImportError: If openai package is not installed.
        """
        if self._client is None:
            try:
                import openai
                kwargs = {"api_key": self.api_key}
                if self.base_url:
                    kwargs["base_url"] = self.base_url
                self._client = openai.AsyncOpenAI(**kwargs)
            except ImportError:
                raise ImportError(
                    "openai package is required for OpenAIResponder. "
                    "Install it with: pip install openai"
                )
        return self._client

    async def respond(self, question: str, context: List[ContextMessage]) -> str:
        messages = build_chat_messages(question, context, self.context_size)
        logger.info(f"Calling {self.model} with {len(messages)} messages")

        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=messages,
            )
        except Exception as e:
            logger.error(f"OpenAI responder error: {e}")
            raise ResponderError(str(e)) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ResponderError("AI returned an empty response")
        return content.strip()
