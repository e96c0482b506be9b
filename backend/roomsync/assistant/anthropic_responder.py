"""Anthropic messages-API responder.

Usage:
    responder = AnthropicResponder(api_key="sk-ant-...")
    reply = await responder.respond(question, context)
"""
import logging
from typing import List, Optional

from ..errors import ResponderError
from .base import ContextMessage, Responder
from .prompts import ASSISTANT_SYSTEM_PROMPT, DEFAULT_CONTEXT_SIZE, build_transcript_prompt

logger = logging.getLogger(__name__)


class AnthropicResponder(Responder):
    """Responder using Anthropic's async client.

    Prior messages are sent as one transcript turn so roles always alternate.
    """

    DEFAULT_MODEL = "claude-3-5-haiku-latest"

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
        """Get or create the Anthropic client.

        Raises:
            ImportError: If anthropic package is not installed.
        """
        if self._client is None:
            try:
                import anthropic
                kwargs = {"api_key": self.api_key}
                if self.base_url:
                    kwargs["base_url"] = self.base_url
                self._client = anthropic.AsyncAnthropic(**kwargs)
            except ImportError:
                raise ImportError(
                    "anthropic package is required for AnthropicResponder. "
                    "Install it with: pip install anthropic"
                )
        return self._client

    async def respond(self, question: str, context: List[ContextMessage]) -> str:
        prompt = build_transcript_prompt(question, context, self.context_size)
        try:
            response = await self._get_client().messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=ASSISTANT_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:
            logger.error(f"Anthropic responder error: {e}")
            raise ResponderError(str(e)) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            raise ResponderError("AI returned an empty response")
        return text.strip()
