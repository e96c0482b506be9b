"""Pick the configured responder."""
import logging
from typing import Optional

from ..config import AppSettings
from .anthropic_responder import AnthropicResponder
from .base import Responder
from .function_responder import FunctionResponder
from .openai_responder import OpenAIResponder

logger = logging.getLogger(__name__)


def build_responder(settings: AppSettings) -> Optional[Responder]:
    """Create the responder named by ``settings.ai.provider``.

    Returns:
        The responder, or None when AI is disabled or not configured.
    """
    ai = settings.ai
    if not ai.enabled:
        logger.info("AI features disabled, no responder")
        return None

    context_size = settings.sync.assistant_context_size

    if ai.provider == "function":
        if not ai.base_url:
            logger.warning("ai.provider=function requires ai.base_url; responder disabled")
            return None
        return FunctionResponder(ai.base_url)

    if ai.provider == "anthropic":
        api_key = settings.secrets.anthropic.api_key
        if not api_key:
            logger.warning("No Anthropic API key configured; responder disabled")
            return None
        return AnthropicResponder(
            api_key, model=ai.model, base_url=ai.base_url,
            max_tokens=ai.max_tokens, context_size=context_size,
        )

    api_key = settings.secrets.openai.api_key
    if not api_key:
        logger.warning("No OpenAI API key configured; responder disabled")
        return None
    return OpenAIResponder(
        api_key, model=ai.model, base_url=ai.base_url,
        max_tokens=ai.max_tokens, context_size=context_size,
    )
