"""Room assistant: mention detection and pluggable responders.

Usage:
    from roomsync.assistant import AssistantTrigger, build_responder

    responder = build_responder(get_config())
    trigger = AssistantTrigger(engine, responder, presence)
    trigger.attach()
"""
from .anthropic_responder import AnthropicResponder
from .base import ContextMessage, Responder
from .function_responder import FunctionResponder
from .openai_responder import OpenAIResponder
from .resolver import build_responder
from .trigger import MENTION_PATTERN, AssistantTrigger, detect_mention

__all__ = [
    "AnthropicResponder",
    "AssistantTrigger",
    "ContextMessage",
    "FunctionResponder",
    "MENTION_PATTERN",
    "OpenAIResponder",
    "Responder",
    "build_responder",
    "detect_mention",
]
