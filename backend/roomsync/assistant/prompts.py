"""Prompt templates for the room assistant.

The persona answers in plain English by default and mirrors the user's
language style (including Telugu-English mix) when the user writes that way.
"""
from typing import List

from .base import ContextMessage

# Number of prior messages forwarded to the model
DEFAULT_CONTEXT_SIZE = 10

ASSISTANT_SYSTEM_PROMPT = """You are Asu, a friendly and helpful AI assistant taking part in a group chat room.

Language:
- By default, respond in clear, simple English.
- If the user writes in Tenglish (Telugu and English mixed, in Roman script), reply in Tenglish.
- Otherwise match the user's language style.

Style:
- Warm and encouraging, like a helpful friend.
- Concise but complete answers; step-by-step when explaining how to do something.
- Use emojis sparingly (at most one or two per reply).

You can help with any topic: programming and debugging, maths and science,
writing, and general questions. Use the recent chat messages for context;
each one is prefixed with the sender's name."""


def format_context_line(message: ContextMessage) -> str:
    return f"{message.author}: {message.content}"


def build_chat_messages(
    question: str,
    context: List[ContextMessage],
    context_size: int = DEFAULT_CONTEXT_SIZE,
) -> List[dict]:
    """Build an OpenAI-style message list: system, prior turns, question."""
    messages = [{"role": "system", "content": ASSISTANT_SYSTEM_PROMPT}]
    for msg in context[-context_size:] if context_size > 0 else []:
        messages.append({
            "role": "assistant" if msg.is_assistant else "user",
            "content": format_context_line(msg),
        })
    messages.append({"role": "user", "content": question})
    return messages


def build_transcript_prompt(
    question: str,
    context: List[ContextMessage],
    context_size: int = DEFAULT_CONTEXT_SIZE,
) -> str:
    """Single user turn holding the transcript, for APIs that need alternating roles."""
    recent = context[-context_size:] if context_size > 0 else []
    if not recent:
        return question
    transcript = "\n".join(format_context_line(m) for m in recent)
    return f"Recent chat messages:\n{transcript}\n\nQuestion: {question}"
