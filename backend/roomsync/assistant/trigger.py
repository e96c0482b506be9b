"""Assistant trigger: answers ``@asu`` / ``/asu`` mentions inside a room.

After a human text message is confirmed by the store, its content is
scanned for a mention. A match starts a side task that raises the room-wide
thinking indicator, asks the responder, and posts the reply through the same
``MessageSyncEngine.send_text`` path as any participant, authored by the
assistant. The triggering send has already succeeded, so nothing here can
affect its result. The indicator is cleared on every exit path.
"""
import asyncio
import logging
import re
from typing import Callable, List, Optional, Set

from ..messages.engine import MessageSyncEngine
from ..messages.schemas import Author, Message, MessageType
from ..presence.engine import PresenceEngine
from .base import ContextMessage, Responder
from .prompts import DEFAULT_CONTEXT_SIZE

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"(?:^|\s)[@/]asu\s+(\S.*)", re.IGNORECASE | re.DOTALL)


def detect_mention(content: str) -> Optional[str]:
    """Return the question following an assistant mention, or None."""
    match = MENTION_PATTERN.search(content)
    if not match:
        return None
    question = match.group(1).strip()
    return question or None


class AssistantTrigger:
    """Watches confirmed sends of one room and replies to mentions.

    Args:
        engine: Message engine the reply is posted through.
        responder: Reply generator.
        presence: Optional presence engine carrying the thinking indicator.
        context_size: Number of prior messages handed to the responder.
        on_failure: Called with the exception when a reply could not be
            produced; the default only logs.
    """

    def __init__(
        self,
        engine: MessageSyncEngine,
        responder: Responder,
        presence: Optional[PresenceEngine] = None,
        context_size: int = DEFAULT_CONTEXT_SIZE,
        on_failure: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.engine = engine
        self.responder = responder
        self.presence = presence
        self.context_size = context_size
        self.on_failure = on_failure
        self.thinking = False
        self._in_flight = 0
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    def attach(self) -> None:
        self.engine.add_send_listener(self._on_sent)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait for every in-flight reply task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _on_sent(self, message: Message) -> None:
        if self._closed or message.author.is_assistant or message.type != MessageType.TEXT:
            return
        question = detect_mention(message.content)
        if question is None:
            return

        context = self._context(exclude_id=message.id)
        task = asyncio.get_running_loop().create_task(self.respond(question, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _context(self, exclude_id: Optional[str] = None) -> List[ContextMessage]:
        recent = [
            m for m in self.engine.messages
            if not m.is_temporary and m.id != exclude_id and m.type != MessageType.FILE
        ]
        if self.context_size <= 0:
            return []
        return [ContextMessage.from_message(m) for m in recent[-self.context_size:]]

    async def respond(self, question: str, context: List[ContextMessage]) -> bool:
        """Ask the responder and post its reply.

        Returns:
            True if a reply message was sent.
        """
        logger.info(f"[Assistant] Answering mention in room {self.engine.room_id}")
        self._in_flight += 1
        try:
            if self._in_flight == 1:
                await self._set_thinking(True)
            reply = await self.responder.respond(question, context)
            sent = await self.engine.send_text(reply, MessageType.TEXT, Author.assistant())
            if not sent:
                logger.warning(f"[Assistant] Reply could not be posted in room {self.engine.room_id}")
            return sent
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[Assistant] Responder failed in room {self.engine.room_id}: {e}")
            if self.on_failure is not None:
                self.on_failure(e)
            return False
        finally:
            # Only the last reply still in flight lowers the indicator
            self._in_flight -= 1
            if self._in_flight == 0:
                await self._set_thinking(False)

    async def _set_thinking(self, flag: bool) -> None:
        self.thinking = flag
        if self.presence is not None:
            await self.presence.set_ai_thinking(flag)
