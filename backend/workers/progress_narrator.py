"""Delayed "still working" status edits that never affect the operation itself."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional, Set

logger = logging.getLogger(__name__)


class ProgressNarrator:
    """
    Schedules status-message edits after a delay.

    Every scheduled edit is cancelled when the stage it narrates settles,
    so a late "still working" notice never overwrites a final result.
    """

    def __init__(self, chat, chat_id: int, message_id: Optional[int]):
        self.chat = chat
        self.chat_id = chat_id
        self.message_id = message_id
        self._tasks: Set[asyncio.Task] = set()

    async def _edit_later(self, delay: float, text: str):
        await asyncio.sleep(delay)
        if self.message_id is None:
            return
        try:
            await self.chat.edit_message(self.chat_id, self.message_id, text)
        except Exception as e:
            logger.warning(f"Progress notice for message {self.message_id} failed: {e}")

    def schedule(self, delay: float, text: str) -> asyncio.Task:
        task = asyncio.create_task(self._edit_later(delay, text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @asynccontextmanager
    async def stage(self, delay: float, text: str):
        """Narrate one stage; the notice is cancelled however the stage ends."""
        task = self.schedule(delay, text)
        try:
            yield
        finally:
            task.cancel()

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())
