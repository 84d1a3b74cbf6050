import asyncio
import logging

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("session_controller")


class SessionController:
    """Owns the background tasks of one interview session."""

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self.stop_event = asyncio.Event()
        self.tasks: set[asyncio.Task] = set()

    def create_task(self, coro):
        if self.stop_event.is_set():
            coro.close()
            logger.info("Task rejected after stop | session_id=%s", self.session_id)
            return None
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self.tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session task failed | session_id=%s err=%s", self.session_id, exc, exc_info=exc)

    async def stop(self):
        if not self.stop_event.is_set():
            self.stop_event.set()

        tasks = list(self.tasks)
        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)
