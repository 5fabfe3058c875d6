import asyncio
from typing import Coroutine, Any, Set
from loguru import logger
from datetime import datetime, timezone


def make_link_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every TransportLink calls this once in __init__.
    Keys: frames_received, frames_sent, reconnect_count, sockets_opened,
          last_frame_at, created_at.
    """
    return {
        "frames_received": 0,
        "frames_sent": 0,
        "reconnect_count": 0,
        "sockets_opened": 0,
        "last_frame_at": None,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


def backoff_delay(
    attempt: int,
    base_delay_s: float = 1.0,
    min_delay_s: float = 2.0,
    max_delay_s: float = 30.0,
) -> float:
    """
    Exponential backoff: base * 2^attempt, never below `min_delay_s` and never
    above `max_delay_s`. No jitter, so consecutive delays never shrink.
    """
    return max(min_delay_s, min(base_delay_s * (2 ** attempt), max_delay_s))


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class TaskSet:
    """
    Holds strong references to fire-and-forget background tasks so they are not
    garbage collected mid-flight, and cancels them all on shutdown.
    """

    def __init__(self, name: str = "tasks"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"taskset={self.name} task={task.get_name()} event=error reason='{exc}'")

    async def drain(self) -> None:
        """Wait until every task, including ones spawned while waiting, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)
