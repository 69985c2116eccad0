# --------------------------------------------------------------------
# utils/event_bus.py
# --------------------------------------------------------------------
"""A super-light, asyncio-based pub/sub for domain events.

One bus is created per engine instance (see ``core.initialization``) and
handed to every component that publishes or consumes events."""
from __future__ import annotations
import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, Union

from utils.logger import setup_logger

_Handler = Callable[[object], Union[Awaitable[None], None]]


class EventBus:
    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._subs: Dict[str, List[_Handler]] = defaultdict(list)
        self._q: asyncio.Queue[tuple[str, object]] = asyncio.Queue()
        # background task started lazily on first publish
        self._task: asyncio.Task | None = None
        self.logger = logger or setup_logger("EventBus")

    # -------------------------------------------------------------- #
    def subscribe(self, topic: str, fn: _Handler) -> None:
        self._subs[topic].append(fn)

    def unsubscribe(self, topic: str, fn: _Handler) -> None:
        handlers = self._subs.get(topic, [])
        if fn in handlers:
            handlers.remove(fn)

    def publish(self, topic: str, payload: object) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._worker())
        self._q.put_nowait((topic, payload))

    async def join(self) -> None:
        """Wait until every event published so far has been handled."""
        if self._task is None:
            return
        await self._q.join()

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    # -------------------------------------------------------------- #
    async def _worker(self) -> None:
        while True:
            topic, payload = await self._q.get()
            try:
                for fn in list(self._subs.get(topic, [])):
                    try:
                        res = fn(payload)
                        if asyncio.iscoroutine(res):
                            await res
                    except Exception:  # keep bus alive
                        self.logger.exception("[event_bus] handler error on %s", topic)
            finally:
                self._q.task_done()
