"""
Cancellable single-slot timer

At most one callback is pending. Scheduling again replaces the pending one.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from schoolfeed.core.logging_config import logger

TimerCallback = Callable[[], Awaitable[Any]]


class CancellableTimer(ABC):

    @abstractmethod
    def schedule(self, delay: float, callback: TimerCallback) -> None:
        """Run `callback` after `delay` seconds, cancelling any pending run"""

    @abstractmethod
    def cancel(self) -> None:
        ...

    @property
    @abstractmethod
    def pending(self) -> bool:
        ...


class AsyncioTimer(CancellableTimer):
    """Timer on the running event loop (loop.call_later)"""

    def __init__(self):
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    def schedule(self, delay: float, callback: TimerCallback) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire, callback)

    def _fire(self, callback: TimerCallback) -> None:
        self._handle = None
        self._task = asyncio.ensure_future(self._run(callback))

    async def _run(self, callback: TimerCallback) -> None:
        try:
            await callback()
        except Exception as e:
            logger.log_error_with_context(e, context="AsyncioTimer")

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def pending(self) -> bool:
        return self._handle is not None
