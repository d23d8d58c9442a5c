from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """
    Delayed callbacks within one browsing context.

    Pending callbacks are dropped, not awaited, when the context is torn down.
    """

    def call_later(self, delay_seconds: float, callback: Callable[[], Any]) -> TimerHandle:
        ...


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop (the running loop by default)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay_seconds: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay_seconds), callback)
