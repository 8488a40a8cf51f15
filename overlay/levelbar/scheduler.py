"""One-shot, cancelable deferred calls for the overlay state machine.

The state machine only needs two things from its host: the current time
and `call_later(delay, fn)` returning a handle with `cancel()`. In the
server that is the asyncio event loop, which also guarantees ticks and
events never interleave.
"""

import asyncio
from typing import Callable, Protocol


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, fn: Callable[[], None]) -> Handle: ...


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop (loop.time / call_later)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self.loop = loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, fn: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, fn)
