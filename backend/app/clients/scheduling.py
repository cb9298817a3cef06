"""
Timer seam for the client state machines.

Machines never touch the event loop directly; they ask a Scheduler for a
DelayedCall and keep it as the cancel token. Cancelling the DelayedCall
guarantees the callback never fires, which is what keeps a stale
auto-reset from clobbering a scan cycle that started after it was armed.
"""

import asyncio
from typing import Any, Callable, Optional, Protocol


class DelayedCall(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], Any]) -> DelayedCall: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio loop (TimerHandle is the DelayedCall)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> DelayedCall:
        return self.loop.call_later(delay, callback)


def cancel_quietly(call: Optional[DelayedCall]) -> None:
    if call is not None and not call.cancelled():
        call.cancel()
