"""
Delayed-call scheduling: a pending-timer handle with cancel-and-reschedule
semantics, and the trailing-edge throttle and debouncer built on it.

The clock is injected (``Scheduler``) so tests can drive time by hand.
The default scheduler uses the running asyncio event loop.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """A clock that can run a callback after a delay (seconds)."""

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop.

    The loop is looked up on first use so the scheduler can be built
    before the loop is running.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self._get_loop().time()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        return self._get_loop().call_later(delay, callback)


class ScheduledTask:
    """
    A single pending call slot.

    ``schedule()`` cancels any pending call and starts a new delay;
    ``schedule_if_idle()`` only starts one when nothing is pending.
    """

    def __init__(self, scheduler: Scheduler, callback: Callable[[], Any]):
        self._scheduler = scheduler
        self._callback = callback
        self._handle: Optional[TimerHandle] = None
        self._due: Optional[float] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def due(self) -> Optional[float]:
        """Scheduler time at which the pending call fires, or None."""
        return self._due

    def schedule(self, delay: float) -> None:
        self.cancel()
        self._due = self._scheduler.now() + delay
        self._handle = self._scheduler.call_later(delay, self._fire)

    def schedule_if_idle(self, delay: float) -> bool:
        """Schedule unless a call is already pending. Returns True if scheduled."""
        if self._handle is not None:
            return False
        self.schedule(delay)
        return True

    def cancel(self) -> bool:
        """Cancel the pending call. Returns True if one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        self._due = None
        return True

    def run_now(self) -> bool:
        """Run the pending call immediately. Returns False if none was pending."""
        if not self.cancel():
            return False
        self._callback()
        return True

    def _fire(self) -> None:
        self._handle = None
        self._due = None
        self._callback()


class Throttle:
    """
    Trailing-edge throttle.

    The first call opens a window of ``interval`` seconds; further calls
    inside the window are absorbed. When the window closes ``action`` runs
    once, reading whatever state is current at that moment.
    """

    def __init__(self, scheduler: Scheduler, interval: float, action: Callable[[], Any]):
        self._interval = interval
        self._action = action
        self._task = ScheduledTask(scheduler, self._run)
        self.calls = 0
        self.runs = 0

    def __call__(self) -> None:
        self.calls += 1
        self._task.schedule_if_idle(self._interval)

    @property
    def pending(self) -> bool:
        return self._task.pending

    def flush(self) -> bool:
        """Close the window early. Returns True if an action ran."""
        return self._task.run_now()

    def cancel(self) -> bool:
        return self._task.cancel()

    def _run(self) -> None:
        self.runs += 1
        self._action()


class Debouncer:
    """
    Run ``action`` with the latest arguments once calls stop for ``delay`` seconds.
    """

    def __init__(self, scheduler: Scheduler, delay: float, action: Callable[..., Any]):
        self._delay = delay
        self._action = action
        self._args: tuple = ()
        self._kwargs: dict = {}
        self._task = ScheduledTask(scheduler, self._run)

    def __call__(self, *args, **kwargs) -> None:
        self._args = args
        self._kwargs = kwargs
        self._task.schedule(self._delay)

    @property
    def pending(self) -> bool:
        return self._task.pending

    def cancel(self) -> bool:
        return self._task.cancel()

    def _run(self) -> None:
        args, kwargs = self._args, self._kwargs
        self._args, self._kwargs = (), {}
        self._action(*args, **kwargs)
