"""Cancellable deferred actions for question timers.

``BackgroundScheduler`` sleeps in a Socket.IO background task so it works with
whichever async mode the server runs (threading, eventlet, gevent).
``ManualScheduler`` is used under TESTING: armed timers wait until a test fires
them.
"""

import time
from typing import Any, Callable, List, Optional, Tuple


class TimerHandle:
    def __init__(self, delay: float, label: str = ''):
        self.delay = delay
        self.label = label
        self.deadline = time.time() + delay
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.time())


class BackgroundScheduler:

    def __init__(self, socketio, logger=None, heartbeat_sec: int = 0):
        self.socketio = socketio
        self.logger = logger
        self.heartbeat_sec = heartbeat_sec

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any, label: str = '') -> TimerHandle:
        handle = TimerHandle(delay, label)
        self.socketio.start_background_task(self._worker, handle, callback, args)
        return handle

    def _worker(self, handle: TimerHandle, callback: Callable[..., Any], args: Tuple[Any, ...]) -> None:
        hb = self.heartbeat_sec
        step_size = hb if hb and hb > 0 else handle.delay
        slept = 0.0
        while slept < handle.delay and not handle.cancelled:
            step = min(step_size, handle.delay - slept)
            self.socketio.sleep(step)
            slept += step
            if hb and hb > 0 and self.logger is not None and not handle.cancelled:
                self.logger.info(f"[timer-heartbeat] {handle.label} remaining={max(0.0, handle.delay - slept)}s")
        if handle.cancelled:
            return
        handle.fired = True
        try:
            callback(*args)
        except Exception:
            # A failing timer must not take the worker (or other sessions) down with it
            if self.logger is not None:
                self.logger.exception(f"[timer-error] {handle.label}")


class ManualScheduler:
    """Collects armed timers; tests fire them explicitly."""

    def __init__(self):
        self._queue: List[Tuple[TimerHandle, Callable[..., Any], Tuple[Any, ...]]] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any, label: str = '') -> TimerHandle:
        handle = TimerHandle(delay, label)
        self._queue.append((handle, callback, args))
        return handle

    def armed(self) -> List[TimerHandle]:
        return [h for h, _, _ in self._queue if h.active]

    def fire_next(self) -> Optional[TimerHandle]:
        """Fire the oldest still-armed timer, as if its delay had elapsed."""
        while self._queue:
            handle, callback, args = self._queue.pop(0)
            if not handle.active:
                continue
            handle.fired = True
            callback(*args)
            return handle
        return None

    def run_until_idle(self, limit: int = 1000) -> int:
        fired = 0
        while fired < limit and self.fire_next() is not None:
            fired += 1
        return fired
