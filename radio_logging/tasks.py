#!/usr/bin/env python3
"""
Cancellable Background Tasks

RepeatingTask runs an action over and over on its own thread. It re-checks
its stop condition before every iteration and after every pause, so it ends
as soon as its owner changes state or cancels it.

HoldRepeater repeats an action while a control is held: the press edge starts
a RepeatingTask, the release edge sets a flag the task polls. There is no
timeout; a lost release only delays the stop to the next pause boundary.
"""

import logging
import threading
import time
from typing import Callable, Optional


# Hold-to-repeat timing (ms)
HOLD_FIRST_DELAY_MS = 100
HOLD_REPEAT_MS = 33


class RepeatingTask:
    """
    Run `action` repeatedly until cancelled or `should_continue` turns false.

    Args:
        action: Called once per iteration.
        interval_s: Pause between iterations.
        should_continue: Optional stop condition, checked every iteration.
        first_delay_s: Pause after the first iteration (defaults to interval_s).
        sleep: Sleep function (injectable for tests).
        name: Thread name.
    """

    def __init__(
        self,
        action: Callable[[], None],
        interval_s: float,
        should_continue: Callable[[], bool] = None,
        first_delay_s: float = None,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "RepeatingTask",
        logger: logging.Logger = None,
    ):
        self.action = action
        self.interval_s = interval_s
        self.first_delay_s = interval_s if first_delay_s is None else first_delay_s
        self.name = name
        self.logger = logger or logging.getLogger(name)
        self.iterations = 0
        self._should_continue = should_continue
        self._sleep = sleep
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the task. Returns False if it is already running."""
        if self.running:
            return False

        self._cancelled.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return True

    def cancel(self):
        self._cancelled.set()

    def join(self, timeout: float = None):
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _continue(self) -> bool:
        if self._cancelled.is_set():
            return False
        return self._should_continue is None or self._should_continue()

    def _run(self):
        delay = self.first_delay_s
        while self._continue():
            try:
                self.action()
            except Exception as e:
                self.logger.error(f"{self.name} error: {e}")
            self.iterations += 1

            if not self._continue():
                break
            self._sleep(delay)
            delay = self.interval_s


class HoldRepeater:
    """Repeat an action for as long as a control is held."""

    def __init__(
        self,
        action: Callable[[], None],
        first_delay_ms: int = HOLD_FIRST_DELAY_MS,
        repeat_ms: int = HOLD_REPEAT_MS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.action = action
        self.first_delay_ms = first_delay_ms
        self.repeat_ms = repeat_ms
        self._sleep = sleep
        self._held = threading.Event()
        self.task: Optional[RepeatingTask] = None

    @property
    def held(self) -> bool:
        return self._held.is_set()

    def press(self) -> bool:
        """
        Press edge: start repeating. Ignored while already held.

        A task left over from an earlier hold (released, still in its last
        pause) is cancelled and replaced, so every press edge arms.
        """
        if self._held.is_set() and self.task and self.task.running:
            return False

        self._held.set()
        if self.task:
            self.task.cancel()
        self.task = RepeatingTask(
            self.action,
            interval_s=self.repeat_ms / 1000.0,
            first_delay_s=self.first_delay_ms / 1000.0,
            should_continue=self._held.is_set,
            sleep=self._sleep,
            name="HoldRepeater",
        )
        return self.task.start()

    def release(self):
        """Release edge: the running task stops at its next check."""
        self._held.clear()

    def join(self, timeout: float = None):
        if self.task:
            self.task.join(timeout)
