"""Event scheduler for the dumbbell simulation.

This module defines the Scheduler class, the single authority advancing
virtual time. It is backed by a SimPy environment, whose event heap orders
entries by (time, priority, event id); every event is scheduled with the same
priority, so events with equal times run in the order they were scheduled.
"""

import itertools
import logging
import math
from typing import Any, Callable, Optional

import simpy

from onoff_sim.core.errors import SchedulingError

logger = logging.getLogger(__name__)


class EventHandle:
    """Handle for a scheduled event, used to cancel it.

    Attributes:
        time: Virtual time the event is scheduled for.
        sequence: Insertion sequence number, the tie-break between equal times.
        cancelled: Whether the event was cancelled before it fired.
        fired: Whether the callback has run.
    """

    __slots__ = ("time", "sequence", "callback", "args", "cancelled", "fired")

    def __init__(
        self, time: float, sequence: int, callback: Callable[..., Any], args: tuple
    ) -> None:
        self.time = time
        self.sequence = sequence
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    @property
    def pending(self) -> bool:
        """True while the event is neither cancelled nor fired."""
        return not (self.cancelled or self.fired)

    def __repr__(self) -> str:
        state = "pending" if self.pending else ("cancelled" if self.cancelled else "fired")
        return f"EventHandle(t={self.time}, seq={self.sequence}, {state})"


class Scheduler:
    """Virtual-time, single-threaded event scheduler.

    Attributes:
        env: SimPy environment holding the event queue and the clock.
        executed_count: Number of callbacks that have run.
    """

    def __init__(self, start_time: float = 0.0) -> None:
        """Initialize the scheduler.

        Args:
            start_time: Initial value of the simulation clock.
        """
        self.env = simpy.Environment(initial_time=start_time)
        self.executed_count = 0
        self._sequence = itertools.count()
        self._pending = 0
        self._running = False
        self._started = False

    @property
    def now(self) -> float:
        """Current virtual time."""
        return self.env.now

    @property
    def pending_count(self) -> int:
        """Number of scheduled events that are neither fired nor cancelled."""
        return self._pending

    @property
    def started(self) -> bool:
        """Whether ``run`` has been called at least once."""
        return self._started

    def schedule(
        self, time: float, callback: Callable[..., Any], *args: Any
    ) -> EventHandle:
        """Schedule ``callback(*args)`` at absolute virtual time ``time``.

        Args:
            time: Virtual time, not earlier than ``now``.
            callback: Action to invoke.
            *args: Arguments passed to the callback.

        Returns:
            Handle that can be passed to ``cancel``.

        Raises:
            SchedulingError: If ``time`` lies in the past or is not a number.
        """
        if math.isnan(time) or time < self.env.now:
            raise SchedulingError(
                f"Cannot schedule event at {time}, current time is {self.env.now}"
            )
        return self._push(time, time - self.env.now, callback, args)

    def schedule_in(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> EventHandle:
        """Schedule ``callback(*args)`` ``delay`` time units from now."""
        if math.isnan(delay) or delay < 0:
            raise SchedulingError(f"Cannot schedule event with negative delay {delay}")
        return self._push(self.env.now + delay, delay, callback, args)

    def _push(
        self, time: float, delay: float, callback: Callable[..., Any], args: tuple
    ) -> EventHandle:
        handle = EventHandle(time, next(self._sequence), callback, args)
        event = self.env.timeout(delay)
        event.callbacks.append(lambda _event: self._fire(handle))
        self._pending += 1
        return handle

    def _fire(self, handle: EventHandle) -> None:
        # Cancelled events stay in the queue and are skipped here.
        if handle.cancelled:
            return
        handle.fired = True
        self._pending -= 1
        self.executed_count += 1
        handle.callback(*handle.args)

    def cancel(self, handle: Optional[EventHandle]) -> bool:
        """Cancel a pending event.

        Args:
            handle: Handle returned by ``schedule``; None is accepted.

        Returns:
            True if the event was pending and is now cancelled, False if it
            already fired or was cancelled before.
        """
        if handle is None or not handle.pending:
            return False
        handle.cancelled = True
        self._pending -= 1
        return True

    def run(self, stop_time: float) -> None:
        """Execute events in time order up to and including ``stop_time``.

        Events scheduled after ``stop_time`` stay queued. On return the clock
        reads ``stop_time``.

        Args:
            stop_time: Last virtual time at which events may execute.

        Raises:
            SchedulingError: If called from inside a callback or with a stop
                time earlier than the current time.
        """
        if self._running:
            raise SchedulingError("Scheduler.run() is not re-entrant")
        if stop_time < self.env.now:
            raise SchedulingError(
                f"Stop time {stop_time} is earlier than current time {self.env.now}"
            )

        logger.debug("Running scheduler from %s until %s", self.env.now, stop_time)
        self._running = True
        self._started = True
        try:
            while True:
                next_time = self.env.peek()
                if next_time == math.inf or next_time > stop_time:
                    break
                self.env.step()
            if self.env.now < stop_time < math.inf:
                self.env.run(until=stop_time)
        finally:
            self._running = False
        logger.debug(
            "Scheduler halted at %s after %d events", self.env.now, self.executed_count
        )
