"""
ClusterWave Event Scheduler
============================
Discrete-event clock used by the simulation harness.

Callbacks run in nondecreasing time order; callbacks scheduled for the
same instant run in the order they were scheduled.
"""

from typing import Any, Callable, List, Optional, Tuple
import heapq
import logging

logger = logging.getLogger(__name__)


class EventHandle:
    """Cancellable reference to a scheduled callback"""

    __slots__ = ("time", "callback", "args", "_cancelled", "_fired")

    def __init__(self, time: float, callback: Callable[..., Any], args: Tuple):
        self.time = time
        self.callback = callback
        self.args = args
        self._cancelled = False
        self._fired = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def is_pending(self) -> bool:
        return not (self._cancelled or self._fired)

    def __repr__(self) -> str:
        state = "pending" if self.is_pending else ("cancelled" if self._cancelled else "fired")
        name = getattr(self.callback, "__name__", repr(self.callback))
        return f"EventHandle({name} @ {self.time:.6f}, {state})"


class EventScheduler:
    """
    Heap-based discrete-event scheduler.

    Key operations:
    1. schedule(delay, callback, *args) -> EventHandle
    2. run(until) drains events up to a time horizon
    3. step() fires exactly one event
    """

    def __init__(self, start_time: float = 0.0):
        self._now = float(start_time)
        self._queue: List[Tuple[float, int, EventHandle]] = []
        self._seq = 0
        self.events_fired = 0

    @property
    def now(self) -> float:
        return self._now

    def schedule(self, delay: float, callback: Callable[..., Any],
                 *args: Any) -> EventHandle:
        """Schedule callback(*args) after `delay` seconds"""
        if delay < 0:
            raise ValueError(f"Cannot schedule into the past (delay={delay})")
        return self.schedule_at(self._now + delay, callback, *args)

    def schedule_at(self, time: float, callback: Callable[..., Any],
                    *args: Any) -> EventHandle:
        """Schedule callback(*args) at an absolute time"""
        if time < self._now:
            raise ValueError(f"Cannot schedule at {time} before now={self._now}")
        handle = EventHandle(time, callback, args)
        heapq.heappush(self._queue, (time, self._seq, handle))
        self._seq += 1
        return handle

    def _pop_live(self) -> Optional[EventHandle]:
        while self._queue:
            _, _, handle = self._queue[0]
            if handle.cancelled:
                heapq.heappop(self._queue)
                continue
            return handle
        return None

    def peek_time(self) -> Optional[float]:
        """Time of the next live event, None if idle"""
        handle = self._pop_live()
        return None if handle is None else handle.time

    def step(self) -> bool:
        """Fire the next live event. Returns False when idle."""
        handle = self._pop_live()
        if handle is None:
            return False
        heapq.heappop(self._queue)
        self._now = handle.time
        handle._fired = True
        self.events_fired += 1
        handle.callback(*handle.args)
        return True

    def run(self, until: Optional[float] = None) -> int:
        """
        Fire events in order until the queue is empty or the horizon is reached.

        Args:
            until: Absolute time horizon (inclusive). None drains the queue.

        Returns:
            Number of events fired
        """
        fired = 0
        while True:
            next_time = self.peek_time()
            if next_time is None or (until is not None and next_time > until):
                break
            self.step()
            fired += 1

        if until is not None and until > self._now:
            self._now = float(until)
        logger.debug("Scheduler ran %d events, now=%.4f", fired, self._now)
        return fired

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if h.is_pending)

    def __len__(self) -> int:
        return self.pending
