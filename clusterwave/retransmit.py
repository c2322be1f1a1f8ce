"""
ClusterWave Retransmission
===========================
Ack-driven retransmission of control messages.

Each task owns its acknowledgment state. It resends on a fixed interval
(no backoff) until it is acknowledged or forced satisfied.
"""

from typing import Callable, Dict, Optional
import logging

from .contracts import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class RetransmitTask:
    """Repeats one send until acknowledged"""

    def __init__(self, scheduler: Scheduler, send_fn: Callable[[], bool],
                 interval: float, label: str = "",
                 max_attempts: Optional[int] = None):
        self.scheduler = scheduler
        self.send_fn = send_fn
        self.interval = interval
        self.label = label
        self.max_attempts = max_attempts  # None = until acknowledged
        self.attempts = 0
        self._acknowledged = False
        self._timer: Optional[TimerHandle] = None

    @property
    def acknowledged(self) -> bool:
        return self._acknowledged

    @property
    def active(self) -> bool:
        return self._timer is not None and self._timer.is_pending

    def start(self, delay: float = 0.0):
        """Arm the first attempt after `delay`"""
        self._cancel_timer()
        self._timer = self.scheduler.schedule(delay, self.attempt)

    def attempt(self):
        if self._acknowledged:
            return
        self.attempts += 1
        if self.attempts > 1:
            logger.debug("Retry %s (attempt %d)", self.label, self.attempts)
        self.send_fn()
        if self.max_attempts is not None and self.attempts >= self.max_attempts:
            self._timer = None
            return
        self._timer = self.scheduler.schedule(self.interval, self.attempt)

    def acknowledge(self):
        """Ack received: stop retrying"""
        self._acknowledged = True
        self._cancel_timer()

    def force_satisfied(self):
        """Deadline reached: treat as delivered"""
        if not self._acknowledged:
            logger.debug("Giving up on %s after %d attempts", self.label, self.attempts)
        self.acknowledge()

    def cancel(self):
        """Withdraw the task without marking it delivered"""
        self._cancel_timer()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class RetransmitTable:
    """Per-peer retransmission tasks for one message kind"""

    def __init__(self):
        self.tasks: Dict[int, RetransmitTask] = {}

    def replace(self, peer_id: int, task: RetransmitTask) -> RetransmitTask:
        old = self.tasks.get(peer_id)
        if old is not None:
            old.cancel()
        self.tasks[peer_id] = task
        return task

    def acknowledge(self, peer_id: int) -> bool:
        """Route an ack to its task. Unknown peers are ignored."""
        task = self.tasks.get(peer_id)
        if task is None:
            return False
        task.acknowledge()
        return True

    def force_all(self):
        for task in self.tasks.values():
            task.force_satisfied()

    def cancel_all(self):
        for task in self.tasks.values():
            task.cancel()

    def ack_flags(self) -> Dict[int, bool]:
        return {peer_id: task.acknowledged for peer_id, task in self.tasks.items()}

    def __contains__(self, peer_id: int) -> bool:
        return peer_id in self.tasks

    def __len__(self) -> int:
        return len(self.tasks)
