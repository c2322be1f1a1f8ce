"""
ClusterWave Architectural Contracts
====================================
Interfaces the protocol core consumes from its environment, and the error
taxonomy it raises.

The core only ever talks to:
- a Scheduler (monotonic clock + schedule/cancel)
- a Transport (broadcast + point-to-point send, lossy, no duplication)
- a MobilityModel (position of the local node)

Concrete reference implementations live in scheduler.py, channel.py and
mobility.py; nodes never depend on those classes directly.
"""

from typing import Protocol, Callable, Any, Sequence
import numpy as np


# =============================================================================
# ERRORS
# =============================================================================

class ProtocolError(Exception):
    """Base class for all ClusterWave errors."""
    pass


class ConfigurationError(ProtocolError):
    """Raised for invalid option values. Fatal at startup."""
    pass


class DegenerateGeometryError(ProtocolError):
    """
    Raised when member geometry cannot produce a density estimate
    (singular bandwidth matrix or non-finite normalization term).
    Collinear or coincident members trigger this.
    """
    pass


class InsufficientDataError(ProtocolError):
    """Raised when a density estimate is requested from fewer than two points."""
    pass


# =============================================================================
# COLLABORATOR INTERFACES
# =============================================================================

class TimerHandle(Protocol):
    """Handle to a scheduled callback"""

    def cancel(self) -> None:
        ...

    @property
    def is_pending(self) -> bool:
        ...


class Scheduler(Protocol):
    """
    Monotonic clock with schedule/cancel primitives.

    Callbacks run in nondecreasing time order, FIFO among equal times.
    """

    @property
    def now(self) -> float:
        ...

    def schedule(self, delay: float, callback: Callable[..., Any],
                 *args: Any) -> TimerHandle:
        ...


# Packet = ordered batch of wire messages sent together
Packet = Sequence[Any]
PacketHandler = Callable[[int, Packet], None]


class Transport(Protocol):
    """
    Unreliable single-hop transport and peer directory.

    Delivery is at-most-once: no duplication or corruption, but arbitrary
    loss and no ordering guarantee across peers.
    """

    def register(self, node_id: int, handler: PacketHandler) -> None:
        ...

    def unregister(self, node_id: int) -> None:
        ...

    def broadcast(self, sender_id: int, packet: Packet) -> int:
        ...

    def send_to(self, sender_id: int, peer_id: int, packet: Packet) -> bool:
        ...


class MobilityModel(Protocol):
    """Position source for the local node"""

    def position(self, now: float) -> np.ndarray:
        ...
