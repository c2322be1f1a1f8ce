"""
ClusterWave Wireless Channel
=============================
In-memory single-hop channel and peer directory for simulated fleets.

- Broadcasts reach every other registered node; receivers apply their own
  range check
- Point-to-point sends reach one registered peer
- Every delivery is scheduled on the event scheduler and may be lost
  independently (Bernoulli loss), never duplicated
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import logging
import numpy as np

from .contracts import Packet, PacketHandler, Scheduler

logger = logging.getLogger(__name__)

# drop_filter(sender_id, peer_id, packet) -> True to drop the delivery
DropFilter = Callable[[int, int, Packet], bool]


@dataclass
class DeliveryRecord:
    """One attempted delivery"""
    time: float
    sender_id: int
    peer_id: int
    packet: Packet
    delivered: bool
    unicast: bool


class WirelessChannel:
    """
    Lossy single-hop transport shared by all nodes of a simulation.

    Handles:
    1. Node registration (the peer directory)
    2. Broadcast and unicast delivery through the scheduler
    3. Random and scripted loss
    4. Delivery statistics
    """

    def __init__(self, scheduler: Scheduler, loss_rate: float = 0.0,
                 latency: float = 0.0, rng: Optional[np.random.Generator] = None,
                 record_history: bool = False):
        if not 0.0 <= loss_rate < 1.0:
            raise ValueError(f"loss_rate must be in [0, 1), got {loss_rate}")
        if latency < 0:
            raise ValueError("latency must be non-negative")

        self.scheduler = scheduler
        self.loss_rate = loss_rate
        self.latency = latency
        self.rng = rng if rng is not None else np.random.default_rng()
        self.record_history = record_history

        self.handlers: Dict[int, PacketHandler] = {}
        self.drop_filter: Optional[DropFilter] = None
        self.history: List[DeliveryRecord] = []

        # Statistics
        self.packets_sent = 0
        self.deliveries = 0
        self.drops = 0

    def register(self, node_id: int, handler: PacketHandler):
        """Attach a node's packet handler to the directory"""
        self.handlers[node_id] = handler

    def unregister(self, node_id: int):
        self.handlers.pop(node_id, None)

    def is_registered(self, node_id: int) -> bool:
        return node_id in self.handlers

    def broadcast(self, sender_id: int, packet: Packet) -> int:
        """
        Broadcast a packet to every other node.

        Returns:
            Number of deliveries scheduled (after loss)
        """
        self.packets_sent += 1
        scheduled = 0
        for peer_id in list(self.handlers):
            if peer_id == sender_id:
                continue
            if self._deliver(sender_id, peer_id, packet, unicast=False):
                scheduled += 1
        return scheduled

    def send_to(self, sender_id: int, peer_id: int, packet: Packet) -> bool:
        """
        Send a packet to one peer.

        Returns:
            False if the peer is unknown or the packet was lost
        """
        self.packets_sent += 1
        if peer_id not in self.handlers:
            logger.debug("Unicast from %d to unknown peer %d dropped", sender_id, peer_id)
            return False
        return self._deliver(sender_id, peer_id, packet, unicast=True)

    def _deliver(self, sender_id: int, peer_id: int, packet: Packet,
                 unicast: bool) -> bool:
        dropped = False
        if self.drop_filter is not None and self.drop_filter(sender_id, peer_id, packet):
            dropped = True
        elif self.loss_rate > 0 and self.rng.random() < self.loss_rate:
            dropped = True

        if self.record_history:
            self.history.append(DeliveryRecord(
                time=self.scheduler.now, sender_id=sender_id, peer_id=peer_id,
                packet=packet, delivered=not dropped, unicast=unicast,
            ))

        if dropped:
            self.drops += 1
            return False

        self.scheduler.schedule(self.latency, self._dispatch, sender_id, peer_id, packet)
        return True

    def _dispatch(self, sender_id: int, peer_id: int, packet: Packet):
        # Peer may have left between send and delivery
        handler = self.handlers.get(peer_id)
        if handler is None:
            return
        self.deliveries += 1
        handler(sender_id, packet)

    def deliveries_of(self, message_type: type) -> List[DeliveryRecord]:
        """Recorded deliveries whose packet carries a message of this type"""
        return [rec for rec in self.history
                if any(isinstance(m, message_type) for m in rec.packet)]

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "registered": len(self.handlers),
            "packets_sent": self.packets_sent,
            "deliveries": self.deliveries,
            "drops": self.drops,
            "loss_rate": self.loss_rate,
        }
