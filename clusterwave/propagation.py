"""
ClusterWave Propagation Coordinator
====================================
Wavefront timing and direction across clusters.

Given the position and velocity of a wave entering a cluster, the
coordinator picks, in every neighbouring cluster's distribution map, the
nearest plausible member location ahead of the wave, derives one outgoing
direction per neighbour cluster and a combined direction for the local
members, and relaxes start times as offers arrive:

    t_new = t_offer + delay        accepted only if t_now < t_new < t_current

Repeated relaxation spreads the earliest start time outward like a
single-source shortest-path computation.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging
import math
import numpy as np
from scipy.spatial.distance import cdist

from .config import ProtocolConfig
from .density import DistributionMap
from .geometry import as_vector, distance, is_in_sector, normalize, propagation_delay, speed
from .registry import NodeRecord
from .retransmit import RetransmitTable

logger = logging.getLogger(__name__)


@dataclass
class PropagationState:
    """
    Wavefront schedule of one node.

    start_time only ever decreases, and never to a time already past.
    Unset times are +inf.
    """
    direction: np.ndarray = field(default_factory=lambda: np.zeros(3))
    start_time: float = math.inf
    first_start_time: float = math.inf
    first_start_node_id: Optional[int] = None

    @property
    def has_direction(self) -> bool:
        return speed(self.direction) > 0.0

    @property
    def scheduled(self) -> bool:
        return math.isfinite(self.start_time)

    def lower_start_time(self, candidate: float, now: float,
                         inclusive: bool = False) -> bool:
        """
        Ratchet start_time down to `candidate`.

        Args:
            candidate: Proposed start time
            now: Current time; candidates not strictly in the future are refused
            inclusive: Also accept a candidate equal to the current value

        Returns:
            True if start_time was updated
        """
        if candidate <= now:
            return False
        if inclusive:
            if candidate > self.start_time:
                return False
        elif candidate >= self.start_time or now >= self.start_time:
            return False
        self.start_time = candidate
        return True

    def lower_first_start_time(self, candidate: float, now: float,
                               node_id: Optional[int]) -> bool:
        """Ratchet the cluster-wide first start time"""
        if candidate <= now or candidate >= self.first_start_time:
            return False
        self.first_start_time = candidate
        self.first_start_node_id = node_id
        return True


@dataclass
class ForwardingCandidate:
    """Nearest plausible member of a neighbour cluster ahead of the wave"""
    cluster_id: int
    position: np.ndarray
    direction: np.ndarray
    distance: float


class PropagationCoordinator:
    """
    Per-node propagation bookkeeping.

    Handles:
    1. Cache of neighbour-cluster distribution maps and head records
    2. Forwarding candidate selection (sector test + nearest cell)
    3. Combined intra-cluster direction
    4. Start-time relaxation for inter-cluster offers and node-to-node waves
    5. Retransmission tables for distribution maps and offers
    """

    def __init__(self, config: ProtocolConfig):
        self.config = config
        self.state = PropagationState()

        self.neighbor_distro: Dict[int, DistributionMap] = {}
        self.neighbor_heads: Dict[int, NodeRecord] = {}

        self.distro_map_acks = RetransmitTable()
        self.inter_cluster_acks = RetransmitTable()

        # Statistics
        self.offers_accepted = 0
        self.offers_rejected = 0
        self.relaxations = 0

    # ------------------------------------------------------------------
    # Distribution map cache
    # ------------------------------------------------------------------

    def store_distribution_map(self, cluster_id: int, distribution: DistributionMap,
                               head: NodeRecord):
        self.neighbor_distro[cluster_id] = distribution
        self.neighbor_heads[cluster_id] = head

    # ------------------------------------------------------------------
    # Forwarding
    # ------------------------------------------------------------------

    def select_candidates(self, start_position, incoming) -> List[ForwardingCandidate]:
        """
        Pick one forwarding candidate per cached neighbour cluster.

        Args:
            start_position: Where the wave enters the local cluster
            incoming: Incoming wave velocity

        Returns:
            Candidates in ascending cluster id order
        """
        p = self.config.propagation
        threshold = self.config.distro_map.candidate_threshold
        start = as_vector(start_position)
        incoming = as_vector(incoming)
        velocity = speed(incoming)

        candidates = []
        for cluster_id in sorted(self.neighbor_distro):
            head = self.neighbor_heads.get(cluster_id)
            if head is None:
                logger.debug("No head record for cluster %d, skipping", cluster_id)
                continue

            cells = self.neighbor_distro[cluster_id].candidate_positions(head.position, threshold)
            if len(cells) == 0:
                continue

            accepted = np.array([
                is_in_sector(start, cell, incoming, p.acceptance_radius, p.sector_angle)
                for cell in cells
            ], dtype=bool)
            if not accepted.any():
                continue

            in_sector = cells[accepted]
            dists = cdist(start[None, :2], in_sector)[0]
            best = int(np.argmin(dists))
            best_dist = float(dists[best])
            position = as_vector(in_sector[best])

            if best_dist > 0.0:
                offset = position - start
                offset[2] = 0.0
                direction = velocity * offset / best_dist
            else:
                direction = incoming.copy()

            candidates.append(ForwardingCandidate(
                cluster_id=cluster_id,
                position=position,
                direction=direction,
                distance=best_dist,
            ))
        return candidates

    def combine_directions(self, incoming, candidates: List[ForwardingCandidate]) -> np.ndarray:
        """Normalized sum of outgoing directions scaled to incoming speed"""
        incoming = as_vector(incoming)
        if not candidates:
            return incoming
        total = np.sum([c.direction for c in candidates], axis=0)
        unit = normalize(total)
        if speed(unit) == 0.0:
            return incoming
        return speed(incoming) * unit

    def send_offsets(self, n_candidates: int) -> List[float]:
        """
        Transmission delays for inter-cluster offers, one TDMA slot apart.

        The trailing entry is the delay of the intra-cluster broadcast that
        follows the offers.
        """
        c = self.config.clustering
        p = self.config.propagation
        first = c.minimum_tdma_slot * c.max_nodes
        step = c.minimum_tdma_slot * p.inter_cluster_stagger_slots
        return [first + i * step for i in range(n_candidates + 1)]

    # ------------------------------------------------------------------
    # Relaxation
    # ------------------------------------------------------------------

    def begin_wave(self, starting_node_id: int, now: float) -> bool:
        """
        A starting node in this cluster launches a fresh wavefront.

        The launch time only replaces the first start time when it is
        earlier, so an offer already accepted from a neighbour cluster wins.

        Returns:
            True if this cluster's own starting node now leads the wave
        """
        candidate = now + self.config.propagation.first_start_delay
        return self.state.lower_first_start_time(candidate, now, starting_node_id)

    def offer_time(self, offer_start: float, source, candidate_position,
                   direction) -> float:
        """Start time implied by an inter-cluster offer at candidate_position"""
        delay = propagation_delay(source, candidate_position, direction)
        return offer_start + delay * self.config.propagation.inter_cluster_delay_factor

    def accept_inter_cluster_offer(self, offer_start: float, source, candidate_id: int,
                                   candidate_position, direction, now: float) -> bool:
        """
        Relax the first start time with an offer from a neighbour cluster.

        Returns:
            True if the offer lowered first_start_time
        """
        new_time = self.offer_time(offer_start, source, candidate_position, direction)
        if self.state.lower_first_start_time(new_time, now, candidate_id):
            self.offers_accepted += 1
            logger.debug("Offer accepted: node %d starts at %.4f", candidate_id, new_time)
            return True
        self.offers_rejected += 1
        return False

    def derive_direction(self, own_position, sender_position, sender_direction) -> np.ndarray:
        """
        Direction for a node that has none yet.

        Bisects the sender's heading and the bearing from the sender to the
        node, keeping the sender's speed.
        """
        v = speed(sender_direction)
        come = normalize(sender_direction)
        bearing = normalize(as_vector(own_position) - as_vector(sender_position))
        out = normalize(come + bearing)
        if speed(out) == 0.0:
            out = come
        return v * out

    def relax_inter_node(self, own_position, sender_position, sender_direction,
                         sender_start: float, now: float) -> bool:
        """
        Node-to-node relaxation from a neighbour's wave broadcast.

        Returns:
            True if start_time was lowered
        """
        p = self.config.propagation
        if not is_in_sector(sender_position, own_position, sender_direction,
                            p.inter_node_range, p.sector_angle):
            return False

        if not self.state.has_direction:
            if speed(sender_direction) == 0.0:
                return False
            self.state.direction = self.derive_direction(
                own_position, sender_position, sender_direction)

        velocity = speed(self.state.direction)
        new_time = sender_start + distance(sender_position, own_position) / velocity
        if self.state.lower_start_time(new_time, now):
            self.relaxations += 1
            return True
        return False

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def ack_table(self) -> Dict[str, Dict[int, bool]]:
        return {
            "distro_map": self.distro_map_acks.ack_flags(),
            "inter_cluster": self.inter_cluster_acks.ack_flags(),
        }

    def get_statistics(self) -> Dict[str, float]:
        return {
            "neighbor_maps": len(self.neighbor_distro),
            "offers_accepted": self.offers_accepted,
            "offers_rejected": self.offers_rejected,
            "relaxations": self.relaxations,
            "start_time": self.state.start_time,
            "first_start_time": self.state.first_start_time,
        }
