"""
ClusterWave Neighbor/Cluster Registry
======================================
Soft-state bookkeeping of everything a node has heard.

Three timestamped maps keyed by node id:
- neighbors: every node heard within single-hop range
- cluster_members: neighbors attached to the local cluster (CH only)
- neighbor_clusters: one representative CH record per foreign cluster

Entries expire after a timeout (2 x update interval). Expiry of the local
cluster head, or of the last neighbor, changes the local role.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging
import numpy as np

from .config import NodeDegree

logger = logging.getLogger(__name__)


@dataclass
class NodeRecord:
    """Identity, position and role of one node (self or remote)"""
    node_id: int
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    degree: NodeDegree = NodeDegree.STANDALONE
    cluster_id: Optional[int] = None
    ch_address: Optional[int] = None
    timestamp: float = 0.0
    is_starting_node: bool = False
    base_direction: Optional[np.ndarray] = None

    def copy(self) -> 'NodeRecord':
        """Snapshot with independent arrays"""
        return NodeRecord(
            node_id=self.node_id,
            position=np.array(self.position, dtype=np.float64, copy=True),
            degree=self.degree,
            cluster_id=self.cluster_id,
            ch_address=self.ch_address,
            timestamp=self.timestamp,
            is_starting_node=self.is_starting_node,
            base_direction=(None if self.base_direction is None
                            else np.array(self.base_direction, dtype=np.float64, copy=True)),
        )

    def declare_head(self):
        self.degree = NodeDegree.CH
        self.cluster_id = self.node_id
        self.ch_address = self.node_id

    def attach_to(self, ch_id: int, ch_address: Optional[int] = None):
        self.degree = NodeDegree.CM
        self.cluster_id = ch_id
        self.ch_address = ch_id if ch_address is None else ch_address

    def detach(self):
        self.degree = NodeDegree.STANDALONE
        self.cluster_id = None
        self.ch_address = None

    def as_cluster_representative(self, now: float) -> 'NodeRecord':
        """
        Record describing this node's cluster as seen from outside.

        A CM's broadcast reveals its CH's id and address but carries the
        member's own position.
        """
        return NodeRecord(
            node_id=self.cluster_id,
            position=np.array(self.position, dtype=np.float64, copy=True),
            degree=NodeDegree.CH,
            cluster_id=self.cluster_id,
            ch_address=self.ch_address,
            timestamp=now,
        )


@dataclass
class PruneReport:
    """Outcome of one maintenance pass"""
    removed: List[int] = field(default_factory=list)
    lost_head: bool = False  # local CH expired, local record is STANDALONE
    became_head: bool = False  # neighbor list emptied, local record is CH
    orphaned: bool = False  # CM without a visible CH, local record is STANDALONE

    @property
    def role_changed(self) -> bool:
        return self.lost_head or self.became_head or self.orphaned


class NeighborRegistry:
    """
    Neighbor, member and neighbor-cluster tables for one node.

    The registry owns a reference to the node's local record and updates
    its role when expiry demands it.
    """

    def __init__(self, local: NodeRecord):
        self.local = local
        self.neighbors: Dict[int, NodeRecord] = {}
        self.cluster_members: Dict[int, NodeRecord] = {}
        self.neighbor_clusters: Dict[int, NodeRecord] = {}

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    def upsert_neighbor(self, record: NodeRecord):
        """Insert or refresh a single-hop neighbor"""
        self.neighbors[record.node_id] = record
        if (record.node_id in self.cluster_members
                and record.cluster_id != self.local.node_id):
            del self.cluster_members[record.node_id]
            logger.debug("Node %d: member %d left for cluster %s",
                         self.local.node_id, record.node_id, record.cluster_id)

    def upsert_member(self, record: NodeRecord):
        """Insert or refresh a member of the local cluster"""
        if record.cluster_id != self.local.node_id:
            return
        self.cluster_members[record.node_id] = record

    def upsert_neighbor_cluster(self, record: NodeRecord):
        """Insert or refresh the representative of a foreign cluster"""
        if record.node_id == self.local.node_id:
            return
        self.neighbor_clusters[record.node_id] = record

    def clear(self):
        self.neighbors.clear()
        self.cluster_members.clear()
        self.neighbor_clusters.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def highest_id_candidate_head(self) -> Optional[int]:
        """Highest id among neighbors currently acting as CH"""
        heads = [nid for nid, rec in self.neighbors.items()
                 if rec.degree == NodeDegree.CH]
        return max(heads) if heads else None

    def self_has_max_id(self) -> bool:
        """True if no non-member neighbor has a higher id than self"""
        return all(rec.node_id < self.local.node_id
                   for rec in self.neighbors.values()
                   if rec.degree != NodeDegree.CM)

    def has_visible_head(self) -> bool:
        """True if the local cluster head is a live neighbor acting as CH"""
        head_id = self.local.cluster_id
        rec = self.neighbors.get(head_id) if head_id is not None else None
        return (rec is not None and rec.cluster_id == head_id
                and rec.degree == NodeDegree.CH)

    def member_positions(self) -> Dict[int, np.ndarray]:
        return {nid: rec.position for nid, rec in self.cluster_members.items()}

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def refresh_topology(self):
        """
        Consistency sweep over the neighbor table.

        Drops members that now report another cluster, and keeps the
        neighbor-cluster table in step with neighbors acting as foreign CHs.
        """
        local = self.local
        for nid, rec in self.neighbors.items():
            if nid in self.cluster_members and rec.cluster_id != local.node_id:
                del self.cluster_members[nid]

            if rec.degree == NodeDegree.CH and local.cluster_id != nid:
                if nid not in self.neighbor_clusters and nid != local.node_id:
                    self.neighbor_clusters[nid] = rec
            elif nid in self.neighbor_clusters:
                del self.neighbor_clusters[nid]

    def prune(self, now: float, timeout: float) -> PruneReport:
        """
        Remove entries older than `timeout` and apply role consequences.

        Args:
            now: Current time
            timeout: Maximum age of an entry

        Returns:
            PruneReport describing removals and local role changes
        """
        report = PruneReport()
        local = self.local

        for nid in list(self.neighbors):
            rec = self.neighbors[nid]
            if now - rec.timestamp <= timeout:
                continue

            del self.neighbors[nid]
            self.cluster_members.pop(nid, None)
            report.removed.append(nid)

            if nid == local.cluster_id and local.degree != NodeDegree.CH:
                local.detach()
                report.lost_head = True
                logger.debug("Node %d: lost cluster head %d", local.node_id, nid)

            if not self.neighbors and local.degree != NodeDegree.CH:
                local.declare_head()
                report.became_head = True
                logger.debug("Node %d: no neighbors left, declaring head",
                             local.node_id)

        if local.degree == NodeDegree.CM and not self.has_visible_head():
            local.detach()
            report.orphaned = True

        for cid in list(self.neighbor_clusters):
            if now - self.neighbor_clusters[cid].timestamp > timeout:
                del self.neighbor_clusters[cid]

        return report

    def __len__(self) -> int:
        return len(self.neighbors)
