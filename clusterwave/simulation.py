"""
ClusterWave Simulation Harness
===============================
Builds a fleet of protocol nodes on a shared event scheduler and wireless
channel, runs it, and reports clusters, role invariants and wavefront times.

Provides:
- ClusterSimulation (owns scheduler, channel and nodes)
- Scenario builders: line, grid, highway
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import math
import numpy as np

from .channel import WirelessChannel
from .config import NodeDegree, NodeStatus, ProtocolConfig
from .contracts import ConfigurationError
from .mobility import ConstantVelocityMobility, StaticMobility
from .node import ClusterNode
from .scheduler import EventScheduler

logger = logging.getLogger(__name__)


@dataclass
class RoleChange:
    """One cluster/degree change observed through a status listener"""
    time: float
    node_id: int
    cluster_id: Optional[int]
    degree: NodeDegree


class ClusterSimulation:
    """
    Simulation of a fleet of clustering nodes.

    Handles:
    1. Node creation with static or constant-velocity mobility
    2. Running the shared event scheduler
    3. Cluster views, invariant checks and statistics
    """

    def __init__(self, config: ProtocolConfig, loss_rate: float = 0.0,
                 latency: float = 0.0, record_history: bool = False):
        config.validate()
        self.config = config
        self.scheduler = EventScheduler()
        self.rng = np.random.default_rng(config.seed)
        self.channel = WirelessChannel(self.scheduler, loss_rate=loss_rate,
                                       latency=latency, rng=self.rng,
                                       record_history=record_history)
        self.nodes: Dict[int, ClusterNode] = {}
        self.role_changes: List[RoleChange] = []
        self.started = False

    def add_node(self, node_id: int, position: Sequence[float],
                 velocity: Optional[Sequence[float]] = None,
                 is_starting_node: bool = False,
                 base_direction: Optional[Sequence[float]] = None) -> ClusterNode:
        """
        Add a node to the fleet.

        Args:
            node_id: Unique node id
            position: Initial position
            velocity: Constant velocity; None parks the node
            is_starting_node: Node launches the wavefront
            base_direction: Initial wavefront velocity of a starting node

        Returns:
            The created ClusterNode
        """
        if node_id in self.nodes:
            raise ConfigurationError(f"Duplicate node id {node_id}")
        if len(self.nodes) >= self.config.clustering.max_nodes:
            raise ConfigurationError(
                f"Fleet exceeds max_nodes={self.config.clustering.max_nodes}")

        if velocity is None:
            mobility = StaticMobility(position)
        else:
            mobility = ConstantVelocityMobility(position, velocity, t0=self.scheduler.now)

        node = ClusterNode(node_id, self.config, self.scheduler, self.channel, mobility,
                           is_starting_node=is_starting_node,
                           base_direction=base_direction)
        node.add_status_listener(self._on_role_change)
        self.nodes[node_id] = node
        if self.started:
            node.start()
        return node

    def _on_role_change(self, node: ClusterNode):
        self.role_changes.append(RoleChange(self.scheduler.now, node.node_id,
                                            node.cluster_id, node.degree))

    def start(self):
        if self.started:
            return
        for node_id in sorted(self.nodes):
            self.nodes[node_id].start()
        self.started = True
        logger.info("Started %d nodes", len(self.nodes))

    def run(self, until: float) -> int:
        """Run the fleet up to an absolute time; returns events fired"""
        self.start()
        fired = self.scheduler.run(until=until)
        logger.info("Ran to t=%.3f (%d events)", self.scheduler.now, fired)
        return fired

    def stop(self):
        for node in self.nodes.values():
            node.stop()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def heads(self) -> List[int]:
        return sorted(nid for nid, n in self.nodes.items() if n.degree == NodeDegree.CH)

    def clusters(self) -> Dict[int, List[int]]:
        """Cluster id -> sorted member ids (head included)"""
        result: Dict[int, List[int]] = {}
        for nid in sorted(self.nodes):
            node = self.nodes[nid]
            if node.cluster_id is not None:
                result.setdefault(node.cluster_id, []).append(nid)
        return result

    def standalone(self) -> List[int]:
        return sorted(nid for nid, n in self.nodes.items()
                      if n.degree == NodeDegree.STANDALONE)

    def check_invariants(self) -> List[str]:
        """Role invariant violations; empty when consistent"""
        violations = []
        for nid in sorted(self.nodes):
            node = self.nodes[nid]
            if (node.degree == NodeDegree.CH) != (node.cluster_id == nid):
                violations.append(f"node {nid}: degree {node.degree.value} "
                                  f"with cluster {node.cluster_id}")
            if node.degree == NodeDegree.CM:
                head = self.nodes.get(node.cluster_id)
                if head is None or head.degree != NodeDegree.CH:
                    violations.append(f"node {nid}: member of unknown head {node.cluster_id}")
            if node.degree == NodeDegree.STANDALONE and node.cluster_id is not None:
                violations.append(f"node {nid}: standalone with cluster {node.cluster_id}")
        return violations

    def wavefront_times(self) -> Dict[int, float]:
        """Scheduled start time of every node that has one"""
        return {nid: n.propagation.start_time for nid, n in sorted(self.nodes.items())
                if math.isfinite(n.propagation.start_time)}

    def summary(self) -> Dict[str, Any]:
        statuses: Dict[str, int] = {}
        for node in self.nodes.values():
            statuses[node.status.value] = statuses.get(node.status.value, 0) + 1
        completed = sum(1 for n in self.nodes.values()
                        if n.status in (NodeStatus.PROPAGATION_COMPLETE, NodeStatus.ACTIVE))
        return {
            "time": self.scheduler.now,
            "nodes": len(self.nodes),
            "heads": len(self.heads()),
            "clusters": len(self.clusters()),
            "standalone": len(self.standalone()),
            "role_changes": len(self.role_changes),
            "wave_scheduled": len(self.wavefront_times()),
            "wave_completed": completed,
            "statuses": statuses,
            "invariant_violations": len(self.check_invariants()),
            "channel": self.channel.get_statistics(),
        }


# =============================================================================
# SCENARIOS
# =============================================================================

def build_line_scenario(sim: ClusterSimulation, n_nodes: int,
                        spacing: float = 50.0) -> ClusterSimulation:
    """Parked nodes on the x axis; node 1 launches an eastbound wave"""
    for i in range(n_nodes):
        sim.add_node(i + 1, (i * spacing, 0.0, 0.0),
                     is_starting_node=(i == 0),
                     base_direction=(10.0, 0.0, 0.0) if i == 0 else None)
    return sim


def build_grid_scenario(sim: ClusterSimulation, n_nodes: int,
                        spacing: float = 60.0) -> ClusterSimulation:
    """Parked nodes on a square lattice; the corner node launches a diagonal wave"""
    side = int(math.ceil(math.sqrt(n_nodes)))
    for i in range(n_nodes):
        row, col = divmod(i, side)
        sim.add_node(i + 1, (col * spacing, row * spacing, 0.0),
                     is_starting_node=(i == 0),
                     base_direction=(7.0, 7.0, 0.0) if i == 0 else None)
    return sim


def build_highway_scenario(sim: ClusterSimulation, n_nodes: int,
                           segment: float = 40.0) -> ClusterSimulation:
    """
    Two-lane highway with vehicles moving in opposite directions.

    Vehicles are spread over n_nodes * segment metres; the westmost
    eastbound vehicle launches the wave.
    """
    rng = sim.rng
    length = n_nodes * segment
    xs = np.sort(rng.uniform(0.0, length, size=n_nodes))
    lanes = rng.integers(0, 2, size=n_nodes)
    speeds = rng.uniform(20.0, 30.0, size=n_nodes)

    starter = None
    for i in range(n_nodes):
        if lanes[i] == 0:
            starter = i
            break
    if starter is None:
        starter = 0

    for i in range(n_nodes):
        heading = 1.0 if lanes[i] == 0 else -1.0
        sim.add_node(i + 1, (float(xs[i]), 5.0 * lanes[i], 0.0),
                     velocity=(heading * speeds[i], 0.0, 0.0),
                     is_starting_node=(i == starter),
                     base_direction=(10.0, 0.0, 0.0) if i == starter else None)
    return sim


SCENARIOS: Dict[str, Callable[..., ClusterSimulation]] = {
    "line": build_line_scenario,
    "grid": build_grid_scenario,
    "highway": build_highway_scenario,
}


def create_simulation(scenario: str, n_nodes: int, config: ProtocolConfig,
                      loss_rate: float = 0.0, latency: float = 0.0,
                      record_history: bool = False) -> ClusterSimulation:
    """
    Create a simulation for a named scenario.

    Args:
        scenario: One of "line", "grid", "highway"
        n_nodes: Fleet size
        config: Protocol configuration
        loss_rate: Channel loss probability
        latency: Channel delivery latency (seconds)

    Returns:
        Populated, not yet started ClusterSimulation
    """
    if scenario not in SCENARIOS:
        raise ConfigurationError(f"Unknown scenario: {scenario}")
    if n_nodes < 1:
        raise ConfigurationError("n_nodes must be at least 1")
    config.scenario_name = scenario
    sim = ClusterSimulation(config, loss_rate=loss_rate, latency=latency,
                            record_history=record_history)
    return SCENARIOS[scenario](sim, n_nodes)
