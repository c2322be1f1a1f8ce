"""
ClusterWave
============
Distributed clustering and wavefront propagation for mobile node fleets.

Nodes elect cluster heads by highest id, keep their neighbour tables fresh
with periodic broadcasts, and once clustering stops the heads exchange
kernel-density maps of their members. A wavefront launched by a starting
node then spreads through the fleet: heads forward it to neighbouring
clusters and members relax their start times from neighbour broadcasts.

Modules:
--------
- config: Configuration dataclasses, enums and presets
- contracts: Exceptions and collaborator protocols
- geometry: Distances, sector test, propagation delay
- density: 2D Gaussian KDE and distribution maps
- messages: Wire messages, sizes and packet batching
- registry: Node records and neighbour tables
- scheduler: Discrete-event scheduler
- channel: Shared wireless broadcast channel
- retransmit: Acknowledged retransmission tasks
- propagation: Wavefront candidate selection and start-time relaxation
- node: Per-node protocol state machine
- simulation: Fleet harness and scenarios
- visualize: Matplotlib plots
- main: CLI runner

Example Usage:
--------------
>>> from clusterwave import create_wavefront_config, create_simulation
>>> sim = create_simulation("line", 6, create_wavefront_config(stop_time=5.0))
>>> sim.run(until=30.0)
>>> sim.clusters()
"""

__version__ = "1.0.0"
__author__ = "ClusterWave Team"

# Configuration
from .config import (
    ProtocolConfig,
    ClusteringConfig,
    DistroMapConfig,
    PropagationConfig,
    NodeDegree,
    NodeStatus,
    IncidentType,
    create_default_config,
    create_small_test_config,
    create_wavefront_config,
)

from .contracts import (
    ProtocolError,
    ConfigurationError,
    DegenerateGeometryError,
    InsufficientDataError,
)

# Building blocks
from .geometry import distance, is_in_sector, propagation_delay
from .density import GaussianKde2d, DistributionMap, build_distribution_map
from .messages import MessageKind, batch_messages
from .registry import NodeRecord, NeighborRegistry
from .scheduler import EventScheduler
from .channel import WirelessChannel
from .retransmit import RetransmitTask, RetransmitTable
from .propagation import PropagationCoordinator, PropagationState

# Protocol and harness
from .node import ClusterNode
from .simulation import ClusterSimulation, create_simulation, SCENARIOS

__all__ = [
    # Version
    "__version__",

    # Configuration
    "ProtocolConfig",
    "ClusteringConfig",
    "DistroMapConfig",
    "PropagationConfig",
    "NodeDegree",
    "NodeStatus",
    "IncidentType",
    "create_default_config",
    "create_small_test_config",
    "create_wavefront_config",

    # Errors
    "ProtocolError",
    "ConfigurationError",
    "DegenerateGeometryError",
    "InsufficientDataError",

    # Building blocks
    "distance",
    "is_in_sector",
    "propagation_delay",
    "GaussianKde2d",
    "DistributionMap",
    "build_distribution_map",
    "MessageKind",
    "batch_messages",
    "NodeRecord",
    "NeighborRegistry",
    "EventScheduler",
    "WirelessChannel",
    "RetransmitTask",
    "RetransmitTable",
    "PropagationCoordinator",
    "PropagationState",

    # Protocol and harness
    "ClusterNode",
    "ClusterSimulation",
    "create_simulation",
    "SCENARIOS",
]
