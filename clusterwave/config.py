"""
ClusterWave Configuration
==========================
Complete configuration system for the clustering and wavefront protocol.
All timing, range, density-map and propagation parameters live here.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
from enum import Enum
import math

from .contracts import ConfigurationError


# Hard upper bound on fleet size accepted at startup
MAX_SUPPORTED_NODES = 10000


class NodeDegree(Enum):
    """Role of a node inside its cluster"""
    STANDALONE = "standalone"
    CH = "ch"
    CM = "cm"


class NodeStatus(Enum):
    """Protocol state machine states"""
    INIT = "init"
    HEAD_ELECTION = "head_election"
    FORMATION = "formation"
    UPDATE = "update"
    EXCHANGE_DISTRO_MAP = "exchange_distro_map"
    DECIDE_PROPAGATION_PARAM = "decide_propagation_param"
    PROPAGATION_READY = "propagation_ready"
    PROPAGATION_RUNNING = "propagation_running"
    PROPAGATION_COMPLETE = "propagation_complete"
    ACTIVE = "active"


class IncidentType(Enum):
    """Out-of-band incident categories"""
    EMERGENCY = "emergency"
    NOTIFICATION = "notification"


@dataclass
class ClusteringConfig:
    """Cluster formation and maintenance configuration"""
    # Timing
    interval: float = 0.3  # UPDATE broadcast period (seconds)
    time_window: float = 1.0  # Delay before first broadcast / after joining
    minimum_tdma_slot: float = 0.001  # TDMA quantum (seconds)
    max_nodes: int = 100  # Expected fleet size, scales election backoff

    # Radio
    omni_range: float = 100.0  # Single-hop acceptance range (meters)
    max_packet_size: int = 2296  # Serialized bytes per UPDATE packet

    # Activation window for the whole protocol instance
    start_time: float = 0.0
    stop_time: Optional[float] = None  # None = never leave clustering

    # Incident generation
    incident_window: float = 4.0
    incident_enabled: bool = False

    @property
    def election_delay(self) -> float:
        """TDMA backoff proportional to expected contention"""
        return self.minimum_tdma_slot * self.max_nodes

    @property
    def neighbor_timeout(self) -> float:
        """Age after which a registry entry is stale"""
        return 2.0 * self.interval


@dataclass
class DistroMapConfig:
    """Kernel-density distribution map configuration"""
    grid_size: int = 20  # N x N cells
    grid_scale: float = 10.0  # Cell width (meters)

    # Bandwidth selection: "scott", "silverman" or "fixed"
    bandwidth_method: str = "scott"
    fixed_bandwidth: Tuple[float, float, float, float] = (0.1, 0.0, 0.0, 0.1)

    # Cells above this value mark a plausible member location
    candidate_threshold: float = 1.0


@dataclass
class PropagationConfig:
    """Wavefront propagation configuration"""
    # Geometry
    sector_angle: float = math.pi / 2  # Full angular width of forwarding sector
    acceptance_radius: float = 100.0  # Candidate cell search radius
    inter_node_range: float = 100.0  # Node-to-node relaxation range

    # Timing
    first_start_delay: float = 5.0  # Lead time before the first wave starts
    running_time: float = 1.5  # RUNNING -> COMPLETE
    exchange_grace_period: float = 1.0  # Ack deadline for distro map exchange

    # Retransmission and staggering (in TDMA slots)
    retry_slots: int = 200
    inter_cluster_stagger_slots: int = 50

    # Inter-cluster delay inflation
    inter_cluster_delay_factor: float = 1.3

    # Mode toggles
    reverse_propagation_mode: bool = False
    disable_starting_node_override: bool = False

    # Reverse (duty-cycle) mode timing
    reverse_period: float = 20.0
    reverse_offset: float = 3.0
    reverse_kickoff: float = 0.1
    active_duration: float = 1.0
    inactive_duration: float = 19.0


@dataclass
class ProtocolConfig:
    """Master configuration combining all subsystems"""
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    distro_map: DistroMapConfig = field(default_factory=DistroMapConfig)
    propagation: PropagationConfig = field(default_factory=PropagationConfig)

    # Scenario
    scenario_name: str = "default"
    seed: int = 42

    def validate(self):
        """
        Validate configuration consistency.

        Raises:
            ConfigurationError: on any invalid option. Fatal at startup.
        """
        c = self.clustering
        d = self.distro_map
        p = self.propagation

        if c.max_nodes < 1:
            raise ConfigurationError("max_nodes must be at least 1")
        if c.max_nodes > MAX_SUPPORTED_NODES:
            raise ConfigurationError(
                f"max_nodes={c.max_nodes} exceeds limit of {MAX_SUPPORTED_NODES}"
            )
        if c.interval <= 0 or c.minimum_tdma_slot <= 0:
            raise ConfigurationError("interval and minimum_tdma_slot must be positive")
        if c.time_window < 0:
            raise ConfigurationError("time_window must be non-negative")
        if c.omni_range <= 0:
            raise ConfigurationError("omni_range must be positive")
        if c.max_packet_size <= 0:
            raise ConfigurationError("max_packet_size must be positive")
        if c.start_time < 0:
            raise ConfigurationError("start_time must be non-negative")
        if c.stop_time is not None and c.stop_time <= c.start_time:
            raise ConfigurationError(
                f"stop_time ({c.stop_time}) must be after start_time ({c.start_time})"
            )
        if c.incident_enabled and c.incident_window <= 0:
            raise ConfigurationError("incident_window must be positive")

        if d.grid_size < 2:
            raise ConfigurationError("grid_size must be at least 2")
        if d.grid_scale <= 0:
            raise ConfigurationError("grid_scale must be positive")
        if d.bandwidth_method not in ("scott", "silverman", "fixed"):
            raise ConfigurationError(f"Unknown bandwidth method: {d.bandwidth_method}")
        if len(d.fixed_bandwidth) != 4:
            raise ConfigurationError("fixed_bandwidth must hold 4 values (2x2 matrix)")

        if not (0 < p.sector_angle <= 2 * math.pi):
            raise ConfigurationError("sector_angle must be in (0, 2*pi]")
        if p.acceptance_radius <= 0 or p.inter_node_range <= 0:
            raise ConfigurationError("acceptance_radius and inter_node_range must be positive")
        if p.retry_slots < 1 or p.inter_cluster_stagger_slots < 0:
            raise ConfigurationError("Invalid retransmission slot counts")
        if p.inter_cluster_delay_factor <= 0:
            raise ConfigurationError("inter_cluster_delay_factor must be positive")
        for name in ("first_start_delay", "running_time", "exchange_grace_period",
                     "reverse_period", "reverse_kickoff", "active_duration",
                     "inactive_duration"):
            if getattr(p, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        return True


def create_default_config() -> ProtocolConfig:
    """Create default configuration"""
    return ProtocolConfig()


def create_small_test_config() -> ProtocolConfig:
    """Create small configuration for fast tests"""
    config = ProtocolConfig(scenario_name="small")
    config.clustering.max_nodes = 20
    config.distro_map.grid_size = 10
    return config


def create_wavefront_config(stop_time: float = 5.0) -> ProtocolConfig:
    """
    Configuration for end-to-end wavefront runs.

    Uses the narrow fixed bandwidth so that member locations peak above the
    candidate threshold on the grid.
    """
    config = ProtocolConfig(scenario_name="wavefront")
    config.clustering.stop_time = stop_time
    config.distro_map.bandwidth_method = "fixed"
    return config
