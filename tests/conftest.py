"""
Pytest configuration and shared fixtures for ClusterWave tests.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests"""
    return np.random.default_rng(42)


@pytest.fixture
def default_config():
    """Default protocol configuration"""
    from clusterwave.config import create_default_config
    return create_default_config()


@pytest.fixture
def small_config():
    """Small configuration for fast tests"""
    from clusterwave.config import create_small_test_config
    return create_small_test_config()


@pytest.fixture
def wavefront_config():
    """Configuration with clustering stopping at t=5s"""
    from clusterwave.config import create_wavefront_config
    return create_wavefront_config(stop_time=5.0)


@pytest.fixture
def scheduler():
    """Fresh event scheduler at t=0"""
    from clusterwave.scheduler import EventScheduler
    return EventScheduler()


@pytest.fixture
def channel(scheduler):
    """Lossless zero-latency channel with history"""
    from clusterwave.channel import WirelessChannel
    return WirelessChannel(scheduler, record_history=True)


@pytest.fixture
def sim(default_config):
    """Empty simulation with the default configuration"""
    from clusterwave.simulation import ClusterSimulation
    return ClusterSimulation(default_config, record_history=True)


@pytest.fixture
def wave_sim(wavefront_config):
    """Empty simulation that exchanges maps and propagates after t=5s"""
    from clusterwave.simulation import ClusterSimulation
    return ClusterSimulation(wavefront_config, record_history=True)


@pytest.fixture
def head_record():
    """Record of a cluster head (id 9) at (30, 0)"""
    from clusterwave.registry import NodeRecord
    record = NodeRecord(node_id=9, position=np.array([30.0, 0.0, 0.0]), timestamp=0.0)
    record.declare_head()
    return record


class PacketRecorder:
    """Packet handler collecting deliveries"""

    def __init__(self):
        self.received = []

    def __call__(self, sender_id, packet):
        self.received.append((sender_id, packet))


@pytest.fixture
def recorder():
    return PacketRecorder


def make_record(node_id, position=(0.0, 0.0, 0.0), timestamp=0.0, degree=None,
                cluster_id=None):
    """Helper to build a NodeRecord in a given role"""
    from clusterwave.config import NodeDegree
    from clusterwave.registry import NodeRecord
    record = NodeRecord(node_id=node_id, position=np.array(position, dtype=float),
                        timestamp=timestamp)
    if degree == NodeDegree.CH:
        record.declare_head()
    elif degree == NodeDegree.CM:
        record.attach_to(cluster_id)
    return record


@pytest.fixture
def record_factory():
    return make_record
