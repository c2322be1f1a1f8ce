"""
Unit tests for clusterwave/registry.py

Tests node records, neighbor tables and timeout-driven role changes.
"""

import numpy as np
import pytest
from clusterwave.config import NodeDegree
from clusterwave.registry import NeighborRegistry, NodeRecord, PruneReport


class TestNodeRecord:
    """Tests for NodeRecord class"""

    def test_defaults(self):
        """Test a new record is standalone"""
        record = NodeRecord(node_id=3)
        assert record.degree == NodeDegree.STANDALONE
        assert record.cluster_id is None
        assert record.ch_address is None

    def test_declare_head(self):
        """Test a head is its own cluster"""
        record = NodeRecord(node_id=3)
        record.declare_head()
        assert record.degree == NodeDegree.CH
        assert record.cluster_id == 3
        assert record.ch_address == 3

    def test_attach_and_detach(self):
        """Test joining and leaving a cluster"""
        record = NodeRecord(node_id=3)
        record.attach_to(7)
        assert record.degree == NodeDegree.CM
        assert record.cluster_id == 7
        assert record.ch_address == 7
        record.detach()
        assert record.degree == NodeDegree.STANDALONE
        assert record.cluster_id is None

    def test_copy_is_independent(self):
        """Test copies do not share arrays"""
        record = NodeRecord(node_id=3, position=np.array([1.0, 2.0, 0.0]),
                            base_direction=np.array([10.0, 0.0, 0.0]))
        clone = record.copy()
        clone.position[0] = 50.0
        clone.base_direction[0] = 0.0
        assert record.position[0] == 1.0
        assert record.base_direction[0] == 10.0

    def test_cluster_representative(self, record_factory):
        """Test a member advertises its head's id at its own position"""
        member = record_factory(4, position=(60.0, 0.0, 0.0), degree=NodeDegree.CM,
                                cluster_id=9)
        rep = member.as_cluster_representative(now=2.5)
        assert rep.node_id == 9
        assert rep.degree == NodeDegree.CH
        assert rep.ch_address == 9
        assert rep.timestamp == 2.5
        assert np.allclose(rep.position, [60.0, 0.0, 0.0])


class TestNeighborRegistry:
    """Tests for NeighborRegistry inserts and queries"""

    def test_upsert_neighbor(self, record_factory):
        """Test neighbors are keyed by id and refreshed"""
        registry = NeighborRegistry(NodeRecord(node_id=5))
        registry.upsert_neighbor(record_factory(3, timestamp=1.0))
        registry.upsert_neighbor(record_factory(3, timestamp=2.0))
        assert len(registry) == 1
        assert registry.neighbors[3].timestamp == 2.0

    def test_member_only_for_own_cluster(self, record_factory):
        """Test foreign nodes cannot become members"""
        local = NodeRecord(node_id=5)
        local.declare_head()
        registry = NeighborRegistry(local)
        registry.upsert_member(record_factory(3, degree=NodeDegree.CM, cluster_id=5))
        registry.upsert_member(record_factory(4, degree=NodeDegree.CM, cluster_id=8))
        assert list(registry.cluster_members) == [3]

    def test_member_positions(self, record_factory):
        """Test member positions are keyed by member id"""
        local = NodeRecord(node_id=5)
        local.declare_head()
        registry = NeighborRegistry(local)
        registry.upsert_member(record_factory(3, position=(10.0, 0.0, 0.0),
                                              degree=NodeDegree.CM, cluster_id=5))
        registry.upsert_member(record_factory(4, position=(0.0, 20.0, 0.0),
                                              degree=NodeDegree.CM, cluster_id=5))
        positions = registry.member_positions()
        assert sorted(positions) == [3, 4]
        assert np.allclose(positions[4], [0.0, 20.0, 0.0])

    def test_member_leaves_on_new_cluster(self, record_factory):
        """Test a member reporting another cluster is dropped"""
        local = NodeRecord(node_id=5)
        local.declare_head()
        registry = NeighborRegistry(local)
        registry.upsert_member(record_factory(3, degree=NodeDegree.CM, cluster_id=5))
        registry.upsert_neighbor(record_factory(3, degree=NodeDegree.CM, cluster_id=8))
        assert 3 not in registry.cluster_members
        assert 3 in registry.neighbors

    def test_neighbor_cluster_excludes_self(self, record_factory):
        """Test a node never lists itself as a foreign cluster"""
        registry = NeighborRegistry(NodeRecord(node_id=5))
        registry.upsert_neighbor_cluster(record_factory(5, degree=NodeDegree.CH))
        registry.upsert_neighbor_cluster(record_factory(7, degree=NodeDegree.CH))
        assert list(registry.neighbor_clusters) == [7]

    def test_highest_id_candidate_head(self, record_factory):
        """Test merge target is the highest-id visible head"""
        registry = NeighborRegistry(NodeRecord(node_id=5))
        assert registry.highest_id_candidate_head() is None
        registry.upsert_neighbor(record_factory(3, degree=NodeDegree.CH))
        registry.upsert_neighbor(record_factory(7, degree=NodeDegree.CH))
        registry.upsert_neighbor(record_factory(9, degree=NodeDegree.CM, cluster_id=7))
        assert registry.highest_id_candidate_head() == 7

    def test_self_has_max_id_ignores_members(self, record_factory):
        """Test election only competes with non-member neighbors"""
        registry = NeighborRegistry(NodeRecord(node_id=5))
        assert registry.self_has_max_id()
        registry.upsert_neighbor(record_factory(3))
        registry.upsert_neighbor(record_factory(8, degree=NodeDegree.CM, cluster_id=9))
        assert registry.self_has_max_id()
        registry.upsert_neighbor(record_factory(6))
        assert not registry.self_has_max_id()

    def test_refresh_topology_tracks_foreign_heads(self, record_factory):
        """Test foreign heads appear and disappear from neighbor_clusters"""
        registry = NeighborRegistry(NodeRecord(node_id=5))
        registry.upsert_neighbor(record_factory(7, degree=NodeDegree.CH))
        registry.refresh_topology()
        assert 7 in registry.neighbor_clusters

        registry.upsert_neighbor(record_factory(7, degree=NodeDegree.CM, cluster_id=9))
        registry.refresh_topology()
        assert 7 not in registry.neighbor_clusters


class TestPrune:
    """Tests for NeighborRegistry.prune"""

    def test_fresh_entries_kept(self, record_factory):
        """Test entries exactly at the timeout survive"""
        registry = NeighborRegistry(NodeRecord(node_id=5))
        registry.upsert_neighbor(record_factory(3, timestamp=0.5))
        report = registry.prune(now=1.5, timeout=1.0)
        assert report.removed == []
        assert 3 in registry.neighbors

    def test_stale_entries_removed(self, record_factory):
        """Test old entries and their memberships go"""
        local = NodeRecord(node_id=5)
        local.declare_head()
        registry = NeighborRegistry(local)
        registry.upsert_neighbor(record_factory(3, timestamp=0.0, degree=NodeDegree.CM,
                                                cluster_id=5))
        registry.upsert_member(registry.neighbors[3])
        registry.upsert_neighbor(record_factory(4, timestamp=1.0))
        report = registry.prune(now=1.0, timeout=0.6)
        assert report.removed == [3]
        assert 3 not in registry.cluster_members
        assert not report.role_changed

    def test_lost_head(self, record_factory):
        """Test expiry of the local head makes the node standalone"""
        local = NodeRecord(node_id=5)
        local.attach_to(9)
        registry = NeighborRegistry(local)
        registry.upsert_neighbor(record_factory(9, timestamp=0.0, degree=NodeDegree.CH))
        registry.upsert_neighbor(record_factory(3, timestamp=1.0))
        report = registry.prune(now=1.0, timeout=0.6)
        assert report.lost_head
        assert not report.became_head
        assert local.degree == NodeDegree.STANDALONE
        assert local.cluster_id is None

    def test_became_head(self, record_factory):
        """Test a node whose last neighbor expires declares itself head"""
        local = NodeRecord(node_id=5)
        registry = NeighborRegistry(local)
        registry.upsert_neighbor(record_factory(3, timestamp=0.0))
        report = registry.prune(now=1.0, timeout=0.6)
        assert report.became_head
        assert local.degree == NodeDegree.CH
        assert local.cluster_id == 5

    def test_head_stays_head_when_alone(self, record_factory):
        """Test a head losing all neighbors is not re-declared"""
        local = NodeRecord(node_id=5)
        local.declare_head()
        registry = NeighborRegistry(local)
        registry.upsert_neighbor(record_factory(3, timestamp=0.0))
        report = registry.prune(now=1.0, timeout=0.6)
        assert report == PruneReport(removed=[3])
        assert local.degree == NodeDegree.CH

    def test_orphaned_member(self, record_factory):
        """Test a member whose head stopped acting as CH detaches"""
        local = NodeRecord(node_id=5)
        local.attach_to(9)
        registry = NeighborRegistry(local)
        registry.upsert_neighbor(record_factory(9, timestamp=1.0, degree=NodeDegree.CM,
                                                cluster_id=12))
        report = registry.prune(now=1.0, timeout=0.6)
        assert report.orphaned
        assert local.degree == NodeDegree.STANDALONE

    def test_neighbor_clusters_expire(self, record_factory):
        """Test stale foreign-cluster records are pruned"""
        registry = NeighborRegistry(NodeRecord(node_id=5))
        registry.upsert_neighbor_cluster(record_factory(7, timestamp=0.0, degree=NodeDegree.CH))
        registry.upsert_neighbor_cluster(record_factory(8, timestamp=0.9, degree=NodeDegree.CH))
        registry.prune(now=1.0, timeout=0.6)
        assert list(registry.neighbor_clusters) == [8]
