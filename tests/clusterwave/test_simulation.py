"""
Unit tests for clusterwave/simulation.py, clusterwave/main.py and
clusterwave/visualize.py

Tests the fleet harness, scenario builders and the CLI runner.
"""

import pytest
from clusterwave.config import NodeDegree, create_small_test_config, create_wavefront_config
from clusterwave.contracts import ConfigurationError
from clusterwave.main import build_config, main
from clusterwave.simulation import (
    SCENARIOS, ClusterSimulation, create_simulation,
)


class TestClusterSimulation:
    """Tests for ClusterSimulation class"""

    def test_invalid_config_rejected(self):
        """Test configuration errors are fatal at construction"""
        config = create_small_test_config()
        config.clustering.max_nodes = 0
        with pytest.raises(ConfigurationError):
            ClusterSimulation(config)

    def test_duplicate_node(self, sim):
        """Test node ids are unique"""
        sim.add_node(1, (0.0, 0.0))
        with pytest.raises(ConfigurationError):
            sim.add_node(1, (10.0, 0.0))

    def test_fleet_limit(self):
        """Test the fleet cannot exceed max_nodes"""
        sim = ClusterSimulation(create_small_test_config())
        for i in range(20):
            sim.add_node(i + 1, (i * 10.0, 0.0))
        with pytest.raises(ConfigurationError):
            sim.add_node(21, (0.0, 0.0))

    def test_late_join(self, sim):
        """Test nodes added after start begin immediately"""
        sim.add_node(1, (0.0, 0.0))
        sim.run(until=3.0)
        late = sim.add_node(2, (50.0, 0.0))
        assert sim.channel.is_registered(2)
        sim.run(until=8.0)
        assert late.degree == NodeDegree.CM
        assert late.cluster_id == 1

    def test_summary(self, sim):
        """Test summary statistics"""
        sim.add_node(1, (0.0, 0.0))
        sim.add_node(2, (50.0, 0.0))
        sim.run(until=4.0)
        summary = sim.summary()
        assert summary["nodes"] == 2
        assert summary["heads"] == 1
        assert summary["clusters"] == 1
        assert summary["standalone"] == 0
        assert summary["invariant_violations"] == 0
        assert summary["time"] == 4.0
        assert summary["channel"]["packets_sent"] > 0

    def test_stop(self, sim):
        """Test stop detaches every node"""
        sim.add_node(1, (0.0, 0.0))
        sim.add_node(2, (50.0, 0.0))
        sim.run(until=2.0)
        sim.stop()
        assert sim.channel.get_statistics()["registered"] == 0


class TestScenarios:
    """Tests for scenario builders"""

    def test_registry(self):
        """Test all scenarios are registered"""
        assert set(SCENARIOS) == {"line", "grid", "highway"}

    def test_unknown_scenario(self):
        """Test unknown names raise"""
        with pytest.raises(ConfigurationError):
            create_simulation("ring", 4, create_small_test_config())

    def test_line(self):
        """Test a spaced line builds and keeps heads consistent"""
        sim = create_simulation("line", 6, create_small_test_config())
        assert sim.nodes[1].record.is_starting_node
        sim.run(until=6.0)
        assert sim.heads()
        for nid in sim.heads():
            assert sim.nodes[nid].cluster_id == nid
        assert sim.config.scenario_name == "line"

    def test_grid(self):
        """Test a lattice is populated row by row"""
        sim = create_simulation("grid", 9, create_small_test_config())
        assert list(sim.nodes[4].position[:2]) == [0.0, 60.0]
        sim.run(until=6.0)
        assert sim.summary()["nodes"] == 9
        assert sim.heads()

    def test_highway_moves(self):
        """Test highway vehicles move between samples"""
        sim = create_simulation("highway", 10, create_small_test_config())
        before = {nid: n.position.copy() for nid, n in sim.nodes.items()}
        sim.run(until=3.0)
        moved = [nid for nid, n in sim.nodes.items() if n.position[0] != before[nid][0]]
        assert len(moved) == 10
        assert sum(1 for n in sim.nodes.values() if n.record.is_starting_node) == 1

    def test_reverse_run(self):
        """Test a duty-cycle run completes without error"""
        config = create_wavefront_config(stop_time=3.0)
        config.propagation.reverse_propagation_mode = True
        sim = create_simulation("grid", 4, config)
        sim.run(until=30.0)
        assert all(n.reverse_mode for n in sim.nodes.values())


class TestMain:
    """Tests for the CLI runner"""

    def test_build_config(self):
        """Test CLI options map onto the configuration"""
        import argparse
        args = argparse.Namespace(stop_time=4.0, seed=7, nodes=150, reverse=True)
        config = build_config(args)
        assert config.clustering.stop_time == 4.0
        assert config.seed == 7
        assert config.clustering.max_nodes == 150
        assert config.propagation.reverse_propagation_mode

    def test_runs(self, capsys):
        """Test a short run prints a summary"""
        code = main(["--scenario", "line", "--nodes", "4", "--duration", "3"])
        assert code == 0
        out = capsys.readouterr().out
        assert "ClusterWave Simulation Summary" in out
        assert "Cluster heads" in out

    def test_config_error_exit_code(self, capsys):
        """Test fatal configuration errors give a nonzero exit"""
        code = main(["--nodes", "20000", "--duration", "1"])
        assert code == 2
        assert "Error" in capsys.readouterr().err

    def test_plot(self, tmp_path):
        """Test plots are written"""
        out = tmp_path / "plots" / "run.png"
        code = main(["--scenario", "grid", "--nodes", "4", "--stop-time", "2",
                     "--duration", "12", "--plot", str(out)])
        assert code == 0
        assert out.exists()
        assert out.stat().st_size > 0

    def test_log_file(self, tmp_path):
        """Test logging to a file"""
        log = tmp_path / "run.log"
        code = main(["--nodes", "2", "--duration", "1", "--log-level", "INFO",
                     "--log-file", str(log)])
        assert code == 0
        assert log.exists()


class TestVisualize:
    """Tests for plotting helpers"""

    def test_distribution_map_plot(self, tmp_path, wave_sim):
        """Test a head's map can be rendered"""
        from clusterwave.visualize import save_distribution_map
        wave_sim.add_node(1, (0.0, 0.0))
        wave_sim.add_node(2, (50.0, 30.0))
        wave_sim.add_node(3, (-40.0, 20.0))
        wave_sim.run(until=5.5)
        head = wave_sim.nodes[wave_sim.heads()[0]]
        path = save_distribution_map(head.distribution, tmp_path / "map.png", "head map")
        assert path is not None and path.exists()

    def test_missing_map(self, tmp_path):
        """Test no map means no file"""
        from clusterwave.visualize import save_distribution_map
        assert save_distribution_map(None, tmp_path / "none.png") is None
