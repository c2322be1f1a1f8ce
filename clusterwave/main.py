"""
ClusterWave Main Simulation Runner
===================================
Entry point for running clustering and wavefront simulations.

Provides:
- CLI interface over the scenario builders
- Logging setup
- Summary printout and optional plots
"""

import argparse
import logging
import sys
from typing import List, Optional

from .config import ProtocolConfig, create_default_config, create_wavefront_config
from .contracts import ConfigurationError
from .simulation import SCENARIOS, ClusterSimulation, create_simulation


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure root logging with a console handler and optional file handler"""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def build_config(args: argparse.Namespace) -> ProtocolConfig:
    """Configuration for the requested run"""
    if args.stop_time is not None:
        config = create_wavefront_config(stop_time=args.stop_time)
    else:
        config = create_default_config()

    config.seed = args.seed
    config.clustering.max_nodes = max(config.clustering.max_nodes, args.nodes)
    config.propagation.reverse_propagation_mode = args.reverse
    return config


def print_summary(sim: ClusterSimulation):
    """Print simulation summary"""
    summary = sim.summary()
    print("\n" + "=" * 60)
    print("ClusterWave Simulation Summary")
    print("=" * 60)
    print(f"Scenario: {sim.config.scenario_name}")
    print(f"Simulated time: {summary['time']:.2f}s")
    print(f"Nodes: {summary['nodes']}")
    print(f"Cluster heads: {summary['heads']}")
    print(f"Standalone nodes: {summary['standalone']}")
    print(f"Role changes: {summary['role_changes']}")
    print()
    print("Clusters:")
    for cid, members in sim.clusters().items():
        print(f"  - {cid}: {members}")
    print()
    print("Wavefront:")
    print(f"  - Nodes scheduled: {summary['wave_scheduled']}")
    print(f"  - Nodes completed: {summary['wave_completed']}")
    for nid, t in sim.wavefront_times().items():
        print(f"    node {nid}: {t:.3f}s")
    print()
    channel = summary["channel"]
    print(f"Channel: {channel['packets_sent']} sent, {channel['deliveries']} delivered, "
          f"{channel['drops']} dropped")
    violations = sim.check_invariants()
    if violations:
        print("Invariant violations:")
        for v in violations:
            print(f"  ! {v}")
    print("=" * 60 + "\n")


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point"""
    parser = argparse.ArgumentParser(
        description="ClusterWave clustering and wavefront simulation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Cluster 10 parked nodes on a line
  python -m clusterwave.main --scenario line --nodes 10 --duration 10

  # Full run: clustering until t=5s, then distribution maps and wavefront
  python -m clusterwave.main --scenario line --nodes 8 --stop-time 5 --duration 40

  # Moving vehicles on a lossy channel, with plots
  python -m clusterwave.main --scenario highway --nodes 30 --loss-rate 0.1 --plot out.png

  # Periodic duty-cycle activation instead of a single wave
  python -m clusterwave.main --scenario grid --nodes 16 --stop-time 5 --duration 60 --reverse
        """
    )

    parser.add_argument("--scenario", choices=sorted(SCENARIOS), default="line",
                        help="Fleet layout")
    parser.add_argument("--nodes", type=int, default=10, help="Number of nodes")
    parser.add_argument("--duration", type=float, default=20.0, help="Simulated seconds")
    parser.add_argument("--stop-time", type=float, default=None,
                        help="End of clustering; enables map exchange and wavefront")
    parser.add_argument("--loss-rate", type=float, default=0.0, help="Channel loss probability")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--reverse", action="store_true", help="Duty-cycle propagation mode")
    parser.add_argument("--plot", type=str, help="Save cluster/wavefront plots to this path")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", type=str, help="Also log to this file")

    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        config = build_config(args)
        sim = create_simulation(args.scenario, args.nodes, config, loss_rate=args.loss_rate)
    except (ConfigurationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(f"Running {args.scenario} scenario with {args.nodes} nodes for {args.duration}s...")
    sim.run(until=args.duration)
    print_summary(sim)

    if args.plot:
        from .visualize import save_simulation_plots
        path = save_simulation_plots(sim, args.plot)
        print(f"Saved visualization to {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
