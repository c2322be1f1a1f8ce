"""
ClusterWave Visualization
==========================
Plots of a finished simulation.

- Cluster map: nodes coloured by cluster, heads highlighted, radio range
- Wavefront map: nodes coloured by scheduled start time, with directions
- Distribution map heatmap of one cluster head
"""

from pathlib import Path
from typing import Optional, Union
import logging

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from .config import NodeDegree
from .density import DistributionMap
from .simulation import ClusterSimulation

logger = logging.getLogger(__name__)

PLOT_STYLE = {
    'figure.figsize': (10, 6),
    'font.size': 11,
    'axes.grid': True,
    'grid.alpha': 0.3,
    'savefig.dpi': 150,
    'savefig.bbox': 'tight',
}


def setup_plot_style():
    plt.rcParams.update(PLOT_STYLE)


def plot_clusters(sim: ClusterSimulation, ax=None, show_range: bool = True):
    """
    Scatter nodes coloured by cluster.

    Heads are drawn as stars with their omni range; standalone nodes in grey.
    """
    if ax is None:
        _, ax = plt.subplots()

    cluster_ids = sorted(sim.clusters())
    cmap = plt.get_cmap("tab20")
    colours = {cid: cmap(i % 20) for i, cid in enumerate(cluster_ids)}
    radius = sim.config.clustering.omni_range

    for nid in sorted(sim.nodes):
        node = sim.nodes[nid]
        x, y = node.position[0], node.position[1]
        if node.degree == NodeDegree.STANDALONE:
            ax.scatter(x, y, c="lightgrey", marker="o", edgecolors="k", zorder=2)
        elif node.degree == NodeDegree.CH:
            colour = colours[node.cluster_id]
            ax.scatter(x, y, color=colour, marker="*", s=220, edgecolors="k", zorder=3)
            if show_range:
                ax.add_patch(plt.Circle((x, y), radius, color=colour, fill=False,
                                        linestyle="--", alpha=0.5))
        else:
            ax.scatter(x, y, color=colours.get(node.cluster_id, "k"), marker="o", zorder=2)
        ax.annotate(str(nid), (x, y), textcoords="offset points", xytext=(4, 4), fontsize=8)

    ax.set_aspect("equal", adjustable="datalim")
    ax.set_xlabel("x (m)")
    ax.set_ylabel("y (m)")
    ax.set_title(f"Clusters at t={sim.scheduler.now:.1f}s ({len(cluster_ids)} clusters)")
    return ax


def plot_wavefront(sim: ClusterSimulation, ax=None):
    """Scatter nodes coloured by wavefront start time, arrows for direction"""
    if ax is None:
        _, ax = plt.subplots()

    times = sim.wavefront_times()
    unscheduled = [n for nid, n in sim.nodes.items() if nid not in times]
    if unscheduled:
        ax.scatter([n.position[0] for n in unscheduled], [n.position[1] for n in unscheduled],
                   c="lightgrey", edgecolors="k", label="not reached")

    if times:
        nodes = [sim.nodes[nid] for nid in times]
        xs = np.array([n.position[0] for n in nodes])
        ys = np.array([n.position[1] for n in nodes])
        sc = ax.scatter(xs, ys, c=list(times.values()), cmap="viridis", edgecolors="k", zorder=3)
        plt.colorbar(sc, ax=ax, label="start time (s)")

        dirs = np.array([n.propagation.direction[:2] for n in nodes])
        ax.quiver(xs, ys, dirs[:, 0], dirs[:, 1], angles="xy", alpha=0.6)

    ax.set_aspect("equal", adjustable="datalim")
    ax.set_xlabel("x (m)")
    ax.set_ylabel("y (m)")
    ax.set_title("Wavefront start times")
    if unscheduled:
        ax.legend(loc="best")
    return ax


def plot_distribution_map(distribution: DistributionMap, ax=None, title: str = ""):
    """Heatmap of a distribution map in head-relative coordinates"""
    if ax is None:
        _, ax = plt.subplots()
    half = distribution.origin_offset
    extent = (-half, distribution.size * distribution.scale - half,
              -half, distribution.size * distribution.scale - half)
    im = ax.imshow(distribution.values, origin="lower", extent=extent, cmap="magma")
    plt.colorbar(im, ax=ax, label="density")
    ax.set_title(title or "Distribution map")
    return ax


def save_simulation_plots(sim: ClusterSimulation, output_path: Union[str, Path]) -> Path:
    """
    Write the cluster and wavefront plots side by side.

    Args:
        sim: Simulation after run()
        output_path: Image file path

    Returns:
        Path written
    """
    setup_plot_style()
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fig, axes = plt.subplots(1, 2, figsize=(16, 7))
    plot_clusters(sim, axes[0])
    plot_wavefront(sim, axes[1])
    fig.tight_layout()
    fig.savefig(output_path)
    plt.close(fig)
    logger.info("Saved plots to %s", output_path)
    return output_path


def save_distribution_map(distribution: Optional[DistributionMap],
                          output_path: Union[str, Path], title: str = "") -> Optional[Path]:
    if distribution is None:
        return None
    output_path = Path(output_path)
    fig, ax = plt.subplots()
    plot_distribution_map(distribution, ax, title)
    fig.savefig(output_path)
    plt.close(fig)
    return output_path
