"""
ClusterWave Density Estimator
==============================
Kernel density "distribution map" of a cluster's membership.

A cluster head summarises where its members are as an N x N grid of
Gaussian kernel density values over offsets relative to itself:

    f(p) = sum_k (2*pi)^-1 * |H|^-1/2 * exp(-1/2 (p - x_k)^T H^-1 (p - x_k))

with the bandwidth matrix H chosen by Scott's rule, H = cov * n^(-1/3).
The sum is not divided by n, so a cell value above 1.0 marks a plausible
member location. Neighbouring clusters use the grid to locate forwarding
candidates without knowing individual members.
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Sequence, Union

from .contracts import DegenerateGeometryError, InsufficientDataError

BandwidthSpec = Union[str, Sequence[float], np.ndarray]


def covariance_2d(data: np.ndarray) -> np.ndarray:
    """Sample covariance (n - 1 denominator) of (n, 2) data"""
    n = data.shape[0]
    centered = data - data.mean(axis=0)
    return centered.T @ centered / (n - 1.0)


class GaussianKde2d:
    """
    Two-dimensional Gaussian kernel density estimator.

    Evaluates the kernel *sum* over the data points. Bandwidth is either
    derived from the data ("scott", "silverman") or given explicitly as a
    2x2 matrix (flat row-major 4-sequence also accepted).
    """

    def __init__(self, data: Sequence[Sequence[float]],
                 bandwidth: BandwidthSpec = "scott"):
        self.data = np.asarray(data, dtype=np.float64).reshape(-1, 2)
        if self.data.shape[0] < 2:
            raise InsufficientDataError("Only one data point")

        if isinstance(bandwidth, str):
            self.bandwidth = self._select_bandwidth(bandwidth)
        else:
            self.bandwidth = np.asarray(bandwidth, dtype=np.float64).reshape(2, 2)

        determinant = float(np.linalg.det(self.bandwidth))
        if determinant == 0.0 or not math.isfinite(determinant):
            raise DegenerateGeometryError("Singular bandwidth matrix")

        self.bandwidth_inv = np.linalg.inv(self.bandwidth)

        # Pre-calculated normalisation terms
        self.pow_pi_term = (2.0 * math.pi) ** -1.0
        with np.errstate(invalid="ignore"):
            self.h_pow_term = float(np.power(determinant, -0.5))
        if not math.isfinite(self.h_pow_term):
            raise DegenerateGeometryError("Math domain error in kernel normalisation")

    def _select_bandwidth(self, method: str) -> np.ndarray:
        cov = covariance_2d(self.data)
        n = self.data.shape[0]
        # d = 2  ->  n^(-1/(d+4))
        n_term = n ** (-1.0 / 6.0)

        if method == "scott":
            return cov * (n_term * n_term)
        if method == "silverman":
            silverman_term = (4.0 / 4.0) ** (-1.0 / 6.0)
            return cov * (silverman_term * n_term) ** 2
        raise ValueError(f"Unknown bandwidth method: {method}")

    def evaluate(self, points: np.ndarray) -> np.ndarray:
        """Kernel sum at each of (m, 2) points"""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        # (m, n, 2) differences
        diff = pts[:, None, :] - self.data[None, :, :]
        quad = np.einsum("mni,ij,mnj->mn", diff, self.bandwidth_inv, diff)
        kernel = self.pow_pi_term * self.h_pow_term * np.exp(-0.5 * quad)
        return kernel.sum(axis=1)

    def __call__(self, point: Sequence[float]) -> float:
        return float(self.evaluate(np.asarray(point).reshape(1, 2))[0])


@dataclass
class DistributionMap:
    """
    Density grid owned by a cluster head.

    values[i, j] is the density at offset
    (j * scale - origin_offset, i * scale - origin_offset) from the head.
    """
    values: np.ndarray
    scale: float

    @property
    def size(self) -> int:
        return int(self.values.shape[0])

    @property
    def origin_offset(self) -> float:
        return self.scale * (self.size // 2)

    def cell_offsets(self) -> np.ndarray:
        """(N*N, 2) offsets of every cell, row-major"""
        idx = np.arange(self.size) * self.scale - self.origin_offset
        xs, ys = np.meshgrid(idx, idx)
        return np.column_stack([xs.ravel(), ys.ravel()])

    def candidate_positions(self, base_position: Sequence[float],
                            threshold: float = 1.0) -> np.ndarray:
        """
        Absolute (x, y) positions of cells with value > threshold.

        Args:
            base_position: Position of the owning cluster head
            threshold: Minimum density marking a member location

        Returns:
            (k, 2) array, row-major cell order
        """
        base = np.asarray(base_position, dtype=np.float64).reshape(-1)[:2]
        mask = self.values.ravel() > threshold
        return self.cell_offsets()[mask] + base

    def frozen(self) -> "DistributionMap":
        """Read-only copy suitable for sending"""
        values = np.array(self.values, dtype=np.float64, copy=True)
        values.setflags(write=False)
        return DistributionMap(values=values, scale=self.scale)

    def total_mass(self) -> float:
        """Approximate integral of the density over the grid"""
        return float(self.values.sum() * self.scale * self.scale)


def degenerate_map(size: int, scale: float) -> DistributionMap:
    """Dirac-like grid: 1.0 at the cell nearest the origin, 0.0 elsewhere"""
    values = np.zeros((size, size), dtype=np.float64)
    center = size // 2
    values[center, center] = 1.0
    return DistributionMap(values=values, scale=scale)


def build_distribution_map(offsets: Sequence[Sequence[float]], size: int,
                           scale: float,
                           bandwidth: BandwidthSpec = "scott") -> DistributionMap:
    """
    Build the cluster distribution map from member offsets.

    Args:
        offsets: Member position offsets relative to the head, head's own
            zero offset included
        size: Grid cells per side
        scale: Cell width
        bandwidth: "scott", "silverman" or an explicit 2x2 matrix

    Returns:
        DistributionMap; the degenerate Dirac map for fewer than two offsets

    Raises:
        DegenerateGeometryError: collinear or coincident offsets
    """
    data = np.asarray(offsets, dtype=np.float64).reshape(-1, 2) if len(offsets) else np.zeros((0, 2))
    if data.shape[0] < 2:
        return degenerate_map(size, scale)

    kde = GaussianKde2d(data, bandwidth)

    empty = DistributionMap(values=np.zeros((size, size)), scale=scale)
    density = kde.evaluate(empty.cell_offsets()).reshape(size, size)
    if not np.all(np.isfinite(density)):
        raise DegenerateGeometryError("Non-finite density values")

    return DistributionMap(values=density, scale=scale)
