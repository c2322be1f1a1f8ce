"""
Unit tests for clusterwave/density.py

Tests the 2-D kernel density estimator and distribution map grid.
"""

import math
import numpy as np
import pytest
from scipy.stats import gaussian_kde

from clusterwave.contracts import DegenerateGeometryError, InsufficientDataError
from clusterwave.density import (
    GaussianKde2d, DistributionMap, covariance_2d,
    build_distribution_map, degenerate_map,
)

FIXED = (0.1, 0.0, 0.0, 0.1)


class TestGaussianKde2d:
    """Tests for GaussianKde2d class"""

    def test_covariance_matches_numpy(self, rng):
        """Test sample covariance uses the n-1 denominator"""
        data = rng.normal(size=(12, 2))
        assert np.allclose(covariance_2d(data), np.cov(data.T))

    def test_single_point_rejected(self):
        """Test fewer than two points raises"""
        with pytest.raises(InsufficientDataError):
            GaussianKde2d([(0.0, 0.0)])

    def test_collinear_points_are_degenerate(self):
        """Test collinear data gives a singular bandwidth"""
        with pytest.raises(DegenerateGeometryError):
            GaussianKde2d([(0.0, 0.0), (10.0, 0.0), (20.0, 0.0)])

    def test_coincident_points_are_degenerate(self):
        """Test coincident data gives a singular bandwidth"""
        with pytest.raises(DegenerateGeometryError):
            GaussianKde2d([(5.0, 5.0), (5.0, 5.0)])

    def test_scott_matches_scipy_sum(self, rng):
        """Test Scott bandwidth equals scipy's estimator times n"""
        data = rng.normal(scale=20.0, size=(6, 2))
        ours = GaussianKde2d(data, "scott")
        ref = gaussian_kde(data.T, bw_method="scott")

        points = rng.uniform(-40.0, 40.0, size=(25, 2))
        assert np.allclose(ours.evaluate(points), ref(points.T) * len(data))

    def test_silverman_equals_scott_in_2d(self, rng):
        """Test the two rules coincide for two dimensions"""
        data = rng.normal(size=(8, 2))
        a = GaussianKde2d(data, "scott")
        b = GaussianKde2d(data, "silverman")
        assert np.allclose(a.bandwidth, b.bandwidth)

    def test_fixed_bandwidth_peak(self):
        """Test the kernel sum at an isolated point"""
        kde = GaussianKde2d([(0.0, 0.0), (60.0, 0.0)], FIXED)
        assert kde((0.0, 0.0)) == pytest.approx(10.0 / (2 * math.pi), rel=1e-9)
        assert kde((30.0, 0.0)) == pytest.approx(0.0, abs=1e-12)

    def test_unknown_method(self, rng):
        """Test unknown bandwidth names raise"""
        with pytest.raises(ValueError):
            GaussianKde2d(rng.normal(size=(4, 2)), "magic")


class TestDistributionMap:
    """Tests for DistributionMap class"""

    def test_geometry(self):
        """Test size and origin offset"""
        dm = DistributionMap(values=np.zeros((20, 20)), scale=10.0)
        assert dm.size == 20
        assert dm.origin_offset == pytest.approx(100.0)

    def test_cell_offsets_row_major(self):
        """Test cell offsets follow row-major order"""
        dm = DistributionMap(values=np.zeros((20, 20)), scale=10.0)
        offsets = dm.cell_offsets()
        assert offsets.shape == (400, 2)
        assert np.allclose(offsets[0], [-100.0, -100.0])
        assert np.allclose(offsets[1], [-90.0, -100.0])
        assert np.allclose(offsets[210], [0.0, 0.0])

    def test_candidate_positions(self):
        """Test only member cells exceed the threshold"""
        dm = build_distribution_map([(0.0, 0.0), (60.0, 0.0)], 20, 10.0, FIXED)
        positions = dm.candidate_positions((200.0, 0.0, 0.0), threshold=1.0)
        assert sorted(map(tuple, positions.tolist())) == [(200.0, 0.0), (260.0, 0.0)]

    def test_frozen_is_read_only(self):
        """Test frozen copies cannot be modified"""
        dm = degenerate_map(4, 10.0)
        frozen = dm.frozen()
        with pytest.raises(ValueError):
            frozen.values[0, 0] = 5.0
        dm.values[0, 0] = 5.0
        assert frozen.values[0, 0] == 0.0


class TestBuildDistributionMap:
    """Tests for build_distribution_map"""

    def test_single_member_is_degenerate(self):
        """Test a lone head gets the Dirac grid"""
        dm = build_distribution_map([(0.0, 0.0)], 20, 10.0)
        assert dm.values[10, 10] == 1.0
        assert dm.values.sum() == pytest.approx(1.0)

    def test_empty_is_degenerate(self):
        """Test no offsets gives the Dirac grid"""
        dm = build_distribution_map([], 8, 5.0)
        assert dm.values[4, 4] == 1.0

    def test_collinear_raises(self):
        """Test collinear members raise for the caller to fall back"""
        with pytest.raises(DegenerateGeometryError):
            build_distribution_map([(0.0, 0.0), (30.0, 0.0), (60.0, 0.0)], 20, 10.0)

    def test_scott_map_is_finite(self):
        """Test a spread cluster produces a finite, positive grid"""
        offsets = [(0.0, 0.0), (40.0, 10.0), (-20.0, 35.0), (15.0, -30.0)]
        dm = build_distribution_map(offsets, 20, 10.0, "scott")
        assert dm.values.shape == (20, 20)
        assert np.all(np.isfinite(dm.values))
        assert dm.values.max() > 0.0
        assert dm.total_mass() > 0.0

    def test_fixed_map_peaks_at_members(self):
        """Test narrow kernels put mass exactly on member cells"""
        dm = build_distribution_map([(0.0, 0.0), (-60.0, 0.0), (0.0, 40.0)], 20, 10.0, FIXED)
        assert dm.values[10, 10] == pytest.approx(10.0 / (2 * math.pi))
        assert dm.values[10, 4] == pytest.approx(10.0 / (2 * math.pi))
        assert dm.values[14, 10] == pytest.approx(10.0 / (2 * math.pi))
        assert (dm.values > 1.0).sum() == 3
