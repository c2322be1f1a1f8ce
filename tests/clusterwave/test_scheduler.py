"""
Unit tests for clusterwave/scheduler.py and clusterwave/mobility.py

Tests event ordering, cancellation and time horizons.
"""

import numpy as np
import pytest
from clusterwave.mobility import ConstantVelocityMobility, StaticMobility
from clusterwave.scheduler import EventScheduler


class TestEventScheduler:
    """Tests for EventScheduler class"""

    def test_initial_time(self):
        """Test scheduler starts at its start time"""
        assert EventScheduler().now == 0.0
        assert EventScheduler(start_time=3.5).now == 3.5

    def test_time_order(self, scheduler):
        """Test callbacks fire in time order"""
        fired = []
        scheduler.schedule(2.0, fired.append, "b")
        scheduler.schedule(1.0, fired.append, "a")
        scheduler.schedule(3.0, fired.append, "c")
        scheduler.run()
        assert fired == ["a", "b", "c"]
        assert scheduler.now == 3.0

    def test_fifo_at_equal_time(self, scheduler):
        """Test equal timestamps fire in scheduling order"""
        fired = []
        for label in "abcde":
            scheduler.schedule(1.0, fired.append, label)
        scheduler.run()
        assert fired == list("abcde")

    def test_cancel(self, scheduler):
        """Test cancelled events never fire"""
        fired = []
        handle = scheduler.schedule(1.0, fired.append, "x")
        scheduler.schedule(2.0, fired.append, "y")
        handle.cancel()
        assert handle.cancelled
        assert not handle.is_pending
        scheduler.run()
        assert fired == ["y"]

    def test_fired_handle_not_pending(self, scheduler):
        """Test handles report firing"""
        handle = scheduler.schedule(0.5, lambda: None)
        assert handle.is_pending
        scheduler.run()
        assert not handle.is_pending
        assert not handle.cancelled

    def test_handle_not_pending_inside_callback(self, scheduler):
        """Test a callback sees its own handle as no longer pending"""
        seen = []
        handles = []

        def callback():
            seen.append(handles[0].is_pending)

        handles.append(scheduler.schedule(1.0, callback))
        scheduler.run()
        assert seen == [False]

    def test_run_until_inclusive(self, scheduler):
        """Test the horizon is inclusive and advances the clock"""
        fired = []
        scheduler.schedule(1.0, fired.append, 1)
        scheduler.schedule(2.0, fired.append, 2)
        scheduler.schedule(2.5, fired.append, 3)
        count = scheduler.run(until=2.0)
        assert fired == [1, 2]
        assert count == 2
        assert scheduler.now == 2.0
        assert scheduler.pending == 1

        scheduler.run(until=10.0)
        assert fired == [1, 2, 3]
        assert scheduler.now == 10.0

    def test_nested_scheduling(self, scheduler):
        """Test callbacks may schedule further callbacks"""
        times = []

        def tick(n):
            times.append(scheduler.now)
            if n > 0:
                scheduler.schedule(0.5, tick, n - 1)

        scheduler.schedule(0.0, tick, 3)
        scheduler.run()
        assert times == pytest.approx([0.0, 0.5, 1.0, 1.5])

    def test_negative_delay_rejected(self, scheduler):
        """Test scheduling into the past raises"""
        with pytest.raises(ValueError):
            scheduler.schedule(-0.1, lambda: None)
        scheduler.run(until=5.0)
        with pytest.raises(ValueError):
            scheduler.schedule_at(4.0, lambda: None)

    def test_step_and_peek(self, scheduler):
        """Test single stepping"""
        assert scheduler.peek_time() is None
        assert scheduler.step() is False
        scheduler.schedule(1.5, lambda: None)
        assert scheduler.peek_time() == 1.5
        assert scheduler.step() is True
        assert scheduler.now == 1.5
        assert len(scheduler) == 0


class TestMobility:
    """Tests for mobility models"""

    def test_static(self):
        """Test a parked node never moves"""
        model = StaticMobility((10.0, 20.0))
        assert np.allclose(model.position(0.0), [10.0, 20.0, 0.0])
        assert np.allclose(model.position(100.0), [10.0, 20.0, 0.0])

    def test_static_returns_copy(self):
        """Test callers cannot move a parked node"""
        model = StaticMobility((10.0, 20.0, 0.0))
        pos = model.position(0.0)
        pos[0] = -1.0
        assert model.position(1.0)[0] == 10.0

    def test_constant_velocity(self):
        """Test straight-line motion"""
        model = ConstantVelocityMobility((0.0, 5.0, 0.0), (20.0, 0.0, 0.0), t0=1.0)
        assert np.allclose(model.position(1.0), [0.0, 5.0, 0.0])
        assert np.allclose(model.position(3.5), [50.0, 5.0, 0.0])
