"""Tests for wavefield history rotation."""

import numpy as np
import pytest

from acoustic_march import WavefieldHistory


class TestWavefieldHistory:
    def test_zeros(self):
        history = WavefieldHistory.zeros(8)
        assert history.size == 8
        for level in (history.current, history.previous, history.previous2, history.previous3):
            assert np.all(level == 0.0)
        assert history.rotations == 0

    def test_rotation_shifts_by_one(self):
        """Test current -> n-1 -> n-2 -> n-3 -> discarded."""
        history = WavefieldHistory.zeros(3)
        solutions = [np.full(3, float(v)) for v in (1, 2, 3, 4)]
        for s in solutions:
            history.rotate(s)

        np.testing.assert_array_equal(history.current, solutions[3])
        np.testing.assert_array_equal(history.previous, solutions[3])
        np.testing.assert_array_equal(history.previous2, solutions[2])
        np.testing.assert_array_equal(history.previous3, solutions[1])
        assert history.rotations == 4

    def test_previous_is_last_solution(self):
        """Test the n-1 level read at step k is the solution of step k-1."""
        history = WavefieldHistory.zeros(4)
        rng = np.random.default_rng(3)
        last = None
        for _ in range(5):
            if last is not None:
                np.testing.assert_array_equal(history.previous, last)
            last = rng.normal(size=4)
            history.rotate(last)

    def test_rotate_does_not_mutate_old_levels(self):
        history = WavefieldHistory.zeros(2)
        first = np.array([1.0, 2.0])
        history.rotate(first)
        history.rotate(np.array([3.0, 4.0]))
        np.testing.assert_array_equal(first, [1.0, 2.0])
        np.testing.assert_array_equal(history.previous2, [1.0, 2.0])

    def test_shape_mismatch(self):
        history = WavefieldHistory.zeros(5)
        with pytest.raises(ValueError, match="doesn't match"):
            history.rotate(np.zeros(4))

    def test_reset(self):
        history = WavefieldHistory.zeros(3)
        history.rotate(np.ones(3))
        history.reset()
        assert np.all(history.previous == 0.0)
        assert history.rotations == 0
