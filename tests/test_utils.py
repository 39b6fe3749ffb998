# tests/test_utils.py

import numpy as np
import pytest

from automatic_eq_optimizer.core.curve import Curve
from automatic_eq_optimizer.utils import band_mask, generate_harman_target, harman_target_curve


def test_band_mask_is_inclusive():
    mask = band_mask([10, 20, 100, 200, 300], 20, 200)
    np.testing.assert_array_equal(mask, [False, True, True, True, False])


def test_harman_target_is_normalized():
    freqs = np.array([20.0, 100.0, 1000.0, 10000.0])
    target = generate_harman_target(freqs)
    assert target[2] == pytest.approx(0.0)
    assert target[0] > 5.0  # bass shelf
    assert target[3] < 0.0  # downward tilt


def test_harman_target_parameters():
    freqs = np.logspace(np.log10(20), np.log10(20000), 50)
    flat = generate_harman_target(freqs, bass_boost_db=0.0, tilt_db_per_decade=0.0)
    np.testing.assert_allclose(flat, 0.0)


def test_harman_target_empty():
    assert len(generate_harman_target(np.array([]))) == 0


def test_harman_target_curve():
    freqs = np.logspace(np.log10(20), np.log10(20000), 50)
    curve = harman_target_curve(freqs)
    assert isinstance(curve, Curve)
    assert curve.interpolate(1000) == pytest.approx(0.0, abs=0.1)
