from __future__ import annotations

import numpy as np
import pytest

from centerline_lcp.activation import activate
from conftest import make_grid


@pytest.fixture
def ramp():
    return make_grid([[0.0, 10.0, 15.0, 20.0, 30.0, np.nan]])


def test_piecewise_linear_descending(ramp):
    out = activate(ramp, [10.0, 20.0], "piecewise-linear", ascending=False)
    assert out.values[0, :5].tolist() == [1.0, 1.0, 0.5, 0.0, 0.0]
    assert not out.valid[0, 5]


def test_piecewise_linear_ascending(ramp):
    out = activate(ramp, [10.0, 20.0], "piecewise-linear", ascending=True)
    assert out.values[0, :5].tolist() == [0.0, 0.0, 0.5, 1.0, 1.0]


def test_threshold_mode(ramp):
    below = activate(ramp, 15.0, "threshold", ascending=False)
    above = activate(ramp, 15.0, "threshold", ascending=True)
    assert below.values[0, :5].tolist() == [1.0, 1.0, 0.0, 0.0, 0.0]
    assert above.values[0, :5].tolist() == [0.0, 0.0, 1.0, 1.0, 1.0]
    assert not above.valid[0, 5]


def test_activation_is_pure_and_repeatable(ramp):
    before = ramp.values.copy()
    a = activate(ramp, [10.0, 20.0], "piecewise-linear", ascending=False)
    b = activate(ramp, [10.0, 20.0], "piecewise-linear", ascending=False)
    assert np.array_equal(a.values, b.values)
    assert np.array_equal(a.valid, b.valid)
    assert np.array_equal(ramp.values, before)
    assert a is not ramp


def test_output_range():
    g = make_grid(np.random.default_rng(3).normal(0.0, 50.0, (20, 20)))
    out = activate(g, [-10.0, 10.0], "piecewise-linear")
    assert out.values.min() >= 0.0
    assert out.values.max() <= 1.0


def test_invalid_arguments(ramp):
    with pytest.raises(ValueError, match="activation_thresholds_invalid"):
        activate(ramp, [20.0, 10.0])
    with pytest.raises(ValueError, match="activation_thresholds_invalid"):
        activate(ramp, [1.0, 2.0], "threshold")
    with pytest.raises(ValueError, match="activation_mode_unsupported"):
        activate(ramp, [1.0, 2.0], "sigmoid")
