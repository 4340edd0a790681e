from __future__ import annotations

import math

import numpy as np
import pytest
from shapely.geometry import LineString, box

from centerline_lcp.solver import cost_distance, find_path, shortest_path
from centerline_lcp.transition import transition
from conftest import make_grid


@pytest.fixture
def uniform3():
    return make_grid(np.full((3, 3), 0.5))


A3 = (0.5, 2.5)
B3 = (2.5, 0.5)


def test_diagonal_cost_eight_connected(uniform3):
    graph = transition(uniform3, 8, geocorrection=True)
    assert cost_distance(graph, A3, B3) == pytest.approx(2.0 * math.sqrt(2.0) / 0.5)


def test_diagonal_cost_four_connected(uniform3):
    graph = transition(uniform3, 4, geocorrection=True)
    assert cost_distance(graph, A3, B3) == pytest.approx(4.0 / 0.5)


def test_diagonal_cost_without_geocorrection(uniform3):
    graph = transition(uniform3, 8, geocorrection=False)
    assert cost_distance(graph, A3, B3) == pytest.approx(2.0 / 0.5)


def test_shortest_path_cells(uniform3):
    graph = transition(uniform3, 8)
    coords, cost = shortest_path(graph, A3, B3)
    assert coords == [(0.5, 2.5), (1.5, 1.5), (2.5, 0.5)]
    assert cost == pytest.approx(4.0 * math.sqrt(2.0))


def test_blocked_row_falls_back():
    vals = np.ones((5, 5))
    vals[2, :] = 0.0
    graph = transition(make_grid(vals), 8)
    centerline = LineString([(2.5, 4.5), (2.5, 0.5)])
    a, b = (2.5, 4.5), (2.5, 0.5)
    assert math.isinf(cost_distance(graph, a, b))
    result = find_path(graph, centerline, a, b)
    assert result.fallback
    assert result.quality == 0.0
    assert result.geometry is centerline
    assert math.isinf(result.cost)


def test_anchor_outside_grid_falls_back(uniform3):
    graph = transition(uniform3, 8)
    line = LineString([(0, 0), (10, 10)])
    result = find_path(graph, line, (-5.0, 1.0), B3)
    assert result.fallback
    assert result.quality == 0.0


def test_path_quality_and_cap_trimming():
    vals = np.full((5, 20), 0.2)
    vals[2, :] = 1.0
    graph = transition(make_grid(vals), 8)
    centerline = LineString([(0.0, 2.5), (20.0, 2.5)])
    caps = [box(0.0, 0.0, 2.0, 5.0), box(18.0, 0.0, 20.0, 5.0)]
    result = find_path(graph, centerline, (0.5, 2.5), (19.5, 2.5), caps=caps, simplify_tol=0.5)
    assert not result.fallback
    assert result.length == pytest.approx(19.0)
    assert result.cost == pytest.approx(19.0)
    assert result.quality == pytest.approx(1.0)
    xs = [x for x, _ in result.geometry.coords]
    assert min(xs) == pytest.approx(2.0)
    assert max(xs) == pytest.approx(18.0)
