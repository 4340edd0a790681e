from __future__ import annotations

import logging
import math

import numpy as np
import pytest

from centerline_lcp.transition import transition
from conftest import make_grid


def test_graph_is_symmetric():
    rng = np.random.default_rng(11)
    vals = rng.uniform(0.1, 1.0, (8, 9))
    vals[rng.random(vals.shape) < 0.15] = np.nan
    graph = transition(make_grid(vals), 8, True)
    m = graph.conductance
    assert (m != m.T).nnz == 0
    assert abs(m - m.T).max() == 0.0


def test_edge_counts_by_connectivity():
    g = make_grid(np.ones((3, 3)))
    assert transition(g, 4).conductance.nnz == 2 * 12
    assert transition(g, 8).conductance.nnz == 2 * 20
    with pytest.raises(ValueError, match="connectivity_unsupported"):
        transition(g, 6)


def test_edge_weights_mean_and_geocorrection():
    g = make_grid([[0.2, 0.6], [1.0, 1.0]], res=2.0)
    graph = transition(g, 8, geocorrection=True)
    a, b = graph.node(0, 0), graph.node(0, 1)
    assert graph.conductance[a, b] == pytest.approx(0.4 / 2.0)
    d = graph.node(1, 1)
    assert graph.conductance[a, d] == pytest.approx(0.6 / (2.0 * math.sqrt(2.0)))
    raw = transition(g, 8, geocorrection=False)
    assert raw.conductance[a, b] == pytest.approx(0.4)
    assert raw.costs()[a, b] == pytest.approx(2.5)


def test_nodata_and_zero_cells_have_no_edges():
    g = make_grid([[1.0, np.nan, 1.0], [1.0, 0.0, 1.0], [1.0, 1.0, 1.0]])
    graph = transition(g, 8)
    m = graph.conductance.tolil()
    assert m.rows[graph.node(0, 1)] == []
    assert m.rows[graph.node(1, 1)] == []
    assert len(m.rows[graph.node(2, 1)]) == 4


def test_negative_mean_warns_and_is_dropped(caplog):
    g = make_grid([[-1.0, 0.5]])
    with caplog.at_level(logging.WARNING, logger="transition"):
        graph = transition(g, 4)
    assert "negative" in caplog.text
    assert graph.conductance.nnz == 0


def test_node_lookup():
    g = make_grid(np.ones((3, 4)), res=2.0, x0=10.0, y0=6.0)
    graph = transition(g)
    assert graph.node_at(10.5, 5.5) == 0
    assert graph.node_at(17.9, 0.1) == graph.node(2, 3)
    assert graph.node_at(30.0, 0.0) is None
    assert graph.cell(graph.node(2, 1)) == (2, 1)
    assert graph.cell_center(graph.node(0, 0)) == (11.0, 5.0)
