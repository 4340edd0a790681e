from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from rasterio.transform import Affine
from scipy import sparse

from centerline_lcp.grid import Grid

LOG = logging.getLogger("transition")

# one direction per neighbour pair, the graph is symmetric
_HALF_STEPS_4 = ((0, 1), (1, 0))
_HALF_STEPS_8 = _HALF_STEPS_4 + ((1, 1), (1, -1))


@dataclass(frozen=True, eq=False)
class TransitionGraph:
    """Conductance between neighbouring cells, one node per cell (row-major).

    Only cells with a defined, strictly positive conductivity carry edges.
    """

    conductance: sparse.csr_matrix
    shape: Tuple[int, int]
    transform: Affine
    connectivity: int = 8
    geocorrected: bool = True

    @property
    def n_nodes(self) -> int:
        return int(self.shape[0] * self.shape[1])

    def node(self, row: int, col: int) -> int:
        return int(row) * int(self.shape[1]) + int(col)

    def cell(self, node: int) -> Tuple[int, int]:
        return divmod(int(node), int(self.shape[1]))

    def node_at(self, x: float, y: float) -> Optional[int]:
        col = int(math.floor((x - self.transform.c) / self.transform.a))
        row = int(math.floor((y - self.transform.f) / self.transform.e))
        if not (0 <= row < self.shape[0] and 0 <= col < self.shape[1]):
            return None
        return self.node(row, col)

    def cell_center(self, node: int) -> Tuple[float, float]:
        row, col = self.cell(node)
        x, y = self.transform @ (col + 0.5, row + 0.5)
        return float(x), float(y)

    def costs(self) -> sparse.csr_matrix:
        c = self.conductance.copy()
        c.data = 1.0 / c.data
        return c


def transition(conductivity: Grid, connectivity: int = 8, geocorrection: bool = True) -> TransitionGraph:
    """Undirected graph over the cells of ``conductivity``.

    Edge conductance is the mean of both endpoints; a cell at or below zero is
    impassable. With ``geocorrection`` the conductance is divided by the distance
    between cell centres so that path costs are distances over conductance.
    """
    if connectivity not in (4, 8):
        raise ValueError(f"connectivity_unsupported:{connectivity}")
    h, w = conductivity.shape
    vals = conductivity.values
    valid = conductivity.valid
    xres = abs(conductivity.transform.a)
    yres = abs(conductivity.transform.e)
    ids = np.arange(h * w).reshape(h, w)

    rows = []
    cols = []
    data = []
    steps = _HALF_STEPS_8 if connectivity == 8 else _HALF_STEPS_4
    for dr, dc in steps:
        r0, r1 = 0, h - dr
        c0, c1 = max(0, -dc), w - max(0, dc)
        a = (slice(r0, r1), slice(c0, c1))
        b = (slice(r0 + dr, r1 + dr), slice(c0 + dc, c1 + dc))
        both = valid[a] & valid[b]
        mean = (vals[a] + vals[b]) / 2.0
        negative = both & (mean < 0.0)
        if negative.any():
            LOG.warning("transition function gives %d negative values, clipped to 0", int(negative.sum()))
        ok = both & (vals[a] > 0.0) & (vals[b] > 0.0)
        cond = mean[ok]
        if geocorrection:
            cond = cond / math.hypot(dr * yres, dc * xres)
        rows.append(ids[a][ok])
        cols.append(ids[b][ok])
        data.append(cond)

    rows = np.concatenate(rows)
    cols = np.concatenate(cols)
    data = np.concatenate(data)
    upper = sparse.coo_matrix((data, (rows, cols)), shape=(h * w, h * w))
    graph = (upper + upper.T).tocsr()
    LOG.info("transition graph: %d nodes, %d edges", h * w, data.size)
    return TransitionGraph(
        conductance=graph,
        shape=(h, w),
        transform=conductivity.transform,
        connectivity=connectivity,
        geocorrected=bool(geocorrection),
    )


__all__ = ["TransitionGraph", "transition"]
