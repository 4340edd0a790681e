from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
from shapely.geometry import box

from centerline_lcp.grid import Grid
from centerline_lcp.pointcloud import BRIDGE_DECK, WATER, PointCloud

LOG = logging.getLogger("bridge")


def clip_water(water, bounds: Tuple[float, float, float, float]):
    if water is None or water.is_empty:
        return None
    clipped = water.intersection(box(*bounds))
    if clipped.is_empty:
        return None
    return clipped


def bridge_polygons(centerline, water, buffer_m: float = 5.0):
    if water is None or water.is_empty:
        return None
    crossing = centerline.intersection(water)
    if crossing.is_empty:
        return None
    LOG.info("centerline crosses water, bridge of %.1f m", crossing.length)
    return crossing.buffer(buffer_m)


def apply_water(sigma: Grid, water) -> Grid:
    if water is None or water.is_empty:
        return sigma
    return sigma.mask_geometry(water, inverse=True)


def apply_bridges(sigma: Grid, bridges, hull=None, value: float = 1.0) -> Grid:
    if bridges is None or bridges.is_empty:
        return sigma
    cells = sigma.cells_in(bridges)
    if hull is not None:
        cells &= sigma.cells_in(hull)
    return sigma.fill(cells, value)


def classify_bridge_decks(nlas: PointCloud, min_height: float = 2.0) -> PointCloud:
    deck = (nlas.classification == WATER) & (nlas.z > min_height)
    if not np.any(deck):
        return nlas
    cls = nlas.classification.copy()
    cls[deck] = BRIDGE_DECK
    LOG.info("%d water returns above %.1f m reclassified as bridge deck", int(deck.sum()), min_height)
    return nlas.with_classification(cls)


def bridge_points(nlas: PointCloud) -> Tuple[np.ndarray, np.ndarray]:
    deck = nlas.classification == BRIDGE_DECK
    return nlas.x[deck], nlas.y[deck]


def apply_bridge_points(sigma: Grid, x: np.ndarray, y: np.ndarray, value: float = 0.75) -> Grid:
    if len(x) == 0:
        return sigma
    rows, cols, inside = sigma.index(x, y)
    cells = np.zeros(sigma.shape, dtype=bool)
    cells[rows[inside], cols[inside]] = True
    return sigma.fill(cells, value)


__all__ = [
    "apply_bridge_points",
    "apply_bridges",
    "apply_water",
    "bridge_points",
    "bridge_polygons",
    "classify_bridge_decks",
    "clip_water",
]
