from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
from scipy.interpolate import griddata

from centerline_lcp.grid import Grid
from centerline_lcp.pointcloud import GROUND, PointCloud

LOG = logging.getLogger("ground")


def prepare_dtm(dtm: Grid, bounds: Tuple[float, float, float, float], max_res: float = 1.0) -> Grid:
    """Crop a supplied ground model to ``bounds`` and bring it to ``max_res``.

    Coarser inputs are rejected; finer inputs are averaged down.
    """
    res = round(dtm.resolution, 2)
    if res > max_res:
        raise ValueError(f"dtm_resolution_too_coarse:{res}>{max_res}")
    dtm = dtm.crop(bounds)
    if res < max_res:
        factor = int(round(max_res / res))
        LOG.info("dtm aggregated x%d from %.2f", factor, res)
        dtm = dtm.aggregate(factor, "mean")
    return dtm


def ground_model_from_points(points: PointCloud, res: float = 1.0) -> Grid:
    """Ground model by Delaunay (TIN) interpolation of ground returns at cell centres.

    Uses ASPRS ground points; when none are classified, the lowest return of each cell
    stands in for the ground.
    """
    if len(points) == 0:
        raise ValueError("pointcloud_empty")
    template = Grid.from_bounds(points.bounds, res)
    is_ground = points.classification == GROUND
    if np.count_nonzero(is_ground) >= 3:
        gx, gy, gz = points.x[is_ground], points.y[is_ground], points.z[is_ground]
    else:
        LOG.warning("no ground classification, using lowest return per cell")
        gx, gy, gz = _lowest_per_cell(points, template)
    if gx.size < 3:
        raise ValueError("ground_points_insufficient")
    xs, ys = template.centers()
    z = griddata((gx, gy), gz, (xs, ys), method="linear")
    dtm = template.with_values(z, np.isfinite(z))
    LOG.info("ground model %dx%d from %d points", dtm.shape[0], dtm.shape[1], gx.size)
    return dtm


def _lowest_per_cell(points: PointCloud, template: Grid):
    rows, cols, inside = template.index(points.x, points.y)
    lin = rows[inside] * template.shape[1] + cols[inside]
    z = points.z[inside]
    order = np.lexsort((z, lin))
    lin_sorted = lin[order]
    first = np.ones(lin_sorted.size, dtype=bool)
    first[1:] = lin_sorted[1:] != lin_sorted[:-1]
    keep = np.flatnonzero(inside)[order[first]]
    return points.x[keep], points.y[keep], points.z[keep]


__all__ = ["ground_model_from_points", "prepare_dtm"]
