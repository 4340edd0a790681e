"""Synthetic rasters and point clouds shared by the test-suite."""

from __future__ import annotations

import numpy as np
import pytest
from rasterio.transform import from_origin
from shapely.geometry import LineString

from centerline_lcp.config import resolve_config
from centerline_lcp.grid import Grid
from centerline_lcp.pointcloud import PointCloud


def make_grid(values, res: float = 1.0, x0: float = 0.0, y0=None) -> Grid:
    arr = np.asarray(values, dtype=np.float64)
    top = arr.shape[0] * res if y0 is None else y0
    return Grid.from_array(arr, from_origin(x0, top, res, res))


@pytest.fixture
def small_cfg():
    """Narrow corridor and a short smoothing schedule."""
    return resolve_config(
        {
            "ROAD_BUFFER_M": 10.0,
            "SHIELD_WIDTH_M": 4.0,
            "CAP_LENGTH_M": 10.0,
            "DIFFUSION_ITERATIONS": 5,
            "DIFFUSION_PASSES": 1,
            "SIMPLIFY_TOL_M": 1.0,
        }
    )


@pytest.fixture
def straight_line():
    return LineString([(0.0, 0.0), (100.0, 0.0)])


@pytest.fixture
def road_cloud():
    """40 x 20 m gently sloping terrain, a 6 m wide road along y=10, two passes and some trees."""
    rng = np.random.default_rng(42)
    xs, ys = np.meshgrid(np.arange(0.0, 40.0, 0.5), np.arange(0.0, 20.0, 0.5))
    x = xs.ravel() + rng.uniform(-0.1, 0.1, xs.size)
    y = ys.ravel() + rng.uniform(-0.1, 0.1, xs.size)
    x = np.clip(x, 0.0, 40.0)
    y = np.clip(y, 0.0, 20.0)
    z = 100.0 + 0.01 * x
    on_road = np.abs(y - 10.0) < 3.0
    intensity = np.where(on_road, 50.0, 20.0) + rng.uniform(0.0, 15.0, x.size) * ~on_road
    cls = np.full(x.size, 2)
    psid = np.where(rng.random(x.size) < 0.5, 1, 2)
    angle = rng.uniform(-15.0, 15.0, x.size)

    trees = (~on_road) & (rng.random(x.size) < 0.2)
    tx, ty = x[trees], y[trees]
    tz = z[trees] + 8.0
    xyz = np.vstack((np.concatenate([x, tx]), np.concatenate([y, ty]), np.concatenate([z, tz]))).T
    return PointCloud.from_arrays(
        xyz,
        intensity=np.concatenate([intensity, np.full(tx.size, 30.0)]),
        classification=np.concatenate([cls, np.full(tx.size, 5)]),
        scan_angle=np.concatenate([angle, rng.uniform(-15.0, 15.0, tx.size)]),
        point_source_id=np.concatenate([psid, np.ones(tx.size, dtype=np.int64)]),
    )
