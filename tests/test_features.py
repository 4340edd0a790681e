from __future__ import annotations

import numpy as np
import pytest
from rasterio.transform import from_origin

from centerline_lcp.features import (
    canopy_height,
    density_by_pass,
    ground_returns,
    intensity_range_by_pass,
    rasterize_features,
    sobel,
    terrain_roughness,
    terrain_slope,
)
from centerline_lcp.grid import Grid
from centerline_lcp.ground import ground_model_from_points, prepare_dtm
from centerline_lcp.pointcloud import PointCloud
from conftest import make_grid


def _plane(n: int = 12, gradient: float = 1.0) -> Grid:
    cols = np.tile(np.arange(n, dtype=float), (n, 1))
    return make_grid(cols * gradient)


@pytest.fixture
def template():
    return Grid.full((2, 2), from_origin(0.0, 2.0, 1.0, 1.0))


def test_slope_of_inclined_plane():
    slope = terrain_slope(_plane())
    assert np.allclose(slope.values[1:-1, 1:-1], 45.0)
    flat = terrain_slope(make_grid(np.full((5, 5), 3.0)))
    assert np.allclose(flat.values, 0.0)


def test_slope_propagates_nodata_to_neighbours():
    dtm = _plane(6).set(2, 2, None)
    slope = terrain_slope(dtm)
    assert not slope.valid[1:4, 1:4].any()
    assert slope.valid[5, 5]


def test_roughness_of_plane_is_zero_inside():
    r = terrain_roughness(_plane(), smooth_window=5)
    assert np.allclose(r.values[4:-4, 4:-4], 0.0)


def test_sobel_zero_on_constant_and_restores_nodata():
    g = make_grid(np.full((7, 7), 2.0)).set(0, 0, None)
    e = sobel(g, 3)
    assert np.allclose(e.values[2:-2, 2:-2], 0.0)
    assert not e.valid[0, 0]
    assert e.valid[3, 3]
    e5 = sobel(make_grid(np.full((9, 9), 2.0)), 5)
    assert np.allclose(e5.values[3:-3, 3:-3], 0.0)
    with pytest.raises(ValueError, match="sobel_kernel_unsupported"):
        sobel(g, 7)


def test_sobel_detects_step():
    g = make_grid(np.hstack([np.zeros((5, 3)), np.ones((5, 3))]))
    e = sobel(g, 3)
    assert e.values[2, 2] == pytest.approx(4.0)
    assert e.values[2, 3] == pytest.approx(4.0)
    assert e.values[2, 0] == pytest.approx(0.0)


def test_intensity_range_stretched_per_pass(template):
    xyz = [
        (0.5, 1.5, 0.0), (0.5, 1.5, 0.0), (1.5, 0.5, 0.0), (1.5, 0.5, 0.0),
        (0.5, 1.5, 0.0), (0.5, 1.5, 0.0), (1.5, 0.5, 0.0), (1.5, 0.5, 0.0),
    ]
    points = PointCloud.from_arrays(
        xyz,
        intensity=[0, 10, 0, 5, 100, 150, 0, 100],
        point_source_id=[1, 1, 1, 1, 2, 2, 2, 2],
    )
    out = intensity_range_by_pass(points, template, outlier_q=1.0)
    assert out.values[0, 0] == 1.0
    assert out.values[1, 1] == 1.0
    assert out.valid.tolist() == [[True, False], [False, True]]

    single = intensity_range_by_pass(points.subset(points.point_source_id == 1), template, outlier_q=1.0)
    assert single.values[0, 0] == 1.0
    assert single.values[1, 1] == 0.0


def test_density_by_pass(template):
    xyz = [(0.5, 1.5, 0.0)] * 4 + [(1.5, 0.5, 0.0)] * 2 + [(1.5, 1.5, 0.0)] * 3
    points = PointCloud.from_arrays(xyz, point_source_id=[1] * 6 + [2] * 3)
    out = density_by_pass(points, template, cap_q=1.0)
    assert out.values[0, 0] == 1.0
    assert out.values[1, 1] == 0.0
    # a single occupied cell of pass 2 has no contrast and maps to 1
    assert out.values[0, 1] == 1.0
    assert not out.valid[1, 0]


def test_canopy_height(template):
    nlas = PointCloud.from_arrays([(0.5, 1.5, 0.2), (0.6, 1.4, 7.5), (1.5, 0.5, np.nan)])
    chm = canopy_height(nlas, template)
    assert chm.values[0, 0] == 7.5
    assert not chm.valid[1, 1]


def test_ground_returns_drop_fringe():
    points = PointCloud.from_arrays(
        np.zeros((4, 3)),
        classification=[2, 2, 2, 1],
        scan_angle=[0.0, 5.0, -10.0, 1.0],
    )
    assert len(ground_returns(points, points, 0.2, drop_angles=0.0)) == 2
    assert len(ground_returns(points, points, 0.2, drop_angles=6.0)) == 1
    flat = PointCloud.from_arrays(np.zeros((3, 3)), scan_angle=[0.0, 0.0, 0.0])
    assert len(ground_returns(flat, flat, 0.2)) == 3


def test_prepare_dtm_rejects_coarse_and_aggregates_fine():
    coarse = make_grid(np.ones((4, 4)), res=2.0)
    with pytest.raises(ValueError, match="dtm_resolution_too_coarse"):
        prepare_dtm(coarse, coarse.bounds, 1.0)
    fine = make_grid(np.ones((8, 8)), res=0.5)
    out = prepare_dtm(fine, fine.bounds, 1.0)
    assert out.resolution == 1.0
    assert out.shape == (4, 4)


def test_ground_model_from_points(road_cloud):
    dtm = ground_model_from_points(road_cloud, 1.0)
    assert dtm.resolution == 1.0
    inner = dtm.values[2:-3, 2:-3]
    assert np.allclose(inner, 100.0 + 0.01 * dtm.centers()[0][2:-3, 2:-3], atol=0.01)


def test_rasterize_features_layers(road_cloud):
    dtm = ground_model_from_points(road_cloud, 1.0)
    nlas = road_cloud.normalize_height(dtm)
    layers = rasterize_features(road_cloud, nlas, dtm, 2)
    assert layers.intensity is not None
    assert layers.density.shape == layers.template.shape
    assert layers.slope.shape == dtm.shape
    raw = layers.raw(2)
    assert set(raw) == {"slope", "roughness", "canopy", "intensity", "lowpoints", "density", "edge"}
    for g in raw.values():
        assert g.shape == layers.template.shape
    # trees stand 8 m above ground
    assert layers.canopy.quantile(1.0) == pytest.approx(8.0, abs=0.1)
