from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
from scipy import ndimage

from centerline_lcp.grid import Grid, reduce_grids
from centerline_lcp.pointcloud import GROUND, PointCloud

LOG = logging.getLogger("features")

_SOBEL_3 = np.array([[1.0, 0.0, -1.0], [2.0, 0.0, -2.0], [1.0, 0.0, -1.0]])
_SOBEL_5 = np.array(
    [
        [2.0, 2.0, 4.0, 2.0, 2.0],
        [1.0, 1.0, 2.0, 1.0, 1.0],
        [0.0, 0.0, 0.0, 0.0, 0.0],
        [-1.0, -1.0, -2.0, -1.0, -1.0],
        [-2.0, -2.0, -4.0, -2.0, -2.0],
    ]
)


@dataclass(frozen=True, eq=False)
class FeatureLayers:
    """Raw evidence. Terrain and canopy layers are at the ground-model resolution,
    intensity and density directly at the working resolution of ``template``."""

    slope: Grid
    roughness: Grid
    edge: Grid
    canopy: Grid
    lowpoints: Grid
    intensity: Optional[Grid]
    density: Grid
    template: Grid

    def raw(self, factor: int) -> Dict[str, Grid]:
        out = {
            "slope": self.slope.aggregate(factor, "mean"),
            "roughness": self.roughness.aggregate(factor, "mean"),
            "canopy": self.canopy.aggregate(factor, "mean"),
            "intensity": self.intensity if self.intensity is not None else self.template.fill_invalid(0.0),
            "lowpoints": self.lowpoints.aggregate(factor, "mean"),
            "density": self.density,
            "edge": self.edge.aggregate(factor, "mean"),
        }
        return out


# -- terrain ---------------------------------------------------------------------


def _padded(grid: Grid) -> np.ndarray:
    return np.pad(grid.to_nan(), 1, mode="edge")


def terrain_slope(dtm: Grid) -> Grid:
    z = _padded(dtm)
    a, b, c = z[:-2, :-2], z[:-2, 1:-1], z[:-2, 2:]
    d, f = z[1:-1, :-2], z[1:-1, 2:]
    g, h, i = z[2:, :-2], z[2:, 1:-1], z[2:, 2:]
    xres = abs(dtm.transform.a)
    yres = abs(dtm.transform.e)
    dzdx = ((c + 2.0 * f + i) - (a + 2.0 * d + g)) / (8.0 * xres)
    dzdy = ((g + 2.0 * h + i) - (a + 2.0 * b + c)) / (8.0 * yres)
    slope = np.degrees(np.arctan(np.hypot(dzdx, dzdy)))
    return dtm.with_values(slope, np.isfinite(slope))


def terrain_roughness(dtm: Grid, smooth_window: int = 5) -> Grid:
    """Roughness of the micro-relief: max - min over 3x3 of ``dtm - focal_mean(dtm)``."""
    smooth = dtm.focal(smooth_window, "mean", keep_nodata=True)
    residual = dtm.with_values(dtm.values - smooth.values, dtm.valid & smooth.valid)
    hi = residual.focal(3, "max", keep_nodata=True)
    lo = residual.focal(3, "min", keep_nodata=True)
    return residual.with_values(hi.values - lo.values, hi.valid & lo.valid)


def sobel(grid: Grid, kernel: int = 3) -> Grid:
    """Gradient magnitude of ``grid``. No-data is zero-filled while filtering and restored after."""
    if kernel == 3:
        horiz = _SOBEL_3
    elif kernel == 5:
        horiz = _SOBEL_5
    else:
        raise ValueError(f"sobel_kernel_unsupported:{kernel}")
    img = np.where(grid.valid, grid.values, 0.0)
    gh = ndimage.correlate(img, horiz, mode="constant", cval=0.0)
    gv = ndimage.correlate(img, horiz.T, mode="constant", cval=0.0)
    return grid.with_values(np.sqrt(gh ** 2 + gv ** 2))


# -- point rasterization -----------------------------------------------------------


def _group_slices(lin_idx: np.ndarray):
    order = np.argsort(lin_idx, kind="mergesort")
    lin_sorted = lin_idx[order]
    uniq, start, counts = np.unique(lin_sorted, return_index=True, return_counts=True)
    return order, uniq, start, counts


def _rasterize(template: Grid, points: PointCloud, values: Optional[np.ndarray], how: str) -> Grid:
    h, w = template.shape
    out = np.zeros(h * w)
    ok = np.zeros(h * w, dtype=bool)
    if len(points) == 0:
        return template.with_values(out.reshape(h, w), ok.reshape(h, w))
    rows, cols, inside = template.index(points.x, points.y)
    if values is not None:
        inside &= np.isfinite(values)
    lin = rows[inside] * w + cols[inside]
    if how == "count":
        counts = np.bincount(lin, minlength=h * w).astype(np.float64)
        out[:] = counts
        ok[:] = counts > 0
    else:
        if lin.size:
            order, uniq, start, _counts = _group_slices(lin)
            v = values[inside][order]
            ufunc = np.maximum if how == "max" else np.minimum
            out[uniq] = ufunc.reduceat(v, start)
            ok[uniq] = True
    return template.with_values(out.reshape(h, w), ok.reshape(h, w))


def _intensity_range(points: PointCloud, template: Grid, outlier_q: float) -> Grid:
    inten = points.intensity.astype(np.float64)
    if inten.size:
        inten = np.minimum(inten, np.quantile(inten, outlier_q))
    imax = _rasterize(template, points, inten, "max")
    imin = _rasterize(template, points, inten, "min")
    return imax.with_values(imax.values - imin.values, imax.valid & imin.valid)


def intensity_range_by_pass(points: PointCloud, template: Grid, outlier_q: float = 0.98) -> Grid:
    if points.intensity is None:
        raise ValueError("pointcloud_has_no_intensity")
    per_pass = [
        _intensity_range(points.subset(points.point_source_id == pid), template, outlier_q).stretch()
        for pid in points.passes()
    ]
    return reduce_grids(per_pass, "max", template=template)


def _density(points: PointCloud, template: Grid, cap_q: float) -> Grid:
    counts = _rasterize(template, points, None, "count")
    cap = counts.quantile(cap_q)
    if cap is None:
        return counts
    return counts.clamp(hi=cap).stretch()


def density_by_pass(points: PointCloud, template: Grid, cap_q: float = 0.95) -> Grid:
    """Per-pass point density (empty cells no-data), capped at the ``cap_q`` quantile,
    stretched to [0, 1] and combined by cell-wise max."""
    per_pass = [_density(points.subset(points.point_source_id == pid), template, cap_q) for pid in points.passes()]
    return reduce_grids(per_pass, "max", template=template)


def canopy_height(nlas: PointCloud, template: Grid) -> Grid:
    return _rasterize(template, nlas, nlas.z, "max")


def ground_returns(points: PointCloud, nlas: PointCloud, ground_band: float, drop_angles: float = 0.0) -> PointCloud:
    """Ground returns without the scan-angle fringe.

    Classified ground when any exists, otherwise returns within ``ground_band`` of
    the ground model. The fringe is every return at or beyond ``max|angle| - drop_angles``.
    """
    is_ground = points.classification == GROUND
    if not np.any(is_ground):
        is_ground = np.abs(nlas.z) <= ground_band
    angle = np.abs(points.scan_angle)
    if angle.size:
        limit = float(angle.max()) - float(drop_angles)
        if limit > 0:
            is_ground &= angle < limit
    return points.subset(is_ground)


def rasterize_features(
    points: PointCloud,
    nlas: PointCloud,
    dtm: Grid,
    factor: int,
    water=None,
    *,
    rough_window: int = 5,
    edge_kernel: int = 3,
    outlier_q: float = 0.98,
    cap_q: float = 0.95,
    ground_band: float = 0.2,
    drop_angles: float = 0.0,
    lowpoint_z: tuple = (0.5, 3.0),
    density_window: int = 3,
) -> FeatureLayers:
    template = dtm.aggregate(factor, "mean").fill_invalid(0.0)
    has_water = water is not None and not water.is_empty

    slope = terrain_slope(dtm)
    if has_water:
        slope = slope.mask_geometry(water, inverse=True)
    roughness = terrain_roughness(dtm, rough_window)
    edge = sobel(slope, edge_kernel)
    LOG.debug("terrain layers done")

    intensity = None
    if points.has_intensity:
        intensity = intensity_range_by_pass(points, template, outlier_q)
        if has_water:
            intensity = intensity.mask_geometry(water, inverse=True)

    canopy = canopy_height(nlas, dtm)
    canopy = canopy.with_values(canopy.values, dtm.valid)

    z0, z1 = lowpoint_z
    low = nlas.subset((nlas.z > z0) & (nlas.z < z1))
    lowpoints = density_by_pass(low, dtm, cap_q).fill_invalid(0.0)

    gnd = ground_returns(points, nlas, ground_band, drop_angles)
    density = density_by_pass(gnd, template, cap_q).fill_invalid(0.0)
    density = density.focal(density_window, "mean").fill_invalid(0.0)
    if has_water:
        density = density.fill(density.cells_in(water), 0.0)
    LOG.debug("point layers done: %d ground, %d low points", len(gnd), len(low))

    return FeatureLayers(
        slope=slope,
        roughness=roughness,
        edge=edge,
        canopy=canopy,
        lowpoints=lowpoints,
        intensity=intensity,
        density=density,
        template=template,
    )


__all__ = [
    "FeatureLayers",
    "canopy_height",
    "density_by_pass",
    "ground_returns",
    "intensity_range_by_pass",
    "rasterize_features",
    "sobel",
    "terrain_roughness",
    "terrain_slope",
]
