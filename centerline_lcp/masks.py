from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np
from scipy import ndimage
from shapely.geometry import LineString, MultiPolygon, Point, Polygon
from shapely.ops import linemerge, substring, unary_union

from centerline_lcp.bridge import apply_bridges, apply_water
from centerline_lcp.config import resolve_config
from centerline_lcp.grid import Grid

LOG = logging.getLogger("masks")


@dataclass(frozen=True)
class Caps:
    """Landing pads (conductive) and shields (blocking) at both ends of a centerline."""

    caps: Tuple[Polygon, Polygon]
    shields: Tuple[Polygon, Polygon]

    @property
    def anchors(self) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        a = self.caps[0].centroid
        b = self.caps[1].centroid
        return (a.x, a.y), (b.x, b.y)


def as_line(centerline) -> LineString:
    if centerline is None or centerline.is_empty:
        raise ValueError("centerline_empty")
    if centerline.geom_type == "MultiLineString":
        centerline = linemerge(centerline)
    if centerline.geom_type != "LineString":
        raise ValueError(f"centerline_not_a_line:{centerline.geom_type}")
    if len(centerline.coords) < 2 or centerline.length <= 0.0:
        raise ValueError("centerline_degenerate")
    return centerline


def _largest(geom, what: str) -> Polygon:
    if geom.is_empty:
        raise ValueError(f"{what}_empty")
    if isinstance(geom, Polygon):
        return geom
    if isinstance(geom, MultiPolygon):
        parts = list(geom.geoms)
    else:
        parts = [g for g in getattr(geom, "geoms", []) if isinstance(g, Polygon)]
    parts = [p for p in parts if not p.is_empty]
    if not parts:
        raise ValueError(f"{what}_empty")
    if len(parts) > 1:
        LOG.warning("%s split in %d parts, keeping the largest", what, len(parts))
    return max(parts, key=lambda p: p.area)


def _chord(line: LineString, start: float, end: float) -> LineString:
    seg = substring(line, start, end)
    return LineString([seg.coords[0], seg.coords[-1]])


def make_caps(centerline, buffer_m: float, cap_length: float = 20.0, shield_width: float = 6.0) -> Caps:
    """Caps and shields of both ends.

    The outer pad is the disk of radius ``buffer_m`` around the end minus the flat
    buffer of the chord of the last ``cap_length`` metres, i.e. the half disk behind
    the end. The cap is its part within ``buffer_m - shield_width`` of the end and
    the shield the remaining outer band.
    """
    line = as_line(centerline)
    if shield_width <= 0.0 or shield_width >= buffer_m:
        raise ValueError(f"shield_width_invalid:{shield_width}")
    length = line.length
    cl = min(float(cap_length), length)
    chords = (_chord(line, 0.0, cl), _chord(line, length - cl, length))
    ends = (Point(line.coords[0]), Point(line.coords[-1]))
    inner = [e.buffer(buffer_m - shield_width) for e in ends]
    inner_union = unary_union(inner)

    caps = []
    shields = []
    for end, chord, disk in zip(ends, chords, inner):
        outer = end.buffer(buffer_m).difference(chord.buffer(buffer_m, cap_style=2))
        outer = _largest(outer, "cap")
        caps.append(_largest(outer.intersection(disk), "cap"))
        shields.append(_largest(outer.buffer(0.01).difference(inner_union), "shield"))
    return Caps(caps=(caps[0], caps[1]), shields=(shields[0], shields[1]))


def start_end_points(centerline, buffer_m: float, cap_length: float = 20.0, shield_width: float = 6.0):
    return make_caps(centerline, buffer_m, cap_length, shield_width).anchors


def distance_factor(grid: Grid, centerline, hull, confidence: float = 0.1) -> Grid:
    road = grid.cells_in(centerline.buffer(1.0), all_touched=True)
    inside = grid.cells_in(hull)
    if not road.any() or not inside.any():
        return grid.with_values(np.ones(grid.shape), inside)
    d = ndimage.distance_transform_edt(~road, sampling=(abs(grid.transform.e), abs(grid.transform.a)))
    dmin = float(d[inside].min())
    dmax = float(d[inside].max())
    if dmax <= dmin:
        return grid.with_values(np.ones(grid.shape), inside)
    tmin = 1.0 - confidence
    f = 1.0 - (d - dmin) * (1.0 - tmin) / (dmax - dmin)
    return grid.with_values(f, inside)


def mask_conductivity(
    sigma: Grid,
    centerline,
    cfg: Optional[Dict[str, Any]] = None,
    caps: Optional[Caps] = None,
    water=None,
    bridges=None,
    diagnostics=None,
) -> Grid:
    """Final conductivity field: hull mask, distance factor, floor, water, bridges, caps and shields."""
    cfg = resolve_config(cfg)
    line = as_line(centerline)
    buffer_m = float(cfg["ROAD_BUFFER_M"])
    floor = float(cfg["CONDUCTIVITY_FLOOR"])
    hull = line.buffer(buffer_m)

    sigma = sigma.extend(hull.bounds).mask_geometry(hull)
    LOG.info("masking %dx%d", sigma.shape[0], sigma.shape[1])

    f = distance_factor(sigma, line, hull, float(cfg["CONFIDENCE"]))
    if diagnostics is not None:
        diagnostics("distance_factor", f)
    sigma = sigma.with_values(sigma.values * f.values, sigma.valid & f.valid)
    sigma = sigma.clamp(floor, 1.0)

    sigma = apply_water(sigma, water)
    sigma = apply_bridges(sigma, bridges, hull, float(cfg["BRIDGE_CONDUCTIVITY"]))

    if caps is None:
        caps = make_caps(line, buffer_m, float(cfg["CAP_LENGTH_M"]), float(cfg["SHIELD_WIDTH_M"]))
    for cap in caps.caps:
        sigma = sigma.fill(sigma.cells_in(cap), 1.0)
    for shield in caps.shields:
        sigma = sigma.fill(sigma.cells_in(shield), 0.0)
    if diagnostics is not None:
        diagnostics("conductivity_masked", sigma)
    return sigma


__all__ = [
    "Caps",
    "as_line",
    "distance_factor",
    "make_caps",
    "mask_conductivity",
    "start_end_points",
]
