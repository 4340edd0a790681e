from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from centerline_lcp.bridge import bridge_polygons, clip_water
from centerline_lcp.conductivity import Diagnostics, rasterize_conductivity
from centerline_lcp.config import resolve_config
from centerline_lcp.grid import Grid
from centerline_lcp.masks import as_line, make_caps, mask_conductivity
from centerline_lcp.pointcloud import PointCloud
from centerline_lcp.solver import PathResult, find_path
from centerline_lcp.transition import transition

LOG = logging.getLogger("lcp")

COMPUTE = "compute"


def _check_inputs(dtm: Optional[Grid], conductivity: Union[Grid, str, None]) -> None:
    if dtm is None and conductivity is None:
        raise ValueError("dtm_and_conductivity_missing")
    if isinstance(conductivity, str) and conductivity != COMPUTE:
        raise ValueError(f"conductivity_mode_unsupported:{conductivity}")
    if dtm is not None and isinstance(conductivity, Grid):
        raise ValueError("dtm_or_conductivity_must_be_none")


def prepare_conductivity(conductivity: Grid, hold, working_res: float = 2.0) -> Grid:
    res = round(conductivity.resolution, 2)
    if res > working_res:
        raise ValueError(f"conductivity_resolution_too_coarse:{res}>{working_res}")
    conductivity = conductivity.crop(hold.bounds).mask_geometry(hold)
    if res < working_res:
        factor = int(round(working_res / res))
        LOG.info("conductivity aggregated x%d from %.2f", factor, res)
        conductivity = conductivity.aggregate(factor, "mean")
    return conductivity


def least_cost_path(
    points: PointCloud,
    centerline,
    dtm: Optional[Grid] = None,
    conductivity: Union[Grid, str, None] = None,
    water=None,
    cfg: Optional[Dict[str, Any]] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> PathResult:
    """Relocate one road segment.

    ``conductivity`` is either a precomputed field (then ``dtm`` must be None), None
    (computed from ``points`` and ``dtm``) or ``"compute"`` (computed from ``points``,
    with an interpolated ground model when ``dtm`` is None).
    """
    cfg = resolve_config(cfg)
    _check_inputs(dtm, conductivity)
    line = as_line(centerline)
    buffer_m = float(cfg["ROAD_BUFFER_M"])
    hold = line.buffer(buffer_m + float(cfg["HOLD_PAD_M"]))

    if isinstance(conductivity, Grid):
        sigma = prepare_conductivity(conductivity, hold, float(cfg["WORKING_RES_M"]))
    else:
        LOG.info("computing conductivity maps")
        sigma = rasterize_conductivity(points, dtm=dtm, water=water, cfg=cfg, diagnostics=diagnostics)

    bounds = points.bounds if len(points) else hold.bounds
    water = clip_water(water, bounds)
    bridges = bridge_polygons(line, water, float(cfg["BRIDGE_BUFFER_M"]))

    caps = make_caps(line, buffer_m, float(cfg["CAP_LENGTH_M"]), float(cfg["SHIELD_WIDTH_M"]))
    LOG.info("computing conductivity masks")
    sigma = mask_conductivity(sigma, line, cfg, caps=caps, water=water, bridges=bridges, diagnostics=diagnostics)

    a, b = caps.anchors
    LOG.info("computing graph map")
    graph = transition(sigma, int(cfg["CONNECTIVITY"]), bool(cfg["GEOCORRECTION"]))
    if diagnostics is not None:
        diagnostics("transition", graph)

    LOG.info("computing least cost path")
    result = find_path(graph, centerline, a, b, caps.caps, float(cfg["SIMPLIFY_TOL_M"]))
    if diagnostics is not None:
        diagnostics("path", result)
    return result


__all__ = ["COMPUTE", "least_cost_path", "prepare_conductivity"]
