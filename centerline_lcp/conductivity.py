from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

import numpy as np

from centerline_lcp.activation import activate
from centerline_lcp.bridge import apply_bridge_points, bridge_points, classify_bridge_decks, clip_water
from centerline_lcp.config import resolve_config
from centerline_lcp.features import rasterize_features
from centerline_lcp.grid import Grid, same_alignment
from centerline_lcp.ground import ground_model_from_points, prepare_dtm
from centerline_lcp.pointcloud import WATER, PointCloud

LOG = logging.getLogger("conductivity")

Diagnostics = Callable[[str, Any], None]

_STEPS = ((-1, 0), (1, 0), (0, -1), (0, 1))


def combine(contributions: Mapping[str, Grid], weights: Mapping[str, float]) -> Grid:
    """Weighted mean of the contribution grids.

    Channels with a zero (or missing) weight are ignored entirely; a cell is no-data
    as soon as one weighted channel is no-data there.
    """
    used = [(k, float(weights.get(k, 0.0))) for k in contributions]
    used = [(k, w) for k, w in used if w > 0.0]
    total = sum(w for _, w in used)
    if total <= 0.0:
        raise ValueError("weights_sum_zero")
    grids = [contributions[k] for k, _ in used]
    if not same_alignment(grids):
        raise ValueError(f"contributions_not_aligned:{[k for k, _ in used]}")
    acc = np.zeros(grids[0].shape)
    valid = np.ones(grids[0].shape, dtype=bool)
    for (_, w), g in zip(used, grids):
        acc += w * g.values
        valid &= g.valid
    return grids[0].with_values(acc / total, valid)


def anisotropic_diffusion(grid: Grid, iterations: int = 50, lam: float = 0.05, k: float = 20.0) -> Grid:
    """Perona-Malik diffusion on the 0-255 scaled grid with exponential conductance.

    No-data cells do not exchange flux and stay no-data.
    """
    h, w = grid.shape
    u = np.where(grid.valid, grid.values * 255.0, 0.0)
    vpad = np.pad(grid.valid, 1, constant_values=False)
    for _ in range(int(iterations)):
        upad = np.pad(u, 1, mode="edge")
        flux = np.zeros_like(u)
        for dr, dc in _STEPS:
            nb = upad[1 + dr:1 + dr + h, 1 + dc:1 + dc + w]
            nv = vpad[1 + dr:1 + dr + h, 1 + dc:1 + dc + w]
            d = np.where(nv, nb - u, 0.0)
            flux += np.exp(-((d / k) ** 2)) * d
        u = np.where(grid.valid, u + lam * flux, 0.0)
    return grid.with_values(u / 255.0)


def edge_enhancement(
    grid: Grid,
    iterations: int = 50,
    lam: float = 0.05,
    k: float = 20.0,
    passes: int = 2,
    maxq: float = 0.995,
) -> Grid:
    for _ in range(int(passes)):
        grid = anisotropic_diffusion(grid, iterations, lam, k)
    return grid.stretch(0.0, maxq)


def _emit(diagnostics: Optional[Diagnostics], name: str, payload: Any) -> None:
    if diagnostics is not None:
        diagnostics(name, payload)


def _thresholds(cfg: Dict[str, Any], key: str):
    return cfg[f"{key}_TH"], bool(cfg[f"{key}_ASC"])


def rasterize_conductivity(
    points: PointCloud,
    dtm: Optional[Grid] = None,
    water=None,
    cfg: Optional[Dict[str, Any]] = None,
    diagnostics: Optional[Diagnostics] = None,
    return_layers: bool = False,
):
    """Synthesise the conductivity field of a point cloud at the working resolution.

    Returns the field (values in [floor, 1], bridge decks at the bridge point value),
    or with ``return_layers`` the dict of raw working-resolution feature layers.
    """
    cfg = resolve_config(cfg)
    if len(points) == 0:
        raise ValueError("pointcloud_empty")
    max_res = float(cfg["DTM_MAX_RES_M"])
    factor = int(cfg["AGGREGATE_FACTOR"])
    floor = float(cfg["CONDUCTIVITY_FLOOR"])

    if dtm is None:
        LOG.info("no ground model supplied, interpolating one from ground points")
        dtm = ground_model_from_points(points, max_res)
    else:
        dtm = prepare_dtm(dtm, points.bounds, max_res)
    _emit(diagnostics, "dtm", dtm)

    water = clip_water(water, points.bounds)
    if water is not None:
        points = points.classify_in_polygons(water, WATER)

    nlas = points.normalize_height(dtm)
    nlas = classify_bridge_decks(nlas, float(cfg["BRIDGE_MIN_HEIGHT_M"]))
    points = points.with_classification(nlas.classification)
    deck_x, deck_y = bridge_points(nlas)

    layers = rasterize_features(
        points,
        nlas,
        dtm,
        factor,
        water,
        rough_window=int(cfg["ROUGH_SMOOTH_WIN"]),
        edge_kernel=int(cfg["EDGE_KERNEL"]),
        outlier_q=float(cfg["INTENSITY_OUTLIER_Q"]),
        cap_q=float(cfg["DENSITY_CAP_Q"]),
        ground_band=float(cfg["GROUND_BAND_M"]),
        drop_angles=float(cfg["DROP_SCAN_ANGLES"]),
        lowpoint_z=(float(cfg["LOWPOINT_Z_MIN_M"]), float(cfg["LOWPOINT_Z_MAX_M"])),
        density_window=int(cfg["DENSITY_SMOOTH_WIN"]),
    )
    if return_layers:
        return layers.raw(factor)

    th, asc = _thresholds(cfg, "SLOPE")
    sigma_s = activate(layers.slope, th, "piecewise-linear", asc).aggregate(factor, "mean")
    th, asc = _thresholds(cfg, "ROUGH")
    sigma_r = activate(layers.roughness, th, "piecewise-linear", asc).aggregate(factor, "mean")
    th, asc = _thresholds(cfg, "EDGE")
    sigma_e = activate(layers.edge, th, "piecewise-linear", asc).aggregate(factor, "mean")
    th, asc = _thresholds(cfg, "CANOPY")
    sigma_h = activate(layers.canopy, th, "piecewise-linear", asc).aggregate(factor, "mean")
    th, asc = _thresholds(cfg, "LOWPOINT")
    sigma_lp = activate(layers.lowpoints, th, "threshold", asc).aggregate(factor, "min")
    th, asc = _thresholds(cfg, "DENSITY")
    sigma_d = activate(layers.density, th, "piecewise-linear", asc)

    weights = dict(cfg["WEIGHTS"])
    if layers.intensity is None:
        LOG.info("point cloud carries no intensity, intensity channel disabled")
        weights["i"] = 0.0
        sigma_i = layers.template
    else:
        th, asc = _thresholds(cfg, "INTENSITY")
        sigma_i = activate(layers.intensity, th, "piecewise-linear", asc)

    contributions = {
        "e": sigma_e,
        "s": sigma_s,
        "r": sigma_r,
        "h": sigma_h,
        "i": sigma_i,
        "d": sigma_d,
        "lp": sigma_lp,
    }
    for name, g in contributions.items():
        _emit(diagnostics, f"sigma_{name}", g)

    sigma = combine(contributions, weights)
    _emit(diagnostics, "conductivity_raw", sigma)

    sigma = edge_enhancement(
        sigma,
        iterations=int(cfg["DIFFUSION_ITERATIONS"]),
        lam=float(cfg["DIFFUSION_LAMBDA"]),
        k=float(cfg["DIFFUSION_K"]),
        passes=int(cfg["DIFFUSION_PASSES"]),
        maxq=float(cfg["STRETCH_MAXQ"]),
    )
    _emit(diagnostics, "conductivity_smoothed", sigma)

    sigma = sigma.clamp(floor, 1.0)
    steep = layers.slope.with_values((layers.slope.values < float(cfg["HARD_SLOPE_DEG"])).astype(np.float64))
    steep = steep.aggregate(factor, "min")
    sigma = sigma.fill(steep.valid & (steep.values == 0.0), floor)
    # lakes and other holes
    sigma = sigma.fill_invalid(floor)
    sigma = apply_bridge_points(sigma, deck_x, deck_y, float(cfg["BRIDGE_POINT_CONDUCTIVITY"]))
    LOG.info("conductivity %dx%d at %.2f, %d bridge deck points", sigma.shape[0], sigma.shape[1], sigma.resolution, deck_x.size)
    _emit(diagnostics, "conductivity", sigma)
    return sigma


__all__ = [
    "Diagnostics",
    "anisotropic_diffusion",
    "combine",
    "edge_enhancement",
    "rasterize_conductivity",
]
