from __future__ import annotations

from centerline_lcp.activation import activate
from centerline_lcp.conductivity import anisotropic_diffusion, combine, edge_enhancement, rasterize_conductivity
from centerline_lcp.config import load_yaml, resolve_config
from centerline_lcp.grid import Grid, reduce_grids
from centerline_lcp.lcp import least_cost_path
from centerline_lcp.masks import Caps, make_caps, mask_conductivity, start_end_points
from centerline_lcp.pointcloud import PointCloud, read_las
from centerline_lcp.solver import PathResult, cost_distance, find_path, shortest_path
from centerline_lcp.transition import TransitionGraph, transition

__all__ = [
    "Caps",
    "Grid",
    "PathResult",
    "PointCloud",
    "TransitionGraph",
    "activate",
    "anisotropic_diffusion",
    "combine",
    "cost_distance",
    "edge_enhancement",
    "find_path",
    "least_cost_path",
    "load_yaml",
    "make_caps",
    "mask_conductivity",
    "rasterize_conductivity",
    "read_las",
    "reduce_grids",
    "resolve_config",
    "shortest_path",
    "start_end_points",
    "transition",
]
