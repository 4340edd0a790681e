from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.sparse.csgraph import dijkstra
from shapely.geometry import LineString
from shapely.ops import unary_union

from centerline_lcp.transition import TransitionGraph

LOG = logging.getLogger("solver")

Point2 = Tuple[float, float]


@dataclass(frozen=True)
class PathResult:
    geometry: object
    quality: float
    cost: float
    length: float
    fallback: bool = False


def _nodes(graph: TransitionGraph, a: Point2, b: Point2) -> Tuple[Optional[int], Optional[int]]:
    return graph.node_at(a[0], a[1]), graph.node_at(b[0], b[1])


def _solve(graph: TransitionGraph, source: int):
    return dijkstra(graph.costs(), directed=True, indices=source, return_predecessors=True)


def cost_distance(graph: TransitionGraph, a: Point2, b: Point2) -> float:
    na, nb = _nodes(graph, a, b)
    if na is None or nb is None:
        return math.inf
    dist, _ = _solve(graph, na)
    return float(dist[nb])


def shortest_path(graph: TransitionGraph, a: Point2, b: Point2) -> Tuple[List[Point2], float]:
    """Cell centres of the cheapest route from ``a`` to ``b`` and its cost.

    Returns an empty route with an infinite cost when ``b`` cannot be reached.
    """
    na, nb = _nodes(graph, a, b)
    if na is None or nb is None:
        return [], math.inf
    dist, pred = _solve(graph, na)
    cost = float(dist[nb])
    if not np.isfinite(cost):
        return [], math.inf
    nodes = [nb]
    while nodes[-1] != na:
        nodes.append(int(pred[nodes[-1]]))
    nodes.reverse()
    return [graph.cell_center(n) for n in nodes], cost


def _fallback(centerline, reason: str) -> PathResult:
    LOG.warning("impossible to reach the end of the road (%s), keeping the reference centerline", reason)
    return PathResult(geometry=centerline, quality=0.0, cost=math.inf, length=float(centerline.length), fallback=True)


def find_path(
    graph: TransitionGraph,
    centerline,
    a: Point2,
    b: Point2,
    caps: Optional[Sequence] = None,
    simplify_tol: float = 3.0,
) -> PathResult:
    """Least cost path between the anchors, trimmed by the caps.

    An unreachable ``b`` is a normal outcome: the reference centerline comes back
    unchanged with a quality of 0.
    """
    coords, cost = shortest_path(graph, a, b)
    if not np.isfinite(cost):
        return _fallback(centerline, "no route between anchors")
    if len(coords) < 2 or cost <= 0.0:
        return _fallback(centerline, "anchors share a cell")

    line = LineString(coords)
    length = float(line.length)
    path = line.simplify(simplify_tol) if simplify_tol > 0 else line
    if caps:
        path = path.difference(unary_union(list(caps)))
    quality = length / cost
    LOG.info("least cost path: length %.1f, cost %.2f, quality %.3f", length, cost, quality)
    return PathResult(geometry=path, quality=quality, cost=cost, length=length)


__all__ = ["PathResult", "cost_distance", "find_path", "shortest_path"]
