from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Sequence, Tuple

import numpy as np
from rasterio import features
from rasterio.transform import Affine, from_origin
from scipy import ndimage

_STEPS_4 = ((-1, 0), (1, 0), (0, -1), (0, 1))
_STEPS_8 = _STEPS_4 + ((-1, -1), (-1, 1), (1, -1), (1, 1))


@dataclass(frozen=True, eq=False)
class Grid:
    """North-up raster with an explicit validity mask.

    ``values`` holds 0.0 under every invalid ("no data") cell so that arithmetic never
    sees a sentinel; every operation states how it treats invalid cells. Grids are
    values: operations return a new grid and never write into an existing one.
    """

    values: np.ndarray
    valid: np.ndarray
    transform: Affine
    crs: Optional[str] = None

    def __post_init__(self) -> None:
        if self.values.shape != self.valid.shape or self.values.ndim != 2:
            raise ValueError(f"grid_shape_mismatch:{self.values.shape}:{self.valid.shape}")

    # -- construction -------------------------------------------------------------

    @staticmethod
    def from_array(arr: np.ndarray, transform: Affine, crs: Optional[str] = None, nodata: Optional[float] = None) -> "Grid":
        a = np.asarray(arr, dtype=np.float64)
        valid = np.isfinite(a)
        if nodata is not None:
            valid &= a != float(nodata)
        return Grid(values=np.where(valid, a, 0.0), valid=valid, transform=transform, crs=crs)

    @staticmethod
    def full(shape: Tuple[int, int], transform: Affine, value: Optional[float] = None, crs: Optional[str] = None) -> "Grid":
        h, w = int(shape[0]), int(shape[1])
        if value is None:
            return Grid(np.zeros((h, w)), np.zeros((h, w), dtype=bool), transform, crs)
        return Grid(np.full((h, w), float(value)), np.ones((h, w), dtype=bool), transform, crs)

    @staticmethod
    def from_bounds(bounds: Tuple[float, float, float, float], res: float, crs: Optional[str] = None) -> "Grid":
        """Empty (all invalid) grid anchored at (minx, maxy) covering ``bounds`` edges included."""
        minx, miny, maxx, maxy = bounds
        width = int(math.floor((maxx - minx) / res)) + 1
        height = int(math.floor((maxy - miny) / res)) + 1
        return Grid.full((height, width), from_origin(minx, maxy, res, res), None, crs)

    def with_values(self, values: np.ndarray, valid: Optional[np.ndarray] = None) -> "Grid":
        v = self.valid if valid is None else np.asarray(valid, dtype=bool)
        v = v & np.isfinite(values)
        return Grid(np.where(v, values, 0.0).astype(np.float64), v, self.transform, self.crs)

    def to_nan(self) -> np.ndarray:
        return np.where(self.valid, self.values, np.nan)

    # -- georeference -------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def resolution(self) -> float:
        return abs(float(self.transform.a))

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        h, w = self.shape
        x0, y0 = self.transform.c, self.transform.f
        x1 = x0 + w * self.transform.a
        y1 = y0 + h * self.transform.e
        return (min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))

    def cell_center(self, row: int, col: int) -> Tuple[float, float]:
        x, y = self.transform @ (col + 0.5, row + 0.5)
        return float(x), float(y)

    def centers(self) -> Tuple[np.ndarray, np.ndarray]:
        h, w = self.shape
        cols, rows = np.meshgrid(np.arange(w) + 0.5, np.arange(h) + 0.5)
        xs = self.transform.c + cols * self.transform.a
        ys = self.transform.f + rows * self.transform.e
        return xs, ys

    def index(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        cols = np.floor((x - self.transform.c) / self.transform.a).astype(np.int64)
        rows = np.floor((y - self.transform.f) / self.transform.e).astype(np.int64)
        h, w = self.shape
        inside = (rows >= 0) & (rows < h) & (cols >= 0) & (cols < w)
        return rows, cols, inside

    def cell_of(self, x: float, y: float) -> Optional[Tuple[int, int]]:
        rows, cols, inside = self.index(np.array([x]), np.array([y]))
        if not inside[0]:
            return None
        return int(rows[0]), int(cols[0])

    def neighbors(self, row: int, col: int, connectivity: int = 8) -> Iterator[Tuple[int, int]]:
        steps = _STEPS_8 if connectivity == 8 else _STEPS_4
        h, w = self.shape
        for dr, dc in steps:
            rr, cc = row + dr, col + dc
            if 0 <= rr < h and 0 <= cc < w:
                yield rr, cc

    # -- cell access --------------------------------------------------------------

    def get(self, row: int, col: int) -> Optional[float]:
        if not self.valid[row, col]:
            return None
        return float(self.values[row, col])

    def set(self, row: int, col: int, value: Optional[float]) -> "Grid":
        values = self.values.copy()
        valid = self.valid.copy()
        if value is None:
            valid[row, col] = False
            values[row, col] = 0.0
        else:
            valid[row, col] = True
            values[row, col] = float(value)
        return Grid(values, valid, self.transform, self.crs)

    def fill(self, where: np.ndarray, value: float) -> "Grid":
        values = np.where(where, float(value), self.values)
        return Grid(values, self.valid | where, self.transform, self.crs)

    def fill_invalid(self, value: float) -> "Grid":
        return self.fill(~self.valid, value)

    def clamp(self, lo: Optional[float] = None, hi: Optional[float] = None) -> "Grid":
        values = np.clip(self.values, lo, hi)
        return Grid(np.where(self.valid, values, 0.0), self.valid.copy(), self.transform, self.crs)

    # -- resampling ---------------------------------------------------------------

    def aggregate(self, factor: int, fun: str = "mean") -> "Grid":
        """Block aggregation by ``factor`` (grid expanded at right/bottom), invalid cells ignored."""
        f = int(factor)
        if f < 1:
            raise ValueError(f"aggregate_factor_invalid:{factor}")
        if f == 1:
            return self
        h, w = self.shape
        nh, nw = int(math.ceil(h / f)), int(math.ceil(w / f))
        vals = np.zeros((nh * f, nw * f))
        ok = np.zeros((nh * f, nw * f), dtype=bool)
        vals[:h, :w] = self.values
        ok[:h, :w] = self.valid
        vals = vals.reshape(nh, f, nw, f)
        ok = ok.reshape(nh, f, nw, f)
        count = ok.sum(axis=(1, 3))
        if fun == "mean":
            total = np.where(ok, vals, 0.0).sum(axis=(1, 3))
            out = total / np.maximum(count, 1)
        elif fun == "min":
            out = np.where(ok, vals, np.inf).min(axis=(1, 3))
        elif fun == "max":
            out = np.where(ok, vals, -np.inf).max(axis=(1, 3))
        else:
            raise ValueError(f"aggregate_fun_unsupported:{fun}")
        return Grid(np.where(count > 0, out, 0.0), count > 0, self.transform @ Affine.scale(f), self.crs)

    def focal(self, size: int, fun: str = "mean", keep_nodata: bool = False) -> "Grid":
        """Moving-window statistic over ``size`` x ``size`` cells ignoring invalid cells.

        Cells with no valid neighbour stay invalid; ``keep_nodata`` also keeps invalid
        the cells that were invalid on input.
        """
        if fun == "mean":
            num = ndimage.uniform_filter(np.where(self.valid, self.values, 0.0), size=size, mode="constant", cval=0.0)
            den = ndimage.uniform_filter(self.valid.astype(np.float64), size=size, mode="constant", cval=0.0)
            ok = den > 1e-9
            out = np.where(ok, num / np.where(ok, den, 1.0), 0.0)
        elif fun == "min":
            out = ndimage.minimum_filter(np.where(self.valid, self.values, np.inf), size=size, mode="constant", cval=np.inf)
            ok = np.isfinite(out)
        elif fun == "max":
            out = ndimage.maximum_filter(np.where(self.valid, self.values, -np.inf), size=size, mode="constant", cval=-np.inf)
            ok = np.isfinite(out)
        else:
            raise ValueError(f"focal_fun_unsupported:{fun}")
        if keep_nodata:
            ok = ok & self.valid
        return Grid(np.where(ok, out, 0.0), ok, self.transform, self.crs)

    def crop(self, bounds: Tuple[float, float, float, float]) -> "Grid":
        minx, miny, maxx, maxy = bounds
        a, e = self.transform.a, -self.transform.e
        h, w = self.shape
        c0 = max(0, int(math.floor((minx - self.transform.c) / a + 1e-9)))
        c1 = min(w, int(math.ceil((maxx - self.transform.c) / a - 1e-9)))
        r0 = max(0, int(math.floor((self.transform.f - maxy) / e + 1e-9)))
        r1 = min(h, int(math.ceil((self.transform.f - miny) / e - 1e-9)))
        if c1 <= c0 or r1 <= r0:
            raise ValueError("crop_empty")
        return Grid(
            self.values[r0:r1, c0:c1].copy(),
            self.valid[r0:r1, c0:c1].copy(),
            self.transform @ Affine.translation(c0, r0),
            self.crs,
        )

    def extend(self, bounds: Tuple[float, float, float, float]) -> "Grid":
        minx, miny, maxx, maxy = bounds
        gminx, gminy, gmaxx, gmaxy = self.bounds
        a, e = self.transform.a, -self.transform.e
        left = max(0, int(math.ceil((gminx - minx) / a - 1e-9)))
        right = max(0, int(math.ceil((maxx - gmaxx) / a - 1e-9)))
        top = max(0, int(math.ceil((maxy - gmaxy) / e - 1e-9)))
        bottom = max(0, int(math.ceil((gminy - miny) / e - 1e-9)))
        if not (left or right or top or bottom):
            return self
        pad = ((top, bottom), (left, right))
        return Grid(
            np.pad(self.values, pad, constant_values=0.0),
            np.pad(self.valid, pad, constant_values=False),
            self.transform @ Affine.translation(-left, -top),
            self.crs,
        )

    # -- geometry -----------------------------------------------------------------

    def cells_in(self, geom, all_touched: bool = False) -> np.ndarray:
        if geom is None or geom.is_empty:
            return np.zeros(self.shape, dtype=bool)
        return features.geometry_mask([geom], out_shape=self.shape, transform=self.transform, all_touched=all_touched, invert=True)

    def mask_geometry(self, geom, inverse: bool = False) -> "Grid":
        inside = self.cells_in(geom)
        keep = ~inside if inverse else inside
        valid = self.valid & keep
        return Grid(np.where(valid, self.values, 0.0), valid, self.transform, self.crs)

    # -- statistics ---------------------------------------------------------------

    def quantile(self, q: float) -> Optional[float]:
        vals = self.values[self.valid]
        if vals.size == 0:
            return None
        return float(np.quantile(vals, q))

    def stretch(self, minq: float = 0.0, maxq: float = 1.0) -> "Grid":
        """Linear contrast stretch of the ``[minq, maxq]`` quantile range onto [0, 1], clipped.

        A layer with no contrast maps to 1 where positive and 0 elsewhere.
        """
        vals = self.values[self.valid]
        if vals.size == 0:
            return self
        lo = float(np.quantile(vals, minq))
        hi = float(np.quantile(vals, maxq))
        if hi <= lo:
            out = np.where(self.values > 0, 1.0, 0.0)
        else:
            out = np.clip((self.values - lo) / (hi - lo), 0.0, 1.0)
        return Grid(np.where(self.valid, out, 0.0), self.valid.copy(), self.transform, self.crs)


def reduce_grids(grids: Sequence[Grid], how: str = "max", template: Optional[Grid] = None) -> Grid:
    grids = list(grids)
    if not grids:
        if template is None:
            raise ValueError("reduce_empty")
        return Grid.full(template.shape, template.transform, None, template.crs)
    shapes = {g.shape for g in grids}
    if len(shapes) != 1:
        raise ValueError(f"reduce_shape_mismatch:{sorted(shapes)}")
    valid = np.stack([g.valid for g in grids])
    if how == "max":
        out = np.where(valid, np.stack([g.values for g in grids]), -np.inf).max(axis=0)
    elif how == "min":
        out = np.where(valid, np.stack([g.values for g in grids]), np.inf).min(axis=0)
    else:
        raise ValueError(f"reduce_how_unsupported:{how}")
    ok = valid.any(axis=0)
    first = grids[0]
    return Grid(np.where(ok, out, 0.0), ok, first.transform, first.crs)


def same_alignment(grids: Iterable[Grid]) -> bool:
    grids = list(grids)
    ref = grids[0]
    return all(
        g.shape == ref.shape and np.allclose(tuple(g.transform)[:6], tuple(ref.transform)[:6])
        for g in grids[1:]
    )


__all__ = ["Grid", "reduce_grids", "same_alignment"]
