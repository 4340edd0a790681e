from __future__ import annotations

from typing import Sequence, Union

import numpy as np

from centerline_lcp.grid import Grid

MODES = ("piecewise-linear", "threshold")


def activate(
    grid: Grid,
    thresholds: Union[float, Sequence[float]],
    mode: str = "piecewise-linear",
    ascending: bool = True,
) -> Grid:
    """Map a raw feature layer onto a [0, 1] conductivity contribution.

    ``piecewise-linear`` takes ``[t0, t1]``: 1 below t0, 0 above t1 and linear in
    between; ``ascending`` flips it so that large values conduct. ``threshold`` takes a
    single cutoff: 1 below it (``ascending``: at or above it), 0 otherwise.
    Invalid cells stay invalid.
    """
    th = np.atleast_1d(np.asarray(thresholds, dtype=np.float64))
    x = grid.values
    if mode == "piecewise-linear":
        if th.size != 2 or th[0] > th[1]:
            raise ValueError(f"activation_thresholds_invalid:{th.tolist()}")
        t0, t1 = float(th[0]), float(th[1])
        if t1 == t0:
            up = (x >= t1).astype(np.float64)
        else:
            up = np.clip((x - t0) / (t1 - t0), 0.0, 1.0)
        out = up if ascending else 1.0 - up
    elif mode == "threshold":
        if th.size != 1:
            raise ValueError(f"activation_thresholds_invalid:{th.tolist()}")
        cut = float(th[0])
        out = (x >= cut) if ascending else (x < cut)
        out = out.astype(np.float64)
    else:
        raise ValueError(f"activation_mode_unsupported:{mode}")
    return grid.with_values(out)


__all__ = ["MODES", "activate"]
