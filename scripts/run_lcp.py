from __future__ import annotations

import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import geopandas as gpd
import numpy as np
import rasterio
from shapely.ops import unary_union

from centerline_lcp.config import load_yaml, resolve_config, write_resolved_config
from centerline_lcp.grid import Grid
from centerline_lcp.lcp import COMPUTE, least_cost_path
from centerline_lcp.pointcloud import read_las

LOG = logging.getLogger("run_lcp")


def setup_logging(log_path: Path) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
        handlers=[
            logging.FileHandler(log_path, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )


def now_ts() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def read_grid(path: Path) -> Grid:
    with rasterio.open(path) as ds:
        arr = ds.read(1).astype(np.float64)
        crs = ds.crs.to_string() if ds.crs else None
        return Grid.from_array(arr, ds.transform, crs=crs, nodata=ds.nodata)


def write_grid(path: Path, grid: Grid, crs: Optional[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    nodata = -9999.0
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=grid.shape[0],
        width=grid.shape[1],
        count=1,
        dtype="float32",
        crs=crs,
        transform=grid.transform,
        nodata=nodata,
        compress="deflate",
    ) as dst:
        dst.write(np.where(grid.valid, grid.values, nodata).astype("float32"), 1)


def _layer_dumper(out_dir: Path, crs: Optional[str]):
    def dump(name: str, payload: Any) -> None:
        if isinstance(payload, Grid):
            write_grid(out_dir / f"{name}.tif", payload, crs)
            LOG.info("layer written: %s", name)

    return dump


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--las", required=True)
    ap.add_argument("--centerline", required=True, help="vector file with the reference road")
    ap.add_argument("--layer", default=None)
    ap.add_argument("--feature", type=int, default=0, help="row of the road in the layer")
    ap.add_argument("--water", default=None)
    ap.add_argument("--dtm", default=None)
    ap.add_argument("--conductivity", default=None, help="precomputed GeoTIFF")
    ap.add_argument("--config", default="configs/lcp.yaml")
    ap.add_argument("--run-id", default="")
    ap.add_argument("--dump-layers", action="store_true")
    args = ap.parse_args()

    cfg = resolve_config(load_yaml(Path(args.config)))
    run_id = args.run_id or now_ts()
    run_dir = Path("runs") / f"lcp_{run_id}"
    setup_logging(run_dir / "run.log")
    params_hash = write_resolved_config(cfg, run_dir)
    LOG.info("run_id=%s params_hash=%s", run_id, params_hash)

    roads = gpd.read_file(args.centerline, layer=args.layer)
    if roads.empty:
        LOG.error("no road in %s", args.centerline)
        return 2
    road = roads.iloc[[args.feature]]
    crs = roads.crs.to_string() if roads.crs else None

    water = None
    if args.water:
        water_gdf = gpd.read_file(args.water)
        if roads.crs is not None and water_gdf.crs is not None:
            water_gdf = water_gdf.to_crs(roads.crs)
        water = unary_union(list(water_gdf.geometry))

    points = read_las(Path(args.las))
    LOG.info("points=%d passes=%d", len(points), len(points.passes()))

    dtm = read_grid(Path(args.dtm)) if args.dtm else None
    if args.conductivity:
        conductivity = read_grid(Path(args.conductivity))
    elif dtm is None:
        conductivity = COMPUTE
    else:
        conductivity = None

    diagnostics = _layer_dumper(run_dir / "layers", crs) if args.dump_layers else None
    result = least_cost_path(
        points,
        road.geometry.iloc[0],
        dtm=dtm,
        conductivity=conductivity,
        water=water,
        cfg=cfg,
        diagnostics=diagnostics,
    )

    out = gpd.GeoDataFrame(
        {
            "quality": [round(result.quality, 2)],
            "cost": [result.cost],
            "length_m": [result.length],
            "fallback": [result.fallback],
        },
        geometry=[result.geometry],
        crs=roads.crs,
    )
    out_path = run_dir / "corrected_centerline.gpkg"
    if out_path.exists():
        out_path.unlink()
    out.to_file(out_path, layer="centerline", driver="GPKG")
    LOG.info("completed: quality=%.2f fallback=%s -> %s", result.quality, result.fallback, out_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
