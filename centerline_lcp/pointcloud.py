from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import shapely
from scipy import ndimage

from centerline_lcp.grid import Grid

LOG = logging.getLogger("pointcloud")

# ASPRS classification codes
GROUND = 2
WATER = 9
BRIDGE_DECK = 17


@dataclass(frozen=True, eq=False)
class PointCloud:
    xyz: np.ndarray
    intensity: Optional[np.ndarray]
    classification: np.ndarray
    scan_angle: np.ndarray
    point_source_id: np.ndarray

    @staticmethod
    def from_arrays(
        xyz: np.ndarray,
        intensity: Optional[np.ndarray] = None,
        classification: Optional[np.ndarray] = None,
        scan_angle: Optional[np.ndarray] = None,
        point_source_id: Optional[np.ndarray] = None,
    ) -> "PointCloud":
        xyz = np.asarray(xyz, dtype=np.float64).reshape(-1, 3)
        n = xyz.shape[0]
        return PointCloud(
            xyz=xyz,
            intensity=None if intensity is None else np.asarray(intensity, dtype=np.float64),
            classification=np.zeros(n, dtype=np.uint8) if classification is None else np.asarray(classification, dtype=np.uint8),
            scan_angle=np.zeros(n, dtype=np.float64) if scan_angle is None else np.asarray(scan_angle, dtype=np.float64),
            point_source_id=np.zeros(n, dtype=np.int64) if point_source_id is None else np.asarray(point_source_id, dtype=np.int64),
        )

    def __len__(self) -> int:
        return int(self.xyz.shape[0])

    @property
    def x(self) -> np.ndarray:
        return self.xyz[:, 0]

    @property
    def y(self) -> np.ndarray:
        return self.xyz[:, 1]

    @property
    def z(self) -> np.ndarray:
        return self.xyz[:, 2]

    @property
    def has_intensity(self) -> bool:
        return self.intensity is not None and self.intensity.size > 0 and bool(np.any(self.intensity != 0))

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        if len(self) == 0:
            raise ValueError("pointcloud_empty")
        return (float(self.x.min()), float(self.y.min()), float(self.x.max()), float(self.y.max()))

    def subset(self, mask: np.ndarray) -> "PointCloud":
        return PointCloud(
            xyz=self.xyz[mask],
            intensity=None if self.intensity is None else self.intensity[mask],
            classification=self.classification[mask],
            scan_angle=self.scan_angle[mask],
            point_source_id=self.point_source_id[mask],
        )

    def passes(self) -> List[int]:
        return [int(p) for p in np.unique(self.point_source_id)]

    def with_z(self, z: np.ndarray) -> "PointCloud":
        xyz = self.xyz.copy()
        xyz[:, 2] = z
        return PointCloud(xyz, self.intensity, self.classification, self.scan_angle, self.point_source_id)

    def with_classification(self, classification: np.ndarray) -> "PointCloud":
        return PointCloud(self.xyz, self.intensity, np.asarray(classification, dtype=np.uint8), self.scan_angle, self.point_source_id)

    def classify_in_polygons(self, geom, code: int) -> "PointCloud":
        if geom is None or geom.is_empty or len(self) == 0:
            return self
        inside = shapely.contains_xy(geom, self.x, self.y)
        if not np.any(inside):
            return self
        cls = self.classification.copy()
        cls[inside] = code
        LOG.debug("reclassified %d points to class %d", int(inside.sum()), code)
        return self.with_classification(cls)

    def normalize_height(self, dtm: Grid) -> "PointCloud":
        """Heights above the bilinearly interpolated ground. Points over no-data ground get NaN."""
        ground = ground_at(dtm, self.x, self.y)
        return self.with_z(self.z - ground)


def ground_at(dtm: Grid, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    res_x = dtm.transform.a
    res_y = dtm.transform.e
    cols = (np.asarray(x) - dtm.transform.c) / res_x - 0.5
    rows = (np.asarray(y) - dtm.transform.f) / res_y - 0.5
    return ndimage.map_coordinates(dtm.to_nan(), [rows, cols], order=1, mode="nearest")


def read_las(path: Path) -> PointCloud:
    import laspy

    las = laspy.read(str(path))
    dims = set(las.point_format.dimension_names)
    xyz = np.vstack((np.asarray(las.x), np.asarray(las.y), np.asarray(las.z))).T
    intensity = np.asarray(las.intensity, dtype=np.float64) if "intensity" in dims else None
    if "scan_angle" in dims:
        scan_angle = np.asarray(las.scan_angle, dtype=np.float64) * 0.006
    elif "scan_angle_rank" in dims:
        scan_angle = np.asarray(las.scan_angle_rank, dtype=np.float64)
    else:
        scan_angle = None
    return PointCloud.from_arrays(
        xyz,
        intensity=intensity,
        classification=np.asarray(las.classification),
        scan_angle=scan_angle,
        point_source_id=np.asarray(las.point_source_id),
    )


__all__ = ["BRIDGE_DECK", "GROUND", "WATER", "PointCloud", "ground_at", "read_las"]
