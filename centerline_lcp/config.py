from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml


REQUIRED_KEYS = [
    "ROAD_BUFFER_M",
    "HOLD_PAD_M",
    "CAP_LENGTH_M",
    "SHIELD_WIDTH_M",
    "CONFIDENCE",
    "CONNECTIVITY",
    "GEOCORRECTION",
    "SIMPLIFY_TOL_M",
    "CONDUCTIVITY_FLOOR",
    "HARD_SLOPE_DEG",
    "DTM_MAX_RES_M",
    "AGGREGATE_FACTOR",
    "WORKING_RES_M",
    "SLOPE_TH",
    "ROUGH_TH",
    "EDGE_TH",
    "CANOPY_TH",
    "INTENSITY_TH",
    "DENSITY_TH",
    "LOWPOINT_TH",
    "WEIGHTS",
    "DIFFUSION_ITERATIONS",
    "DIFFUSION_LAMBDA",
    "DIFFUSION_K",
    "DIFFUSION_PASSES",
    "STRETCH_MAXQ",
]

DEFAULTS: Dict[str, Any] = {
    # corridor / anchors
    "ROAD_BUFFER_M": 80.0,
    "HOLD_PAD_M": 2.0,
    "CAP_LENGTH_M": 20.0,
    "SHIELD_WIDTH_M": 6.0,
    "CONFIDENCE": 0.1,
    # graph / solver
    "CONNECTIVITY": 8,
    "GEOCORRECTION": True,
    "SIMPLIFY_TOL_M": 3.0,
    "CONDUCTIVITY_FLOOR": 0.1,
    "HARD_SLOPE_DEG": 25.0,
    # resolutions
    "DTM_MAX_RES_M": 1.0,
    "AGGREGATE_FACTOR": 2,
    "WORKING_RES_M": 2.0,
    # activation thresholds and directions
    "SLOPE_TH": [10.0, 20.0],
    "SLOPE_ASC": False,
    "ROUGH_TH": [0.05, 0.15],
    "ROUGH_ASC": False,
    "EDGE_TH": [15.0, 50.0],
    "EDGE_ASC": False,
    "EDGE_KERNEL": 3,
    "CANOPY_TH": [1.0, 5.0],
    "CANOPY_ASC": False,
    "INTENSITY_TH": [0.25, 0.35],
    "INTENSITY_ASC": False,
    "DENSITY_TH": [0.33, 0.66],
    "DENSITY_ASC": True,
    "LOWPOINT_TH": 0.01,
    "LOWPOINT_ASC": False,
    # combination weights: e=edge s=slope r=roughness h=canopy i=intensity d=density lp=low points
    "WEIGHTS": {"e": 1.0, "s": 1.0, "r": 1.0, "h": 1.0, "i": 1.0, "d": 1.0, "lp": 1.0},
    # edge-preserving smoothing
    "DIFFUSION_ITERATIONS": 50,
    "DIFFUSION_LAMBDA": 0.05,
    "DIFFUSION_K": 20.0,
    "DIFFUSION_PASSES": 2,
    "STRETCH_MAXQ": 0.995,
    # point evidence
    "ROUGH_SMOOTH_WIN": 5,
    "DENSITY_SMOOTH_WIN": 3,
    "INTENSITY_OUTLIER_Q": 0.98,
    "DENSITY_CAP_Q": 0.95,
    "DROP_SCAN_ANGLES": 0.0,
    "GROUND_BAND_M": 0.2,
    "LOWPOINT_Z_MIN_M": 0.5,
    "LOWPOINT_Z_MAX_M": 3.0,
    # water / bridges
    "BRIDGE_BUFFER_M": 5.0,
    "BRIDGE_CONDUCTIVITY": 1.0,
    "BRIDGE_POINT_CONDUCTIVITY": 0.75,
    "BRIDGE_MIN_HEIGHT_M": 2.0,
}

_PAIR_KEYS = ["SLOPE_TH", "ROUGH_TH", "EDGE_TH", "CANOPY_TH", "INTENSITY_TH", "DENSITY_TH"]


def load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return dict(data)


def _normalize(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _normalize(obj[k]) for k in sorted(obj.keys())}
    if isinstance(obj, (list, tuple)):
        return [_normalize(v) for v in obj]
    return obj


def get_params_hash(cfg: Dict[str, Any]) -> str:
    payload = _normalize(dict(cfg))
    raw = json.dumps(payload, sort_keys=True, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha1(raw).hexdigest()


def _assert_required(cfg: Dict[str, Any], required: Iterable[str]) -> None:
    missing = [k for k in required if k not in cfg]
    if missing:
        raise KeyError(f"Missing required keys: {missing}")


def _check_values(cfg: Dict[str, Any]) -> None:
    if int(cfg["CONNECTIVITY"]) not in (4, 8):
        raise ValueError(f"invalid_config:CONNECTIVITY={cfg['CONNECTIVITY']}")
    if int(cfg["EDGE_KERNEL"]) not in (3, 5):
        raise ValueError(f"invalid_config:EDGE_KERNEL={cfg['EDGE_KERNEL']}")
    for key in _PAIR_KEYS:
        pair = list(cfg[key])
        if len(pair) != 2 or float(pair[0]) > float(pair[1]):
            raise ValueError(f"invalid_config:{key}={cfg[key]}")
    floor = float(cfg["CONDUCTIVITY_FLOOR"])
    if not 0.0 < floor <= 1.0:
        raise ValueError(f"invalid_config:CONDUCTIVITY_FLOOR={floor}")
    buf = float(cfg["ROAD_BUFFER_M"])
    shield = float(cfg["SHIELD_WIDTH_M"])
    if buf <= 0.0 or shield <= 0.0 or shield >= buf:
        raise ValueError(f"invalid_config:ROAD_BUFFER_M={buf},SHIELD_WIDTH_M={shield}")
    if int(cfg["AGGREGATE_FACTOR"]) < 1:
        raise ValueError(f"invalid_config:AGGREGATE_FACTOR={cfg['AGGREGATE_FACTOR']}")
    if not 0.0 <= float(cfg["CONFIDENCE"]) <= 1.0:
        raise ValueError(f"invalid_config:CONFIDENCE={cfg['CONFIDENCE']}")
    if int(cfg["DIFFUSION_ITERATIONS"]) < 0 or int(cfg["DIFFUSION_PASSES"]) < 0:
        raise ValueError("invalid_config:DIFFUSION_ITERATIONS/DIFFUSION_PASSES")
    weights = cfg["WEIGHTS"]
    if any(float(w) < 0.0 for w in weights.values()):
        raise ValueError(f"invalid_config:WEIGHTS={weights}")


def resolve_config(base_cfg: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    cfg = dict(base_cfg or {})
    for k, v in DEFAULTS.items():
        if k not in cfg:
            cfg[k] = v
    weights = dict(DEFAULTS["WEIGHTS"])
    weights.update(cfg.get("WEIGHTS") or {})
    cfg["WEIGHTS"] = weights
    _assert_required(cfg, REQUIRED_KEYS)
    _check_values(cfg)
    return cfg


def write_resolved_config(cfg: Dict[str, Any], run_dir: Path) -> str:
    run_dir.mkdir(parents=True, exist_ok=True)
    out_path = run_dir / "resolved_config.yaml"
    with out_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(_normalize(cfg), f, sort_keys=False, allow_unicode=False)
    params_hash = get_params_hash(cfg)
    (run_dir / "params_hash.txt").write_text(params_hash + "\n", encoding="utf-8")
    return params_hash


__all__ = [
    "DEFAULTS",
    "REQUIRED_KEYS",
    "get_params_hash",
    "load_yaml",
    "resolve_config",
    "write_resolved_config",
]
