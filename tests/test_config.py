from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from centerline_lcp.config import DEFAULTS, REQUIRED_KEYS, get_params_hash, load_yaml, resolve_config, write_resolved_config


def test_defaults_complete_required_keys():
    cfg = resolve_config()
    assert all(k in cfg for k in REQUIRED_KEYS)
    assert cfg["CONDUCTIVITY_FLOOR"] == 0.1
    assert cfg["CONNECTIVITY"] == 8


def test_partial_weights_are_merged():
    cfg = resolve_config({"WEIGHTS": {"i": 0.0}})
    assert cfg["WEIGHTS"]["i"] == 0.0
    assert cfg["WEIGHTS"]["e"] == DEFAULTS["WEIGHTS"]["e"]
    assert DEFAULTS["WEIGHTS"]["i"] == 1.0


@pytest.mark.parametrize(
    "override",
    [
        {"CONNECTIVITY": 6},
        {"EDGE_KERNEL": 4},
        {"SLOPE_TH": [20.0, 10.0]},
        {"CONDUCTIVITY_FLOOR": 0.0},
        {"SHIELD_WIDTH_M": 90.0},
        {"CONFIDENCE": 1.5},
        {"DIFFUSION_PASSES": -1},
        {"WEIGHTS": {"d": -1.0}},
    ],
)
def test_invalid_values_fail_fast(override):
    with pytest.raises(ValueError, match="invalid_config"):
        resolve_config(override)


def test_params_hash_is_order_independent():
    a = resolve_config({"ROAD_BUFFER_M": 50.0})
    b = dict(reversed(list(a.items())))
    assert get_params_hash(a) == get_params_hash(b)
    assert get_params_hash(a) != get_params_hash(resolve_config())


def test_yaml_round_trip(tmp_path: Path):
    assert load_yaml(tmp_path / "missing.yaml") == {}
    (tmp_path / "cfg.yaml").write_text("ROAD_BUFFER_M: 40\nWEIGHTS:\n  h: 2.0\n", encoding="utf-8")
    cfg = resolve_config(load_yaml(tmp_path / "cfg.yaml"))
    assert cfg["ROAD_BUFFER_M"] == 40
    assert cfg["WEIGHTS"]["h"] == 2.0

    run_dir = tmp_path / "run"
    params_hash = write_resolved_config(cfg, run_dir)
    assert (run_dir / "params_hash.txt").read_text(encoding="utf-8").strip() == params_hash
    written = yaml.safe_load((run_dir / "resolved_config.yaml").read_text(encoding="utf-8"))
    assert get_params_hash(written) == params_hash
