import orjson
import pandas as pd
import pytest

from tracknav.config import (BarrelConfig, CylindricalDetectorConfig, NavigatorConfig, detector_config,
                             from_mapping, load_config, navigator_config)
from tracknav.main import build_parser, generate_directions, main
from tracknav.profiling import prof


def test_from_mapping_builds_nested_configs():
    cfg = detector_config({"detector": {"barrel": {"layer_radii": [40, 80], "modules_phi": [20, 40],
                                                   "modules_z": [9, 9]},
                                        "endcap": None}})
    assert isinstance(cfg, CylindricalDetectorConfig)
    assert isinstance(cfg.barrel, BarrelConfig)
    assert cfg.barrel.layer_radii == (40.0, 80.0)
    assert cfg.barrel.modules_phi == (20, 40)
    assert cfg.endcap is None
    assert navigator_config({}) == NavigatorConfig()


def test_unknown_keys_are_rejected():
    with pytest.raises(KeyError, match="resolve_everything"):
        from_mapping(NavigatorConfig, {"resolve_everything": True})


def test_load_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps({"navigator": {"resolve_passive": True}}))
    cfg = navigator_config(load_config(path))
    assert cfg.resolve_passive
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ValueError):
        load_config(bad)
    with pytest.raises(ValueError):
        NavigatorConfig(on_surface_tolerance=0.0)


def test_parser_defaults_and_flags():
    args = build_parser().parse_args(["-n", "5", "--telescope", "--seed", "3"])
    assert args.n_tracks == 5
    assert args.telescope
    assert args.seed == 3
    assert not args.plot
    assert args.config is None


def test_generated_directions_are_unit_vectors():
    import numpy as np
    d = generate_directions(np.random.default_rng(1), 50, 2.5)
    assert d.shape == (50, 3)
    assert np.allclose(np.linalg.norm(d, axis=1), 1.0)


def test_main_writes_steps_csv(tmp_path):
    out = tmp_path / "steps.csv"
    main(["-n", "3", "--telescope", "-s", "7", "--out", str(out)])
    df = pd.read_csv(out)
    assert set(df["track"]) == {0, 1, 2}
    assert (df["kind"] == "surface").sum() >= 3


def test_prof_writes_report(tmp_path):
    out = tmp_path / "prof.txt"
    with prof(True, out_path=str(out), limit=5) as pr:
        sum(i * i for i in range(1000))
    assert pr is not None
    assert out.read_text(encoding="utf-8").startswith("[prof] elapsed=")
    with prof(False) as pr:
        assert pr is None
