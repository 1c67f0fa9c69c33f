import numpy as np
import pandas as pd
import pytest

from tracknav.config import NavigatorConfig
from tracknav.navigation import NavigationStage, Navigator
from tracknav.propagation import PropagatorOptions, propagate
from tracknav.stepping import NavigationDirection
from tracknav.surfaces import PlaneSurface, RectangleBounds
from tracknav.transform import Transform3D


def _layers_in_order(steps):
    out = []
    for s in steps:
        if s.layer is not None and s.layer not in out:
            out.append(s.layer)
    return out


def test_transverse_track_crosses_the_barrel(navigator):
    res = propagate(navigator, (0.0, 0.0, 0.0), (1.0, 0.3, 0.0))
    assert res.exhausted
    assert not res.aborted
    sensitive = [s for s in res.surfaces() if s.category == "sensitive"]
    assert {s.layer for s in sensitive} == {"barrel0", "barrel1", "barrel2", "barrel3"}
    assert _layers_in_order(sensitive) == ["barrel0", "barrel1", "barrel2", "barrel3"]
    assert res.path_length == pytest.approx(200.0)
    assert res.material_in_x0 > 0.0

    paths = [s.path_length for s in res.steps]
    assert all(b >= a for a, b in zip(paths, paths[1:]))
    volumes = [s.volume for s in res.steps if s.kind == "boundary"]
    assert volumes[0] == "barrel"
    assert volumes[-1] is None


def test_sensitive_only_reaches_only_modules(detector):
    navigator = Navigator(detector, NavigatorConfig(resolve_sensitive=True, resolve_material=False,
                                                    resolve_passive=False))
    res = propagate(navigator, (0.0, 0.0, 0.0), (0.2, 1.0, 0.1))
    assert res.exhausted
    assert res.surfaces()
    assert all(s.category == "sensitive" for s in res.surfaces())
    assert not any(s.layer and s.layer.startswith(("beampipe", "support")) for s in res.steps)


def test_forward_track_reaches_the_endcap_discs(navigator):
    res = propagate(navigator, (0.0, 0.0, 0.0), (0.1, 0.0, 1.0))
    assert res.exhausted
    sensitive = [s for s in res.surfaces() if s.category == "sensitive"]
    layers = _layers_in_order(sensitive)
    assert "barrel0" in layers
    assert [l for l in layers if l.startswith("endcap")] == [f"endcap_pos{i}" for i in range(5)]
    assert any(s.volume == "endcap_pos" for s in res.surfaces("boundary"))


def test_telescope_track_hits_every_plane(telescope):
    navigator = Navigator(telescope)
    res = propagate(navigator, (1.0, 1.0, -115.0), (0.0, 0.0, 1.0))
    assert res.exhausted
    sensitive = [s for s in res.surfaces() if s.category == "sensitive"]
    assert len(sensitive) == 5
    assert [s.layer for s in sensitive] == [f"telescope{i}" for i in range(5)]
    assert [s.z for s in sensitive] == pytest.approx([-100.0, -50.0, 0.0, 50.0, 100.0])
    assert res.path_length == pytest.approx(235.0)


def test_target_surface_stops_the_propagation(navigator):
    target = PlaneSurface(Transform3D.from_axes((0.0, 1.0, 0.0), (0.0, 0.0, 1.0), (1.0, 0.0, 0.0),
                                                translation=(50.0, 0.0, 0.0)),
                          RectangleBounds(100.0, 100.0), name="target")
    res = propagate(navigator, (0.0, 0.0, 0.0), (1.0, 0.0, 0.0), target_surface=target)
    assert res.target_reached
    assert res.final_stage is NavigationStage.TARGET_REACHED
    assert res.path_length == pytest.approx(50.0)
    assert res.steps[-1].kind == "target"
    assert res.steps[-1].x == pytest.approx(50.0)


def test_path_limit_aborts(navigator):
    res = propagate(navigator, (0.0, 0.0, 0.0), (1.0, 0.0, 0.0), options=PropagatorOptions(path_limit=30.0))
    assert res.aborted
    assert not res.exhausted
    assert res.path_length == pytest.approx(30.0)


def test_max_steps_aborts(navigator):
    res = propagate(navigator, (0.0, 0.0, 0.0), (1.0, 0.0, 0.0), options=PropagatorOptions(max_steps=2))
    assert res.aborted
    assert res.n_steps == 2


def test_small_user_step_gives_the_same_surfaces(navigator):
    direction = (1.0, 0.4, 0.3)
    coarse = propagate(navigator, (0.0, 0.0, 0.0), direction)
    fine = propagate(navigator, (0.0, 0.0, 0.0), direction, options=PropagatorOptions(max_step_size=7.0))
    assert fine.n_steps > coarse.n_steps
    assert [s.geometry_id for s in fine.surfaces()] == [s.geometry_id for s in coarse.surfaces()]


def test_backward_navigation_mirrors_forward(navigator):
    d = np.array([1.0, 0.3, 0.2])
    forward = propagate(navigator, (0.0, 0.0, 0.0), d)
    backward = propagate(navigator, (0.0, 0.0, 0.0), -d, nav_dir=NavigationDirection.BACKWARD)
    assert backward.exhausted
    assert backward.path_length == pytest.approx(forward.path_length)
    assert [s.geometry_id for s in backward.surfaces()] == [s.geometry_id for s in forward.surfaces()]
    assert all(s.path_length <= 0.0 for s in backward.steps)


def test_to_frame(navigator):
    res = propagate(navigator, (0.0, 0.0, 0.0), (1.0, 1.0, 0.0))
    df = res.to_frame()
    assert isinstance(df, pd.DataFrame)
    assert len(df) == len(res.steps)
    assert {"kind", "layer", "geometry_id", "path_length", "material_in_x0"} <= set(df.columns)
    assert df["material_in_x0"].sum() == pytest.approx(res.material_in_x0)
    assert set(df["kind"]) <= {"surface", "layer", "boundary"}


def test_inward_track_visits_every_layer_on_both_sides(navigator):
    res = propagate(navigator, (300.0, 0.0, 0.0), (-1.0, 0.0, 0.0))
    assert res.exhausted
    assert res.path_length == pytest.approx(500.0)
    layers = [s.layer for s in res.steps if s.kind == "layer"]
    barrel = ["barrel3", "barrel2", "barrel1", "barrel0"]
    assert layers == (["support:central0"] + barrel + ["beampipe:central0"] * 2
                      + barrel[::-1] + ["support:central0"])
    assert [s.volume for s in res.surfaces("boundary")] == ["barrel", "beampipe", "barrel", None]
    sensitive = [s for s in res.surfaces() if s.category == "sensitive"]
    for name in barrel:
        xs = [s.x for s in sensitive if s.layer == name]
        assert any(x > 0.0 for x in xs) and any(x < 0.0 for x in xs)
    # every step is recorded in the volume it happens in
    for s in res.surfaces():
        expected = "beampipe" if abs(s.x) < 25.0 else "barrel"
        assert s.volume == expected


def test_off_centre_chord_stays_in_the_barrel(navigator):
    res = propagate(navigator, (150.0, 50.0, 0.0), (-1.0, 0.0, 0.0))
    assert res.exhausted
    layers = [s.layer for s in res.steps if s.kind == "layer"]
    assert layers == ["barrel2", "barrel1", "barrel1", "barrel2", "barrel3", "support:central0"]
    assert all(s.volume == "barrel" for s in res.steps if s.kind != "boundary")
    assert [s.volume for s in res.surfaces("boundary")] == [None]
    xs = [s.x for s in res.surfaces() if s.category == "sensitive" and s.layer == "barrel1"]
    assert min(xs) == pytest.approx(-51.8, abs=5.0)
    assert max(xs) == pytest.approx(51.8, abs=5.0)
