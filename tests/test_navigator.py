import math

import numpy as np
import pytest

from tracknav.config import NavigatorConfig
from tracknav.errors import NavigationContractError
from tracknav.navigation import CandidateKind, NavigationStage, Navigator
from tracknav.stepping import ConstraintType, StraightLineStepper
from tracknav.surfaces import SurfaceCategory


def advance(navigator, state, stepper=StraightLineStepper()):
    stepper.step(state)
    navigator.status(state)
    navigator.target(state)


def test_beam_pipe_is_the_first_target(navigator, make_state):
    state = make_state((0.0, 0.0, 0.0), (1.0, 1.0, 0.0))
    navigator.status(state)
    nav = state.navigation
    assert nav.stage is NavigationStage.INITIALIZED
    assert nav.current_volume.name == "beampipe"
    assert nav.start_layer is None

    navigator.target(state)
    assert nav.active_sequence is CandidateKind.LAYER
    assert len(nav.nav_layers) == 1
    cand = nav.nav_layers[0]
    assert cand.object.name == "beampipe:central0"
    # inner approach surface of the 0.8 mm thick pipe at r = 19
    assert cand.path_length == pytest.approx(18.6)
    assert math.hypot(cand.position[0], cand.position[1]) == pytest.approx(cand.path_length)
    assert float(state.stepping.step_size) == pytest.approx(18.6)
    assert state.stepping.step_size.current_type() is ConstraintType.ACTOR


def test_layer_then_surface_then_boundary(navigator, make_state):
    state = make_state((0.0, 0.0, 0.0), (1.0, 0.0, 0.0))
    navigator.status(state)
    navigator.target(state)
    nav = state.navigation

    advance(navigator, state)
    assert nav.stage is NavigationStage.LAYER_REACHED
    assert nav.current_layer.name == "beampipe:central0"
    assert float(state.stepping.step_size) == pytest.approx(0.4)

    advance(navigator, state)
    assert nav.stage is NavigationStage.SURFACE_REACHED
    assert nav.current_surface is nav.current_layer.representation
    assert float(state.stepping.step_size) == pytest.approx(6.0)

    advance(navigator, state)
    assert nav.stage is NavigationStage.BOUNDARY_REACHED
    assert nav.current_volume.name == "barrel"


def test_status_is_idempotent(navigator, make_state):
    state = make_state((0.0, 0.0, 0.0), (1.0, 0.2, 0.1))
    navigator.status(state)
    navigator.target(state)
    for _ in range(4):
        advance(navigator, state)
    nav = state.navigation
    snapshot = (nav.stage, nav.nav_surface_index, nav.nav_layer_index, nav.nav_boundary_index,
                nav.current_volume, nav.current_layer, nav.current_surface, list(nav.reached))
    step_before = float(state.stepping.step_size)

    navigator.status(state)
    assert (nav.stage, nav.nav_surface_index, nav.nav_layer_index, nav.nav_boundary_index,
            nav.current_volume, nav.current_layer, nav.current_surface, list(nav.reached)) == snapshot

    navigator.target(state)
    assert float(state.stepping.step_size) == pytest.approx(step_before)


def test_sensitive_only_skips_material_layers(detector, make_state):
    nav_cfg = NavigatorConfig(resolve_sensitive=True, resolve_material=False, resolve_passive=False)
    navigator = Navigator(detector, nav_cfg)
    state = make_state((0.0, 0.0, 0.0), (1.0, 1.0, 0.0))
    navigator.status(state)
    navigator.target(state)
    nav = state.navigation
    assert nav.pending_layers == 0
    assert nav.active_sequence is CandidateKind.BOUNDARY
    assert float(state.stepping.step_size) == pytest.approx(25.0)


def test_volume_transition_discards_old_candidates(navigator, make_state):
    state = make_state((0.0, 0.0, 0.0), (0.3, -1.0, 0.05))
    navigator.status(state)
    navigator.target(state)
    nav = state.navigation
    for _ in range(20):
        advance(navigator, state)
        if nav.stage is NavigationStage.BOUNDARY_REACHED:
            break
    assert nav.stage is NavigationStage.BOUNDARY_REACHED
    assert nav.current_volume.name == "barrel"
    assert nav.current_layer is None
    # target() already ran for the new volume: only barrel layers may be queued
    assert nav.nav_layers
    assert all(c.object.tracking_volume is nav.current_volume for c in nav.nav_layers)
    assert nav.nav_boundaries == []


def test_exhausted_when_pointing_away_from_world(navigator, make_state):
    state = make_state((300.0, 0.0, 0.0), (1.0, 0.0, 0.0))
    navigator.status(state)
    nav = state.navigation
    assert nav.outside_geometry
    assert nav.current_volume is None

    step_before = float(state.stepping.step_size)
    navigator.target(state)
    assert nav.stage is NavigationStage.GEOMETRY_EXHAUSTED
    assert float(state.stepping.step_size) == step_before


def test_world_entry_from_outside(navigator, make_state):
    state = make_state((300.0, 0.0, 0.0), (-1.0, 0.0, 0.0))
    navigator.status(state)
    navigator.target(state)
    nav = state.navigation
    assert nav.active_sequence is CandidateKind.BOUNDARY
    assert float(state.stepping.step_size) == pytest.approx(100.0)

    advance(navigator, state)
    assert nav.stage is NavigationStage.BOUNDARY_REACHED
    assert not nav.outside_geometry
    assert nav.current_volume.name == "barrel"


def test_target_before_status_is_a_contract_error(navigator, make_state):
    state = make_state((0.0, 0.0, 0.0), (1.0, 0.0, 0.0))
    with pytest.raises(NavigationContractError):
        navigator.target(state)


def test_start_on_a_sensitive_surface(navigator, make_state, detector):
    barrel0 = detector.find_volume("barrel").layers[0]
    module = barrel0.sensitive_surfaces[len(barrel0.sensitive_surfaces) // 2]
    normal = module.normal()
    state = make_state(module.center, normal, start_surface=module)
    navigator.status(state)
    nav = state.navigation
    assert nav.current_volume.name == "barrel"
    assert nav.start_layer is barrel0
    navigator.target(state)
    # the start surface itself is never a candidate again
    assert all(c.object is not module for c in nav.nav_surfaces)
    assert float(state.stepping.step_size) > 0.0
    assert np.isfinite(float(state.stepping.step_size))


def test_layer_surfaces_are_limited_to_the_crossed_layer(detector, make_state):
    navigator = Navigator(detector, NavigatorConfig(resolve_sensitive=True, resolve_material=False,
                                                    resolve_passive=False))
    state = make_state((300.0, 0.0, 0.0), (-1.0, 0.0, 0.0))
    navigator.status(state)
    navigator.target(state)
    nav = state.navigation
    for _ in range(10):
        advance(navigator, state)
        if nav.stage is NavigationStage.LAYER_REACHED:
            break
    layer = nav.current_layer
    assert layer.name == "barrel3"
    assert nav.nav_surfaces
    assert all(c.object.category is SurfaceCategory.SENSITIVE for c in nav.nav_surfaces)
    assert all(c.object.associated_layer is layer for c in nav.nav_surfaces)
    # only the modules inside the thickness band ahead, none on the far side
    assert max(c.path_length for c in nav.nav_surfaces) <= layer.thickness + 1e-3
    assert all(c.position[0] > 0.0 for c in nav.nav_surfaces)


def test_layer_is_entered_again_on_a_chord(detector):
    barrel1 = detector.find_volume("barrel").layers[1]
    half = 0.5 * barrel1.thickness
    first = barrel1.surface_on_approach((150.0, 50.0, 0.0), (-1.0, 0.0, 0.0))
    assert first.position[0] == pytest.approx(math.sqrt((barrel1.radius + half) ** 2 - 50.0 ** 2))
    # from inside the band the exit crossing is stepped over
    x0 = math.sqrt(barrel1.radius ** 2 - 50.0 ** 2)
    xi = math.sqrt((barrel1.radius - half) ** 2 - 50.0 ** 2)
    second = barrel1.surface_on_approach((x0, 50.0, 0.0), (-1.0, 0.0, 0.0))
    assert second.position[0] == pytest.approx(-xi)
    assert second.path_length == pytest.approx(x0 + xi)
    assert barrel1.surface_on_approach((-150.0, 50.0, 0.0), (-1.0, 0.0, 0.0)) is None


def _drive(navigator, states, max_steps=500):
    stepper = StraightLineStepper()
    reached = [[] for _ in states]
    for st in states:
        navigator.status(st)
        navigator.target(st)
    for _ in range(max_steps):
        live = [i for i, st in enumerate(states) if not st.navigation.stage.terminal]
        if not live:
            break
        for i in live:
            st = states[i]
            stepper.step(st)
            navigator.status(st)
            reached[i].extend(obj for _, obj in st.navigation.reached)
            navigator.target(st)
    return reached


def test_one_navigator_serves_interleaved_trajectories(navigator, make_state):
    a = ((0.0, 0.0, 0.0), (1.0, 0.3, 0.1))
    b = ((300.0, 10.0, 0.0), (-1.0, 0.0, 0.05))
    alone_a = _drive(navigator, [make_state(*a)])[0]
    alone_b = _drive(navigator, [make_state(*b)])[0]
    together = _drive(navigator, [make_state(*a), make_state(*b)])
    assert alone_a and alone_b
    assert together[0] == alone_a
    assert together[1] == alone_b
