import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from tracknav.builders.detectors import build_cylindrical_detector, build_telescope_detector
from tracknav.config import NavigatorConfig
from tracknav.navigation import NavigationState, Navigator
from tracknav.propagation import PropagatorState
from tracknav.stepping import ConstrainedStep, NavigationDirection, StepperState


@pytest.fixture(scope="session")
def detector():
    return build_cylindrical_detector()


@pytest.fixture(scope="session")
def telescope():
    return build_telescope_detector()


@pytest.fixture
def navigator(detector):
    return Navigator(detector, NavigatorConfig())


@pytest.fixture
def make_state():
    def _make(position, direction, nav_dir=NavigationDirection.FORWARD, **nav_kwargs):
        stepping = StepperState(position, direction, nav_dir, ConstrainedStep(1000.0, nav_dir))
        return PropagatorState(stepping, NavigationState(**nav_kwargs))
    return _make
