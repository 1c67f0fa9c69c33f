r"""
Straight-line propagation driver.

:func:`propagate` runs the usual loop

.. code-block:: text

    status(); target()
    repeat: step(); status(); [record]; target()
    until a terminal navigation stage, the path limit or max_steps

and returns a :class:`PropagationResult` with one :class:`NavigationStep`
per object reached. Material crossed on reached surfaces is accumulated in
radiation lengths, corrected for the incidence angle,
:math:`x/X_0 \cdot 1/|\cos\alpha|`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd

from tracknav.navigation import CandidateKind, NavigationStage, NavigationState, Navigator
from tracknav.stepping import (ConstrainedStep, ConstraintType, NavigationDirection, StepperState,
                               StraightLineStepper)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PropagatorOptions:
    """Loop limits: number of steps, largest single step and total path (mm)."""
    max_steps: int = 1000
    max_step_size: float = 1000.0
    path_limit: float = math.inf

    def __post_init__(self):
        if self.max_steps < 1 or not self.max_step_size > 0.0 or not self.path_limit > 0.0:
            raise ValueError("PropagatorOptions need positive limits.")


@dataclass(slots=True)
class PropagatorState:
    """What the navigator sees: the stepper state and the navigation state."""
    stepping: StepperState
    navigation: NavigationState
    options: PropagatorOptions = field(default_factory=PropagatorOptions)


@dataclass(frozen=True, slots=True)
class NavigationStep:
    step: int
    kind: str
    stage: str
    volume: Optional[str]
    layer: Optional[str]
    surface: Optional[str]
    geometry_id: Optional[str]
    category: Optional[str]
    x: float
    y: float
    z: float
    path_length: float
    material_in_x0: float


@dataclass
class PropagationResult:
    steps: List[NavigationStep] = field(default_factory=list)
    final_stage: NavigationStage = NavigationStage.UNINITIALIZED
    path_length: float = 0.0
    n_steps: int = 0
    material_in_x0: float = 0.0
    aborted: bool = False

    @property
    def exhausted(self) -> bool:
        return self.final_stage is NavigationStage.GEOMETRY_EXHAUSTED

    @property
    def target_reached(self) -> bool:
        return self.final_stage is NavigationStage.TARGET_REACHED

    def surfaces(self, kind: str = "surface") -> List[NavigationStep]:
        return [s for s in self.steps if s.kind == kind]

    def to_frame(self) -> pd.DataFrame:
        """One row per reached object, columns as in :class:`NavigationStep`."""
        cols = list(NavigationStep.__dataclass_fields__)
        if not self.steps:
            return pd.DataFrame(columns=cols)
        return pd.DataFrame.from_records([{c: getattr(s, c) for c in cols} for s in self.steps], columns=cols)


def _record(result: PropagationResult, state: PropagatorState, step: int) -> None:
    nav, st = state.navigation, state.stepping
    for kind, obj in nav.reached:
        surface = obj.surface if kind is CandidateKind.BOUNDARY else (
            obj.representation if kind is CandidateKind.LAYER else obj)
        x0 = 0.0
        if kind is CandidateKind.SURFACE and surface.material is not None:
            props = surface.material.material_properties(st.position)
            x0 = props.thickness_in_x0 * surface.path_correction(st.position, st.direction)
            result.material_in_x0 += x0
        layer = surface.associated_layer
        volume = nav.current_volume
        result.steps.append(NavigationStep(
            step=step,
            kind=kind.value,
            stage=nav.stage.value,
            volume=volume.name if volume is not None else None,
            layer=layer.name if layer is not None else None,
            surface=surface.name or None,
            geometry_id=str(surface.geometry_id) if surface.geometry_id is not None else None,
            category=surface.category.value,
            x=float(st.position[0]), y=float(st.position[1]), z=float(st.position[2]),
            path_length=float(st.path_accumulated),
            material_in_x0=x0,
        ))
    if nav.stage is NavigationStage.TARGET_REACHED and nav.target_surface is not None:
        s = nav.target_surface
        result.steps.append(NavigationStep(
            step=step, kind="target", stage=nav.stage.value,
            volume=nav.current_volume.name if nav.current_volume is not None else None,
            layer=None, surface=s.name or None,
            geometry_id=str(s.geometry_id) if s.geometry_id is not None else None,
            category=s.category.value,
            x=float(st.position[0]), y=float(st.position[1]), z=float(st.position[2]),
            path_length=float(st.path_accumulated), material_in_x0=0.0,
        ))


def propagate(navigator: Navigator, position, direction, *,
              nav_dir: NavigationDirection = NavigationDirection.FORWARD,
              target_surface=None, start_surface=None,
              options: Optional[PropagatorOptions] = None,
              stepper: Optional[StraightLineStepper] = None) -> PropagationResult:
    r"""
    Propagate a straight track through the geometry of ``navigator``.

    Parameters
    ----------
    navigator : Navigator
    position, direction : (3,) array_like
        Start point and direction (normalized internally).
    nav_dir : NavigationDirection, optional
        ``BACKWARD`` propagates against ``direction``.
    target_surface, start_surface : Surface, optional
        Forwarded to the :class:`NavigationState`.
    options : PropagatorOptions, optional
    stepper : StraightLineStepper, optional

    Returns
    -------
    PropagationResult
        ``aborted`` is set when ``max_steps`` or ``path_limit`` ended the loop
        before a terminal navigation stage.
    """
    options = options if options is not None else PropagatorOptions()
    stepper = stepper if stepper is not None else StraightLineStepper()
    stepping = StepperState(position, direction, nav_dir, ConstrainedStep(options.max_step_size, nav_dir))
    state = PropagatorState(stepping, NavigationState(start_surface=start_surface, target_surface=target_surface),
                            options)
    result = PropagationResult()

    navigator.status(state)
    _record(result, state, 0)
    navigator.target(state)
    step = 0
    while not state.navigation.stage.terminal:
        if step >= options.max_steps:
            result.aborted = True
            logger.warning("Propagation stopped after %d steps at %s", step, np.round(stepping.position, 3))
            break
        remaining = options.path_limit - abs(stepping.path_accumulated)
        if remaining <= navigator.config.on_surface_tolerance:
            result.aborted = True
            logger.debug("Path limit %.3f reached", options.path_limit)
            break
        if math.isfinite(remaining):
            stepping.step_size.update(int(nav_dir) * remaining, ConstraintType.ABORTER, release=True)
        stepper.step(state)
        step += 1
        navigator.status(state)
        _record(result, state, step)
        navigator.target(state)

    result.final_stage = state.navigation.stage
    result.path_length = abs(stepping.path_accumulated)
    result.n_steps = step
    logger.debug("Propagation finished: stage=%s steps=%d path=%.3f surfaces=%d", result.final_stage.value, step,
                 result.path_length, len(result.surfaces()))
    return result
