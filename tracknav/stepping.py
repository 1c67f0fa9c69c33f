r"""
Stepper-side contract consumed by the navigator.

The navigator only reads ``position``, ``direction`` and ``nav_dir`` from the
stepper state and writes its step proposal into the ``ACTOR`` slot of the
:class:`ConstrainedStep`. The effective step is the signed minimum over all
constraint magnitudes,

.. math::

    h \;=\; \sigma\,\min\left(|h_\text{accuracy}|, |h_\text{actor}|,
    |h_\text{aborter}|, |h_\text{user}|\right),

with :math:`\sigma = \pm 1` the navigation direction.

:class:`StraightLineStepper` advances :math:`\mathbf{x} \leftarrow \mathbf{x}
+ h\,\hat{\mathbf{d}}` and is the only stepper shipped; it exists to drive
the navigator without a field.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict

import numpy as np

from tracknav.units import m


class NavigationDirection(IntEnum):
    FORWARD = 1
    BACKWARD = -1


class ConstraintType(Enum):
    ACCURACY = "accuracy"
    ACTOR = "actor"
    ABORTER = "aborter"
    USER = "user"


DEFAULT_USER_STEP = 1.0 * m


class ConstrainedStep:
    """Step size limited by several independent constraints."""

    __slots__ = ("_values", "direction", "_user_default")

    def __init__(self, user: float = DEFAULT_USER_STEP,
                 direction: NavigationDirection = NavigationDirection.FORWARD):
        self.direction = NavigationDirection(direction)
        self._user_default = abs(float(user))
        self._values: Dict[ConstraintType, float] = {c: math.inf for c in ConstraintType}
        self._values[ConstraintType.USER] = self._user_default

    def update(self, value: float, kind: ConstraintType, release: bool = False) -> None:
        """
        Tighten constraint ``kind`` to ``|value|``.

        With ``release=True`` the constraint is replaced instead of tightened,
        which is how the navigator re-targets every step.
        """
        mag = abs(float(value))
        if value != 0.0:
            self.direction = NavigationDirection.FORWARD if value > 0.0 else NavigationDirection.BACKWARD
        self._values[kind] = mag if release else min(self._values[kind], mag)

    def release(self, kind: ConstraintType) -> None:
        self._values[kind] = self._user_default if kind is ConstraintType.USER else math.inf

    def value(self, kind: ConstraintType) -> float:
        return int(self.direction) * self._values[kind]

    def current_type(self) -> ConstraintType:
        return min(self._values, key=lambda k: self._values[k])

    def __float__(self) -> float:
        return int(self.direction) * min(self._values.values())

    def __repr__(self) -> str:
        parts = ", ".join(f"{k.value}={v:.4g}" for k, v in self._values.items() if math.isfinite(v))
        return f"ConstrainedStep({float(self):.6g}; {parts})"


@dataclass(slots=True)
class StepperState:
    """Position, unit direction, navigation direction and step bookkeeping."""
    position: np.ndarray
    direction: np.ndarray
    nav_dir: NavigationDirection = NavigationDirection.FORWARD
    step_size: ConstrainedStep = field(default_factory=ConstrainedStep)
    path_accumulated: float = 0.0

    def __post_init__(self):
        self.position = np.array(self.position, dtype=np.float64).reshape(3)
        d = np.array(self.direction, dtype=np.float64).reshape(3)
        n = float(np.linalg.norm(d))
        if n == 0.0:
            raise ValueError("Direction must be non-zero.")
        self.direction = d / n
        self.nav_dir = NavigationDirection(self.nav_dir)
        self.step_size.direction = self.nav_dir


class StraightLineStepper:
    """Field-free stepper: moves along the current direction by the constrained step."""

    def step(self, state) -> float:
        stepping: StepperState = state.stepping
        h = float(stepping.step_size)
        stepping.position = stepping.position + h * stepping.direction
        stepping.path_accumulated += h
        return h
