r"""
Unit conventions for :mod:`tracknav`.

All lengths are expressed in **millimetres** and all angles in **radians**.
Multiply a literal by one of the constants below to make the unit explicit,
e.g. ``25 * units.cm`` or ``0.145 * units.rad``.
"""

from __future__ import annotations

import math

mm = 1.0
um = 1.0e-3 * mm
cm = 10.0 * mm
m = 1000.0 * mm

rad = 1.0
deg = math.pi / 180.0

#: Slack used to decide that a position lies on a surface.
ON_SURFACE_TOLERANCE = 1.0e-4 * mm
