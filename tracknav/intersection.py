from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, List

import numpy as np

from tracknav.units import ON_SURFACE_TOLERANCE


@dataclass(frozen=True, slots=True, eq=False)
class Intersection:
    r"""
    Result of intersecting a straight ray with a surface.

    For a ray :math:`\mathbf{x}(s) = \mathbf{p} + s\,\hat{\mathbf{d}}` the
    intersection stores the point :math:`\mathbf{x}(s^\ast)`, the path length
    :math:`s^\ast` and whether the solution is usable (it exists, lies ahead
    of the start point and, if requested, inside the surface bounds).

    Attributes
    ----------
    position : (3,) ndarray
        Global intersection point.
    path_length : float
        Signed distance along the ray direction.
    valid : bool
        Validity flag; an invalid intersection carries ``inf`` path length.
    """
    position: np.ndarray
    path_length: float
    valid: bool

    @classmethod
    def invalid(cls) -> "Intersection":
        return cls(np.full(3, np.nan), math.inf, False)

    def __bool__(self) -> bool:
        return self.valid


@dataclass(frozen=True, slots=True, eq=False)
class ObjectIntersection:
    """
    An :class:`Intersection` together with the geometry object it belongs to.

    ``object`` is what the navigator reasons about (a surface, a layer or a
    boundary surface); ``representation`` is the surface that was actually
    intersected (for a layer this is the approach surface).
    """
    intersection: Intersection
    object: Any
    representation: Any

    @property
    def path_length(self) -> float:
        return self.intersection.path_length

    @property
    def position(self) -> np.ndarray:
        return self.intersection.position

    @property
    def serial(self) -> int:
        return self.representation.serial

    def __bool__(self) -> bool:
        return self.intersection.valid


def sort_candidates(candidates: Iterable[ObjectIntersection],
                    tolerance: float = ON_SURFACE_TOLERANCE) -> List[ObjectIntersection]:
    r"""
    Order candidates by increasing path length with a deterministic tie-break.

    Candidates are first sorted by ``(path_length, serial)``. Runs of
    consecutive candidates whose path lengths lie within ``tolerance`` of the
    first member of the run are then re-ordered by construction serial alone,
    so that near-identical distances never depend on floating point noise.

    Parameters
    ----------
    candidates : iterable of ObjectIntersection
        Valid candidates (invalid ones are dropped).
    tolerance : float, optional
        Path-length window that counts as a tie.

    Returns
    -------
    list of ObjectIntersection
    """
    ordered = sorted((c for c in candidates if c.intersection.valid),
                     key=lambda c: (c.path_length, c.serial))
    out: List[ObjectIntersection] = []
    i = 0
    while i < len(ordered):
        j = i + 1
        head = ordered[i].path_length
        while j < len(ordered) and ordered[j].path_length - head <= tolerance:
            j += 1
        run = ordered[i:j]
        if len(run) > 1:
            run.sort(key=lambda c: c.serial)
        out.extend(run)
        i = j
    return out
