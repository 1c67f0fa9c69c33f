r"""
Surfaces and their bounds.

Every surface is a 2D manifold placed in space by a :class:`Transform3D`.
Three shapes are provided, each with a natural local parametrization:

==================  ======================  ============================
shape               local coordinates       bounds
==================  ======================  ============================
:class:`CylinderSurface`  :math:`(\phi, z)`       :class:`CylinderBounds`
:class:`DiscSurface`      :math:`(r, \phi)`       :class:`RadialBounds`
:class:`PlaneSurface`     :math:`(x, y)`          :class:`RectangleBounds`,
                                                  :class:`TrapezoidBounds`
==================  ======================  ============================

All shapes expose the same straight-line contract,
:meth:`Surface.intersection_estimate`, which the navigator relies on. A ray
:math:`\mathbf{x}(s)=\mathbf{p}+s\,\hat{\mathbf{d}}` is intersected in the
local frame, and only solutions with :math:`s > \varepsilon` (the on-surface
tolerance) are reported so that a surface the trajectory currently sits on is
never targeted again.
"""

from __future__ import annotations

import itertools
import math
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from tracknav.intersection import Intersection
from tracknav.material import HomogeneousSurfaceMaterial
from tracknav.transform import Transform3D
from tracknav.units import ON_SURFACE_TOLERANCE

_EPS = 1e-12
_serial_counter = itertools.count()


def _wrap_phi(phi: float) -> float:
    """Map an angle into :math:`[-\\pi, \\pi)`."""
    return (phi + math.pi) % (2.0 * math.pi) - math.pi


# ----------------------------------------------------------------------
# Bounds
# ----------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class CylinderBounds:
    """Radius, half length in z and an optional phi sector ``avg_phi +- half_phi``."""
    radius: float
    half_z: float
    half_phi: float = math.pi
    avg_phi: float = 0.0

    def __post_init__(self):
        if self.radius <= 0.0 or self.half_z <= 0.0:
            raise ValueError("CylinderBounds need positive radius and half_z.")
        if not 0.0 < self.half_phi <= math.pi:
            raise ValueError("half_phi must be in (0, pi].")

    @property
    def full_phi(self) -> bool:
        return self.half_phi >= math.pi

    def inside(self, phi: float, z: float, tolerance: float = 0.0) -> bool:
        if abs(z) > self.half_z + tolerance:
            return False
        if self.full_phi:
            return True
        return abs(_wrap_phi(phi - self.avg_phi)) <= self.half_phi + tolerance / self.radius

    def phi_range(self) -> Tuple[float, float]:
        return self.avg_phi - self.half_phi, self.avg_phi + self.half_phi


@dataclass(frozen=True, slots=True)
class RadialBounds:
    """Annulus ``r_min <= r <= r_max`` with an optional phi sector."""
    r_min: float
    r_max: float
    half_phi: float = math.pi
    avg_phi: float = 0.0

    def __post_init__(self):
        if self.r_min < 0.0 or self.r_max <= self.r_min:
            raise ValueError(f"RadialBounds need 0 <= r_min < r_max, got {self.r_min}, {self.r_max}.")
        if not 0.0 < self.half_phi <= math.pi:
            raise ValueError("half_phi must be in (0, pi].")

    @property
    def full_phi(self) -> bool:
        return self.half_phi >= math.pi

    def inside(self, r: float, phi: float, tolerance: float = 0.0) -> bool:
        if r < self.r_min - tolerance or r > self.r_max + tolerance:
            return False
        if self.full_phi:
            return True
        return abs(_wrap_phi(phi - self.avg_phi)) <= self.half_phi + tolerance / max(r, _EPS)


@dataclass(frozen=True, slots=True)
class RectangleBounds:
    half_x: float
    half_y: float

    def __post_init__(self):
        if self.half_x <= 0.0 or self.half_y <= 0.0:
            raise ValueError("RectangleBounds need positive half lengths.")

    def inside(self, x: float, y: float, tolerance: float = 0.0) -> bool:
        return abs(x) <= self.half_x + tolerance and abs(y) <= self.half_y + tolerance

    def vertices(self) -> np.ndarray:
        hx, hy = self.half_x, self.half_y
        return np.array([[-hx, -hy], [hx, -hy], [hx, hy], [-hx, hy]], dtype=np.float64)


@dataclass(frozen=True, slots=True)
class TrapezoidBounds:
    r"""
    Symmetric trapezoid in the local :math:`(x, y)` plane.

    The half width varies linearly in :math:`y`,

    .. math::

        h_x(y) = h_{x,\min} + \left(h_{x,\max} - h_{x,\min}\right)\frac{y + h_y}{2 h_y},

    so that the short edge sits at :math:`y=-h_y`. Used for endcap modules
    whose local :math:`y` axis points radially outward.
    """
    half_x_min_y: float
    half_x_max_y: float
    half_y: float

    def __post_init__(self):
        if min(self.half_x_min_y, self.half_x_max_y, self.half_y) <= 0.0:
            raise ValueError("TrapezoidBounds need positive half lengths.")

    def half_x_at(self, y: float) -> float:
        t = (y + self.half_y) / (2.0 * self.half_y)
        return self.half_x_min_y + (self.half_x_max_y - self.half_x_min_y) * t

    def inside(self, x: float, y: float, tolerance: float = 0.0) -> bool:
        if abs(y) > self.half_y + tolerance:
            return False
        yc = min(max(y, -self.half_y), self.half_y)
        return abs(x) <= self.half_x_at(yc) + tolerance

    def vertices(self) -> np.ndarray:
        a, b, hy = self.half_x_min_y, self.half_x_max_y, self.half_y
        return np.array([[-a, -hy], [a, -hy], [b, hy], [-b, hy]], dtype=np.float64)


# ----------------------------------------------------------------------
# Surfaces
# ----------------------------------------------------------------------

class SurfaceCategory(Enum):
    """How the navigator classifies a surface when gating candidates."""
    SENSITIVE = "sensitive"
    MATERIAL = "material"
    PASSIVE = "passive"


class Surface:
    r"""
    Base class for all surfaces.

    Parameters
    ----------
    transform : Transform3D, optional
        Placement of the local frame. Identity if omitted.
    bounds : object
        Shape specific bounds descriptor.
    material : HomogeneousSurfaceMaterial, optional
        Surface material. A non-sensitive surface with material is a
        *material surface*; without it a *passive surface*.
    sensitive : bool, optional
        Whether the surface is a detector element.
    name : str, optional
        Free-form label used in logs and tables.

    Notes
    -----
    A surface is immutable once it has been attached to the geometry. Each
    instance receives a monotonically increasing ``serial`` at construction;
    candidate sorting uses it to break ties deterministically. The owning
    layer is held through a weak reference only.
    """

    __slots__ = ("transform", "bounds", "material", "is_sensitive", "name", "serial",
                 "geometry_id", "_layer_ref", "__weakref__")

    shape = "surface"

    def __init__(self, transform: Optional[Transform3D] = None, bounds=None, *,
                 material: Optional[HomogeneousSurfaceMaterial] = None,
                 sensitive: bool = False, name: str = ""):
        self.transform = transform if transform is not None else Transform3D()
        self.bounds = bounds
        self.material = material
        self.is_sensitive = bool(sensitive)
        self.name = name
        self.serial = next(_serial_counter)
        self.geometry_id = None
        self._layer_ref = None

    # ------------------------------------------------------------------
    @property
    def center(self) -> np.ndarray:
        return self.transform.translation

    @property
    def category(self) -> SurfaceCategory:
        if self.is_sensitive:
            return SurfaceCategory.SENSITIVE
        if self.material is not None:
            return SurfaceCategory.MATERIAL
        return SurfaceCategory.PASSIVE

    @property
    def associated_layer(self):
        return self._layer_ref() if self._layer_ref is not None else None

    def associate_layer(self, layer) -> None:
        self._layer_ref = weakref.ref(layer)

    # ------------------------------------------------------------------
    # Shape contract
    def global_to_local(self, position) -> Tuple[float, float]:
        raise NotImplementedError

    def local_to_global(self, loc0: float, loc1: float) -> np.ndarray:
        raise NotImplementedError

    def normal(self, position=None) -> np.ndarray:
        raise NotImplementedError

    def distance(self, position) -> float:
        """Unsigned distance from the (unbounded) surface."""
        raise NotImplementedError

    def inside_bounds(self, loc0: float, loc1: float, tolerance: float = 0.0) -> bool:
        raise NotImplementedError

    def _roots(self, p_local: np.ndarray, d_local: np.ndarray) -> Tuple[float, ...]:
        raise NotImplementedError

    def polyhedron_vertices(self, n_segments: int = 24) -> np.ndarray:
        raise NotImplementedError

    # ------------------------------------------------------------------
    def is_on_surface(self, position, tolerance: float = ON_SURFACE_TOLERANCE,
                      boundary_check: bool = True) -> bool:
        """Whether ``position`` lies on the surface within ``tolerance``."""
        if self.distance(position) > tolerance:
            return False
        if not boundary_check:
            return True
        loc0, loc1 = self.global_to_local(position)
        return self.inside_bounds(loc0, loc1, tolerance)

    def intersection_estimate(self, position, direction, *, boundary_check: bool = True,
                              tolerance: float = ON_SURFACE_TOLERANCE,
                              max_path_length: float = math.inf) -> Intersection:
        r"""
        Straight-line intersection ahead of ``position``.

        Parameters
        ----------
        position : (3,) array_like
            Start point in global coordinates.
        direction : (3,) array_like
            Propagation direction (normalized internally).
        boundary_check : bool, optional
            If ``True`` (default), solutions outside the bounds are rejected.
        tolerance : float, optional
            Solutions with :math:`s \le` ``tolerance`` are treated as behind.
        max_path_length : float, optional
            Solutions beyond this distance are rejected.

        Returns
        -------
        Intersection
            The closest admissible solution, or :meth:`Intersection.invalid`.
        """
        p = np.asarray(position, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        norm = float(np.linalg.norm(d))
        if norm < _EPS:
            return Intersection.invalid()
        d = d / norm
        p_loc = self.transform.to_local(p)
        d_loc = self.transform.vector_to_local(d)
        for s in self._roots(p_loc, d_loc):
            if s <= tolerance or s > max_path_length:
                continue
            point = p + s * d
            if boundary_check:
                loc0, loc1 = self.global_to_local(point)
                if not self.inside_bounds(loc0, loc1, tolerance):
                    continue
            return Intersection(point, float(s), True)
        return Intersection.invalid()

    def path_correction(self, position, direction) -> float:
        r""":math:`1/|\cos\alpha|` between the direction and the surface normal."""
        d = np.asarray(direction, dtype=np.float64)
        c = abs(float(np.dot(self.normal(position), d))) / max(float(np.linalg.norm(d)), _EPS)
        return 1.0 / max(c, _EPS)

    def binning_position(self) -> np.ndarray:
        """Reference point used when sorting surfaces into bins."""
        return self.center

    def __repr__(self) -> str:
        label = self.name or f"#{self.serial}"
        gid = f" {self.geometry_id}" if self.geometry_id is not None else ""
        return f"{self.__class__.__name__}({label}{gid})"


class CylinderSurface(Surface):
    r"""
    Cylinder of radius :math:`R` around the local :math:`z` axis.

    Intersections solve :math:`a s^2 + b s + c = 0` with

    .. math::

        a = d_x^2 + d_y^2,\quad b = 2(p_x d_x + p_y d_y),\quad c = p_x^2 + p_y^2 - R^2

    in the local frame; a ray parallel to the axis (:math:`a \approx 0`) never
    intersects.
    """

    __slots__ = ()
    shape = "cylinder"

    def __init__(self, transform: Optional[Transform3D] = None, bounds: Optional[CylinderBounds] = None,
                 **kwargs):
        if bounds is None:
            raise ValueError("CylinderSurface requires CylinderBounds.")
        super().__init__(transform, bounds, **kwargs)

    @property
    def radius(self) -> float:
        return self.bounds.radius

    @property
    def half_z(self) -> float:
        return self.bounds.half_z

    def global_to_local(self, position) -> Tuple[float, float]:
        lp = self.transform.to_local(position)
        return math.atan2(lp[1], lp[0]), float(lp[2])

    def local_to_global(self, loc0: float, loc1: float) -> np.ndarray:
        r = self.bounds.radius
        return self.transform.to_global((r * math.cos(loc0), r * math.sin(loc0), loc1))

    def normal(self, position=None) -> np.ndarray:
        if position is None:
            return self.transform.axis(0)
        lp = self.transform.to_local(position)
        rho = math.hypot(lp[0], lp[1])
        if rho < _EPS:
            return self.transform.axis(0)
        return self.transform.vector_to_global((lp[0] / rho, lp[1] / rho, 0.0))

    def distance(self, position) -> float:
        lp = self.transform.to_local(position)
        return abs(math.hypot(lp[0], lp[1]) - self.bounds.radius)

    def inside_bounds(self, loc0: float, loc1: float, tolerance: float = 0.0) -> bool:
        return self.bounds.inside(loc0, loc1, tolerance)

    def _roots(self, p_local, d_local):
        a = d_local[0] ** 2 + d_local[1] ** 2
        if a < _EPS:
            return ()
        b = 2.0 * (p_local[0] * d_local[0] + p_local[1] * d_local[1])
        c = p_local[0] ** 2 + p_local[1] ** 2 - self.bounds.radius ** 2
        disc = b * b - 4.0 * a * c
        if disc < 0.0:
            return ()
        sq = math.sqrt(disc)
        return ((-b - sq) / (2.0 * a), (-b + sq) / (2.0 * a))

    def polyhedron_vertices(self, n_segments: int = 24) -> np.ndarray:
        lo, hi = self.bounds.phi_range()
        phis = np.linspace(lo, hi, max(n_segments, 4) + 1)
        r, hz = self.bounds.radius, self.bounds.half_z
        ring = np.column_stack([r * np.cos(phis), r * np.sin(phis)])
        local = np.vstack([np.column_stack([ring, np.full(len(phis), z)]) for z in (-hz, hz)])
        return self.transform.points_to_global(local)

    def binning_position(self) -> np.ndarray:
        return self.local_to_global(self.bounds.avg_phi, 0.0)


class _PlanarSurface(Surface):
    """Common plane intersection for discs and planes (local z = 0)."""

    __slots__ = ()

    def normal(self, position=None) -> np.ndarray:
        return self.transform.axis(2)

    def distance(self, position) -> float:
        return abs(float(self.transform.to_local(position)[2]))

    def _roots(self, p_local, d_local):
        if abs(d_local[2]) < _EPS:
            return ()
        return (-p_local[2] / d_local[2],)


class DiscSurface(_PlanarSurface):
    """Annular disc in the local xy plane, parametrized by :math:`(r, \\phi)`."""

    __slots__ = ()
    shape = "disc"

    def __init__(self, transform: Optional[Transform3D] = None, bounds: Optional[RadialBounds] = None,
                 **kwargs):
        if bounds is None:
            raise ValueError("DiscSurface requires RadialBounds.")
        super().__init__(transform, bounds, **kwargs)

    def global_to_local(self, position) -> Tuple[float, float]:
        lp = self.transform.to_local(position)
        return math.hypot(lp[0], lp[1]), math.atan2(lp[1], lp[0])

    def local_to_global(self, loc0: float, loc1: float) -> np.ndarray:
        return self.transform.to_global((loc0 * math.cos(loc1), loc0 * math.sin(loc1), 0.0))

    def inside_bounds(self, loc0: float, loc1: float, tolerance: float = 0.0) -> bool:
        return self.bounds.inside(loc0, loc1, tolerance)

    def polyhedron_vertices(self, n_segments: int = 24) -> np.ndarray:
        b = self.bounds
        phis = np.linspace(b.avg_phi - b.half_phi, b.avg_phi + b.half_phi, max(n_segments, 4) + 1)
        rings = [np.column_stack([r * np.cos(phis), r * np.sin(phis), np.zeros(len(phis))])
                 for r in (b.r_min, b.r_max)]
        return self.transform.points_to_global(np.vstack(rings))

    def binning_position(self) -> np.ndarray:
        b = self.bounds
        return self.local_to_global(0.5 * (b.r_min + b.r_max), b.avg_phi)


class PlaneSurface(_PlanarSurface):
    """Bounded plane with local :math:`(x, y)` coordinates and normal along local z."""

    __slots__ = ()
    shape = "plane"

    def __init__(self, transform: Optional[Transform3D] = None, bounds=None, **kwargs):
        if not isinstance(bounds, (RectangleBounds, TrapezoidBounds)):
            raise ValueError("PlaneSurface requires RectangleBounds or TrapezoidBounds.")
        super().__init__(transform, bounds, **kwargs)

    def global_to_local(self, position) -> Tuple[float, float]:
        lp = self.transform.to_local(position)
        return float(lp[0]), float(lp[1])

    def local_to_global(self, loc0: float, loc1: float) -> np.ndarray:
        return self.transform.to_global((loc0, loc1, 0.0))

    def inside_bounds(self, loc0: float, loc1: float, tolerance: float = 0.0) -> bool:
        return self.bounds.inside(loc0, loc1, tolerance)

    def polyhedron_vertices(self, n_segments: int = 24) -> np.ndarray:
        # edges are subdivided so that extents of tilted planes stay tight in r
        corners = self.bounds.vertices()
        per_edge = max(1, n_segments // 4)
        pts = []
        for i in range(len(corners)):
            a, b = corners[i], corners[(i + 1) % len(corners)]
            for t in np.linspace(0.0, 1.0, per_edge, endpoint=False):
                pts.append(a + t * (b - a))
        local = np.column_stack([np.asarray(pts), np.zeros(len(pts))])
        return self.transform.points_to_global(local)


def surface_selected(surface: Surface, *, resolve_sensitive: bool, resolve_material: bool,
                     resolve_passive: bool) -> bool:
    """
    Category gate used when collecting navigation candidates.

    Each switch enables exactly its own :class:`SurfaceCategory`: sensitive
    surfaces need ``resolve_sensitive`` (whether or not they carry
    material), material surfaces ``resolve_material`` and bare passive
    surfaces ``resolve_passive``.
    """
    cat = surface.category
    if cat is SurfaceCategory.SENSITIVE:
        return resolve_sensitive
    if cat is SurfaceCategory.MATERIAL:
        return resolve_material
    return resolve_passive
