r"""
Layers: a representing surface, an optional binned array of sensitive
surfaces and the approach surfaces through which the navigator enters them.

A layer of thickness :math:`t` around a representing surface gets, unless an
explicit :class:`ApproachDescriptor` is supplied, two approach surfaces of the
same shape displaced by :math:`\pm t/2` along the surface normal (radially for
cylinders). The navigator targets a layer through the closest approach
crossing ahead that enters the thickness band, see
:meth:`Layer.surface_on_approach`. Sensitive candidates are looked up in the
:class:`~tracknav.surface_array.SurfaceArray` around the entry and exit points
and limited to the passage through the band, see
:meth:`Layer.compatible_surfaces`.
"""

from __future__ import annotations

import logging
import math
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from tracknav.intersection import Intersection, ObjectIntersection, sort_candidates
from tracknav.surface_array import SurfaceArray
from tracknav.surfaces import (CylinderBounds, CylinderSurface, DiscSurface, PlaneSurface,
                               Surface, surface_selected)
from tracknav.transform import Transform3D
from tracknav.units import ON_SURFACE_TOLERANCE

logger = logging.getLogger(__name__)

# distance past an approach crossing used to tell entry from exit
_ENTRY_STEP = 1e-2


class LayerType(Enum):
    ACTIVE = "active"
    PASSIVE = "passive"
    NAVIGATION = "navigation"


@dataclass(frozen=True, slots=True)
class Extent:
    """Axis-aligned ranges of a set of points in ``x, y, z`` and ``r``."""
    x: Tuple[float, float]
    y: Tuple[float, float]
    z: Tuple[float, float]
    r: Tuple[float, float]

    @classmethod
    def from_points(cls, points: np.ndarray) -> "Extent":
        p = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        r = np.hypot(p[:, 0], p[:, 1])
        return cls(
            (float(p[:, 0].min()), float(p[:, 0].max())),
            (float(p[:, 1].min()), float(p[:, 1].max())),
            (float(p[:, 2].min()), float(p[:, 2].max())),
            (float(r.min()), float(r.max())),
        )

    def range(self, axis: str) -> Tuple[float, float]:
        return getattr(self, axis)


class ApproachDescriptor:
    """Holds the approach surfaces of a layer and picks the one to target."""

    __slots__ = ("surfaces",)

    def __init__(self, surfaces: Sequence[Surface]):
        self.surfaces: Tuple[Surface, ...] = tuple(surfaces)

    def register_layer(self, layer: "Layer") -> None:
        for s in self.surfaces:
            s.associate_layer(layer)

    def approach_surface(self, layer: "Layer", position, direction,
                         tolerance: float = ON_SURFACE_TOLERANCE) -> Optional[ObjectIntersection]:
        r"""
        Closest approach crossing ahead through which the track *enters* the
        layer.

        Crossings that leave the thickness band (the track starts inside the
        layer) are stepped over, so a cylinder layer crossed twice yields its
        second entry once the first passage is done.
        """
        d = np.asarray(direction, dtype=np.float64)
        start = np.asarray(position, dtype=np.float64)
        travelled = 0.0
        step = min(_ENTRY_STEP, 0.25 * layer.thickness)
        for _ in range(2 * len(self.surfaces) + 1):
            best = None
            for s in self.surfaces:
                ix = s.intersection_estimate(start, d, boundary_check=True, tolerance=tolerance)
                if ix.valid and (best is None or ix.path_length < best[0].path_length):
                    best = (ix, s)
            if best is None:
                return None
            ix, s = best
            travelled += ix.path_length
            if layer.thickness <= 0.0 or layer.is_on_layer(ix.position + step * d, tolerance):
                return ObjectIntersection(Intersection(ix.position, travelled, True), layer, s)
            start = ix.position
        return None

    def exit_path(self, position, direction, tolerance: float = ON_SURFACE_TOLERANCE) -> float:
        """Path length to the nearest approach surface ahead (``inf`` if none)."""
        out = math.inf
        for s in self.surfaces:
            ix = s.intersection_estimate(position, direction, boundary_check=True, tolerance=tolerance)
            if ix.valid:
                out = min(out, ix.path_length)
        return out


class GenericApproachDescriptor(ApproachDescriptor):
    """Approach descriptor over an arbitrary, fixed set of surfaces."""

    __slots__ = ()


class Layer:
    r"""
    Base layer.

    Parameters
    ----------
    representation : Surface
        The representing surface (its material, if any, is the layer material).
    thickness : float, optional
        Full thickness around the representing surface.
    surface_array : SurfaceArray, optional
        Binned sensitive surfaces.
    approach_descriptor : ApproachDescriptor, optional
        Custom approach surfaces; by default built from ``thickness``.
    layer_type : LayerType, optional
        Defaults to ``ACTIVE`` with a surface array, otherwise ``PASSIVE``.
    name : str, optional
        Label for logs.

    Notes
    -----
    Every surface of the layer (representation, sensitive and approach)
    receives a weak back reference to the layer; the layer keeps a weak
    reference to the volume that owns it.
    """

    __slots__ = ("representation", "thickness", "surface_array", "approach_descriptor",
                 "layer_type", "name", "geometry_id", "_volume_ref", "__weakref__")

    def __init__(self, representation: Surface, *, thickness: float = 0.0,
                 surface_array: Optional[SurfaceArray] = None,
                 approach_descriptor: Optional[ApproachDescriptor] = None,
                 layer_type: Optional[LayerType] = None, name: str = ""):
        if thickness < 0.0:
            raise ValueError(f"Layer thickness must be non-negative, got {thickness}.")
        self.representation = representation
        self.thickness = float(thickness)
        self.surface_array = surface_array
        if layer_type is None:
            layer_type = LayerType.ACTIVE if surface_array is not None else LayerType.PASSIVE
        self.layer_type = layer_type
        self.name = name
        self.geometry_id = None
        self._volume_ref = None

        representation.associate_layer(self)
        if surface_array is not None:
            for s in surface_array.surfaces:
                s.associate_layer(self)
        if approach_descriptor is None and self.thickness > 0.0:
            approach_descriptor = GenericApproachDescriptor(self._default_approach_surfaces())
        self.approach_descriptor = approach_descriptor
        if approach_descriptor is not None:
            approach_descriptor.register_layer(self)
        logger.debug("Created %r", self)

    # ------------------------------------------------------------------
    def _default_approach_surfaces(self) -> List[Surface]:
        raise NotImplementedError

    def is_on_layer(self, position, tolerance: float = ON_SURFACE_TOLERANCE) -> bool:
        """Whether ``position`` lies within the thickness band of the layer."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    @property
    def serial(self) -> int:
        return self.representation.serial

    @property
    def tracking_volume(self):
        return self._volume_ref() if self._volume_ref is not None else None

    def attach_volume(self, volume) -> None:
        self._volume_ref = weakref.ref(volume)

    @property
    def sensitive_surfaces(self) -> Tuple[Surface, ...]:
        return self.surface_array.surfaces if self.surface_array is not None else ()

    @property
    def approach_surfaces(self) -> Tuple[Surface, ...]:
        return self.approach_descriptor.surfaces if self.approach_descriptor is not None else ()

    def all_surfaces(self) -> List[Surface]:
        return [self.representation, *self.approach_surfaces, *self.sensitive_surfaces]

    @property
    def has_material(self) -> bool:
        return any(s.material is not None for s in self.all_surfaces())

    def resolve(self, resolve_sensitive: bool, resolve_material: bool, resolve_passive: bool) -> bool:
        """Whether the navigator should consider this layer at all."""
        if resolve_passive:
            return True
        if resolve_sensitive and self.surface_array is not None:
            return True
        return resolve_material and any(s.material is not None
                                        for s in (self.representation, *self.approach_surfaces))

    def extent(self, n_segments: int = 24) -> Extent:
        pts = np.vstack([s.polyhedron_vertices(n_segments) for s in self.all_surfaces()])
        return Extent.from_points(pts)

    # ------------------------------------------------------------------
    def surface_on_approach(self, position, direction, *,
                            tolerance: float = ON_SURFACE_TOLERANCE) -> Optional[ObjectIntersection]:
        """
        Closest approach surface ahead; falls back to the representing
        surface for layers without approach surfaces.
        """
        if self.approach_descriptor is not None:
            cand = self.approach_descriptor.approach_surface(self, position, direction, tolerance)
            if cand is not None:
                return cand
        ix = self.representation.intersection_estimate(position, direction, boundary_check=True,
                                                       tolerance=tolerance)
        return ObjectIntersection(ix, self, self.representation) if ix.valid else None

    def compatible_surfaces(self, position, direction, *, resolve_sensitive: bool = True,
                            resolve_material: bool = True, resolve_passive: bool = False,
                            exclude: Iterable[Surface] = (),
                            tolerance: float = ON_SURFACE_TOLERANCE) -> List[ObjectIntersection]:
        r"""
        Surfaces of this layer crossed on the current passage through it,
        sorted by path length.

        ``position`` is expected inside the thickness band (on the entry
        approach surface, or on a start surface). The passage ends at the
        next approach surface ahead, :math:`s_\text{exit}`; only
        intersections with :math:`s \le s_\text{exit}` are kept. Sensitive
        surfaces are taken from the bins of the surface array around the
        entry and the exit point (see :meth:`SurfaceArray.neighbors`), never
        from the whole layer.

        Sensitive surfaces, the representing surface and approach surfaces
        carrying material are each gated by
        :func:`~tracknav.surfaces.surface_selected`; approach surfaces without
        material are never returned. Intersections use the bounds and drop
        everything within ``tolerance`` of the current position.
        """
        skip = {id(s) for s in exclude if s is not None}
        flags = dict(resolve_sensitive=resolve_sensitive, resolve_material=resolve_material,
                     resolve_passive=resolve_passive)
        pos = np.asarray(position, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        s_exit = (self.approach_descriptor.exit_path(pos, d, tolerance)
                  if self.approach_descriptor is not None else math.inf)

        pool: List[Surface] = []
        if self.surface_array is not None:
            pool.extend(self.surface_array.neighbors(pos))
            if math.isfinite(s_exit):
                seen = {id(s) for s in pool}
                pool.extend(s for s in self.surface_array.neighbors(pos + s_exit * d) if id(s) not in seen)
        pool.append(self.representation)
        pool.extend(s for s in self.approach_surfaces if s.material is not None)
        out: List[ObjectIntersection] = []
        for s in pool:
            if id(s) in skip or not surface_selected(s, **flags):
                continue
            ix = s.intersection_estimate(pos, d, boundary_check=True, tolerance=tolerance)
            if ix.valid and ix.path_length <= s_exit + tolerance:
                out.append(ObjectIntersection(ix, s, s))
        return sort_candidates(out, tolerance)

    def __repr__(self) -> str:
        label = self.name or f"#{self.serial}"
        n = len(self.sensitive_surfaces)
        return f"{self.__class__.__name__}({label}, t={self.thickness:.3f}, sensitive={n})"


class CylinderLayer(Layer):
    """Layer around a :class:`CylinderSurface`; approach cylinders at ``R +- t/2``."""

    __slots__ = ()

    def __init__(self, representation: CylinderSurface, **kwargs):
        if not isinstance(representation, CylinderSurface):
            raise TypeError("CylinderLayer needs a CylinderSurface representation.")
        t = float(kwargs.get("thickness", 0.0))
        if t >= 2.0 * representation.radius:
            raise ValueError("Cylinder layer thickness exceeds its diameter.")
        super().__init__(representation, **kwargs)

    @property
    def radius(self) -> float:
        return self.representation.radius

    def _default_approach_surfaces(self) -> List[Surface]:
        b = self.representation.bounds
        h = 0.5 * self.thickness
        return [
            CylinderSurface(self.representation.transform,
                            CylinderBounds(b.radius + sign * h, b.half_z, b.half_phi, b.avg_phi),
                            name=f"{self.name}:approach{'+' if sign > 0 else '-'}")
            for sign in (-1.0, 1.0)
        ]

    def is_on_layer(self, position, tolerance: float = ON_SURFACE_TOLERANCE) -> bool:
        lp = self.representation.transform.to_local(position)
        rho = math.hypot(lp[0], lp[1])
        if abs(rho - self.radius) > 0.5 * self.thickness + tolerance:
            return False
        return abs(lp[2]) <= self.representation.half_z + tolerance


class _PlanarLayer(Layer):
    __slots__ = ()

    def _offset_transform(self, dz: float) -> Transform3D:
        return self.representation.transform * Transform3D.from_translation((0.0, 0.0, dz))

    def is_on_layer(self, position, tolerance: float = ON_SURFACE_TOLERANCE) -> bool:
        lp = self.representation.transform.to_local(position)
        if abs(lp[2]) > 0.5 * self.thickness + tolerance:
            return False
        loc0, loc1 = self.representation.global_to_local(position)
        return self.representation.inside_bounds(loc0, loc1, tolerance)


class DiscLayer(_PlanarLayer):
    """Layer around a :class:`DiscSurface`; approach discs at ``z +- t/2``."""

    __slots__ = ()

    def __init__(self, representation: DiscSurface, **kwargs):
        if not isinstance(representation, DiscSurface):
            raise TypeError("DiscLayer needs a DiscSurface representation.")
        super().__init__(representation, **kwargs)

    def _default_approach_surfaces(self) -> List[Surface]:
        h = 0.5 * self.thickness
        return [DiscSurface(self._offset_transform(sign * h), self.representation.bounds,
                            name=f"{self.name}:approach{'+' if sign > 0 else '-'}")
                for sign in (-1.0, 1.0)]


class PlaneLayer(_PlanarLayer):
    """Layer around a :class:`PlaneSurface`; approach planes at ``+- t/2`` along the normal."""

    __slots__ = ()

    def __init__(self, representation: PlaneSurface, **kwargs):
        if not isinstance(representation, PlaneSurface):
            raise TypeError("PlaneLayer needs a PlaneSurface representation.")
        super().__init__(representation, **kwargs)

    def _default_approach_surfaces(self) -> List[Surface]:
        h = 0.5 * self.thickness
        return [PlaneSurface(self._offset_transform(sign * h), self.representation.bounds,
                             name=f"{self.name}:approach{'+' if sign > 0 else '-'}")
                for sign in (-1.0, 1.0)]


