r"""
Tracking volumes, their bounds and the boundary surfaces that connect them.

A leaf :class:`TrackingVolume` owns layers and one :class:`BoundarySurface`
per face of its bounds. A container volume owns no layers; it stacks its
confined volumes along :math:`r` or :math:`z` and delegates point lookup to
them (:meth:`TrackingVolume.lower_volume`).

Boundary surfaces are never shared between volumes. Gluing two adjacent
volumes (:func:`build_container`) instead registers, on each face, the
volumes found on the far side. For a face with outward normal
:math:`\hat{\mathbf{n}}` the volume a track enters is taken from the
*along* list when :math:`\hat{\mathbf{n}}\cdot\hat{\mathbf{d}} > 0` and from
the *opposite* list otherwise.
"""

from __future__ import annotations

import logging
import math
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from tracknav.errors import GeometryConfigurationError
from tracknav.intersection import ObjectIntersection, sort_candidates
from tracknav.layers import CylinderLayer, Layer
from tracknav.surfaces import (CylinderBounds, CylinderSurface, DiscSurface, PlaneSurface,
                               RadialBounds, RectangleBounds)
from tracknav.transform import Transform3D
from tracknav.units import ON_SURFACE_TOLERANCE

logger = logging.getLogger(__name__)

_GLUE_TOLERANCE = 1e-6


class BoundaryFace(Enum):
    NEGATIVE_Z = "negative_z"
    POSITIVE_Z = "positive_z"
    OUTER_R = "outer_r"
    INNER_R = "inner_r"
    NEGATIVE_X = "negative_x"
    POSITIVE_X = "positive_x"
    NEGATIVE_Y = "negative_y"
    POSITIVE_Y = "positive_y"

    @property
    def neighbours_along(self) -> bool:
        """Whether volumes beyond this face sit along the face normal."""
        return self not in (BoundaryFace.INNER_R, BoundaryFace.NEGATIVE_Z,
                            BoundaryFace.NEGATIVE_X, BoundaryFace.NEGATIVE_Y)


# ----------------------------------------------------------------------
# Volume bounds
# ----------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class CylinderVolumeBounds:
    """Hollow (``r_min > 0``) or full cylinder of half length ``half_z``."""
    r_min: float
    r_max: float
    half_z: float

    def __post_init__(self):
        if self.r_min < 0.0 or self.r_max <= self.r_min or self.half_z <= 0.0:
            raise GeometryConfigurationError(
                f"Invalid cylinder volume bounds r=[{self.r_min}, {self.r_max}] half_z={self.half_z}.")

    def inside(self, local, tolerance: float = 0.0) -> bool:
        r = math.hypot(local[0], local[1])
        return (self.r_min - tolerance <= r <= self.r_max + tolerance
                and abs(local[2]) <= self.half_z + tolerance)

    def boundary_surfaces(self, transform: Transform3D) -> List[Tuple[BoundaryFace, object]]:
        faces: List[Tuple[BoundaryFace, object]] = []
        for face, z in ((BoundaryFace.NEGATIVE_Z, -self.half_z), (BoundaryFace.POSITIVE_Z, self.half_z)):
            faces.append((face, DiscSurface(transform * Transform3D.from_translation((0.0, 0.0, z)),
                                            RadialBounds(self.r_min, self.r_max))))
        faces.append((BoundaryFace.OUTER_R, CylinderSurface(transform, CylinderBounds(self.r_max, self.half_z))))
        if self.r_min > 0.0:
            faces.append((BoundaryFace.INNER_R, CylinderSurface(transform, CylinderBounds(self.r_min, self.half_z))))
        return faces


@dataclass(frozen=True, slots=True)
class CuboidVolumeBounds:
    half_x: float
    half_y: float
    half_z: float

    def __post_init__(self):
        if min(self.half_x, self.half_y, self.half_z) <= 0.0:
            raise GeometryConfigurationError("Cuboid volume bounds need positive half lengths.")

    def inside(self, local, tolerance: float = 0.0) -> bool:
        return (abs(local[0]) <= self.half_x + tolerance and abs(local[1]) <= self.half_y + tolerance
                and abs(local[2]) <= self.half_z + tolerance)

    def boundary_surfaces(self, transform: Transform3D) -> List[Tuple[BoundaryFace, object]]:
        ex, ey, ez = np.eye(3)
        spec = (
            (BoundaryFace.NEGATIVE_X, BoundaryFace.POSITIVE_X, self.half_x, (ey, ez, ex), (self.half_y, self.half_z)),
            (BoundaryFace.NEGATIVE_Y, BoundaryFace.POSITIVE_Y, self.half_y, (ez, ex, ey), (self.half_z, self.half_x)),
            (BoundaryFace.NEGATIVE_Z, BoundaryFace.POSITIVE_Z, self.half_z, (ex, ey, ez), (self.half_x, self.half_y)),
        )
        faces: List[Tuple[BoundaryFace, object]] = []
        for neg, pos, h, axes, (bx, by) in spec:
            for face, sign in ((neg, -1.0), (pos, 1.0)):
                local = Transform3D.from_axes(*axes, translation=sign * h * axes[2])
                faces.append((face, PlaneSurface(transform * local, RectangleBounds(bx, by))))
        return faces


# ----------------------------------------------------------------------
# Boundary surfaces
# ----------------------------------------------------------------------

class BoundarySurface:
    """
    A volume face and the volumes on either side of it.

    Parameters
    ----------
    surface : Surface
        The geometric face.
    face : BoundaryFace
        Which face of the owning volume this is.
    owner : TrackingVolume
        The volume the face belongs to (placed on the inner side).
    """

    __slots__ = ("surface", "face", "_owner", "_along", "_opposite", "geometry_id")

    def __init__(self, surface, face: BoundaryFace, owner: "TrackingVolume"):
        self.surface = surface
        self.face = face
        self._owner = weakref.ref(owner)
        self._along: List[weakref.ref] = []
        self._opposite: List[weakref.ref] = []
        self.geometry_id = None
        self.attach([owner], along=not face.neighbours_along)

    @property
    def owner(self) -> "TrackingVolume":
        return self._owner()

    @property
    def serial(self) -> int:
        return self.surface.serial

    @property
    def along_volumes(self) -> List["TrackingVolume"]:
        return [v for v in (r() for r in self._along) if v is not None]

    @property
    def opposite_volumes(self) -> List["TrackingVolume"]:
        return [v for v in (r() for r in self._opposite) if v is not None]

    @property
    def is_outer(self) -> bool:
        """Whether nothing lies beyond this face."""
        return not self.along_volumes or not self.opposite_volumes

    def attach(self, volumes: Iterable["TrackingVolume"], along: bool) -> None:
        target = self._along if along else self._opposite
        for v in volumes:
            if all(r() is not v for r in target):
                target.append(weakref.ref(v))

    def attached_volume(self, position, direction, nav_dir: float = 1.0) -> Optional["TrackingVolume"]:
        """
        Volume entered when crossing at ``position`` moving along
        ``nav_dir * direction``; ``None`` if the track leaves the geometry.
        """
        d = float(nav_dir) * np.asarray(direction, dtype=np.float64)
        side = self.along_volumes if float(np.dot(self.surface.normal(position), d)) > 0.0 \
            else self.opposite_volumes
        if len(side) <= 1:
            return side[0] if side else None
        ahead = np.asarray(position, dtype=np.float64) + ON_SURFACE_TOLERANCE * d
        for v in side:
            if v.inside(ahead):
                return v
        for v in side:
            if v.inside(position, ON_SURFACE_TOLERANCE):
                return v
        return None

    def __repr__(self) -> str:
        owner = self.owner.name if self.owner is not None else "?"
        return f"BoundarySurface({owner}:{self.face.value})"


# ----------------------------------------------------------------------
# Tracking volume
# ----------------------------------------------------------------------

class TrackingVolume:
    r"""
    A region of the detector with layers (leaf) or confined volumes (container).

    Parameters
    ----------
    name : str
        Unique name within the geometry.
    bounds : CylinderVolumeBounds or CuboidVolumeBounds
    transform : Transform3D, optional
        Placement of the volume center.
    layers : sequence of Layer, optional
        Layers of a leaf volume; sorted on construction.
    confined_volumes : sequence of TrackingVolume, optional
        Children of a container, ordered along ``container_binning``.
    container_binning : {"r", "z"}, optional
        Stacking direction of the children.

    Raises
    ------
    GeometryConfigurationError
        If a layer does not fit inside the bounds or a volume mixes layers
        with confined volumes.
    """

    __slots__ = ("name", "bounds", "transform", "layers", "confined_volumes", "container_binning",
                 "_edges", "_boundaries", "geometry_id", "_mother_ref", "__weakref__")

    def __init__(self, name: str, bounds, transform: Optional[Transform3D] = None,
                 layers: Sequence[Layer] = (), *, confined_volumes: Sequence["TrackingVolume"] = (),
                 container_binning: Optional[str] = None):
        if layers and confined_volumes:
            raise GeometryConfigurationError(f"Volume '{name}' cannot hold both layers and confined volumes.")
        self.name = name
        self.bounds = bounds
        self.transform = transform if transform is not None else Transform3D()
        self.geometry_id = None
        self._mother_ref = None
        self.confined_volumes: Tuple[TrackingVolume, ...] = tuple(confined_volumes)
        self.container_binning = container_binning
        self._edges: Optional[np.ndarray] = None
        self._boundaries: Dict[BoundaryFace, BoundarySurface] = {}

        for layer in layers:
            self._check_layer_fits(layer)
        self.layers: Tuple[Layer, ...] = self._sorted_layers(layers)
        for layer in self.layers:
            layer.attach_volume(self)

        if self.confined_volumes:
            if container_binning not in ("r", "z"):
                raise GeometryConfigurationError(f"Container '{name}' needs binning 'r' or 'z'.")
            for v in self.confined_volumes:
                v._mother_ref = weakref.ref(self)
            self._edges = self._container_edges()
        else:
            for face, surface in bounds.boundary_surfaces(self.transform):
                surface.name = f"{name}:{face.value}"
                self._boundaries[face] = BoundarySurface(surface, face, self)
        logger.debug("Volume '%s': %d layers, %d confined volumes", name, len(self.layers),
                     len(self.confined_volumes))

    # ------------------------------------------------------------------
    def _check_layer_fits(self, layer: Layer) -> None:
        pts = np.vstack([s.polyhedron_vertices() for s in layer.all_surfaces()])
        local = self.transform.points_to_local(pts)
        tol = 10.0 * ON_SURFACE_TOLERANCE
        if not all(self.bounds.inside(p, tol) for p in local):
            raise GeometryConfigurationError(f"Layer {layer!r} does not fit inside volume '{self.name}'.")

    def _sorted_layers(self, layers: Sequence[Layer]) -> Tuple[Layer, ...]:
        layers = list(layers)
        if len(layers) < 2:
            return tuple(layers)
        if all(isinstance(l, CylinderLayer) for l in layers):
            return tuple(sorted(layers, key=lambda l: (l.radius, l.serial)))
        centers = self.transform.points_to_local(np.array([l.representation.center for l in layers]))
        axis = int(np.argmax(np.ptp(centers, axis=0)))
        return tuple(sorted(layers, key=lambda l: (float(self.transform.to_local(l.representation.center)[axis]),
                                                   l.serial)))

    def _container_edges(self) -> np.ndarray:
        if self.container_binning == "r":
            vols = self.confined_volumes
            return np.array([v.bounds.r_min for v in vols] + [vols[-1].bounds.r_max])
        lo = [v.z_range()[0] for v in self.confined_volumes]
        return np.array(lo + [self.confined_volumes[-1].z_range()[1]]) - float(self.transform.translation[2])

    # ------------------------------------------------------------------
    @property
    def is_container(self) -> bool:
        return bool(self.confined_volumes)

    @property
    def mother(self) -> Optional["TrackingVolume"]:
        return self._mother_ref() if self._mother_ref is not None else None

    def z_range(self) -> Tuple[float, float]:
        zc = float(self.transform.translation[2])
        return zc - self.bounds.half_z, zc + self.bounds.half_z

    def inside(self, position, tolerance: float = 0.0) -> bool:
        return self.bounds.inside(self.transform.to_local(position), tolerance)

    def lower_volume(self, position) -> "TrackingVolume":
        """Deepest volume of this subtree that contains ``position``."""
        if not self.is_container:
            return self
        lp = self.transform.to_local(position)
        value = math.hypot(lp[0], lp[1]) if self.container_binning == "r" else float(lp[2])
        i = int(np.searchsorted(self._edges, value, side="right")) - 1
        i = min(max(i, 0), len(self.confined_volumes) - 1)
        return self.confined_volumes[i].lower_volume(position)

    def leaf_volumes(self) -> List["TrackingVolume"]:
        if not self.is_container:
            return [self]
        out: List[TrackingVolume] = []
        for v in self.confined_volumes:
            out.extend(v.leaf_volumes())
        return out

    # ------------------------------------------------------------------
    @property
    def boundaries(self) -> List[BoundarySurface]:
        """Boundary surfaces of a leaf volume (empty for containers)."""
        return list(self._boundaries.values())

    def face_boundaries(self, face: BoundaryFace) -> List[BoundarySurface]:
        """Leaf boundary surfaces that make up ``face`` of this volume."""
        if not self.is_container:
            b = self._boundaries.get(face)
            return [b] if b is not None else []
        vols = self.confined_volumes
        stack_faces = ((BoundaryFace.INNER_R, BoundaryFace.OUTER_R) if self.container_binning == "r"
                       else (BoundaryFace.NEGATIVE_Z, BoundaryFace.POSITIVE_Z))
        if face is stack_faces[0]:
            return vols[0].face_boundaries(face)
        if face is stack_faces[1]:
            return vols[-1].face_boundaries(face)
        out: List[BoundarySurface] = []
        for v in vols:
            out.extend(v.face_boundaries(face))
        return out

    def face_volumes(self, face: BoundaryFace) -> List["TrackingVolume"]:
        return [b.owner for b in self.face_boundaries(face)]

    # ------------------------------------------------------------------
    def associated_layer(self, position, tolerance: float = ON_SURFACE_TOLERANCE) -> Optional[Layer]:
        """Layer whose thickness band contains ``position``."""
        for layer in self.layers:
            if layer.is_on_layer(position, tolerance):
                return layer
        return None

    def compatible_layers(self, position, direction, *, resolve_sensitive: bool = True,
                          resolve_material: bool = True, resolve_passive: bool = False,
                          exclude: Iterable[Layer] = (),
                          tolerance: float = ON_SURFACE_TOLERANCE) -> List[ObjectIntersection]:
        """Layers ahead of the track, each represented by its approach surface."""
        skip = {id(l) for l in exclude if l is not None}
        out: List[ObjectIntersection] = []
        for layer in self.layers:
            if id(layer) in skip or not layer.resolve(resolve_sensitive, resolve_material, resolve_passive):
                continue
            cand = layer.surface_on_approach(position, direction, tolerance=tolerance)
            if cand is not None:
                out.append(cand)
        return sort_candidates(out, tolerance)

    def compatible_boundaries(self, position, direction,
                              tolerance: float = ON_SURFACE_TOLERANCE) -> List[ObjectIntersection]:
        out: List[ObjectIntersection] = []
        for b in self.boundaries:
            ix = b.surface.intersection_estimate(position, direction, boundary_check=True, tolerance=tolerance)
            if ix.valid:
                out.append(ObjectIntersection(ix, b, b.surface))
        return sort_candidates(out, tolerance)

    def __repr__(self) -> str:
        kind = "container" if self.is_container else "leaf"
        return f"TrackingVolume({self.name!r}, {kind})"


# ----------------------------------------------------------------------
# Gluing
# ----------------------------------------------------------------------

def _require_cylinder(volumes: Sequence[TrackingVolume]) -> None:
    for v in volumes:
        if not isinstance(v.bounds, CylinderVolumeBounds):
            raise GeometryConfigurationError(f"Volume '{v.name}' is not cylindrical and cannot be glued.")
        if not np.allclose(v.transform.rotation, np.eye(3)) or not np.allclose(v.transform.translation[:2], 0.0):
            raise GeometryConfigurationError(f"Volume '{v.name}' must be centred on the z axis.")


def _glue(first: TrackingVolume, second: TrackingVolume, face_first: BoundaryFace,
          face_second: BoundaryFace) -> None:
    a = first.face_boundaries(face_first)
    b = second.face_boundaries(face_second)
    a_owners = [x.owner for x in a]
    b_owners = [x.owner for x in b]
    for bs in a:
        bs.attach(b_owners, along=face_first.neighbours_along)
    for bs in b:
        bs.attach(a_owners, along=face_second.neighbours_along)
    logger.debug("Glued %s:%s <-> %s:%s (%d x %d faces)", first.name, face_first.value,
                 second.name, face_second.value, len(a), len(b))


def build_container(name: str, volumes: Sequence[TrackingVolume], binning: str = "r",
                    tolerance: float = _GLUE_TOLERANCE) -> TrackingVolume:
    r"""
    Glue cylindrical volumes stacked in ``r`` or in ``z`` into a container.

    Parameters
    ----------
    name : str
        Name of the container.
    volumes : sequence of TrackingVolume
        Adjacent cylinder volumes (leaves or containers).
    binning : {"r", "z"}
        Stacking direction.
    tolerance : float, optional
        Allowed mismatch of touching dimensions.

    Returns
    -------
    TrackingVolume
        The container, with neighbouring faces cross-registered.

    Raises
    ------
    GeometryConfigurationError
        If the volumes are not cylinders on the z axis, do not share the
        non-stacked dimension, or leave gaps/overlaps along the stacking axis.
    """
    if binning not in ("r", "z"):
        raise GeometryConfigurationError(f"Unknown container binning '{binning}'.")
    if not volumes:
        raise GeometryConfigurationError(f"Container '{name}' needs at least one volume.")
    _require_cylinder(volumes)

    if binning == "r":
        vols = sorted(volumes, key=lambda v: v.bounds.r_min)
        z0 = vols[0].z_range()
        for inner, outer in zip(vols[:-1], vols[1:]):
            if abs(inner.bounds.r_max - outer.bounds.r_min) > tolerance:
                raise GeometryConfigurationError(
                    f"Volumes '{inner.name}' (r_max={inner.bounds.r_max}) and '{outer.name}' "
                    f"(r_min={outer.bounds.r_min}) are not adjacent in r.")
        for v in vols[1:]:
            if not np.allclose(v.z_range(), z0, atol=tolerance):
                raise GeometryConfigurationError(f"Volume '{v.name}' does not match the z range {z0}.")
        for inner, outer in zip(vols[:-1], vols[1:]):
            _glue(inner, outer, BoundaryFace.OUTER_R, BoundaryFace.INNER_R)
        bounds = CylinderVolumeBounds(vols[0].bounds.r_min, vols[-1].bounds.r_max, vols[0].bounds.half_z)
        transform = vols[0].transform
    else:
        vols = sorted(volumes, key=lambda v: v.z_range()[0])
        r0 = (vols[0].bounds.r_min, vols[0].bounds.r_max)
        for v in vols[1:]:
            if not np.allclose((v.bounds.r_min, v.bounds.r_max), r0, atol=tolerance):
                raise GeometryConfigurationError(f"Volume '{v.name}' does not match the r range {r0}.")
        for lo, hi in zip(vols[:-1], vols[1:]):
            if abs(lo.z_range()[1] - hi.z_range()[0]) > tolerance:
                raise GeometryConfigurationError(
                    f"Volumes '{lo.name}' and '{hi.name}' are not adjacent in z.")
        for lo, hi in zip(vols[:-1], vols[1:]):
            _glue(lo, hi, BoundaryFace.POSITIVE_Z, BoundaryFace.NEGATIVE_Z)
        z_lo, z_hi = vols[0].z_range()[0], vols[-1].z_range()[1]
        bounds = CylinderVolumeBounds(r0[0], r0[1], 0.5 * (z_hi - z_lo))
        transform = Transform3D.from_translation((0.0, 0.0, 0.5 * (z_lo + z_hi)))

    container = TrackingVolume(name, bounds, transform, confined_volumes=vols, container_binning=binning)
    logger.info("Built container '%s' from %d volumes stacked in %s", name, len(vols), binning)
    return container
