r"""
Geometry navigation: the :class:`Navigator` state machine.

The propagation loop calls, after every step of the stepper,

1. :meth:`Navigator.status` to find out what (if anything) the trajectory
   has just reached, and
2. :meth:`Navigator.target` to resolve what it must reach next and to write
   the corresponding step constraint.

All per-trajectory bookkeeping lives in :class:`NavigationState`; the
navigator itself only holds the shared, read-only geometry and its
configuration. Candidates are kept in three sequences (surfaces of the
current layer, layers of the current volume, boundaries of the current
volume), each sorted by increasing path length and consumed through an
index. Surfaces are always preferred over layers and layers over boundaries,
so that at any time exactly one sequence drives the step
(:attr:`NavigationState.active_sequence`).

Path lengths are measured along :math:`\sigma\hat{\mathbf{d}}`, with
:math:`\sigma` the navigation direction; the step constraint written into
the stepper is :math:`\sigma s`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

import numpy as np

from tracknav.config import NavigatorConfig
from tracknav.errors import NavigationContractError
from tracknav.geometry import TrackingGeometry
from tracknav.intersection import ObjectIntersection, sort_candidates
from tracknav.stepping import ConstraintType

logger = logging.getLogger(__name__)


class NavigationStage(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    SURFACE_REACHED = "surface_reached"
    LAYER_REACHED = "layer_reached"
    BOUNDARY_REACHED = "boundary_reached"
    TARGET_REACHED = "target_reached"
    GEOMETRY_EXHAUSTED = "geometry_exhausted"

    @property
    def terminal(self) -> bool:
        return self in (NavigationStage.TARGET_REACHED, NavigationStage.GEOMETRY_EXHAUSTED)


class CandidateKind(Enum):
    SURFACE = "surface"
    LAYER = "layer"
    BOUNDARY = "boundary"


@dataclass(slots=True)
class NavigationState:
    r"""
    Mutable navigation bookkeeping for one trajectory.

    Only ``start_surface`` and ``target_surface`` are meant to be set by the
    caller; everything else is owned by the :class:`Navigator`.

    Attributes
    ----------
    nav_surfaces, nav_layers, nav_boundaries : list of ObjectIntersection
        Candidate sequences; the matching ``*_index`` points at the next
        unconsumed candidate.
    reached : list of (CandidateKind, object)
        What the latest :meth:`Navigator.status` call found at the current
        position, in the order it was consumed.
    outside_geometry : bool
        The trajectory is outside the world volume (before entering it or
        after leaving it).
    """
    start_surface: object = None
    target_surface: object = None

    start_volume: object = None
    start_layer: object = None
    current_volume: object = None
    current_layer: object = None
    current_surface: object = None
    target_reached: bool = False
    stage: NavigationStage = NavigationStage.UNINITIALIZED

    nav_surfaces: List[ObjectIntersection] = field(default_factory=list)
    nav_surface_index: int = 0
    nav_layers: List[ObjectIntersection] = field(default_factory=list)
    nav_layer_index: int = 0
    nav_boundaries: List[ObjectIntersection] = field(default_factory=list)
    nav_boundary_index: int = 0

    start_layer_resolved: bool = False
    layer_surfaces_pending: bool = False
    layers_resolved: bool = False
    boundaries_resolved: bool = False
    boundaries_retried: bool = False
    outside_geometry: bool = False

    reached: List[Tuple[CandidateKind, object]] = field(default_factory=list)
    last_position: Optional[np.ndarray] = None
    last_direction: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    @property
    def pending_surfaces(self) -> int:
        return len(self.nav_surfaces) - self.nav_surface_index

    @property
    def pending_layers(self) -> int:
        return len(self.nav_layers) - self.nav_layer_index

    @property
    def pending_boundaries(self) -> int:
        return len(self.nav_boundaries) - self.nav_boundary_index

    @property
    def active_sequence(self) -> Optional[CandidateKind]:
        """The preferred sequence with candidates left, if any."""
        if self.pending_surfaces > 0:
            return CandidateKind.SURFACE
        if self.pending_layers > 0:
            return CandidateKind.LAYER
        if self.pending_boundaries > 0:
            return CandidateKind.BOUNDARY
        return None

    def active_candidate(self) -> Optional[ObjectIntersection]:
        kind = self.active_sequence
        if kind is CandidateKind.SURFACE:
            return self.nav_surfaces[self.nav_surface_index]
        if kind is CandidateKind.LAYER:
            return self.nav_layers[self.nav_layer_index]
        if kind is CandidateKind.BOUNDARY:
            return self.nav_boundaries[self.nav_boundary_index]
        return None

    def clear_surfaces(self) -> None:
        self.nav_surfaces = []
        self.nav_surface_index = 0

    def clear_volume_candidates(self) -> None:
        """Forget everything resolved from the current volume."""
        self.clear_surfaces()
        self.nav_layers = []
        self.nav_layer_index = 0
        self.nav_boundaries = []
        self.nav_boundary_index = 0
        self.layer_surfaces_pending = False
        self.layers_resolved = False
        self.boundaries_resolved = False
        self.boundaries_retried = False


class Navigator:
    r"""
    Resolves and targets the geometry objects along a trajectory.

    Parameters
    ----------
    geometry : TrackingGeometry
        The closed geometry (shared, never modified).
    config : NavigatorConfig, optional
        Category switches and the on-surface tolerance.

    Notes
    -----
    The navigator never moves the stepper. :meth:`status` only reads the
    stepper state; :meth:`target` only writes the ``ACTOR`` constraint of
    ``state.stepping.step_size``.
    """

    def __init__(self, geometry: TrackingGeometry, config: Optional[NavigatorConfig] = None):
        self.geometry = geometry
        self.config = config if config is not None else NavigatorConfig()
        self.log = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    @property
    def _flags(self) -> dict:
        c = self.config
        return dict(resolve_sensitive=c.resolve_sensitive, resolve_material=c.resolve_material,
                    resolve_passive=c.resolve_passive)

    @staticmethod
    def _ray(state) -> Tuple[np.ndarray, np.ndarray]:
        st = state.stepping
        return st.position, int(st.nav_dir) * st.direction

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------
    def status(self, state) -> None:
        r"""
        Update the navigation state for the current stepper position.

        On the first call the start volume and start layer are resolved and
        the stage becomes ``INITIALIZED``. On later calls the active
        candidate is tested with ``is_on_surface``; reached candidates are
        consumed (coincident ones in the same call) and, for a boundary, the
        current volume is switched. A call at an unchanged position and
        direction leaves the state untouched.
        """
        nav = state.navigation
        if nav.stage is NavigationStage.UNINITIALIZED:
            self._initialize(state)
            return
        if nav.stage.terminal or self._unchanged(state):
            return
        self._remember(state)
        nav.current_surface = None
        nav.reached = []

        pos, direction = self._ray(state)
        tol = self.config.on_surface_tolerance
        while True:
            kind = nav.active_sequence
            cand = nav.active_candidate()
            if cand is None or not cand.representation.is_on_surface(pos, tol):
                break
            if kind is CandidateKind.SURFACE:
                nav.nav_surface_index += 1
                nav.current_surface = cand.object
                nav.stage = NavigationStage.SURFACE_REACHED
                nav.reached.append((kind, cand.object))
                self.log.debug("Reached surface %r", cand.object)
            elif kind is CandidateKind.LAYER:
                nav.nav_layer_index += 1
                nav.current_layer = cand.object
                nav.current_surface = cand.representation
                nav.clear_surfaces()
                nav.layer_surfaces_pending = True
                nav.layers_resolved = False
                nav.stage = NavigationStage.LAYER_REACHED
                nav.reached.append((kind, cand.object))
                self.log.debug("Reached layer %r", cand.object)
            else:
                self._cross_boundary(state, cand, direction)
                break

        if nav.target_surface is not None and nav.target_surface.is_on_surface(pos, tol):
            nav.target_reached = True
            nav.current_surface = nav.target_surface
            nav.stage = NavigationStage.TARGET_REACHED
            self.log.debug("Target surface %r reached", nav.target_surface)

    def _initialize(self, state) -> None:
        nav = state.navigation
        pos, direction = self._ray(state)
        tol = self.config.on_surface_tolerance
        layer = nav.start_surface.associated_layer if nav.start_surface is not None else None
        if layer is not None and layer.tracking_volume is not None:
            nav.start_volume = layer.tracking_volume
            nav.start_layer = layer
        else:
            nav.start_volume = self.geometry.volume(pos + tol * direction)
            nav.start_layer = (nav.start_volume.associated_layer(pos, tol)
                               if nav.start_volume is not None else None)
        nav.current_volume = nav.start_volume
        nav.current_layer = nav.start_layer
        nav.current_surface = nav.start_surface
        nav.outside_geometry = nav.start_volume is None
        nav.clear_volume_candidates()
        nav.start_layer_resolved = False
        nav.reached = []
        nav.stage = NavigationStage.INITIALIZED
        self._remember(state)
        self.log.debug("Initialized in volume %s, start layer %s",
                       nav.start_volume.name if nav.start_volume is not None else None, nav.start_layer)

    def _cross_boundary(self, state, cand: ObjectIntersection, direction: np.ndarray) -> None:
        nav = state.navigation
        boundary = cand.object
        previous = nav.current_volume
        nxt = boundary.attached_volume(state.stepping.position, direction, 1.0)
        nav.nav_boundary_index += 1
        nav.reached.append((CandidateKind.BOUNDARY, boundary))
        nav.clear_volume_candidates()
        nav.current_layer = None
        nav.current_surface = boundary.surface
        nav.current_volume = nxt
        if nxt is None:
            nav.outside_geometry = True
            nav.stage = NavigationStage.GEOMETRY_EXHAUSTED
            self.log.debug("Left the geometry through %r", boundary)
            return
        nav.outside_geometry = False
        nav.stage = NavigationStage.BOUNDARY_REACHED
        self.log.debug("Crossed %r: %s -> %s", boundary,
                       previous.name if previous is not None else "exterior", nxt.name)

    def _unchanged(self, state) -> bool:
        nav, st = state.navigation, state.stepping
        return (nav.last_position is not None
                and np.array_equal(nav.last_position, st.position)
                and np.array_equal(nav.last_direction, st.direction))

    @staticmethod
    def _remember(state) -> None:
        nav, st = state.navigation, state.stepping
        nav.last_position = np.array(st.position, dtype=np.float64)
        nav.last_direction = np.array(st.direction, dtype=np.float64)

    # ------------------------------------------------------------------
    # target
    # ------------------------------------------------------------------
    def target(self, state) -> None:
        r"""
        Resolve the next candidate and constrain the step towards it.

        Order of preference: pending surfaces of the current (or start)
        layer, then layers of the current volume, then its boundaries. An
        explicit ``target_surface`` wins when it is strictly closer than the
        structural candidate. Without any candidate the stage becomes
        ``GEOMETRY_EXHAUSTED`` and the step size is left unchanged.

        Raises
        ------
        NavigationContractError
            If called before :meth:`status`, or if the current volume is
            missing while the trajectory is inside the geometry.
        """
        nav = state.navigation
        if nav.stage is NavigationStage.UNINITIALIZED:
            raise NavigationContractError("Navigator.target() called before Navigator.status().")
        if nav.stage.terminal:
            return
        if nav.current_volume is None and not nav.outside_geometry:
            raise NavigationContractError("No current volume after initialization inside the geometry.")

        pos, direction = self._ray(state)
        if nav.outside_geometry:
            cand = self._target_world_entry(nav, pos, direction)
        else:
            cand = (self._target_surfaces(nav, pos, direction)
                    or self._target_layers(nav, pos, direction)
                    or self._target_boundaries(nav, pos, direction))
        cand = self._prefer_target_surface(nav, cand, pos, direction)

        if cand is None:
            nav.stage = NavigationStage.GEOMETRY_EXHAUSTED
            self.log.debug("No candidates left; geometry exhausted")
            return
        st = state.stepping
        st.step_size.update(int(st.nav_dir) * cand.path_length, ConstraintType.ACTOR, release=True)
        self.log.debug("Targeting %r at %.6g mm (surfaces=%d layers=%d boundaries=%d)",
                       cand.object, cand.path_length, nav.pending_surfaces, nav.pending_layers,
                       nav.pending_boundaries)

    def _next_valid(self, nav: NavigationState, kind: CandidateKind, pos, direction) -> Optional[ObjectIntersection]:
        tol = self.config.on_surface_tolerance
        seq_name, idx_name = {
            CandidateKind.SURFACE: ("nav_surfaces", "nav_surface_index"),
            CandidateKind.LAYER: ("nav_layers", "nav_layer_index"),
            CandidateKind.BOUNDARY: ("nav_boundaries", "nav_boundary_index"),
        }[kind]
        seq: List[ObjectIntersection] = getattr(nav, seq_name)
        i = getattr(nav, idx_name)
        while i < len(seq):
            old = seq[i]
            if kind is CandidateKind.LAYER:
                fresh = old.object.surface_on_approach(pos, direction, tolerance=tol)
            else:
                ix = old.representation.intersection_estimate(pos, direction, boundary_check=True, tolerance=tol)
                fresh = ObjectIntersection(ix, old.object, old.representation) if ix.valid else None
            if fresh is not None:
                seq[i] = fresh
                setattr(nav, idx_name, i)
                return fresh
            i += 1
        setattr(nav, idx_name, i)
        return None

    def _resolve_layer_surfaces(self, nav: NavigationState, layer, pos, direction,
                                exclude: Iterable = ()) -> None:
        nav.nav_surfaces = layer.compatible_surfaces(pos, direction, exclude=exclude,
                                                     tolerance=self.config.on_surface_tolerance,
                                                     **self._flags)
        nav.nav_surface_index = 0
        self.log.debug("Resolved %d surfaces on %r", len(nav.nav_surfaces), layer)

    def _target_surfaces(self, nav: NavigationState, pos, direction) -> Optional[ObjectIntersection]:
        if not nav.start_layer_resolved:
            nav.start_layer_resolved = True
            if nav.start_layer is not None:
                self._resolve_layer_surfaces(nav, nav.start_layer, pos, direction, (nav.start_surface,))
        if nav.layer_surfaces_pending:
            nav.layer_surfaces_pending = False
            if nav.current_layer is not None:
                self._resolve_layer_surfaces(nav, nav.current_layer, pos, direction, (nav.current_surface,))
        return self._next_valid(nav, CandidateKind.SURFACE, pos, direction)

    def _target_layers(self, nav: NavigationState, pos, direction) -> Optional[ObjectIntersection]:
        if not nav.layers_resolved:
            # re-resolved from the exit of every reached layer; a layer entered
            # again further on (a chord through a cylinder) shows up once more
            nav.layers_resolved = True
            tol = self.config.on_surface_tolerance
            exits = nav.current_volume.compatible_boundaries(pos, direction, tolerance=tol)
            limit = exits[0].path_length + tol if exits else math.inf
            nav.nav_layers = [c for c in nav.current_volume.compatible_layers(pos, direction, tolerance=tol,
                                                                              **self._flags)
                              if c.path_length <= limit]
            nav.nav_layer_index = 0
            self.log.debug("Resolved %d layers in volume '%s'", len(nav.nav_layers), nav.current_volume.name)
        return self._next_valid(nav, CandidateKind.LAYER, pos, direction)

    def _resolve_boundaries(self, nav: NavigationState, pos, direction) -> None:
        nav.nav_boundaries = nav.current_volume.compatible_boundaries(
            pos, direction, tolerance=self.config.on_surface_tolerance)
        nav.nav_boundary_index = 0
        self.log.debug("Resolved %d boundaries of volume '%s'", len(nav.nav_boundaries), nav.current_volume.name)

    def _target_boundaries(self, nav: NavigationState, pos, direction) -> Optional[ObjectIntersection]:
        if not nav.boundaries_resolved:
            nav.boundaries_resolved = True
            self._resolve_boundaries(nav, pos, direction)
        cand = self._next_valid(nav, CandidateKind.BOUNDARY, pos, direction)
        if cand is None and not nav.boundaries_retried:
            nav.boundaries_retried = True
            self._resolve_boundaries(nav, pos, direction)
            cand = self._next_valid(nav, CandidateKind.BOUNDARY, pos, direction)
        return cand

    def _target_world_entry(self, nav: NavigationState, pos, direction) -> Optional[ObjectIntersection]:
        if not nav.boundaries_resolved:
            nav.boundaries_resolved = True
            tol = self.config.on_surface_tolerance
            cands = []
            for b in self.geometry.outer_boundaries():
                ix = b.surface.intersection_estimate(pos, direction, boundary_check=True, tolerance=tol)
                if ix.valid:
                    cands.append(ObjectIntersection(ix, b, b.surface))
            nav.nav_boundaries = sort_candidates(cands, tol)
            nav.nav_boundary_index = 0
            self.log.debug("Outside the geometry: %d entry candidates", len(nav.nav_boundaries))
        return self._next_valid(nav, CandidateKind.BOUNDARY, pos, direction)

    def _prefer_target_surface(self, nav: NavigationState, cand: Optional[ObjectIntersection],
                               pos, direction) -> Optional[ObjectIntersection]:
        if nav.target_surface is None:
            return cand
        ix = nav.target_surface.intersection_estimate(pos, direction, boundary_check=True,
                                                      tolerance=self.config.on_surface_tolerance)
        if ix.valid and (cand is None or ix.path_length < cand.path_length):
            return ObjectIntersection(ix, nav.target_surface, nav.target_surface)
        return cand
