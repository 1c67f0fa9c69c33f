r"""
Binned lookup of the sensitive surfaces of a layer.

Each bin of the :class:`~tracknav.binning.BinUtility` grid is assigned the
surface whose reference position is closest to the bin center (in 3D, so
closed :math:`\phi` axes need no special treatment). The nearest-neighbour
query is done once at construction with :class:`scipy.spatial.cKDTree`.

A surface that is not the closest one for *any* bin can never be found
through the grid; :func:`check_binning` turns that into a build-time
:class:`~tracknav.errors.GeometryConfigurationError`.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Sequence, Set, Tuple

import numpy as np
from scipy.spatial import cKDTree

from tracknav.binning import BinUtility, BinningValue
from tracknav.errors import GeometryConfigurationError

logger = logging.getLogger(__name__)


class SurfaceArray:
    """
    Grid of surfaces addressed by global position.

    Parameters
    ----------
    surfaces : sequence of Surface
        The surfaces to be binned (non-empty).
    bin_utility : BinUtility
        Grid definition, including the transform into the layer frame.
    """

    __slots__ = ("surfaces", "bin_utility", "_grid")

    def __init__(self, surfaces: Sequence, bin_utility: BinUtility):
        if not surfaces:
            raise GeometryConfigurationError("A SurfaceArray needs at least one surface.")
        self.surfaces: Tuple = tuple(surfaces)
        self.bin_utility = bin_utility
        self._grid = np.empty(bin_utility.shape, dtype=object)
        self._fill()

    # ------------------------------------------------------------------
    def _fill(self) -> None:
        bu = self.bin_utility
        refs = bu.transform.points_to_local(np.array([s.binning_position() for s in self.surfaces]))
        defaults = self._defaults(refs)
        indices = list(bu.indices())
        centers = np.array([self._center_point(bu.bin_centers(ix), defaults) for ix in indices])
        tree = cKDTree(refs)
        _, nearest = tree.query(centers, k=1)
        for ix, k in zip(indices, np.atleast_1d(nearest)):
            self._grid[ix] = (self.surfaces[int(k)],)
        logger.debug("Filled %s with %d surfaces", bu, len(self.surfaces))

    def _defaults(self, refs: np.ndarray) -> Dict[BinningValue, float]:
        r = np.hypot(refs[:, 0], refs[:, 1])
        mean_phi = math.atan2(float(np.mean(np.sin(np.arctan2(refs[:, 1], refs[:, 0])))),
                              float(np.mean(np.cos(np.arctan2(refs[:, 1], refs[:, 0])))))
        return {
            BinningValue.X: float(refs[:, 0].mean()),
            BinningValue.Y: float(refs[:, 1].mean()),
            BinningValue.Z: float(refs[:, 2].mean()),
            BinningValue.R: float(r.mean()),
            BinningValue.PHI: mean_phi,
        }

    def _center_point(self, values: Tuple[float, ...], defaults: Dict[BinningValue, float]) -> np.ndarray:
        coords = dict(defaults)
        polar = False
        for d, v in zip(self.bin_utility.data, values):
            coords[d.value] = v
            polar = polar or d.value in (BinningValue.R, BinningValue.PHI)
        if polar:
            x = coords[BinningValue.R] * math.cos(coords[BinningValue.PHI])
            y = coords[BinningValue.R] * math.sin(coords[BinningValue.PHI])
        else:
            x, y = coords[BinningValue.X], coords[BinningValue.Y]
        return np.array([x, y, coords[BinningValue.Z]])

    # ------------------------------------------------------------------
    @property
    def shape(self) -> Tuple[int, ...]:
        return self.bin_utility.shape

    def at_bin(self, index: Tuple[int, ...]) -> Tuple:
        return self._grid[index] or ()

    def surfaces_at(self, position) -> Tuple:
        """Surfaces stored in the bin containing ``position``."""
        return self.at_bin(self.bin_utility.bin(position))

    def neighbors(self, position) -> List:
        """Unique surfaces of the bin at ``position`` and its direct neighbours."""
        out: List = []
        seen: Set[int] = set()
        for ix in self.bin_utility.neighborhood(self.bin_utility.bin(position)):
            for s in self.at_bin(ix):
                if id(s) not in seen:
                    seen.add(id(s))
                    out.append(s)
        return out

    def reachable_surfaces(self) -> List:
        seen: Set[int] = set()
        out: List = []
        for cell in self._grid.flat:
            for s in cell or ():
                if id(s) not in seen:
                    seen.add(id(s))
                    out.append(s)
        return out

    def empty_bins(self) -> List[Tuple[int, ...]]:
        return [ix for ix in self.bin_utility.indices() if not self._grid[ix]]

    def __len__(self) -> int:
        return len(self.surfaces)

    def __repr__(self) -> str:
        return f"SurfaceArray({len(self.surfaces)} surfaces, {self.bin_utility})"


def check_binning(surface_array: SurfaceArray, name: str = "") -> None:
    """
    Verify that every surface can be reached through the grid and that no
    bin is empty.

    Raises
    ------
    GeometryConfigurationError
        Listing the number of unreachable surfaces or empty bins.
    """
    reachable = {id(s) for s in surface_array.reachable_surfaces()}
    missing = [s for s in surface_array.surfaces if id(s) not in reachable]
    empty = surface_array.empty_bins()
    label = f" of layer '{name}'" if name else ""
    if missing:
        raise GeometryConfigurationError(
            f"{len(missing)} of {len(surface_array.surfaces)} surfaces{label} are unreachable "
            f"through {surface_array.bin_utility}; increase the number of bins."
        )
    if empty:
        raise GeometryConfigurationError(f"{len(empty)} empty bins in surface array{label}.")
    logger.debug("Binning check passed%s: %d surfaces in %d bins", label,
                 len(surface_array.surfaces), surface_array.bin_utility.size)
