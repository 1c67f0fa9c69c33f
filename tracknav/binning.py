r"""
One- and two-dimensional binning of local coordinates.

A :class:`BinningData` describes one axis: which coordinate is binned
(:class:`BinningValue`), whether the bins are equidistant or given by
arbitrary edges (:class:`BinningType`) and whether the axis is open (values
outside are clamped to the first/last bin) or closed (values wrap around, used
for :math:`\phi`). A :class:`BinUtility` combines up to two axes with an
optional transform into the local frame of a layer.

Equidistant lookup is :math:`i = \lfloor (x - x_\min)/\Delta \rfloor`;
arbitrary lookup uses :func:`numpy.searchsorted` on the edge array.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from itertools import product
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from tracknav.errors import GeometryConfigurationError
from tracknav.transform import Transform3D

TWO_PI = 2.0 * math.pi


class BinningValue(Enum):
    X = "x"
    Y = "y"
    Z = "z"
    R = "r"
    PHI = "phi"


class BinningType(Enum):
    EQUIDISTANT = "equidistant"
    ARBITRARY = "arbitrary"


class BinningOption(Enum):
    OPEN = "open"
    CLOSED = "closed"


def binning_value(local_position, value: BinningValue) -> float:
    """Extract the binned coordinate from a local 3D position."""
    x, y, z = float(local_position[0]), float(local_position[1]), float(local_position[2])
    if value is BinningValue.X:
        return x
    if value is BinningValue.Y:
        return y
    if value is BinningValue.Z:
        return z
    if value is BinningValue.R:
        return math.hypot(x, y)
    return math.atan2(y, x)


@dataclass(frozen=True, eq=False)
class BinningData:
    r"""
    Binning along a single coordinate.

    Attributes
    ----------
    value : BinningValue
        The binned coordinate.
    option : BinningOption
        ``CLOSED`` axes wrap with period :math:`x_\max - x_\min`.
    type : BinningType
        ``EQUIDISTANT`` or ``ARBITRARY``.
    edges : ndarray, shape (n+1,)
        Strictly increasing bin edges.
    """
    value: BinningValue
    option: BinningOption
    type: BinningType
    edges: np.ndarray = field(repr=False)

    def __post_init__(self):
        e = np.asarray(self.edges, dtype=np.float64)
        if e.ndim != 1 or e.size < 2:
            raise GeometryConfigurationError(f"Binning in {self.value.value} needs at least one bin.")
        if np.any(np.diff(e) <= 0.0):
            raise GeometryConfigurationError(f"Bin edges in {self.value.value} must be strictly increasing.")
        e.flags.writeable = False
        object.__setattr__(self, "edges", e)

    # ------------------------------------------------------------------
    @classmethod
    def equidistant(cls, value: BinningValue, n_bins: int, lo: float, hi: float,
                    option: BinningOption = BinningOption.OPEN) -> "BinningData":
        if int(n_bins) < 1:
            raise GeometryConfigurationError(f"Need at least one bin in {value.value}, got {n_bins}.")
        if not hi > lo:
            raise GeometryConfigurationError(f"Empty range [{lo}, {hi}] for binning in {value.value}.")
        return cls(value, option, BinningType.EQUIDISTANT, np.linspace(lo, hi, int(n_bins) + 1))

    @classmethod
    def arbitrary(cls, value: BinningValue, edges: Sequence[float],
                  option: BinningOption = BinningOption.OPEN) -> "BinningData":
        return cls(value, option, BinningType.ARBITRARY, np.asarray(edges, dtype=np.float64))

    # ------------------------------------------------------------------
    @property
    def bins(self) -> int:
        return self.edges.size - 1

    @property
    def min(self) -> float:
        return float(self.edges[0])

    @property
    def max(self) -> float:
        return float(self.edges[-1])

    @property
    def centers(self) -> np.ndarray:
        return 0.5 * (self.edges[:-1] + self.edges[1:])

    def wrap(self, x: float) -> float:
        if self.option is BinningOption.CLOSED:
            return self.min + (x - self.min) % (self.max - self.min)
        return x

    def search(self, x: float) -> int:
        x = self.wrap(float(x))
        if self.type is BinningType.EQUIDISTANT:
            step = (self.max - self.min) / self.bins
            i = int(math.floor((x - self.min) / step))
        else:
            i = int(np.searchsorted(self.edges, x, side="right")) - 1
        return min(max(i, 0), self.bins - 1)

    def neighbors(self, i: int) -> List[int]:
        """Bin ``i`` and its direct neighbours (wrapping on closed axes)."""
        n = self.bins
        if self.option is BinningOption.CLOSED:
            out = [(i - 1) % n, i, (i + 1) % n]
        else:
            out = [j for j in (i - 1, i, i + 1) if 0 <= j < n]
        seen: List[int] = []
        for j in out:
            if j not in seen:
                seen.append(j)
        return seen


class BinUtility:
    """
    Up to two :class:`BinningData` axes evaluated in a local frame.

    Parameters
    ----------
    *data : BinningData
        One or two axes, in the order of the local coordinates of the layer.
    transform : Transform3D, optional
        Global-to-local placement; identity if omitted.
    """

    __slots__ = ("data", "transform")

    def __init__(self, *data: BinningData, transform: Optional[Transform3D] = None):
        if not 1 <= len(data) <= 2:
            raise GeometryConfigurationError("BinUtility supports one or two binning axes.")
        self.data: Tuple[BinningData, ...] = tuple(data)
        self.transform = transform if transform is not None else Transform3D()

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(d.bins for d in self.data)

    @property
    def size(self) -> int:
        return int(np.prod(self.shape))

    def values(self, position) -> Tuple[float, ...]:
        lp = self.transform.to_local(position)
        return tuple(binning_value(lp, d.value) for d in self.data)

    def bin(self, position) -> Tuple[int, ...]:
        return tuple(d.search(v) for d, v in zip(self.data, self.values(position)))

    def bin_centers(self, index: Tuple[int, ...]) -> Tuple[float, ...]:
        return tuple(float(d.centers[i]) for d, i in zip(self.data, index))

    def indices(self) -> Iterable[Tuple[int, ...]]:
        return product(*(range(n) for n in self.shape))

    def neighborhood(self, index: Tuple[int, ...]) -> List[Tuple[int, ...]]:
        return list(product(*(d.neighbors(i) for d, i in zip(self.data, index))))

    def __repr__(self) -> str:
        axes = ", ".join(f"{d.value.value}:{d.bins}{'c' if d.option is BinningOption.CLOSED else ''}"
                         for d in self.data)
        return f"BinUtility({axes})"


# ----------------------------------------------------------------------
# Helpers for deriving arbitrary bins from surface positions
# ----------------------------------------------------------------------

def cluster_values(values: Iterable[float], tolerance: float) -> np.ndarray:
    """
    Group sorted values whose distance to the first member of the group is
    within ``tolerance`` and return the group means.
    """
    v = np.sort(np.asarray(list(values), dtype=np.float64))
    if v.size == 0:
        return v
    centers: List[float] = []
    start = 0
    for i in range(1, v.size + 1):
        if i == v.size or v[i] - v[start] > tolerance:
            centers.append(float(v[start:i].mean()))
            start = i
    return np.asarray(centers)


def cluster_phi(values: Iterable[float], tolerance: float) -> np.ndarray:
    """Like :func:`cluster_values`, merging the clusters that straddle :math:`\\pm\\pi`."""
    c = cluster_values(values, tolerance)
    if c.size > 1 and (c[0] + TWO_PI) - c[-1] <= tolerance:
        merged = 0.5 * (c[0] + TWO_PI + c[-1])
        c = np.append(c[1:-1], merged - TWO_PI if merged > math.pi else merged)
        c.sort()
    return c


def edges_from_centers(centers: np.ndarray, lo: float, hi: float) -> np.ndarray:
    """Open-axis edges: midpoints between neighbouring centers, closed by ``lo``/``hi``."""
    c = np.sort(np.asarray(centers, dtype=np.float64))
    mids = 0.5 * (c[:-1] + c[1:])
    return np.concatenate([[min(lo, c[0])], mids, [max(hi, c[-1])]])


def phi_edges_from_centers(centers: np.ndarray) -> np.ndarray:
    """
    Closed-axis phi edges spanning exactly :math:`2\\pi`, one bin per center,
    with the first edge halfway between the last center and the first.
    """
    c = np.sort(np.asarray(centers, dtype=np.float64))
    if c.size == 1:
        return np.array([c[0] - math.pi, c[0] + math.pi])
    first = c[0] - 0.5 * (c[0] + TWO_PI - c[-1])
    mids = 0.5 * (c[:-1] + c[1:])
    return np.concatenate([[first], mids, [first + TWO_PI]])
