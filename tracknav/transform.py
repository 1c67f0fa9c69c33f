from __future__ import annotations

from typing import Optional, Sequence, Union

import numpy as np
from scipy.spatial.transform import Rotation

ArrayLike = Union[Sequence[float], np.ndarray]


def _frozen(a: np.ndarray) -> np.ndarray:
    a = np.ascontiguousarray(a, dtype=np.float64)
    a.flags.writeable = False
    return a


class Transform3D:
    r"""
    Rigid placement (rotation + translation) of a local frame in global space.

    A point :math:`\mathbf{l}` in the local frame maps to global coordinates as

    .. math::

        \mathbf{g} \;=\; \mathbf{R}\,\mathbf{l} + \mathbf{t},
        \qquad
        \mathbf{l} \;=\; \mathbf{R}^\top(\mathbf{g} - \mathbf{t}),

    where the columns of :math:`\mathbf{R}` are the local axes expressed in
    global coordinates. Rotations are constructed through
    :class:`scipy.spatial.transform.Rotation` so that Euler angles, rotation
    vectors and explicit axes are all accepted.

    Parameters
    ----------
    rotation : Rotation or (3,3) array_like, optional
        Orientation of the local frame. Identity if omitted.
    translation : (3,) array_like, optional
        Origin of the local frame in global coordinates. Zero if omitted.

    Notes
    -----
    Both arrays are stored read-only; a transform never changes after
    construction and may be shared freely between surfaces.
    """

    __slots__ = ("rotation", "translation", "_identity_rotation")

    def __init__(self,
                 rotation: Optional[Union[Rotation, ArrayLike]] = None,
                 translation: Optional[ArrayLike] = None):
        if rotation is None:
            rot = np.eye(3)
        elif isinstance(rotation, Rotation):
            rot = rotation.as_matrix()
        else:
            rot = Rotation.from_matrix(np.asarray(rotation, dtype=np.float64).reshape(3, 3)).as_matrix()
        trans = np.zeros(3) if translation is None else np.asarray(translation, dtype=np.float64).reshape(3)
        self.rotation = _frozen(rot)
        self.translation = _frozen(trans)
        self._identity_rotation = bool(np.allclose(rot, np.eye(3), atol=1e-15))

    # ------------------------------------------------------------------
    # Factories
    @classmethod
    def identity(cls) -> "Transform3D":
        return cls()

    @classmethod
    def from_translation(cls, translation: ArrayLike) -> "Transform3D":
        return cls(None, translation)

    @classmethod
    def from_euler(cls, seq: str, angles: ArrayLike, translation: Optional[ArrayLike] = None,
                   degrees: bool = False) -> "Transform3D":
        """Build from Euler angles (see :meth:`Rotation.from_euler`)."""
        return cls(Rotation.from_euler(seq, angles, degrees=degrees), translation)

    @classmethod
    def from_axes(cls, x_axis: ArrayLike, y_axis: ArrayLike, z_axis: ArrayLike,
                  translation: Optional[ArrayLike] = None) -> "Transform3D":
        r"""
        Build from the local axes given in global coordinates.

        Raises
        ------
        ValueError
            If the axes are not (approximately) orthonormal and right-handed.
        """
        m = np.column_stack([np.asarray(x_axis, float), np.asarray(y_axis, float), np.asarray(z_axis, float)])
        if not np.allclose(m.T @ m, np.eye(3), atol=1e-9) or np.linalg.det(m) < 0.0:
            raise ValueError("Local axes must form a right-handed orthonormal frame.")
        return cls(m, translation)

    # ------------------------------------------------------------------
    # Mapping
    def to_local(self, point: ArrayLike) -> np.ndarray:
        p = np.asarray(point, dtype=np.float64) - self.translation
        return p if self._identity_rotation else self.rotation.T @ p

    def to_global(self, local: ArrayLike) -> np.ndarray:
        l = np.asarray(local, dtype=np.float64)
        return (l if self._identity_rotation else self.rotation @ l) + self.translation

    def vector_to_local(self, vector: ArrayLike) -> np.ndarray:
        v = np.asarray(vector, dtype=np.float64)
        return v if self._identity_rotation else self.rotation.T @ v

    def vector_to_global(self, vector: ArrayLike) -> np.ndarray:
        v = np.asarray(vector, dtype=np.float64)
        return v if self._identity_rotation else self.rotation @ v

    def points_to_global(self, local_points: np.ndarray) -> np.ndarray:
        """Vectorized :meth:`to_global` for an ``(N,3)`` array."""
        pts = np.asarray(local_points, dtype=np.float64).reshape(-1, 3)
        return pts @ self.rotation.T + self.translation

    def points_to_local(self, points: np.ndarray) -> np.ndarray:
        """Vectorized :meth:`to_local` for an ``(N,3)`` array."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return (pts - self.translation) @ self.rotation

    # ------------------------------------------------------------------
    @property
    def center(self) -> np.ndarray:
        return self.translation

    def axis(self, i: int) -> np.ndarray:
        """Local axis ``i`` (0, 1, 2) in global coordinates."""
        return self.rotation[:, i]

    def __mul__(self, other: "Transform3D") -> "Transform3D":
        # (self * other) applies other first, then self
        return Transform3D(self.rotation @ other.rotation,
                           self.rotation @ other.translation + self.translation)

    def __repr__(self) -> str:
        t = ", ".join(f"{v:.3f}" for v in self.translation)
        return f"Transform3D(translation=[{t}], identity_rotation={self._identity_rotation})"
