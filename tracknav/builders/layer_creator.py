r"""
Layer construction from a set of sensitive surfaces.

The creator measures the extent of the surfaces in the layer frame, applies
the requested envelopes, derives the binning (explicit bin counts, or bin
counts/edges clustered from the surface positions with the configured
tolerances), fills the :class:`~tracknav.surface_array.SurfaceArray` and
verifies that every surface is reachable through the grid.

Closed :math:`\phi` axes with :math:`n` equidistant bins are rotated so that
bin centers coincide with the module azimuths,

.. math::

    \phi_\min = \min_k \phi_k - \frac{\pi}{n}, \qquad
    \phi_\max = \phi_\min + 2\pi.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Tuple

import numpy as np

from tracknav.binning import (BinUtility, BinningData, BinningOption, BinningType, BinningValue,
                              cluster_phi, cluster_values, edges_from_centers, phi_edges_from_centers)
from tracknav.config import LayerCreatorConfig
from tracknav.errors import GeometryConfigurationError
from tracknav.layers import ApproachDescriptor, CylinderLayer, DiscLayer, PlaneLayer
from tracknav.material import HomogeneousSurfaceMaterial
from tracknav.surface_array import SurfaceArray, check_binning
from tracknav.surfaces import (CylinderBounds, CylinderSurface, DiscSurface, PlaneSurface, RadialBounds,
                               RectangleBounds, Surface)
from tracknav.transform import Transform3D

logger = logging.getLogger(__name__)


def _local_points(surfaces: Sequence[Surface], transform: Transform3D) -> Tuple[np.ndarray, np.ndarray]:
    verts = np.vstack([s.polyhedron_vertices() for s in surfaces])
    centers = np.array([s.binning_position() for s in surfaces])
    return transform.points_to_local(verts), transform.points_to_local(centers)


class LayerCreator:
    """
    Builds cylinder, disc and plane layers.

    Parameters
    ----------
    config : LayerCreatorConfig, optional
        Clustering tolerances.

    Notes
    -----
    Each build method takes one optional ``transform`` that serves as both
    the pre and the post transform: its inverse takes the surfaces into the
    layer frame before extents and bins are measured, and the representing
    surface, approach surfaces and grid are placed with it afterwards. Disc
    and plane layers additionally shift it to the measured center.
    """

    def __init__(self, config: Optional[LayerCreatorConfig] = None):
        self.config = config if config is not None else LayerCreatorConfig()
        self.log = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Binning helpers
    def _open_axis(self, value: BinningValue, positions: np.ndarray, lo: float, hi: float,
                   n_bins: Optional[int], binning_type: BinningType, tolerance: float) -> BinningData:
        if n_bins is not None:
            return BinningData.equidistant(value, n_bins, lo, hi)
        clusters = cluster_values(positions, tolerance)
        if binning_type is BinningType.EQUIDISTANT:
            return BinningData.equidistant(value, len(clusters), lo, hi)
        return BinningData.arbitrary(value, edges_from_centers(clusters, lo, hi))

    def _phi_axis(self, phis: np.ndarray, n_bins: Optional[int], binning_type: BinningType) -> BinningData:
        if n_bins is None and binning_type is BinningType.ARBITRARY:
            clusters = cluster_phi(phis, self.config.cylinder_phi_tolerance)
            return BinningData.arbitrary(BinningValue.PHI, phi_edges_from_centers(clusters), BinningOption.CLOSED)
        if n_bins is None:
            n_bins = len(cluster_phi(phis, self.config.cylinder_phi_tolerance))
        lo = float(np.min(phis)) - math.pi / n_bins
        return BinningData.equidistant(BinningValue.PHI, n_bins, lo, lo + 2.0 * math.pi, BinningOption.CLOSED)

    def _surface_array(self, surfaces: Sequence[Surface], bin_utility: BinUtility, name: str) -> SurfaceArray:
        array = SurfaceArray(surfaces, bin_utility)
        check_binning(array, name)
        return array

    @staticmethod
    def _material(material) -> Optional[HomogeneousSurfaceMaterial]:
        if material is None or isinstance(material, HomogeneousSurfaceMaterial):
            return material
        return HomogeneousSurfaceMaterial(material)

    # ------------------------------------------------------------------
    def cylinder_layer(self, surfaces: Sequence[Surface], *, bins_phi: Optional[int] = None,
                       bins_z: Optional[int] = None,
                       binning_type_phi: BinningType = BinningType.EQUIDISTANT,
                       binning_type_z: BinningType = BinningType.EQUIDISTANT,
                       envelope_r: float = 0.0, envelope_z: float = 0.0,
                       r_min: Optional[float] = None, r_max: Optional[float] = None,
                       half_z: Optional[float] = None, transform: Optional[Transform3D] = None,
                       approach_descriptor: Optional[ApproachDescriptor] = None,
                       material=None, name: str = "") -> CylinderLayer:
        r"""
        Cylinder layer binned in :math:`(\phi, z)`.

        Parameters
        ----------
        surfaces : sequence of Surface
            Sensitive surfaces (non-empty).
        bins_phi, bins_z : int, optional
            Explicit equidistant bin counts. If omitted, the counts (or, for
            ``ARBITRARY`` types, the edges) are clustered from the module
            positions.
        envelope_r, envelope_z : float, optional
            Added to the measured extent on both sides.
        r_min, r_max, half_z : float, optional
            Override the measured extent (envelopes still apply).
        transform : Transform3D, optional
            Layer frame; by default a translation to the z center.
        approach_descriptor : ApproachDescriptor, optional
            Custom approach surfaces.
        material : MaterialProperties or HomogeneousSurfaceMaterial, optional
            Material of the representing surface.
        name : str, optional

        Returns
        -------
        CylinderLayer

        Raises
        ------
        GeometryConfigurationError
            If no surfaces are given or some surface is unreachable in the grid.
        """
        if not surfaces:
            raise GeometryConfigurationError(f"Cylinder layer '{name}' needs surfaces.")
        if transform is None:
            zs = np.vstack([s.polyhedron_vertices() for s in surfaces])[:, 2]
            transform = Transform3D.from_translation((0.0, 0.0, 0.5 * (zs.min() + zs.max())))
        verts, centers = _local_points(surfaces, transform)
        rv = np.hypot(verts[:, 0], verts[:, 1])
        lo_r = (float(rv.min()) if r_min is None else r_min) - envelope_r
        hi_r = (float(rv.max()) if r_max is None else r_max) + envelope_r
        z_lo = float(verts[:, 2].min()) if half_z is None else -half_z
        z_hi = float(verts[:, 2].max()) if half_z is None else half_z
        z_lo, z_hi = z_lo - envelope_z, z_hi + envelope_z
        if lo_r <= 0.0 or hi_r <= lo_r:
            raise GeometryConfigurationError(f"Cylinder layer '{name}' has invalid radial extent [{lo_r}, {hi_r}].")
        radius = 0.5 * (lo_r + hi_r)
        hz = max(abs(z_lo), abs(z_hi))

        phi_data = self._phi_axis(np.arctan2(centers[:, 1], centers[:, 0]), bins_phi, binning_type_phi)
        z_data = self._open_axis(BinningValue.Z, centers[:, 2], -hz, hz, bins_z, binning_type_z,
                                 self.config.cylinder_z_tolerance)
        array = self._surface_array(surfaces, BinUtility(phi_data, z_data, transform=transform), name)

        rep = CylinderSurface(transform, CylinderBounds(radius, hz), material=self._material(material),
                              name=name)
        layer = CylinderLayer(rep, thickness=hi_r - lo_r, surface_array=array,
                              approach_descriptor=approach_descriptor, name=name)
        self.log.debug("Cylinder layer '%s': R=%.3f t=%.3f half_z=%.3f bins=%s", name, radius,
                       hi_r - lo_r, hz, array.shape)
        return layer

    def disc_layer(self, surfaces: Sequence[Surface], *, bins_r: Optional[int] = None,
                   bins_phi: Optional[int] = None,
                   binning_type_r: BinningType = BinningType.ARBITRARY,
                   binning_type_phi: BinningType = BinningType.EQUIDISTANT,
                   envelope_r: float = 0.0, envelope_z: float = 0.0,
                   r_min: Optional[float] = None, r_max: Optional[float] = None,
                   transform: Optional[Transform3D] = None,
                   approach_descriptor: Optional[ApproachDescriptor] = None,
                   material=None, name: str = "") -> DiscLayer:
        r"""
        Disc layer binned in :math:`(r, \phi)`; rings are clustered with
        ``disc_r_tolerance``. Keyword arguments mirror :meth:`cylinder_layer`.
        """
        if not surfaces:
            raise GeometryConfigurationError(f"Disc layer '{name}' needs surfaces.")
        if transform is None:
            zs = np.array([s.center[2] for s in surfaces])
            transform = Transform3D.from_translation((0.0, 0.0, 0.5 * (zs.min() + zs.max())))
        verts, centers = _local_points(surfaces, transform)
        rv = np.hypot(verts[:, 0], verts[:, 1])
        lo_r = max((float(rv.min()) if r_min is None else r_min) - envelope_r, 0.0)
        hi_r = (float(rv.max()) if r_max is None else r_max) + envelope_r
        z_lo, z_hi = float(verts[:, 2].min()) - envelope_z, float(verts[:, 2].max()) + envelope_z
        zc = 0.5 * (z_lo + z_hi)
        if abs(zc) > 0.0:
            transform = transform * Transform3D.from_translation((0.0, 0.0, zc))

        r_data = self._open_axis(BinningValue.R, np.hypot(centers[:, 0], centers[:, 1]), lo_r, hi_r,
                                 bins_r, binning_type_r, self.config.disc_r_tolerance)
        phi_data = self._phi_axis(np.arctan2(centers[:, 1], centers[:, 0]), bins_phi, binning_type_phi)
        array = self._surface_array(surfaces, BinUtility(r_data, phi_data, transform=transform), name)

        rep = DiscSurface(transform, RadialBounds(lo_r, hi_r), material=self._material(material), name=name)
        layer = DiscLayer(rep, thickness=z_hi - z_lo, surface_array=array,
                          approach_descriptor=approach_descriptor, name=name)
        self.log.debug("Disc layer '%s': z=%.3f r=[%.3f, %.3f] t=%.3f bins=%s", name,
                       float(transform.translation[2]), lo_r, hi_r, z_hi - z_lo, array.shape)
        return layer

    def plane_layer(self, surfaces: Sequence[Surface], *, bins_x: Optional[int] = None,
                    bins_y: Optional[int] = None,
                    binning_type_x: BinningType = BinningType.EQUIDISTANT,
                    binning_type_y: BinningType = BinningType.EQUIDISTANT,
                    envelope_xy: float = 0.0, envelope_z: float = 0.0,
                    transform: Optional[Transform3D] = None,
                    approach_descriptor: Optional[ApproachDescriptor] = None,
                    material=None, name: str = "") -> PlaneLayer:
        r"""
        Plane layer binned in local :math:`(x, y)`.

        Without an explicit ``transform`` the layer frame takes the
        orientation of the first surface and is centred on the extent of all
        surfaces.
        """
        if not surfaces:
            raise GeometryConfigurationError(f"Plane layer '{name}' needs surfaces.")
        if transform is None:
            transform = Transform3D(surfaces[0].transform.rotation,
                                    np.mean([s.center for s in surfaces], axis=0))
        verts, _ = _local_points(surfaces, transform)
        lo = verts.min(axis=0) - np.array([envelope_xy, envelope_xy, envelope_z])
        hi = verts.max(axis=0) + np.array([envelope_xy, envelope_xy, envelope_z])
        transform = transform * Transform3D.from_translation(0.5 * (lo + hi))
        half = 0.5 * (hi - lo)
        _, centers = _local_points(surfaces, transform)

        tol = self.config.plane_tolerance
        x_data = self._open_axis(BinningValue.X, centers[:, 0], -half[0], half[0], bins_x, binning_type_x, tol)
        y_data = self._open_axis(BinningValue.Y, centers[:, 1], -half[1], half[1], bins_y, binning_type_y, tol)
        array = self._surface_array(surfaces, BinUtility(x_data, y_data, transform=transform), name)

        rep = PlaneSurface(transform, RectangleBounds(half[0], half[1]), material=self._material(material),
                           name=name)
        layer = PlaneLayer(rep, thickness=2.0 * half[2], surface_array=array,
                           approach_descriptor=approach_descriptor, name=name)
        self.log.debug("Plane layer '%s': center=%s t=%.3f bins=%s", name, np.round(transform.translation, 3),
                       2.0 * half[2], array.shape)
        return layer
