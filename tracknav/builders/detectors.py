r"""
Reference detectors.

:func:`build_cylindrical_detector` assembles a small silicon tracker:

- a beam pipe volume (:math:`r <` ``beam_pipe_volume_radius``) holding the
  passive beam pipe layer,
- a barrel volume with cylinder layers of tilted rectangular modules plus
  the central passive support layers,
- optionally two endcap volumes with disc layers of trapezoidal modules
  arranged in rings plus the passive support discs,

glued as ``world = r-stack(beampipe, z-stack(neg. endcap, barrel, pos. endcap))``.

:func:`build_telescope_detector` places plane layers of :math:`2\times2`
modules along :math:`z` inside one cuboid volume.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from tracknav.builders.layer_creator import LayerCreator
from tracknav.builders.passive_layer_builder import PassiveLayerBuilder
from tracknav.config import BarrelConfig, CylindricalDetectorConfig, EndcapConfig, PassiveLayerConfig
from tracknav.geometry import TrackingGeometry
from tracknav.layers import Layer
from tracknav.material import HomogeneousSurfaceMaterial, MaterialProperties, material_by_name
from tracknav.surfaces import PlaneSurface, RectangleBounds, TrapezoidBounds
from tracknav.transform import Transform3D
from tracknav.volumes import CuboidVolumeBounds, CylinderVolumeBounds, TrackingVolume, build_container

logger = logging.getLogger(__name__)


def _module_material(name: str, thickness: float) -> HomogeneousSurfaceMaterial:
    return HomogeneousSurfaceMaterial(MaterialProperties(material_by_name(name), thickness))


def barrel_modules(radius: float, n_phi: int, n_z: int, cfg: BarrelConfig, label: str = "") -> List[PlaneSurface]:
    r"""
    Tilted rectangular modules on a cylinder.

    Module :math:`(i_z, i_\phi)` sits at :math:`\phi = -\pi + (i_\phi + \tfrac12)\,2\pi/n_\phi`,
    :math:`z = (i_z - \tfrac{n_z - 1}{2})\,(2h_y - o_z)` and radius
    :math:`R \pm s/2` alternating in :math:`i_z`; its normal is rotated by the
    tilt angle about the z axis.
    """
    mat = _module_material(cfg.module_material, cfg.module_thickness)
    bounds = RectangleBounds(cfg.module_half_x, cfg.module_half_y)
    pitch = 2.0 * cfg.module_half_y - cfg.z_overlap
    z0 = -0.5 * (n_z - 1) * pitch
    out: List[PlaneSurface] = []
    for iz in range(n_z):
        z = z0 + iz * pitch
        r = radius + (0.5 if iz % 2 else -0.5) * cfg.z_stagger
        for ip in range(n_phi):
            phi = -math.pi + (ip + 0.5) * 2.0 * math.pi / n_phi
            a = phi + cfg.module_tilt
            center = (r * math.cos(phi), r * math.sin(phi), z)
            t = Transform3D.from_axes((-math.sin(a), math.cos(a), 0.0), (0.0, 0.0, 1.0),
                                      (math.cos(a), math.sin(a), 0.0), translation=center)
            out.append(PlaneSurface(t, bounds, material=mat, sensitive=True, name=f"{label}:z{iz}:phi{ip}"))
    return out


def endcap_modules(z: float, cfg: EndcapConfig, label: str = "") -> List[PlaneSurface]:
    """Trapezoidal modules of all rings of one disc at ``z``; odd rings shifted by ``+ring_z_stagger/2``."""
    mat = _module_material(cfg.module_material, cfg.module_thickness)
    out: List[PlaneSurface] = []
    for ring, (r, n, hx_lo, hx_hi, hy) in enumerate(zip(cfg.ring_radii, cfg.ring_modules_phi, cfg.module_half_x_min,
                                                       cfg.module_half_x_max, cfg.module_half_y)):
        zr = z + (0.5 if ring % 2 else -0.5) * cfg.ring_z_stagger
        bounds = TrapezoidBounds(hx_lo, hx_hi, hy)
        for ip in range(n):
            phi = -math.pi + (ip + 0.5) * 2.0 * math.pi / n
            center = (r * math.cos(phi), r * math.sin(phi), zr)
            t = Transform3D.from_axes((math.sin(phi), -math.cos(phi), 0.0), (math.cos(phi), math.sin(phi), 0.0),
                                      (0.0, 0.0, 1.0), translation=center)
            out.append(PlaneSurface(t, bounds, material=mat, sensitive=True, name=f"{label}:ring{ring}:phi{ip}"))
    return out


def _cylinder_volume(name: str, layers: Sequence[Layer], r_min: float, r_max: float,
                     z_min: float, z_max: float) -> TrackingVolume:
    bounds = CylinderVolumeBounds(r_min, r_max, 0.5 * (z_max - z_min))
    return TrackingVolume(name, bounds, Transform3D.from_translation((0.0, 0.0, 0.5 * (z_min + z_max))), layers)


def build_cylindrical_detector(config: Optional[CylindricalDetectorConfig] = None,
                               check: bool = True) -> TrackingGeometry:
    """
    Build the reference detector described by ``config``.

    Parameters
    ----------
    config : CylindricalDetectorConfig, optional
        Defaults to the built-in reference layout.
    check : bool, optional
        Run :meth:`TrackingGeometry.check_connectivity` after closing.

    Returns
    -------
    TrackingGeometry
    """
    cfg = config if config is not None else CylindricalDetectorConfig()
    creator = LayerCreator(cfg.layer_creator)
    passive = PassiveLayerBuilder(cfg.passive)
    half_world = cfg.endcap_z_max if cfg.endcap is not None else cfg.barrel_half_z
    r_in, r_out = cfg.beam_pipe_volume_radius, cfg.world_r_max

    beam_pipe = PassiveLayerBuilder(PassiveLayerConfig(
        layer_identification="beampipe", central_radii=(cfg.beam_pipe_radius,), central_half_z=(half_world,),
        central_thickness=(cfg.beam_pipe_thickness,), central_material=(cfg.beam_pipe_material,)))
    bp_volume = _cylinder_volume("beampipe", beam_pipe.central_layers(), 0.0, r_in, -half_world, half_world)

    b = cfg.barrel
    barrel_layers: List[Layer] = []
    for i, (radius, n_phi, n_z) in enumerate(zip(b.layer_radii, b.modules_phi, b.modules_z)):
        modules = barrel_modules(radius, n_phi, n_z, b, label=f"barrel{i}")
        barrel_layers.append(creator.cylinder_layer(modules, bins_phi=n_phi, bins_z=n_z, envelope_r=b.envelope_r,
                                                    envelope_z=b.envelope_z, name=f"barrel{i}"))
    barrel_layers.extend(passive.central_layers())
    barrel = _cylinder_volume("barrel", barrel_layers, r_in, r_out, -cfg.barrel_half_z, cfg.barrel_half_z)

    if cfg.endcap is None:
        world = build_container("world", [bp_volume, barrel], "r")
    else:
        e = cfg.endcap
        n_phi = max(e.ring_modules_phi)
        endcaps = []
        for sign, side, support in ((-1.0, "neg", passive.negative_layers()), (1.0, "pos", passive.positive_layers())):
            layers: List[Layer] = []
            for i, z in enumerate(e.disc_z):
                label = f"endcap_{side}{i}"
                layers.append(creator.disc_layer(endcap_modules(sign * z, e, label=label), bins_phi=n_phi,
                                                 envelope_r=e.envelope_r, envelope_z=e.envelope_z, name=label))
            layers.extend(support)
            z_lo, z_hi = sorted((sign * cfg.barrel_half_z, sign * cfg.endcap_z_max))
            endcaps.append(_cylinder_volume(f"endcap_{side}", layers, r_in, r_out, z_lo, z_hi))
        detector = build_container("detector", [endcaps[0], barrel, endcaps[1]], "z")
        world = build_container("world", [bp_volume, detector], "r")

    geometry = TrackingGeometry(world)
    if check:
        geometry.check_connectivity()
    logger.info("Built cylindrical detector: %d leaf volumes, %d sensitive surfaces",
                len(geometry.leaf_volumes()),
                sum(len(l.sensitive_surfaces) for v in geometry.leaf_volumes() for l in v.layers))
    return geometry


def build_telescope_detector(positions: Sequence[float] = (-100.0, -50.0, 0.0, 50.0, 100.0), *,
                             module_half_x: float = 10.0, module_half_y: float = 10.0,
                             module_thickness: float = 0.15, module_material: str = "silicon",
                             envelope_z: float = 0.5, margin: float = 20.0,
                             creator: Optional[LayerCreator] = None) -> TrackingGeometry:
    """
    Plane layers of 2x2 modules at the given ``z`` positions in one cuboid volume.

    Modules of half size ``module_half_x`` x ``module_half_y`` are centred at
    ``(+-module_half_x, +-module_half_y)`` so that each layer covers
    ``|x| <= 2 module_half_x``, ``|y| <= 2 module_half_y``.
    """
    if not positions:
        raise ValueError("A telescope needs at least one layer position.")
    creator = creator if creator is not None else LayerCreator()
    mat = _module_material(module_material, module_thickness)
    bounds = RectangleBounds(module_half_x, module_half_y)
    layers: List[Layer] = []
    for i, z in enumerate(sorted(positions)):
        modules = [PlaneSurface(Transform3D.from_translation((sx * module_half_x, sy * module_half_y, z)), bounds,
                                material=mat, sensitive=True, name=f"telescope{i}:{k}")
                   for k, (sx, sy) in enumerate(((-1, -1), (1, -1), (-1, 1), (1, 1)))]
        layers.append(creator.plane_layer(modules, bins_x=2, bins_y=2, envelope_z=envelope_z, name=f"telescope{i}"))
    z = np.asarray(sorted(positions), dtype=np.float64)
    half = CuboidVolumeBounds(2.0 * module_half_x + margin, 2.0 * module_half_y + margin,
                              0.5 * float(z[-1] - z[0]) + margin)
    volume = TrackingVolume("telescope", half, Transform3D.from_translation((0.0, 0.0, 0.5 * float(z[0] + z[-1]))),
                            layers)
    return TrackingGeometry(volume)
