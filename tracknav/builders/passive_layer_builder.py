"""
Passive (material-only) layers: support tubes, beam pipes and support discs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

from tracknav.config import PassiveLayerConfig
from tracknav.layers import CylinderLayer, DiscLayer, LayerType
from tracknav.material import HomogeneousSurfaceMaterial, MaterialProperties, material_by_name
from tracknav.surfaces import CylinderBounds, CylinderSurface, DiscSurface, RadialBounds
from tracknav.transform import Transform3D

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PassiveLayers:
    negative: Tuple[DiscLayer, ...]
    central: Tuple[CylinderLayer, ...]
    positive: Tuple[DiscLayer, ...]


def _surface_material(name: str, thickness: float) -> HomogeneousSurfaceMaterial:
    return HomogeneousSurfaceMaterial(MaterialProperties(material_by_name(name), thickness))


def build_passive_layers(config: PassiveLayerConfig) -> PassiveLayers:
    """
    Build the central cylinder layers and the mirrored disc layers of ``config``.

    Disc ``i`` is placed at ``+pos_neg_z[i]`` (positive side) and at
    ``-pos_neg_z[i]`` (negative side) with identical radial bounds, thickness
    and material.
    """
    ident = config.layer_identification
    central: List[CylinderLayer] = []
    for i, (r, hz, t, mat) in enumerate(zip(config.central_radii, config.central_half_z,
                                            config.central_thickness, config.central_material)):
        rep = CylinderSurface(Transform3D(), CylinderBounds(r, hz), material=_surface_material(mat, t),
                              name=f"{ident}:central{i}")
        central.append(CylinderLayer(rep, thickness=t, layer_type=LayerType.PASSIVE, name=f"{ident}:central{i}"))

    negative: List[DiscLayer] = []
    positive: List[DiscLayer] = []
    for i, (z, r_lo, r_hi, t, mat) in enumerate(zip(config.pos_neg_z, config.pos_neg_r_min, config.pos_neg_r_max,
                                                    config.pos_neg_thickness, config.pos_neg_material)):
        for sign, out, side in ((-1.0, negative, "neg"), (1.0, positive, "pos")):
            label = f"{ident}:{side}{i}"
            rep = DiscSurface(Transform3D.from_translation((0.0, 0.0, sign * abs(z))), RadialBounds(r_lo, r_hi),
                              material=_surface_material(mat, t), name=label)
            out.append(DiscLayer(rep, thickness=t, layer_type=LayerType.PASSIVE, name=label))

    logger.debug("Passive layers '%s': %d negative, %d central, %d positive", ident,
                 len(negative), len(central), len(positive))
    return PassiveLayers(tuple(negative), tuple(central), tuple(positive))


class PassiveLayerBuilder:
    """Layer builder for one passive configuration block."""

    def __init__(self, config: PassiveLayerConfig):
        self.config = config
        self.log = logging.getLogger(self.__class__.__name__)
        self._layers = build_passive_layers(config)
        self.log.info("Passive layer builder '%s': %d central, %d disc pairs", config.layer_identification,
                      len(self._layers.central), len(self._layers.positive))

    def identification(self) -> str:
        return self.config.layer_identification

    def negative_layers(self) -> Tuple[DiscLayer, ...]:
        return self._layers.negative

    def central_layers(self) -> Tuple[CylinderLayer, ...]:
        return self._layers.central

    def positive_layers(self) -> Tuple[DiscLayer, ...]:
        return self._layers.positive
