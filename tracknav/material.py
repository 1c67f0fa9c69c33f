"""
Material description attached to surfaces.

Only the bookkeeping needed to tell *material* surfaces apart from passive
ones and to sum the traversed thickness in radiation lengths is provided;
no interaction physics is modelled.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from tracknav.units import mm


@dataclass(frozen=True, slots=True)
class Material:
    """Bulk material: radiation length ``x0``, nuclear interaction length
    ``l0`` (both mm), mass number ``a``, atomic number ``z`` and density
    ``rho`` (g/mm^3)."""
    x0: float
    l0: float
    a: float
    z: float
    rho: float
    name: str = ""

    def __post_init__(self):
        if self.x0 <= 0.0 or self.l0 <= 0.0:
            raise ValueError(f"Material '{self.name}' needs positive x0 and l0.")


@dataclass(frozen=True, slots=True)
class MaterialProperties:
    """A :class:`Material` slab of a given thickness (mm)."""
    material: Material
    thickness: float

    @property
    def thickness_in_x0(self) -> float:
        return self.thickness / self.material.x0

    @property
    def thickness_in_l0(self) -> float:
        return self.thickness / self.material.l0

    def scaled(self, factor: float) -> "MaterialProperties":
        return MaterialProperties(self.material, self.thickness * float(factor))


@dataclass(frozen=True, slots=True)
class HomogeneousSurfaceMaterial:
    r"""
    Surface material that is identical everywhere on the surface.

    ``split_factor`` distributes the material between the pre-update (first
    crossing side) and post-update stage, as
    :math:`f_\text{pre} = s` and :math:`f_\text{post} = 1 - s`.
    """
    properties: MaterialProperties
    split_factor: float = 1.0

    def material_properties(self, position=None) -> MaterialProperties:
        return self.properties

    def factor(self, pre_update: bool = True) -> float:
        return self.split_factor if pre_update else 1.0 - self.split_factor


BERYLLIUM = Material(x0=352.8 * mm, l0=407.0 * mm, a=9.012, z=4.0, rho=1.848e-3, name="beryllium")
SILICON = Material(x0=95.7 * mm, l0=465.2 * mm, a=28.03, z=14.0, rho=2.329e-3, name="silicon")
ALUMINIUM = Material(x0=88.97 * mm, l0=397.0 * mm, a=26.98, z=13.0, rho=2.699e-3, name="aluminium")
CARBON = Material(x0=188.0 * mm, l0=400.0 * mm, a=12.01, z=6.0, rho=2.0e-3, name="carbon")

MATERIALS: Dict[str, Material] = {m.name: m for m in (BERYLLIUM, SILICON, ALUMINIUM, CARBON)}


def material_by_name(name: str) -> Material:
    try:
        return MATERIALS[name.lower()]
    except KeyError as e:
        raise KeyError(f"Unknown material '{name}'. Known: {', '.join(sorted(MATERIALS))}") from e
