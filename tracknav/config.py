r"""
Configuration objects and JSON loading.

All configuration is held in frozen dataclasses with sensible defaults that
describe the reference detector. A JSON file (parsed with :mod:`orjson`)
maps onto them through :func:`from_mapping`; unknown keys are rejected so
that typos never silently fall back to defaults.

Example ``config.json``::

    {
      "navigator": {"resolve_sensitive": true, "resolve_passive": false},
      "detector": {"barrel": {"layer_radii": [32, 72, 116, 172]},
                   "endcap": {"disc_z": [620, 720, 840, 980, 1120]}}
    }
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional, Tuple, Type, TypeVar, Union, get_type_hints

import orjson

from tracknav.errors import GeometryConfigurationError
from tracknav.units import ON_SURFACE_TOLERANCE

T = TypeVar("T")


@dataclass(frozen=True)
class NavigatorConfig:
    """Category switches and the on-surface tolerance (mm) of the navigator."""
    resolve_sensitive: bool = True
    resolve_material: bool = True
    resolve_passive: bool = False
    on_surface_tolerance: float = ON_SURFACE_TOLERANCE

    def __post_init__(self):
        if not self.on_surface_tolerance > 0.0:
            raise ValueError("on_surface_tolerance must be positive.")


@dataclass(frozen=True)
class LayerCreatorConfig:
    r"""
    Tolerances used to cluster surface positions into bins.

    ``cylinder_z_tolerance`` (mm) and ``cylinder_phi_tolerance`` (rad) decide
    when two modules count as "same z" / "same phi"; ``disc_r_tolerance``
    does the same for the rings of a disc.
    """
    cylinder_z_tolerance: float = 10.0
    cylinder_phi_tolerance: float = 0.1
    disc_r_tolerance: float = 5.0
    plane_tolerance: float = 1.0


@dataclass(frozen=True)
class PassiveLayerConfig:
    r"""
    Passive layers: central cylinders and mirrored :math:`\pm z` discs.

    All ``central_*`` tuples must have the same length, and so must all
    ``pos_neg_*`` tuples. Materials are given by name
    (see :data:`tracknav.material.MATERIALS`).
    """
    layer_identification: str = "passive"
    central_radii: Tuple[float, ...] = ()
    central_half_z: Tuple[float, ...] = ()
    central_thickness: Tuple[float, ...] = ()
    central_material: Tuple[str, ...] = ()
    pos_neg_z: Tuple[float, ...] = ()
    pos_neg_r_min: Tuple[float, ...] = ()
    pos_neg_r_max: Tuple[float, ...] = ()
    pos_neg_thickness: Tuple[float, ...] = ()
    pos_neg_material: Tuple[str, ...] = ()

    def __post_init__(self):
        central = (self.central_radii, self.central_half_z, self.central_thickness, self.central_material)
        if len({len(c) for c in central}) > 1:
            raise GeometryConfigurationError(
                f"Passive layer config '{self.layer_identification}': central radii, half_z, thickness "
                f"and material need equal lengths, got {[len(c) for c in central]}.")
        discs = (self.pos_neg_z, self.pos_neg_r_min, self.pos_neg_r_max, self.pos_neg_thickness,
                 self.pos_neg_material)
        if len({len(c) for c in discs}) > 1:
            raise GeometryConfigurationError(
                f"Passive layer config '{self.layer_identification}': pos/neg z, r_min, r_max, thickness "
                f"and material need equal lengths, got {[len(c) for c in discs]}.")


@dataclass(frozen=True)
class BarrelConfig:
    """Barrel of tilted rectangular modules on concentric cylinder layers."""
    layer_radii: Tuple[float, ...] = (32.0, 72.0, 116.0, 172.0)
    modules_phi: Tuple[int, ...] = (16, 32, 52, 78)
    modules_z: Tuple[int, ...] = (13, 13, 13, 13)
    module_half_x: float = 8.4
    module_half_y: float = 36.0
    module_tilt: float = 0.145
    z_overlap: float = 2.0
    z_stagger: float = 2.0
    module_thickness: float = 0.15
    module_material: str = "silicon"
    envelope_r: float = 1.0
    envelope_z: float = 1.0

    def __post_init__(self):
        n = len(self.layer_radii)
        if len(self.modules_phi) != n or len(self.modules_z) != n:
            raise GeometryConfigurationError("Barrel layer_radii, modules_phi and modules_z need equal lengths.")


@dataclass(frozen=True)
class EndcapConfig:
    """Discs of trapezoidal modules arranged in rings."""
    disc_z: Tuple[float, ...] = (620.0, 720.0, 840.0, 980.0, 1120.0)
    ring_radii: Tuple[float, ...] = (55.0, 105.0)
    ring_modules_phi: Tuple[int, ...] = (24, 32)
    module_half_x_min: Tuple[float, ...] = (6.4, 10.5)
    module_half_x_max: Tuple[float, ...] = (12.4, 15.5)
    module_half_y: Tuple[float, ...] = (24.0, 32.0)
    ring_z_stagger: float = 2.0
    module_thickness: float = 0.15
    module_material: str = "silicon"
    envelope_r: float = 1.0
    envelope_z: float = 1.0

    def __post_init__(self):
        n = len(self.ring_radii)
        per_ring = (self.ring_modules_phi, self.module_half_x_min, self.module_half_x_max, self.module_half_y)
        if any(len(v) != n for v in per_ring):
            raise GeometryConfigurationError("Endcap ring parameters need one entry per ring.")


@dataclass(frozen=True)
class CylindricalDetectorConfig:
    r"""
    Reference detector: beam pipe, barrel, optional endcaps.

    The world is a cylinder of radius ``world_r_max`` and half length
    ``endcap_z_max`` (or ``barrel_half_z`` without endcaps); the beam pipe
    volume spans :math:`r < ` ``beam_pipe_volume_radius`` over the full length.
    """
    beam_pipe_radius: float = 19.0
    beam_pipe_thickness: float = 0.8
    beam_pipe_material: str = "beryllium"
    beam_pipe_volume_radius: float = 25.0
    barrel_half_z: float = 460.0
    endcap_z_max: float = 1200.0
    world_r_max: float = 200.0
    barrel: BarrelConfig = field(default_factory=BarrelConfig)
    endcap: Optional[EndcapConfig] = field(default_factory=EndcapConfig)
    passive: PassiveLayerConfig = field(default_factory=lambda: PassiveLayerConfig(
        layer_identification="support",
        central_radii=(190.0,), central_half_z=(455.0,), central_thickness=(2.0,), central_material=("carbon",),
        pos_neg_z=(1180.0,), pos_neg_r_min=(30.0,), pos_neg_r_max=(190.0,), pos_neg_thickness=(2.0,),
        pos_neg_material=("carbon",),
    ))
    layer_creator: LayerCreatorConfig = field(default_factory=LayerCreatorConfig)

    def __post_init__(self):
        if not self.beam_pipe_radius + 0.5 * self.beam_pipe_thickness < self.beam_pipe_volume_radius:
            raise GeometryConfigurationError("Beam pipe does not fit inside its volume.")
        if self.endcap is not None and not self.endcap_z_max > self.barrel_half_z:
            raise GeometryConfigurationError("endcap_z_max must exceed barrel_half_z.")


# ----------------------------------------------------------------------
# Mapping / JSON
# ----------------------------------------------------------------------

def _convert(tp: Any, value: Any) -> Any:
    origin = getattr(tp, "__origin__", None)
    if dataclasses.is_dataclass(tp) and isinstance(value, Mapping):
        return from_mapping(tp, value)
    if origin is Union:
        if value is None:
            return None
        inner = [a for a in tp.__args__ if a is not type(None)]
        return _convert(inner[0], value) if len(inner) == 1 else value
    if origin is tuple and isinstance(value, (list, tuple)):
        item = tp.__args__[0] if tp.__args__ else Any
        return tuple(_convert(item, v) for v in value)
    if tp is float and isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return value


def from_mapping(cls: Type[T], mapping: Mapping[str, Any]) -> T:
    """
    Build the dataclass ``cls`` from a (possibly nested) mapping.

    Raises
    ------
    KeyError
        If the mapping contains keys that are not fields of ``cls``.
    """
    hints = get_type_hints(cls)
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(mapping) - names)
    if unknown:
        raise KeyError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")
    return cls(**{k: _convert(hints[k], v) for k, v in mapping.items()})


def load_config(config_path: Union[str, Path]) -> MutableMapping[str, Any]:
    r"""
    Parse a JSON configuration file with :mod:`orjson`.

    Raises
    ------
    ValueError
        If the file cannot be read or parsed.
    """
    path = Path(config_path)
    try:
        data = orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Top level of {path} must be a JSON object.")
    return data


def navigator_config(cfg: Mapping[str, Any]) -> NavigatorConfig:
    return from_mapping(NavigatorConfig, cfg.get("navigator", {}))


def detector_config(cfg: Mapping[str, Any]) -> CylindricalDetectorConfig:
    return from_mapping(CylindricalDetectorConfig, cfg.get("detector", {}))
