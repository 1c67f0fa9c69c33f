__all__ = [
    "LayerCreator",
    "PassiveLayerBuilder", "PassiveLayers", "build_passive_layers",
    "barrel_modules", "endcap_modules",
    "build_cylindrical_detector", "build_telescope_detector",
]

from .layer_creator import LayerCreator
from .passive_layer_builder import PassiveLayerBuilder, PassiveLayers, build_passive_layers
from .detectors import (
    barrel_modules,
    endcap_modules,
    build_cylindrical_detector,
    build_telescope_detector,
)
