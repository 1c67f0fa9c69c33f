__all__ = [
    "Transform3D",
    "Surface", "CylinderSurface", "DiscSurface", "PlaneSurface",
    "CylinderBounds", "RadialBounds", "RectangleBounds", "TrapezoidBounds", "SurfaceCategory",
    "BinningData", "BinUtility", "BinningValue", "BinningOption",
    "SurfaceArray", "check_binning",
    "Layer", "CylinderLayer", "DiscLayer", "PlaneLayer", "LayerType",
    "BoundarySurface", "TrackingVolume", "CylinderVolumeBounds", "CuboidVolumeBounds", "build_container",
    "TrackingGeometry", "GeometryIdentifier",
    "Navigator", "NavigationState", "NavigationStage",
    "ConstrainedStep", "StepperState", "StraightLineStepper", "NavigationDirection",
    "propagate", "PropagatorOptions", "PropagationResult",
    "NavigatorConfig", "CylindricalDetectorConfig", "load_config",
    "GeometryConfigurationError", "NavigationContractError",
    "LayerCreator", "PassiveLayerBuilder", "build_cylindrical_detector", "build_telescope_detector",
]

# Geometry primitives
from .transform import Transform3D
from .surfaces import (
    Surface,
    CylinderSurface,
    DiscSurface,
    PlaneSurface,
    CylinderBounds,
    RadialBounds,
    RectangleBounds,
    TrapezoidBounds,
    SurfaceCategory,
)
from .binning import BinningData, BinUtility, BinningValue, BinningOption
from .surface_array import SurfaceArray, check_binning

# Layers, volumes, geometry
from .layers import Layer, CylinderLayer, DiscLayer, PlaneLayer, LayerType
from .volumes import BoundarySurface, TrackingVolume, CylinderVolumeBounds, CuboidVolumeBounds, build_container
from .geometry import TrackingGeometry, GeometryIdentifier

# Navigation
from .navigation import Navigator, NavigationState, NavigationStage
from .stepping import ConstrainedStep, StepperState, StraightLineStepper, NavigationDirection
from .propagation import propagate, PropagatorOptions, PropagationResult

# Configuration & errors
from .config import NavigatorConfig, CylindricalDetectorConfig, load_config
from .errors import GeometryConfigurationError, NavigationContractError

# Builders
from .builders import LayerCreator, PassiveLayerBuilder, build_cylindrical_detector, build_telescope_detector
