import networkx as nx
import numpy as np
import pytest

from tracknav.builders.detectors import barrel_modules, build_cylindrical_detector
from tracknav.builders.layer_creator import LayerCreator
from tracknav.builders.passive_layer_builder import PassiveLayerBuilder
from tracknav.config import BarrelConfig, CylindricalDetectorConfig, PassiveLayerConfig
from tracknav.errors import GeometryConfigurationError
from tracknav.geometry import EXTERIOR
from tracknav.layers import LayerType
from tracknav.transform import Transform3D
from tracknav.volumes import BoundaryFace, CylinderVolumeBounds, TrackingVolume, build_container


def test_volume_lookup(detector):
    assert detector.volume((0.0, 0.0, 0.0)).name == "beampipe"
    assert detector.volume((50.0, 0.0, 0.0)).name == "barrel"
    assert detector.volume((50.0, 0.0, 800.0)).name == "endcap_pos"
    assert detector.volume((50.0, 0.0, -800.0)).name == "endcap_neg"
    assert detector.volume((300.0, 0.0, 0.0)) is None
    with pytest.raises(KeyError):
        detector.find_volume("muon")


def test_geometry_ids_are_unique(detector):
    surfaces = detector.surfaces()
    ids = [s.geometry_id for s in surfaces]
    assert None not in ids
    assert len(set(ids)) == len(ids)
    barrel = detector.find_volume("barrel")
    module = barrel.layers[0].sensitive_surfaces[0]
    assert detector.find_surface(module.geometry_id) is module
    assert module.geometry_id.volume == barrel.geometry_id.volume


def test_adjacency_graph(detector):
    g = detector.check_connectivity()
    assert isinstance(g, nx.Graph)
    assert g.has_edge("beampipe", "barrel")
    assert g.has_edge("beampipe", "endcap_pos")
    assert g.has_edge("barrel", "endcap_neg")
    assert g.has_edge("barrel", "endcap_pos")
    assert not g.has_edge("endcap_neg", "endcap_pos")
    assert g.has_edge("barrel", EXTERIOR)


def test_glued_faces(detector):
    barrel = detector.find_volume("barrel")
    inner = barrel.face_boundaries(BoundaryFace.INNER_R)[0]
    assert [v.name for v in inner.opposite_volumes] == ["beampipe"]
    assert [v.name for v in inner.along_volumes] == ["barrel"]
    outer = barrel.face_boundaries(BoundaryFace.OUTER_R)[0]
    assert outer.is_outer
    world = detector.world
    assert {v.name for v in world.face_volumes(BoundaryFace.OUTER_R)} == {"endcap_neg", "barrel", "endcap_pos"}


def test_layers_are_sorted_by_radius(detector):
    radii = [l.radius for l in detector.find_volume("barrel").layers]
    assert radii == sorted(radii)
    assert detector.find_volume("barrel").layers[-1].layer_type is LayerType.PASSIVE


def test_barrel_only_detector():
    geo = build_cylindrical_detector(CylindricalDetectorConfig(endcap=None))
    assert sorted(v.name for v in geo.leaf_volumes()) == ["barrel", "beampipe"]


def test_too_few_phi_bins_is_rejected():
    modules = barrel_modules(32.0, 16, 13, BarrelConfig())
    with pytest.raises(GeometryConfigurationError, match="unreachable"):
        LayerCreator().cylinder_layer(modules, bins_phi=8, bins_z=13, envelope_r=1.0, name="coarse")


def test_clustered_binning_matches_module_layout():
    modules = barrel_modules(72.0, 32, 13, BarrelConfig())
    layer = LayerCreator().cylinder_layer(modules, envelope_r=1.0, envelope_z=1.0)
    assert layer.surface_array.shape == (32, 13)
    assert len(layer.surface_array.reachable_surfaces()) == len(modules)


def test_passive_config_lengths_must_match():
    with pytest.raises(GeometryConfigurationError):
        PassiveLayerConfig(central_radii=(100.0, 150.0), central_half_z=(400.0,),
                           central_thickness=(1.0, 1.0), central_material=("carbon", "carbon"))


def test_passive_layers_are_mirrored():
    builder = PassiveLayerBuilder(PassiveLayerConfig(
        layer_identification="svc", pos_neg_z=(500.0, 700.0), pos_neg_r_min=(30.0, 30.0),
        pos_neg_r_max=(150.0, 150.0), pos_neg_thickness=(1.0, 1.0), pos_neg_material=("aluminium", "carbon")))
    assert builder.identification() == "svc"
    assert builder.central_layers() == ()
    neg = [l.representation.center[2] for l in builder.negative_layers()]
    pos = [l.representation.center[2] for l in builder.positive_layers()]
    assert neg == [-500.0, -700.0]
    assert pos == [500.0, 700.0]


def test_container_needs_adjacent_volumes():
    a = TrackingVolume("a", CylinderVolumeBounds(0.0, 10.0, 100.0))
    b = TrackingVolume("b", CylinderVolumeBounds(12.0, 20.0, 100.0))
    with pytest.raises(GeometryConfigurationError, match="not adjacent"):
        build_container("ab", [a, b], "r")


def test_z_container_lookup():
    lo = TrackingVolume("lo", CylinderVolumeBounds(0.0, 10.0, 50.0), Transform3D.from_translation((0.0, 0.0, -50.0)))
    hi = TrackingVolume("hi", CylinderVolumeBounds(0.0, 10.0, 50.0), Transform3D.from_translation((0.0, 0.0, 50.0)))
    box = build_container("box", [hi, lo], "z")
    assert box.z_range() == pytest.approx((-100.0, 100.0))
    assert box.lower_volume((0.0, 0.0, -1.0)).name == "lo"
    assert box.lower_volume((0.0, 0.0, 1.0)).name == "hi"
    glued = lo.face_boundaries(BoundaryFace.POSITIVE_Z)[0]
    assert [v.name for v in glued.along_volumes] == ["hi"]


def test_surface_array_lookup_is_local():
    modules = barrel_modules(72.0, 32, 13, BarrelConfig())
    layer = LayerCreator().cylinder_layer(modules, bins_phi=32, bins_z=13, envelope_r=1.0, envelope_z=1.0)
    array = layer.surface_array
    module = min(modules, key=lambda s: abs(s.center[2]))
    assert array.surfaces_at(module.center) == (module,)
    near = array.neighbors(module.center)
    assert module in near
    assert len(near) == 9
    opposite = min(modules, key=lambda s: np.linalg.norm(s.center + module.center))
    assert opposite not in near
    assert all(np.linalg.norm(s.center - module.center) < 100.0 for s in near)


def test_explicit_layer_transform():
    modules = barrel_modules(32.0, 16, 13, BarrelConfig())
    t = Transform3D.from_translation((0.0, 0.0, 5.0))
    layer = LayerCreator().cylinder_layer(modules, bins_phi=16, bins_z=13, envelope_r=1.0, transform=t)
    assert np.allclose(layer.representation.center, (0.0, 0.0, 5.0))
    assert all(np.allclose(s.center, (0.0, 0.0, 5.0)) for s in layer.approach_surfaces)
    assert layer.surface_array.bin_utility.transform is t
