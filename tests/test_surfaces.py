import math

import numpy as np
import pytest

from tracknav.binning import BinningData, BinningOption, BinningValue, BinUtility, cluster_phi
from tracknav.intersection import Intersection, ObjectIntersection, sort_candidates
from tracknav.material import HomogeneousSurfaceMaterial, MaterialProperties, SILICON
from tracknav.surfaces import (CylinderBounds, CylinderSurface, DiscSurface, PlaneSurface, RadialBounds,
                               RectangleBounds, SurfaceCategory, TrapezoidBounds, surface_selected)
from tracknav.transform import Transform3D


def test_cylinder_intersection():
    cyl = CylinderSurface(Transform3D(), CylinderBounds(10.0, 50.0))
    ix = cyl.intersection_estimate((0.0, 0.0, 0.0), (2.0, 0.0, 0.0))
    assert ix.valid
    assert ix.path_length == pytest.approx(10.0)
    assert np.allclose(ix.position, (10.0, 0.0, 0.0))
    # from outside the nearer root is taken
    ix = cyl.intersection_estimate((-30.0, 0.0, 0.0), (1.0, 0.0, 0.0))
    assert ix.path_length == pytest.approx(20.0)
    # outside the z bounds
    assert not cyl.intersection_estimate((0.0, 0.0, 0.0), (1.0, 0.0, 10.0))
    assert cyl.intersection_estimate((0.0, 0.0, 0.0), (1.0, 0.0, 10.0), boundary_check=False)
    # parallel to the axis
    assert not cyl.intersection_estimate((0.0, 0.0, 0.0), (0.0, 0.0, 1.0))


def test_plane_intersection_is_ahead_only():
    plane = PlaneSurface(Transform3D.from_translation((0.0, 0.0, 5.0)), RectangleBounds(1.0, 1.0))
    assert plane.intersection_estimate((0.0, 0.0, 0.0), (0.0, 0.0, 1.0)).path_length == pytest.approx(5.0)
    miss = plane.intersection_estimate((0.0, 0.0, 0.0), (0.0, 0.0, -1.0))
    assert not miss
    assert miss.path_length == math.inf
    # a point already on the surface is not a candidate
    assert not plane.intersection_estimate((0.0, 0.0, 5.0), (0.0, 0.0, 1.0))
    assert plane.is_on_surface((0.5, -0.5, 5.00005))
    assert not plane.is_on_surface((1.5, 0.0, 5.0))
    assert plane.is_on_surface((1.5, 0.0, 5.0), boundary_check=False)


def test_disc_and_trapezoid_bounds():
    disc = DiscSurface(Transform3D.from_translation((0.0, 0.0, 100.0)), RadialBounds(20.0, 40.0))
    assert disc.intersection_estimate((30.0, 0.0, 0.0), (0.0, 0.0, 1.0))
    assert not disc.intersection_estimate((10.0, 0.0, 0.0), (0.0, 0.0, 1.0))
    assert disc.global_to_local((0.0, 30.0, 100.0)) == pytest.approx((30.0, math.pi / 2))

    trap = TrapezoidBounds(5.0, 10.0, 20.0)
    assert trap.half_x_at(-20.0) == pytest.approx(5.0)
    assert trap.half_x_at(20.0) == pytest.approx(10.0)
    assert trap.inside(9.0, 19.0)
    assert not trap.inside(9.0, -19.0)


def test_tilted_plane_normal_and_path_correction():
    t = Transform3D.from_euler("y", 60.0, translation=(0.0, 0.0, 10.0), degrees=True)
    plane = PlaneSurface(t, RectangleBounds(100.0, 100.0))
    assert np.allclose(plane.normal(), (math.sin(math.radians(60.0)), 0.0, 0.5))
    assert plane.path_correction(plane.center, (0.0, 0.0, 1.0)) == pytest.approx(2.0)


def test_transform_round_trip_and_axes():
    t = Transform3D.from_euler("zyx", (30.0, 10.0, -20.0), translation=(1.0, 2.0, 3.0), degrees=True)
    p = np.array([4.0, -5.0, 6.0])
    assert np.allclose(t.to_global(t.to_local(p)), p)
    assert np.allclose(t.points_to_local(p[None, :])[0], t.to_local(p))
    with pytest.raises(ValueError):
        Transform3D.from_axes((1.0, 0.0, 0.0), (1.0, 1.0, 0.0), (0.0, 0.0, 1.0))
    with pytest.raises(ValueError):
        Transform3D.from_axes((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, -1.0))


def test_surface_categories_and_selection():
    silicon = HomogeneousSurfaceMaterial(MaterialProperties(SILICON, 0.3))
    bounds = RectangleBounds(1.0, 1.0)
    sensitive = PlaneSurface(Transform3D(), bounds, material=silicon, sensitive=True)
    material = PlaneSurface(Transform3D(), bounds, material=silicon)
    passive = PlaneSurface(Transform3D(), bounds)
    assert sensitive.category is SurfaceCategory.SENSITIVE
    assert material.category is SurfaceCategory.MATERIAL
    assert passive.category is SurfaceCategory.PASSIVE

    # each switch admits its own category only, material on a module does not count
    flags = dict(resolve_sensitive=False, resolve_material=True, resolve_passive=False)
    assert [surface_selected(s, **flags) for s in (sensitive, material, passive)] == [False, True, False]
    flags = dict(resolve_sensitive=True, resolve_material=False, resolve_passive=False)
    assert [surface_selected(s, **flags) for s in (sensitive, material, passive)] == [True, False, False]
    flags = dict(resolve_sensitive=False, resolve_material=False, resolve_passive=True)
    assert [surface_selected(s, **flags) for s in (sensitive, material, passive)] == [False, False, True]
    assert silicon.material_properties().thickness_in_x0 == pytest.approx(0.3 / 95.7)


def test_sort_candidates_breaks_ties_by_serial():
    first = PlaneSurface(Transform3D(), RectangleBounds(1.0, 1.0))
    second = PlaneSurface(Transform3D(), RectangleBounds(1.0, 1.0))
    far = PlaneSurface(Transform3D(), RectangleBounds(1.0, 1.0))
    cands = [
        ObjectIntersection(Intersection(np.zeros(3), 20.0, True), far, far),
        ObjectIntersection(Intersection(np.zeros(3), 10.0, True), second, second),
        ObjectIntersection(Intersection(np.zeros(3), 10.00005, True), first, first),
        ObjectIntersection(Intersection.invalid(), first, first),
    ]
    ordered = sort_candidates(cands, tolerance=1e-4)
    assert [c.object for c in ordered] == [first, second, far]


def test_closed_phi_axis_wraps():
    phi = BinningData.equidistant(BinningValue.PHI, 4, -math.pi, math.pi, BinningOption.CLOSED)
    assert phi.search(-math.pi + 0.1) == 0
    assert phi.search(math.pi + 0.1) == 0
    assert phi.search(3.0) == 3
    assert phi.neighbors(0) == [3, 0, 1]
    z = BinningData.equidistant(BinningValue.Z, 4, -10.0, 10.0)
    assert z.search(-50.0) == 0
    assert z.search(50.0) == 3
    assert z.neighbors(0) == [0, 1]

    bu = BinUtility(phi, z)
    assert bu.shape == (4, 4)
    assert bu.bin((0.0, -1.0, 7.0)) == (1, 3)
    assert len(bu.neighborhood((0, 0))) == 6


def test_arbitrary_bins_and_phi_clustering():
    r = BinningData.arbitrary(BinningValue.R, [0.0, 30.0, 80.0, 140.0])
    assert r.bins == 3
    assert r.search(29.9) == 0
    assert r.search(30.0) == 1
    assert r.search(200.0) == 2
    # modules on both sides of the +-pi seam end up in one cluster
    c = cluster_phi([math.pi - 0.01, -math.pi + 0.01, 0.0], tolerance=0.1)
    assert len(c) == 2
