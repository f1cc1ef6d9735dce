import pytest

from maplight.bsp import (
    CONTENTS_SOLID,
    PLANE_X,
    BspWorld,
    Edge,
    Entity,
    Face,
    Leaf,
    Node,
    Plane,
)


def split_world(visibility=None):
    # One node splitting on x = 0: front is leaf 0, back is leaf 1.
    return BspWorld(
        planes=[Plane((1.0, 0.0, 0.0), 0.0, PLANE_X)],
        nodes=[Node(0, (-1, -2))],
        leafs=[Leaf(0, 0), Leaf(CONTENTS_SOLID, -1)],
        visibility=visibility or [],
    )


def test_plane_flipped_round_trip():
    plane = Plane((0.0, 0.6, 0.8), 12.5, 3)
    flipped = plane.flipped()
    assert flipped.normal == (-0.0, -0.6, -0.8)
    assert flipped.dist == -12.5
    assert flipped.flipped() == plane


def test_entity_value_missing_is_empty():
    ent = Entity({"classname": "light"})
    assert ent.value_for_key("classname") == "light"
    assert ent.value_for_key("target") == ""


def test_entity_float_for_key():
    ent = Entity({"light": "300", "_cone": "12.5abc", "bad": "abc"})
    assert ent.float_for_key("light") == 300.0
    assert ent.float_for_key("_cone") == 12.5
    assert ent.float_for_key("bad") == 0.0
    assert ent.float_for_key("missing") == 0.0


def test_entity_vector_for_key():
    ent = Entity({"origin": "1 -2 3.5", "short": "4 5"})
    assert ent.vector_for_key("origin") == (1.0, -2.0, 3.5)
    assert ent.vector_for_key("short") == (4.0, 5.0, 0.0)
    assert ent.vector_for_key("missing") == (0.0, 0.0, 0.0)


def test_point_in_leafnum_sides():
    world = split_world()
    assert world.point_in_leafnum((1.0, 0.0, 0.0)) == 0
    assert world.point_in_leafnum((-1.0, 0.0, 0.0)) == 1
    # A point exactly on the plane goes to the back child.
    assert world.point_in_leafnum((0.0, 5.0, 5.0)) == 1
    assert world.point_in_leaf((-3.0, 0.0, 0.0)).contents == CONTENTS_SOLID


def test_point_in_leafnum_empty_map_raises():
    with pytest.raises(ValueError):
        BspWorld().point_in_leafnum((0.0, 0.0, 0.0))


def test_pvs_without_vis_is_all_visible():
    world = split_world()
    pvs = world.pvs_for_origin((1.0, 0.0, 0.0))
    assert pvs == b"\xff" * ((len(world.leafs) + 7) // 8)


def test_pvs_with_vis():
    row = b"\x01"
    world = split_world(visibility=[row])
    assert world.numclusters == 1
    assert world.pvs_for_origin((1.0, 0.0, 0.0)) == row
    assert world.pvs_for_origin((-1.0, 0.0, 0.0)) is None


def test_make_backplanes_reverses_all():
    world = split_world()
    back = world.make_backplanes()
    assert world.backplanes is back
    assert [p.flipped() for p in back] == world.planes


def test_make_parents():
    world = BspWorld(
        planes=[Plane((1.0, 0.0, 0.0), 0.0, PLANE_X), Plane((0.0, 1.0, 0.0), 0.0, 1)],
        nodes=[Node(0, (1, -1)), Node(1, (-2, -3))],
        leafs=[Leaf(), Leaf(), Leaf()],
    )
    nodeparents, leafparents = world.make_parents()
    assert nodeparents == [-1, 0]
    assert leafparents == [0, 1, 1]
    assert world.leafparents == leafparents