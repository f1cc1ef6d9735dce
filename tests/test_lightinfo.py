import pytest

from maplight.bsp import CONTENTS_SOLID, BspWorld, Leaf, Node, Plane, TexInfo
from maplight.geometry import dot
from maplight.lightinfo import SINGLEMAP, LightInfo
from maplight.trace import TraceTree

S_AXIS = (1.0, 0.0, 0.0, 0.0)
T_AXIS = (0.0, 1.0, 0.0, 0.0)


def _info(width=64.0, height=32.0, tex=None):
    points = [(0.0, 0.0, 0.0), (width, 0.0, 0.0), (width, height, 0.0), (0.0, height, 0.0)]
    return LightInfo(
        facenormal=(0.0, 0.0, 1.0),
        facedist=0.0,
        tex=tex or TexInfo((S_AXIS, T_AXIS)),
        points=points,
    )


def _open_world():
    world = BspWorld(
        planes=[Plane((0.0, 0.0, 1.0), -10.0, 2)],
        nodes=[Node(0, (-1, -1))],
        leafs=[Leaf(contents=0, cluster=0)],
    )
    return world, TraceTree(world)


def _walled_world():
    # Everything with x > 60 is solid.
    world = BspWorld(
        planes=[Plane((1.0, 0.0, 0.0), 60.0, 0)],
        nodes=[Node(0, (-2, -1))],
        leafs=[Leaf(contents=0, cluster=0), Leaf(contents=CONTENTS_SOLID, cluster=-1)],
    )
    return world, TraceTree(world)


def _prepared(info):
    info.calc_face_vectors()
    info.calc_face_extents()
    return info


def test_face_extents():
    info = _info()
    info.calc_face_extents()
    assert info.exactmins == (0.0, 0.0)
    assert info.exactmaxs == (64.0, 32.0)
    assert info.texmins == (0, 0)
    assert info.texsize == (4, 2)


def test_oversized_face_raises():
    info = _info(width=16.0 * 65, height=16.0 * 65)
    with pytest.raises(ValueError):
        info.calc_face_extents()


def test_limit_is_quarter_of_singlemap():
    side = 16.0 * 64
    info = _info(width=side, height=side)
    info.calc_face_extents()
    assert info.texsize[0] * info.texsize[1] == SINGLEMAP // 4


def test_texorg_lies_one_unit_off_the_plane():
    info = _info()
    info.calc_face_vectors()
    assert dot(info.texorg, info.facenormal) - info.facedist == pytest.approx(1.0)


@pytest.mark.parametrize("s,t", [(0.0, 0.0), (16.0, 8.0), (-5.0, 40.0)])
def test_texture_to_world_round_trip(s, t):
    info = _info(tex=TexInfo(((1.0, 0.0, 0.0, 3.0), (0.0, 1.0, 0.0, -7.0))))
    info.calc_face_vectors()
    tw0, tw1 = info.textoworld
    world_point = tuple(info.texorg[i] + tw0[i] * s + tw1[i] * t for i in range(3))
    vecs = info.tex.vecs
    assert dot(world_point, vecs[0][:3]) + vecs[0][3] == pytest.approx(s)
    assert dot(world_point, vecs[1][:3]) + vecs[1][3] == pytest.approx(t)


def test_model_origin_shifts_texorg():
    plain = _info()
    plain.calc_face_vectors()
    moved = _info()
    moved.modelorg = (5.0, -2.0, 3.0)
    moved.calc_face_vectors()
    diff = tuple(moved.texorg[i] - plain.texorg[i] for i in range(3))
    assert diff == pytest.approx(moved.modelorg)


def test_calc_points_grid_in_open_space():
    world, tracer = _open_world()
    info = _prepared(_info())
    points = info.calc_points(world, tracer, 0.0, 0.0)
    assert len(points) == info.numsurfpt
    assert info.numsurfpt == (info.texsize[0] + 1) * (info.texsize[1] + 1)
    assert points[0] == pytest.approx((0.0, 0.0, 1.0))
    assert points[-1] == pytest.approx((64.0, 32.0, 1.0))
    assert all(p[2] == pytest.approx(1.0) for p in points)


def test_calc_points_offsets_shift_every_sample():
    world, tracer = _open_world()
    base = _prepared(_info()).calc_points(world, tracer, 0.0, 0.0)
    shifted = _prepared(_info()).calc_points(world, tracer, 0.25, -0.25)
    for a, b in zip(base, shifted):
        assert b[0] - a[0] == pytest.approx(0.25 * 16)
        assert b[1] - a[1] == pytest.approx(-0.25 * 16)


def test_calc_points_nudges_samples_out_of_solid():
    world, tracer = _walled_world()
    info = _prepared(_info())
    points = info.calc_points(world, tracer, 0.0, 0.0)
    assert len(points) == info.numsurfpt
    for point in points:
        assert point[0] < 60.0
        assert world.point_in_leaf(point).contents != CONTENTS_SOLID
    open_world, open_tracer = _open_world()
    unobstructed = _prepared(_info()).calc_points(open_world, open_tracer, 0.0, 0.0)
    assert max(p[0] for p in unobstructed) > max(p[0] for p in points)