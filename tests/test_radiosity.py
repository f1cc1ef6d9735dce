import io

import pytest

from maplight.bsp import (
    CONTENTS_SOLID,
    PLANE_Z,
    BspWorld,
    Edge,
    Entity,
    Face,
    Leaf,
    Model,
    Node,
    Plane,
    TexInfo,
)
from maplight.geometry import ORIGIN, Winding, add, dot
from maplight.lights import LightOptions
from maplight.patches import Patch, PatchSet
from maplight.radiosity import (
    TRANSFER_UNIT,
    Radiosity,
    Transfer,
    rad_world,
    write_world,
)
from maplight.trace import TraceTree

GREY = (0.5, 0.5, 0.5)


def _open_world():
    return BspWorld(
        planes=[Plane((0.0, 0.0, 1.0), -1000.0, PLANE_Z)],
        nodes=[Node(0, (-1, -2))],
        leafs=[Leaf(0, 0), Leaf(CONTENTS_SOLID, -1)],
    )


def _walled_world():
    """Everything beyond x = 5 is solid."""
    return BspWorld(
        planes=[Plane((1.0, 0.0, 0.0), 5.0)],
        nodes=[Node(0, (-1, -2))],
        leafs=[Leaf(CONTENTS_SOLID, -1), Leaf(0, 0)],
    )


def _patch(origin, normal, area=1.0, reflectivity=GREY):
    winding = Winding([origin, add(origin, (0, 1, 0)), add(origin, (0, 0, 1))])
    return Patch(
        winding=winding,
        plane=Plane(normal, dot(origin, normal)),
        face=0,
        origin=origin,
        cluster=0,
        area=area,
        reflectivity=reflectivity,
    )


def _setup(patch_list, world=None, options=None, nopvs=False, tracer=None):
    world = world or _open_world()
    patches = PatchSet(world, [GREY])
    patches.patches.extend(patch_list)
    tracer = tracer or TraceTree(world)
    return Radiosity(world, patches, tracer, options or LightOptions(), nopvs)


def _three():
    return [
        _patch((0.0, 0.0, 0.0), (1.0, 0.0, 0.0)),
        _patch((10.0, 0.0, 0.0), (-1.0, 0.0, 0.0)),
        _patch((10.0, 10.0, 0.0), (-1.0, 0.0, 0.0)),
    ]


def test_transfers_reach_visible_patches():
    rad = _setup(_three())
    transfers = rad.make_transfers(0)
    assert [t.patch for t in transfers] == [1, 2]
    total = sum(t.transfer for t in transfers)
    assert TRANSFER_UNIT - 2 <= total <= TRANSFER_UNIT
    assert transfers[0].transfer > transfers[1].transfer
    assert rad.total_transfer == 2
    assert rad.patches[0].transfers == transfers


def test_single_transfer_is_stored_in_sixteen_bits():
    rad = _setup(_three()[:2])
    transfers = rad.make_transfers(0)
    assert transfers == [Transfer(1, TRANSFER_UNIT & 0xFFFF)]


def test_occluded_patches_get_no_transfers():
    rad = _setup(_three(), world=_walled_world())
    assert rad.make_transfers(0) == []
    assert rad.total_transfer == 0


def test_patch_facing_away_is_skipped():
    patch_list = _three()
    patch_list[2] = _patch((10.0, 10.0, 0.0), (1.0, 0.0, 0.0))
    rad = _setup(patch_list)
    assert [t.patch for t in rad.make_transfers(0)] == [1]


def test_pvs_limits_transfers_unless_disabled():
    world = _open_world()
    world.visibility = [b"\x00"]
    rad = _setup(_three(), world=world)
    assert rad.make_transfers(0) == []

    rad = _setup(_three(), world=world, nopvs=True)
    assert [t.patch for t in rad.make_transfers(0)] == [1, 2]


def test_patch_outside_any_cluster_is_skipped():
    patch_list = _three()
    patch_list[1].cluster = -1
    rad = _setup(patch_list)
    assert [t.patch for t in rad.make_transfers(0)] == [2]
    rad = _setup(patch_list, nopvs=True)
    assert [t.patch for t in rad.make_transfers(0)] == [1, 2]


def test_shoot_light_scales_by_transfer():
    rad = _setup(_three())
    rad.patches[0].transfers = [Transfer(1, 0x8000)]
    rad.radiosity[0] = (2.0, 4.0, 6.0)
    rad.shoot_light(0)
    assert rad.illumination[1] == pytest.approx(tuple(c / 2 for c in rad.radiosity[0]))
    assert rad.illumination[2] == ORIGIN


def test_collect_light_updates_patches_and_drops_sky():
    patch_list = _three()
    patch_list[1].area = 2.0
    patch_list[2].sky = True
    rad = _setup(patch_list)
    rad.illumination[1] = (4.0, 4.0, 4.0)
    rad.illumination[2] = (8.0, 8.0, 8.0)
    total = rad.collect_light()
    assert rad.patches[1].totallight == pytest.approx((2.0, 2.0, 2.0))
    assert rad.radiosity[1] == pytest.approx((2.0, 2.0, 2.0))
    assert rad.patches[2].totallight == ORIGIN
    assert rad.radiosity[2] == ORIGIN
    assert total == pytest.approx(sum(rad.radiosity[1]))
    assert all(ill == ORIGIN for ill in rad.illumination)


def test_bounce_light_moves_energy_without_creating_it():
    patch_list = _three()
    patch_list[0].samplelight = (1.0, 1.0, 1.0)
    patch_list[0].reflectivity = (1.0, 1.0, 1.0)
    rad = _setup(patch_list, options=LightOptions(numbounce=1))
    for index in range(3):
        rad.make_transfers(index)
    added = rad.bounce_light()
    a, b, c = rad.patches
    assert len(added) == 1
    assert a.totallight == ORIGIN
    assert b.totallight[0] > c.totallight[0] > 0
    assert b.totallight[0] + c.totallight[0] <= 1.0
    assert added[0] == pytest.approx(0.5 * (sum(b.totallight) + sum(c.totallight)))


def test_bounce_light_dumps_first_and_last(tmp_path):
    rad = _setup(_three(), options=LightOptions(numbounce=3))
    rad.dump_dir = tmp_path
    rad.bounce_light()
    names = sorted(p.name for p in tmp_path.iterdir())
    assert names == ["bounce0.txt", "bounce2.txt"]


def test_check_patches_rejects_negative_light():
    rad = _setup(_three())
    rad.check_patches()
    rad.patches[1].totallight = (1.0, -0.5, 0.0)
    with pytest.raises(ValueError, match="negative"):
        rad.check_patches()


def test_write_world_format():
    patch = _patch((0.0, 0.0, 0.0), (1.0, 0.0, 0.0))
    patch.winding = Winding([(10.0, 0.0, 0.0), (0.0, 0.0, 0.0), (0.0, 1.0, 0.0)])
    patch.totallight = (1.0, 2.0, 3.0)
    stream = io.StringIO()
    write_world([patch], stream)
    lines = stream.getvalue().split("\n")
    assert lines[0] == "3"
    assert lines[1] == "10.00  0.00  0.00 1.000 2.000 3.000"
    assert lines[4] == ""


def test_write_world_divides_light():
    patch = _patch((0.0, 0.0, 0.0), (1.0, 0.0, 0.0))
    patch.totallight = (128.0, 256.0, 384.0)
    stream = io.StringIO()
    write_world([patch], stream, 128)
    assert stream.getvalue().split("\n")[1].endswith("1.000 2.000 3.000")


def _floor_world(visibility=()):
    return BspWorld(
        planes=[Plane((0.0, 0.0, 1.0), 0.0, PLANE_Z)],
        nodes=[Node(0, (-1, -2))],
        leafs=[Leaf(0, 0), Leaf(CONTENTS_SOLID, -1)],
        vertexes=[(0.0, 0.0, 0.0), (64.0, 0.0, 0.0), (64.0, 64.0, 0.0), (0.0, 64.0, 0.0)],
        edges=[Edge((0, 0)), Edge((0, 1)), Edge((1, 2)), Edge((2, 3)), Edge((3, 0))],
        surfedges=[1, 2, 3, 4],
        faces=[Face(planenum=0, side=0, firstedge=0, numedges=4)],
        texinfo=[TexInfo(vecs=((1.0, 0.0, 0.0, 0.0), (0.0, 1.0, 0.0, 0.0)))],
        models=[Model(0, 1)],
        entities=[
            Entity({"classname": "worldspawn"}),
            Entity({"classname": "light", "origin": "32 32 100", "light": "300"}),
        ],
        visibility=list(visibility),
    )


def test_rad_world_rejects_empty_map():
    with pytest.raises(ValueError, match="Empty map"):
        rad_world(BspWorld(), [GREY])


def test_rad_world_direct_only():
    world = _floor_world()
    lighter = rad_world(world, [GREY])
    data = bytes(lighter.lightdata)
    assert len(data) == 25 * 3
    assert max(data) == 196
    assert all(data[i] == data[i + 1] == data[i + 2] for i in range(0, len(data), 3))
    assert world.faces[0].lightofs == 0
    assert world.faces[0].styles == [0, 255, 255, 255]


def test_rad_world_with_visibility_bounces():
    world = _floor_world(visibility=[b"\x01"])
    lighter = rad_world(world, [GREY], LightOptions(numbounce=2))
    data = bytes(lighter.lightdata)
    assert len(data) == 25 * 3
    assert max(data) == 196
    assert all(not patch.transfers for patch in lighter.patches)