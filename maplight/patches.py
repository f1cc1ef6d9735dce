"""Radiosity patches: texture reflectivity, face patches and subdivision."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Sequence

from .bsp import SURF_LIGHT, SURF_SKY, BspWorld, Entity, Face, Plane, TexInfo
from .geometry import ORIGIN, Vec3, Winding, add, color_normalize, dot, scale
from .trace import ON_EPSILON

MAX_PATCHES = 65000

DEFAULT_REFLECTIVITY: Vec3 = (0.5, 0.5, 0.5)

_log = logging.getLogger(__name__)


@dataclass(eq=False)
class Patch:
    """A piece of a face that sends and receives bounced light."""

    winding: Winding
    plane: Plane
    face: int
    origin: Vec3 = ORIGIN
    cluster: int = -1
    area: float = 1.0
    sky: bool = False
    reflectivity: Vec3 = ORIGIN
    baselight: Vec3 = ORIGIN
    totallight: Vec3 = ORIGIN
    samplelight: Vec3 = ORIGIN
    samples: int = 0
    transfers: list = field(default_factory=list)


def texture_reflectivity(pixels: bytes, palette: Sequence[int]) -> Vec3:
    """Average colour of palette-indexed pixels, brightened when dim."""
    if not pixels:
        raise ValueError("texture has no texels")
    texels = len(pixels)
    totals = [0, 0, 0]
    for texel in pixels:
        base = texel * 3
        for channel in range(3):
            totals[channel] += palette[base + channel]
    average = tuple(total // texels / 255.0 for total in totals)
    color, peak = color_normalize(average)
    if peak < 0.5:
        color = scale(color, peak * 2)
    return color


def calc_texture_reflectivity(
    texinfos: Sequence[TexInfo],
    palette: Sequence[int],
    load_texture: Callable[[str], bytes | None],
) -> list[Vec3]:
    """Reflectivity for every texinfo; entry 0 always exists.

    ``load_texture`` returns a texture's palette-indexed pixels, or None
    (or raises OSError) when the texture cannot be loaded.
    """
    result: list[Vec3] = [DEFAULT_REFLECTIVITY]
    by_name: dict[str, Vec3] = {}
    for index, tex in enumerate(texinfos):
        if tex.texture in by_name:
            value = by_name[tex.texture]
        else:
            try:
                pixels = load_texture(tex.texture)
            except OSError:
                pixels = None
            if pixels is None:
                _log.warning("Couldn't load texture %s", tex.texture)
                value = DEFAULT_REFLECTIVITY
            else:
                value = texture_reflectivity(pixels, palette)
            by_name[tex.texture] = value
        if index == 0:
            result[0] = value
        else:
            result.append(value)
    return result


def winding_from_face(world: BspWorld, face: Face) -> Winding:
    """The polygon of a face with colinear points removed."""
    return Winding(world.face_points(face)).remove_colinear_points()


def entity_for_model(entities: Sequence[Entity], modnum: int) -> Entity:
    """The entity using model number modnum, else the first entity."""
    name = f"*{modnum}"
    for entity in entities:
        if entity.value_for_key("model") == name:
            return entity
    return entities[0] if entities else Entity()


class PatchSet:
    """All patches of a world and the per-face lists they belong to."""

    def __init__(
        self,
        world: BspWorld,
        reflectivity: Sequence[Vec3],
        subdiv: float = 64.0,
    ) -> None:
        self.world = world
        self.reflectivity = list(reflectivity)
        self.subdiv = subdiv
        self.patches: list[Patch] = []
        self.total_area = 0.0
        count = len(world.faces)
        self.face_entity: list[Entity | None] = [None] * count
        self.face_offset: list[Vec3] = [ORIGIN] * count
        self._by_face: dict[int, list[Patch]] = {}

    def __len__(self) -> int:
        return len(self.patches)

    def __iter__(self):
        return iter(self.patches)

    def __getitem__(self, index: int) -> Patch:
        return self.patches[index]

    def face_patches(self, face_index: int) -> list[Patch]:
        """Patches of one face, in list order."""
        return list(self._by_face.get(face_index, ()))

    def _new_patch(self, patch: Patch) -> Patch:
        if len(self.patches) >= MAX_PATCHES:
            raise RuntimeError("num_patches == MAX_PATCHES")
        self.patches.append(patch)
        return patch

    def _place(self, patch: Patch) -> None:
        patch.origin = add(patch.winding.center(), patch.plane.normal)
        patch.cluster = self.world.point_in_leaf(patch.origin).cluster
        if patch.cluster == -1:
            _log.debug("patch cluster == -1")

    def _base_light(self, face: Face) -> Vec3:
        tex = self.world.texinfo[face.texinfo]
        if not (tex.flags & SURF_LIGHT) or tex.value == 0:
            return ORIGIN
        return scale(self.reflectivity[face.texinfo], tex.value)

    def _make_patch_for_face(self, fn: int, winding: Winding) -> Patch:
        face = self.world.faces[fn]
        area = winding.area()
        self.total_area += area

        plane = self.world.planes[face.planenum]
        if face.side:
            plane = plane.flipped()
        offset = self.face_offset[fn]
        if any(offset):
            plane = Plane(plane.normal, plane.dist + dot(offset, plane.normal), plane.type)

        patch = self._new_patch(
            Patch(
                winding=winding,
                plane=plane,
                face=fn,
                area=max(area, 1.0) if area > 1 else 1.0,
                sky=bool(self.world.texinfo[face.texinfo].flags & SURF_SKY),
                reflectivity=tuple(self.reflectivity[face.texinfo]),
            )
        )
        self._by_face.setdefault(fn, []).insert(0, patch)
        self._place(patch)

        if self.world.models and fn < self.world.models[0].numfaces:
            color, _ = color_normalize(patch.reflectivity)
            base = self._base_light(face)
            patch.baselight = (base[0] * color[0], base[1] * color[1], base[2] * color[2])
            patch.totallight = patch.baselight
        return patch

    def make_patches(self) -> list[Patch]:
        """Turn every face of every model into one patch."""
        _log.debug("%i faces", len(self.world.faces))
        for modnum, model in enumerate(self.world.models):
            entity = entity_for_model(self.world.entities, modnum)
            origin = entity.vector_for_key("origin")
            for fn in range(model.firstface, model.firstface + model.numfaces):
                self.face_entity[fn] = entity
                self.face_offset[fn] = origin
                winding = winding_from_face(self.world, self.world.faces[fn])
                self._make_patch_for_face(fn, winding.translated(origin))
        _log.debug("%i square feet", int(self.total_area / 64))
        return self.patches

    def _finish_split(self, patch: Patch, newp: Patch) -> None:
        newp.baselight = patch.baselight
        newp.totallight = patch.totallight
        newp.reflectivity = patch.reflectivity
        newp.plane = patch.plane
        newp.sky = patch.sky
        patch.area = max(patch.winding.area(), 1.0)
        newp.area = max(newp.winding.area(), 1.0)
        self._place(patch)
        self._place(newp)

    def _split(self, patch: Patch, axis: int, dist: float) -> Patch | None:
        normal = [0.0, 0.0, 0.0]
        normal[axis] = 1.0
        front, back = patch.winding.clip(normal, dist, ON_EPSILON)
        if front is None or back is None:
            return None
        if len(self.patches) >= MAX_PATCHES:
            raise RuntimeError("MAX_PATCHES")
        newp = self._new_patch(Patch(winding=back, plane=patch.plane, face=patch.face))
        face_list = self._by_face.setdefault(patch.face, [patch])
        position = next(i for i, p in enumerate(face_list) if p is patch)
        face_list.insert(position + 1, newp)
        patch.winding = front
        self._finish_split(patch, newp)
        return newp

    def subdivide_patch(self, patch: Patch) -> None:
        """Split a patch in halves until no side exceeds the size limit."""
        mins, maxs = patch.winding.bounds()
        axis = next(
            (i for i in range(3) if maxs[i] - mins[i] > self.subdiv + 1), None
        )
        if axis is None:
            return
        newp = self._split(patch, axis, (mins[axis] + maxs[axis]) * 0.5)
        if newp is None:
            return
        self.subdivide_patch(patch)
        self.subdivide_patch(newp)

    def dice_patch(self, patch: Patch) -> None:
        """Split a patch along a world-aligned grid of the subdivision size."""
        mins, maxs = patch.winding.bounds()
        sub = self.subdiv
        axis = next(
            (
                i
                for i in range(3)
                if math.floor((mins[i] + 1) / sub) < math.floor((maxs[i] - 1) / sub)
            ),
            None,
        )
        if axis is None:
            return
        dist = sub * (1 + math.floor((mins[axis] + 1) / sub))
        newp = self._split(patch, axis, dist)
        if newp is None:
            return
        self.dice_patch(patch)
        self.dice_patch(newp)

    def subdivide_patches(self) -> list[Patch]:
        """Dice every original patch; nothing happens when subdiv < 1."""
        if self.subdiv < 1:
            return self.patches
        for patch in self.patches[: len(self.patches)]:
            self.dice_patch(patch)
        _log.debug("%i patches after subdivision", len(self.patches))
        return self.patches