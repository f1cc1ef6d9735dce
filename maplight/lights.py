"""Direct lighting of faces and final lightmap assembly."""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Sequence

from .bsp import SURF_SKY, SURF_WARP, BspWorld, Entity
from .geometry import (
    ORIGIN,
    Vec3,
    Winding,
    add,
    color_normalize,
    dot,
    normalize,
    scale,
    subtract,
    vector_ma,
)
from .lightinfo import LightInfo
from .patches import PatchSet
from .trace import TraceTree
from .triangulation import Triangulation

MAX_LSTYLES = 256
MAX_STYLES = 32
MAXLIGHTMAPS = 4
MAX_MAP_LIGHTING = 0x200000
DIRECT_LIGHT = 3
DEFAULT_INTENSITY = 300.0
DEFAULT_CONE = 10.0
ANGLE_UP = -1
ANGLE_DOWN = -2
_PI = 3.14159

SAMPLE_OFFSETS: tuple[tuple[float, float], ...] = (
    (0.0, 0.0),
    (-0.25, -0.25),
    (0.25, -0.25),
    (0.25, 0.25),
    (-0.25, 0.25),
)

_log = logging.getLogger(__name__)


class EmitType(Enum):
    """How a direct light spreads its energy."""

    SURFACE = 0
    POINT = 1
    SPOTLIGHT = 2


@dataclass
class DirectLight:
    """A light source that lights samples directly."""

    type: EmitType
    origin: Vec3
    intensity: float = 0.0
    style: int = 0
    color: Vec3 = ORIGIN
    normal: Vec3 = ORIGIN
    stopdot: float = 0.0


@dataclass
class FaceLight:
    """Direct light gathered at the sample points of one face."""

    numsamples: int
    origins: list[Vec3]
    stylenums: list[int] = field(default_factory=list)
    samples: list[list[Vec3]] = field(default_factory=list)

    @property
    def numstyles(self) -> int:
        return len(self.stylenums)


@dataclass
class LightOptions:
    """Tunable lighting parameters."""

    numbounce: int = 8
    extrasamples: bool = False
    subdiv: float = 64.0
    ambient: float = 0.0
    maxlight: float = 196.0
    lightscale: float = 1.0
    direct_scale: float = 0.4
    entity_scale: float = 1.0
    seed: int | None = None


@dataclass
class _EdgeShare:
    faces: list[int | None] = field(default_factory=lambda: [None, None])
    coplanar: bool = False


def find_target_entity(entities: Sequence[Entity], target: str) -> Entity | None:
    """The first entity whose targetname equals target."""
    for entity in entities:
        if entity.value_for_key("targetname") == target:
            return entity
    return None


def _parse_color(text: str) -> Vec3:
    values = [0.0, 0.0, 0.0]
    for axis, token in enumerate(text.split()[:3]):
        try:
            values[axis] = float(token)
        except ValueError:
            break
    return (values[0], values[1], values[2])


class Lighter:
    """Computes direct light per face and writes the final lightmaps."""

    def __init__(
        self,
        world: BspWorld,
        tracer: TraceTree,
        patches: PatchSet,
        options: LightOptions | None = None,
    ) -> None:
        self.world = world
        self.tracer = tracer
        self.patches = patches
        self.options = options or LightOptions()
        self.directlights: dict[int, list[DirectLight]] = {}
        self.numdlights = 0
        self.facelights: dict[int, FaceLight] = {}
        self.lightdata = bytearray()
        self.edgeshare: dict[int, _EdgeShare] = {}
        self.facelinks: list[int] = [0] * len(world.faces)
        self.planelinks: dict[tuple[int, int], int] = {}
        self._rng = random.Random(self.options.seed)

    # -- direct lights -------------------------------------------------

    def _add_light(self, light: DirectLight) -> None:
        self.numdlights += 1
        cluster = self.world.point_in_leaf(light.origin).cluster
        self.directlights.setdefault(cluster, []).insert(0, light)

    def _numclusters(self) -> int:
        if self.world.visibility:
            return self.world.numclusters
        return 1 + max((leaf.cluster for leaf in self.world.leafs), default=-1)

    def create_direct_lights(self) -> list[DirectLight]:
        """Turn bright patches and light entities into direct lights."""
        created: list[DirectLight] = []
        for patch in self.patches:
            if all(c < DIRECT_LIGHT for c in patch.totallight):
                continue
            color, intensity = color_normalize(patch.totallight)
            light = DirectLight(
                type=EmitType.SURFACE,
                origin=patch.origin,
                intensity=intensity * patch.area * self.options.direct_scale,
                color=color,
                normal=patch.plane.normal,
            )
            patch.totallight = ORIGIN  # all sent now
            self._add_light(light)
            created.append(light)

        for entity in self.world.entities:
            name = entity.value_for_key("classname")
            if not name.startswith("light"):
                continue
            light = DirectLight(type=EmitType.POINT, origin=entity.vector_for_key("origin"))
            style = int(entity.float_for_key("_style"))
            if not style:
                style = int(entity.float_for_key("style"))
            light.style = style if 0 <= style < MAX_LSTYLES else 0
            self._add_light(light)

            intensity = entity.float_for_key("light")
            if not intensity:
                intensity = entity.float_for_key("_light")
            if not intensity:
                intensity = DEFAULT_INTENSITY
            color_text = entity.value_for_key("_color")
            if len(color_text) > 1:
                light.color, _ = color_normalize(_parse_color(color_text))
            else:
                light.color = (1.0, 1.0, 1.0)
            light.intensity = intensity * self.options.entity_scale

            target = entity.value_for_key("target")
            if name == "light_spot" or target:
                light.type = EmitType.SPOTLIGHT
                cone = entity.float_for_key("_cone") or DEFAULT_CONE
                light.stopdot = math.cos(cone / 180 * _PI)
                if target:
                    goal = find_target_entity(self.world.entities, target)
                    if goal is None:
                        _log.warning(
                            "light at (%i %i %i) has missing target",
                            *(int(c) for c in light.origin),
                        )
                    else:
                        delta = subtract(goal.vector_for_key("origin"), light.origin)
                        light.normal, _ = normalize(delta)
                else:
                    angle = entity.float_for_key("angle")
                    if angle == ANGLE_UP:
                        light.normal = (0.0, 0.0, 1.0)
                    elif angle == ANGLE_DOWN:
                        light.normal = (0.0, 0.0, -1.0)
                    else:
                        light.normal = (
                            math.cos(angle / 180 * _PI),
                            math.sin(angle / 180 * _PI),
                            0.0,
                        )
            created.append(light)

        _log.debug("%i direct lights", self.numdlights)
        return created

    # -- sampling ------------------------------------------------------

    def gather_sample_light(
        self,
        pos: Sequence[float],
        normal: Sequence[float],
        styletable: dict[int, list[Vec3]],
        offset: int,
        size: int,
        lightscale: float,
    ) -> dict[int, list[Vec3]]:
        """Add the direct light reaching pos into styletable[style][offset]."""
        pvs = self.world.pvs_for_origin(pos)
        if pvs is None:
            return styletable

        for cluster in range(self._numclusters()):
            byte = cluster >> 3
            if byte >= len(pvs) or not pvs[byte] & (1 << (cluster & 7)):
                continue
            for light in self.directlights.get(cluster, ()):
                delta, dist = normalize(subtract(light.origin, pos))
                cos_angle = dot(delta, normal)
                if cos_angle <= 0.001:
                    continue  # behind sample surface

                if light.type is EmitType.POINT:
                    amount = (light.intensity - dist) * cos_angle
                elif light.type is EmitType.SURFACE:
                    dot2 = -dot(delta, light.normal)
                    if dot2 <= 0.001:
                        continue  # behind light surface
                    amount = light.intensity / (dist * dist) * cos_angle * dot2
                elif light.type is EmitType.SPOTLIGHT:
                    dot2 = -dot(delta, light.normal)
                    if dot2 <= light.stopdot:
                        continue  # outside light cone
                    amount = (light.intensity - dist) * cos_angle
                else:
                    raise ValueError("Bad light type")

                if self.tracer.test_line(pos, light.origin):
                    continue  # occluded
                if amount <= 0:
                    continue

                table = styletable.get(light.style)
                if table is None:
                    table = [ORIGIN] * size
                    styletable[light.style] = table
                table[offset] = vector_ma(table[offset], amount * lightscale, light.color)
        return styletable

    def add_sample_to_patch(
        self, pos: Sequence[float], color: Sequence[float], facenum: int
    ) -> None:
        """Count a sample's light towards every patch that may contain it."""
        if self.options.numbounce == 0:
            return
        if color[0] + color[1] + color[2] < 3:
            return
        for patch in self.patches.face_patches(facenum):
            mins, maxs = patch.winding.bounds()
            if any(mins[i] > pos[i] + 16 or maxs[i] < pos[i] - 16 for i in range(3)):
                continue
            patch.samples += 1
            patch.samplelight = add(patch.samplelight, color)

    def _unlit(self, facenum: int) -> bool:
        face = self.world.faces[facenum]
        return bool(self.world.texinfo[face.texinfo].flags & (SURF_WARP | SURF_SKY))

    def build_facelights(self, facenum: int) -> FaceLight | None:
        """Gather direct light at every sample of a face; None if unlit."""
        if self._unlit(facenum):
            return None
        face = self.world.faces[facenum]
        plane = self.world.planes[face.planenum]
        if face.side:
            plane = plane.flipped()
        points = self.world.face_points(face)
        tex = self.world.texinfo[face.texinfo]

        count = len(SAMPLE_OFFSETS) if self.options.extrasamples else 1
        infos = []
        for sofs, tofs in SAMPLE_OFFSETS[:count]:
            info = LightInfo(
                facenormal=plane.normal,
                facedist=plane.dist,
                tex=tex,
                points=points,
                modelorg=self.patches.face_offset[facenum],
                surfnum=facenum,
            )
            info.calc_face_vectors()
            info.calc_face_extents()
            info.calc_points(self.world, self.tracer, sofs, tofs)
            infos.append(info)

        main = infos[0]
        size = main.numsurfpt
        styletable: dict[int, list[Vec3]] = {0: [ORIGIN] * size}
        facelight = FaceLight(numsamples=size, origins=list(main.surfpt))

        for index in range(size):
            for info in infos:
                self.gather_sample_light(
                    info.surfpt[index], main.facenormal, styletable, index, size, 1.0 / count
                )
            self.add_sample_to_patch(main.surfpt[index], styletable[0][index], facenum)

        face_patches = self.patches.face_patches(facenum)
        for patch in face_patches:
            if patch.samples:
                patch.samplelight = scale(patch.samplelight, 1.0 / patch.samples)

        for style in sorted(styletable)[:MAX_STYLES]:
            facelight.stylenums.append(style)
            facelight.samples.append(styletable[style])

        # Emitting surfaces stay full bright even though their light was sent.
        if face_patches:
            base = face_patches[0].baselight
            if any(c >= DIRECT_LIGHT for c in base):
                facelight.samples[0] = [add(s, base) for s in facelight.samples[0]]

        self.facelights[facenum] = facelight
        return facelight

    # -- face relations ------------------------------------------------

    def pair_edges(self) -> dict[int, _EdgeShare]:
        """Record the faces on each side of every edge."""
        for facenum, face in enumerate(self.world.faces):
            for k in self.world.surfedges[face.firstedge : face.firstedge + face.numedges]:
                share = self.edgeshare.setdefault(abs(k), _EdgeShare())
                share.faces[1 if k < 0 else 0] = facenum
                first, second = share.faces
                if first is not None and second is not None:
                    if self.world.faces[first].planenum == self.world.faces[second].planenum:
                        share.coplanar = True
        return self.edgeshare

    def link_plane_faces(self) -> dict[tuple[int, int], int]:
        """Chain together the faces lying on each plane side."""
        for facenum, face in enumerate(self.world.faces):
            key = (face.side, face.planenum)
            self.facelinks[facenum] = self.planelinks.get(key, 0)
            self.planelinks[key] = facenum
        return self.planelinks

    def _plane_faces(self, side: int, planenum: int) -> Iterator[int]:
        # Face number 0 ends a chain.
        facenum = self.planelinks.get((side, planenum), 0)
        while facenum:
            yield facenum
            facenum = self.facelinks[facenum]

    # -- final output --------------------------------------------------

    def _triangulation(self, facenum: int) -> Triangulation:
        face = self.world.faces[facenum]
        mins, maxs = Winding(self.world.face_points(face)).bounds()
        trian = Triangulation(self.world.planes[face.planenum].normal)
        reach = self.options.subdiv * 2
        for pfacenum in self._plane_faces(face.side, face.planenum):
            for patch in self.patches.face_patches(pfacenum):
                if any(
                    mins[i] - patch.origin[i] > reach or patch.origin[i] - maxs[i] > reach
                    for i in range(3)
                ):
                    continue  # not needed for this face
                trian.add_point(patch)
        trian.triangulate()
        return trian

    def final_light_face(self, facenum: int) -> bytes | None:
        """Combine direct and bounced light into the face's lightmap bytes."""
        if self._unlit(facenum):
            return None
        face = self.world.faces[facenum]
        facelight = self.facelights.get(facenum)
        if facelight is None:
            raise KeyError(f"face {facenum} has no facelight")
        opts = self.options

        face.lightofs = len(self.lightdata)
        reserved = facelight.numstyles * facelight.numsamples * 3
        if face.lightofs + reserved > MAX_MAP_LIGHTING:
            raise RuntimeError("MAX_MAP_LIGHTING")
        self.lightdata.extend(bytes(reserved))
        face.styles = [0, 0xFF, 0xFF, 0xFF]

        trian = self._triangulation(facenum) if opts.numbounce > 0 else None

        entity = self.patches.face_entity[facenum]
        minlight = entity.float_for_key("_minlight") * 128 if entity else 0.0

        numstyles = facelight.numstyles
        if numstyles > MAXLIGHTMAPS:
            numstyles = MAXLIGHTMAPS
            face_patches = self.patches.face_patches(facenum)
            where = face_patches[0].origin if face_patches else ORIGIN
            _log.warning("face with too many lightstyles: (%f %f %f)", *where)

        out = bytearray()
        for st in range(numstyles):
            face.styles[st] = facelight.stylenums[st]
            for origin, sample in zip(facelight.origins, facelight.samples[st]):
                lb = sample
                if trian is not None and st == 0:
                    lb = add(lb, trian.sample(origin))
                lb = tuple(max((c + opts.ambient) * opts.lightscale, 1.0) for c in lb)
                peak = max(lb)
                newmax = max(peak, 0.0)
                if newmax < minlight:
                    newmax = minlight + self._rng.randrange(48)
                if newmax > opts.maxlight:
                    newmax = opts.maxlight
                out.extend(min(255, max(0, int(c * newmax / peak))) for c in lb)

        self.lightdata[face.lightofs : face.lightofs + len(out)] = out
        return bytes(out)