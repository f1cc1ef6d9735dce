"""Lightmap sample positions for a single face."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

from .bsp import CONTENTS_SOLID, BspWorld, TexInfo
from .geometry import ORIGIN, Vec3, add, cross, dot, length, normalize, scale, vector_ma
from .trace import TraceTree

SINGLEMAP = 64 * 64 * 4
SAMPLE_STEP = 16

_log = logging.getLogger(__name__)


def _nudge(value: float, mid: float) -> float:
    if value > mid:
        return max(value - 8, mid)
    return min(value + 8, mid)


@dataclass
class LightInfo:
    """Texture-space layout and world sample points of one face.

    ``points`` are the face vertices; ``modelorg`` offsets faces of
    models that have an origin.
    """

    facenormal: Vec3
    facedist: float
    tex: TexInfo
    points: list[Vec3]
    modelorg: Vec3 = ORIGIN
    surfnum: int = 0
    texorg: Vec3 = ORIGIN
    worldtotex: tuple[Vec3, Vec3] = (ORIGIN, ORIGIN)
    textoworld: tuple[Vec3, Vec3] = (ORIGIN, ORIGIN)
    exactmins: tuple[float, float] = (0.0, 0.0)
    exactmaxs: tuple[float, float] = (0.0, 0.0)
    texmins: tuple[int, int] = (0, 0)
    texsize: tuple[int, int] = (0, 0)
    numsurfpt: int = 0
    surfpt: list[Vec3] = field(default_factory=list)

    def _sample_count(self) -> int:
        return (self.texsize[0] + 1) * (self.texsize[1] + 1)

    def calc_face_extents(self) -> None:
        """Set the exact and sample-grid texture extents of the face."""
        mins = [999999.0, 999999.0]
        maxs = [-99999.0, -99999.0]
        for point in self.points:
            for axis in range(2):
                vec = self.tex.vecs[axis]
                val = dot(point, vec[:3]) + vec[3]
                mins[axis] = min(mins[axis], val)
                maxs[axis] = max(maxs[axis], val)

        self.exactmins = (mins[0], mins[1])
        self.exactmaxs = (maxs[0], maxs[1])
        lo = [math.floor(m / SAMPLE_STEP) for m in mins]
        hi = [math.ceil(m / SAMPLE_STEP) for m in maxs]
        self.texmins = (int(lo[0]), int(lo[1]))
        self.texsize = (int(hi[0] - lo[0]), int(hi[1] - lo[1]))
        if self.texsize[0] * self.texsize[1] > SINGLEMAP // 4:
            raise ValueError("Surface to large to map")

    def calc_face_vectors(self) -> None:
        """Set texorg, worldtotex and textoworld from the texture axes."""
        s_axis = tuple(float(c) for c in self.tex.vecs[0][:3])
        t_axis = tuple(float(c) for c in self.tex.vecs[1][:3])
        self.worldtotex = (s_axis, t_axis)

        # Points can move along this normal without changing their S/T.
        texnormal, _ = normalize(cross(t_axis, s_axis))

        distscale = dot(texnormal, self.facenormal)
        if not distscale:
            _log.warning("Texture axis perpendicular to face")
            distscale = 1.0
        if distscale < 0:
            distscale = -distscale
            texnormal = scale(texnormal, -1.0)
        distscale = 1 / distscale

        textoworld = []
        for axis in self.worldtotex:
            axis_len = length(axis)
            if axis_len == 0:
                raise ValueError("texture axis has zero length")
            dist = dot(axis, self.facenormal) * distscale
            projected = vector_ma(axis, -dist, texnormal)
            textoworld.append(scale(projected, (1 / axis_len) * (1 / axis_len)))
        self.textoworld = (textoworld[0], textoworld[1])

        s_off = self.tex.vecs[0][3]
        t_off = self.tex.vecs[1][3]
        texorg = tuple(
            -s_off * textoworld[0][i] - t_off * textoworld[1][i] for i in range(3)
        )
        dist = (dot(texorg, self.facenormal) - self.facedist - 1) * distscale
        texorg = vector_ma(texorg, -dist, texnormal)
        self.texorg = add(texorg, self.modelorg)
        self.numsurfpt = self._sample_count()

    def _tex_to_world(self, us: float, ut: float) -> Vec3:
        tw0, tw1 = self.textoworld
        return tuple(self.texorg[j] + tw0[j] * us + tw1[j] * ut for j in range(3))

    def calc_points(
        self,
        world: BspWorld,
        tracer: TraceTree,
        sofs: float,
        tofs: float,
    ) -> list[Vec3]:
        """World positions of the sample grid, nudged out of solid space."""
        mids = (self.exactmaxs[0] + self.exactmins[0]) / 2
        midt = (self.exactmaxs[1] + self.exactmins[1]) / 2
        facemid = self._tex_to_world(mids, midt)

        width = self.texsize[0] + 1
        height = self.texsize[1] + 1
        self.numsurfpt = width * height
        starts = self.texmins[0] * SAMPLE_STEP
        startt = self.texmins[1] * SAMPLE_STEP

        surfpt: list[Vec3] = []
        for t in range(height):
            for s in range(width):
                us = starts + (s + sofs) * SAMPLE_STEP
                ut = startt + (t + tofs) * SAMPLE_STEP
                surf = self._tex_to_world(us, ut)
                for attempt in range(6):
                    surf = self._tex_to_world(us, ut)
                    if world.point_in_leaf(surf).contents != CONTENTS_SOLID:
                        if not tracer.test_line(facemid, surf):
                            break
                    if attempt & 1:
                        us = _nudge(us, mids)
                    else:
                        ut = _nudge(ut, midt)
                surfpt.append(surf)
        self.surfpt = surfpt
        return surfpt