"""Vector helpers and convex polygon windings."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from itertools import pairwise
from typing import Iterable, Sequence

Vec3 = tuple[float, float, float]

ORIGIN: Vec3 = (0.0, 0.0, 0.0)
BOGUS_RANGE = 99999.0

SIDE_FRONT = 0
SIDE_BACK = 1
SIDE_ON = 2


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product of two 3-vectors."""
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def cross(a: Sequence[float], b: Sequence[float]) -> Vec3:
    """Cross product of two 3-vectors."""
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def subtract(a: Sequence[float], b: Sequence[float]) -> Vec3:
    """Return a - b."""
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])


def add(a: Sequence[float], b: Sequence[float]) -> Vec3:
    """Return a + b."""
    return (a[0] + b[0], a[1] + b[1], a[2] + b[2])


def scale(v: Sequence[float], s: float) -> Vec3:
    """Return v * s."""
    return (v[0] * s, v[1] * s, v[2] * s)


def vector_ma(a: Sequence[float], s: float, b: Sequence[float]) -> Vec3:
    """Return a + s * b."""
    return (a[0] + s * b[0], a[1] + s * b[1], a[2] + s * b[2])


def length(v: Sequence[float]) -> float:
    """Euclidean length of v."""
    return math.sqrt(dot(v, v))


def normalize(v: Sequence[float]) -> tuple[Vec3, float]:
    """Return the unit vector along v and the original length.

    A zero vector yields the zero vector and a length of 0.
    """
    vlen = length(v)
    if vlen == 0:
        return ORIGIN, 0.0
    inv = 1.0 / vlen
    return scale(v, inv), vlen


def color_normalize(color: Sequence[float]) -> tuple[Vec3, float]:
    """Scale a colour so its largest channel is 1; return it and that maximum.

    A colour whose largest channel is 0 is returned unchanged with 0.
    """
    peak = max(color[0], color[1], color[2])
    if peak == 0:
        return (float(color[0]), float(color[1]), float(color[2])), 0.0
    return scale(color, 1.0 / peak), peak


@dataclass
class Winding:
    """A convex polygon given by its points in order."""

    points: list[Vec3] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.points = [tuple(float(c) for c in p) for p in self.points]

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def area(self) -> float:
        """Surface area of the polygon."""
        if len(self.points) < 3:
            return 0.0
        first = self.points[0]
        total = 0.0
        for p1, p2 in pairwise(self.points[1:]):
            d1 = subtract(p1, first)
            d2 = subtract(p2, first)
            total += 0.5 * length(cross(d1, d2))
        return total

    def center(self) -> Vec3:
        """Average of the points."""
        if not self.points:
            raise ValueError("empty winding has no center")
        count = len(self.points)
        sx = sum(p[0] for p in self.points)
        sy = sum(p[1] for p in self.points)
        sz = sum(p[2] for p in self.points)
        return (sx / count, sy / count, sz / count)

    def bounds(self) -> tuple[Vec3, Vec3]:
        """Axis-aligned bounding box as (mins, maxs)."""
        mins = [BOGUS_RANGE] * 3
        maxs = [-BOGUS_RANGE] * 3
        for point in self.points:
            for axis, value in enumerate(point):
                mins[axis] = min(mins[axis], value)
                maxs[axis] = max(maxs[axis], value)
        return tuple(mins), tuple(maxs)

    def translated(self, offset: Sequence[float]) -> Winding:
        """A copy moved by offset."""
        return Winding([add(p, offset) for p in self.points])

    def remove_colinear_points(self) -> Winding:
        """A copy without points that lie on a straight run of edges."""
        pts = self.points
        if len(pts) < 3:
            return Winding(list(pts))
        kept = []
        prevs = pts[-1:] + pts[:-1]
        nexts = pts[1:] + pts[:1]
        for prev, point, nxt in zip(prevs, pts, nexts):
            v1, _ = normalize(subtract(nxt, point))
            v2, _ = normalize(subtract(point, prev))
            if dot(v1, v2) < 0.999:
                kept.append(point)
        return Winding(kept)

    def clip(
        self, normal: Sequence[float], dist: float, epsilon: float
    ) -> tuple[Winding | None, Winding | None]:
        """Split by a plane into (front, back); a missing side is None."""
        dists = []
        sides = []
        counts = [0, 0, 0]
        for point in self.points:
            d = dot(point, normal) - dist
            if d > epsilon:
                side = SIDE_FRONT
            elif d < -epsilon:
                side = SIDE_BACK
            else:
                side = SIDE_ON
            dists.append(d)
            sides.append(side)
            counts[side] += 1

        if not counts[SIDE_FRONT]:
            return None, Winding(list(self.points))
        if not counts[SIDE_BACK]:
            return Winding(list(self.points)), None

        front: list[Vec3] = []
        back: list[Vec3] = []
        nexts = self.points[1:] + self.points[:1]
        next_dists = dists[1:] + dists[:1]
        next_sides = sides[1:] + sides[:1]
        for p1, p2, d1, d2, s1, s2 in zip(
            self.points, nexts, dists, next_dists, sides, next_sides
        ):
            if s1 == SIDE_ON:
                front.append(p1)
                back.append(p1)
                continue
            if s1 == SIDE_FRONT:
                front.append(p1)
            else:
                back.append(p1)
            if s2 == SIDE_ON or s2 == s1:
                continue

            frac = d1 / (d1 - d2)
            mid = []
            for axis in range(3):
                if normal[axis] == 1:
                    mid.append(dist)
                elif normal[axis] == -1:
                    mid.append(-dist)
                else:
                    mid.append(p1[axis] + frac * (p2[axis] - p1[axis]))
            front.append(tuple(mid))
            back.append(tuple(mid))

        return Winding(front), Winding(back)


def winding_of(points: Iterable[Sequence[float]]) -> Winding:
    """Build a winding from any iterable of points."""
    return Winding([tuple(p) for p in points])