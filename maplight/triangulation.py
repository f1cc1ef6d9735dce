"""Triangulation of patch origins for smooth sampling of bounced light."""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Sequence

from .geometry import ORIGIN, Vec3, cross, dot, length, normalize, subtract, vector_ma
from .trace import ON_EPSILON

MAX_TRI_POINTS = 1024
MAX_TRI_EDGES = MAX_TRI_POINTS * 6
MAX_TRI_TRIS = MAX_TRI_POINTS * 2


@dataclass(eq=False)
class _TriEdge:
    p0: int
    p1: int
    normal: Vec3
    dist: float
    tri: _Triangle | None = None

    def distance(self, point: Sequence[float]) -> float:
        return dot(point, self.normal) - self.dist


@dataclass(eq=False)
class _Triangle:
    edges: tuple[_TriEdge, _TriEdge, _TriEdge]

    def contains(self, point: Sequence[float]) -> bool:
        return all(edge.distance(point) >= 0 for edge in self.edges)


@dataclass
class Triangulation:
    """Patches lying on one plane, joined into triangles for interpolation.

    Every point is an object with ``origin`` and ``totallight`` vectors.
    """

    normal: Vec3
    points: list[Any] = field(default_factory=list)
    edges: list[_TriEdge] = field(default_factory=list)
    triangles: list[_Triangle] = field(default_factory=list)
    _matrix: dict[tuple[int, int], _TriEdge] = field(default_factory=dict, repr=False)

    def __init__(self, normal: Sequence[float]) -> None:
        self.normal = (float(normal[0]), float(normal[1]), float(normal[2]))
        self.points = []
        self.edges = []
        self.triangles = []
        self._matrix = {}

    def add_point(self, patch: Any) -> None:
        """Add a patch whose origin becomes a triangulation vertex."""
        if len(self.points) == MAX_TRI_POINTS:
            raise RuntimeError("trian->numpoints == MAX_TRI_POINTS")
        self.points.append(patch)

    def _find_edge(self, p0: int, p1: int) -> _TriEdge:
        existing = self._matrix.get((p0, p1))
        if existing is not None:
            return existing
        if len(self.edges) > MAX_TRI_EDGES - 2:
            raise RuntimeError("trian->numedges > MAX_TRI_EDGES-2")

        origin0 = self.points[p0].origin
        direction, _ = normalize(subtract(self.points[p1].origin, origin0))
        normal = cross(direction, self.normal)
        dist = dot(origin0, normal)

        edge = _TriEdge(p0, p1, normal, dist)
        back = _TriEdge(p1, p0, subtract(ORIGIN, normal), -dist)
        self.edges.extend((edge, back))
        self._matrix[(p0, p1)] = edge
        self._matrix[(p1, p0)] = back
        return edge

    def _best_point(self, edge: _TriEdge) -> int | None:
        origin0 = self.points[edge.p0].origin
        origin1 = self.points[edge.p1].origin
        best = 1.1
        bestp = None
        for index, patch in enumerate(self.points):
            p = patch.origin
            if edge.distance(p) < 0:
                continue  # behind edge
            v1, len1 = normalize(subtract(origin0, p))
            if not len1:
                continue
            v2, len2 = normalize(subtract(origin1, p))
            if not len2:
                continue
            ang = dot(v1, v2)
            if ang < best:
                best = ang
                bestp = index
        if best >= 1:
            return None
        return bestp

    def _new_triangle(self, edges: tuple[_TriEdge, _TriEdge, _TriEdge]) -> _Triangle:
        if len(self.triangles) >= MAX_TRI_TRIS:
            raise RuntimeError("trian->numtris >= MAX_TRI_TRIS")
        tri = _Triangle(edges)
        self.triangles.append(tri)
        for edge in edges:
            edge.tri = tri
        return tri

    def triangulate(self) -> list[_Triangle]:
        """Grow triangles outward from the closest pair of points."""
        if len(self.points) < 2:
            return self.triangles

        bestd = 9999.0
        pair = None
        for (i, a), (j, b) in combinations(enumerate(self.points), 2):
            d = length(subtract(b.origin, a.origin))
            if d < bestd:
                bestd = d
                pair = (i, j)
        if pair is None:
            return self.triangles

        first = self._find_edge(*pair)
        second = self._find_edge(pair[1], pair[0])
        pending = [second, first]
        while pending:
            edge = pending.pop()
            if edge.tri is not None:
                continue  # already connected
            bestp = self._best_point(edge)
            if bestp is None:
                continue  # edge doesn't match anything
            self._new_triangle(
                (edge, self._find_edge(edge.p1, bestp), self._find_edge(bestp, edge.p0))
            )
            # Depth first: the (bestp, p1) side is finished before (p0, bestp).
            pending.append(self._find_edge(edge.p0, bestp))
            pending.append(self._find_edge(bestp, edge.p1))
        return self.triangles

    def _lerp(self, tri: _Triangle, point: Sequence[float]) -> Vec3:
        e0, e1, e2 = tri.edges
        a = self.points[e0.p0]
        b = self.points[e1.p0]
        c = self.points[e2.p0]

        base = tuple(a.totallight)
        d1 = subtract(b.totallight, base)
        d2 = subtract(c.totallight, base)

        x = e0.distance(point)
        y = e2.distance(point)
        y1 = e2.distance(b.origin)
        x2 = e0.distance(c.origin)

        if abs(y1) < ON_EPSILON or abs(x2) < ON_EPSILON:
            return (float(base[0]), float(base[1]), float(base[2]))
        color = vector_ma(base, x / x2, d2)
        return vector_ma(color, y / y1, d1)

    def sample(self, point: Sequence[float]) -> Vec3:
        """Light at point, interpolated from the surrounding patches."""
        if not self.points:
            return ORIGIN
        if len(self.points) == 1:
            light = self.points[0].totallight
            return (float(light[0]), float(light[1]), float(light[2]))

        for tri in self.triangles:
            if tri.contains(point):
                return self._lerp(tri, point)

        for edge in self.edges:
            if edge.tri is not None:
                continue  # not an exterior edge
            if edge.distance(point) < 0:
                continue  # not in front of edge
            a = self.points[edge.p0]
            b = self.points[edge.p1]
            direction, _ = normalize(subtract(b.origin, a.origin))
            d = dot(subtract(point, a.origin), direction)
            if d < 0 or d > 1:
                continue
            return tuple(
                a.totallight[i] + d * (b.totallight[i] - a.totallight[i]) for i in range(3)
            )

        best = 99999.0
        nearest = None
        for patch in self.points:
            d = length(subtract(point, patch.origin))
            if d < best:
                best = d
                nearest = patch
        if nearest is None:
            raise RuntimeError("SampleTriangulation: no points")
        light = nearest.totallight
        return (float(light[0]), float(light[1]), float(light[2]))