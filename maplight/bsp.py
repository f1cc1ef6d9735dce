"""In-memory BSP world data and basic spatial queries."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

from .geometry import Vec3, dot

CONTENTS_SOLID = 1

PLANE_X = 0
PLANE_Y = 1
PLANE_Z = 2

SURF_LIGHT = 0x1
SURF_SKY = 0x4
SURF_WARP = 0x8

_FLOAT_PREFIX = re.compile(
    r"\s*[+-]?(?:\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)"
)


def _leading_float(text: str) -> float | None:
    match = _FLOAT_PREFIX.match(text)
    if not match:
        return None
    return float(match.group(0))


@dataclass(frozen=True)
class Plane:
    """A plane: points p with dot(p, normal) == dist."""

    normal: Vec3
    dist: float
    type: int = 3

    def flipped(self) -> Plane:
        """The same plane facing the other way."""
        return Plane(
            (-self.normal[0], -self.normal[1], -self.normal[2]),
            -self.dist,
            self.type,
        )


@dataclass
class Node:
    """A BSP node; a negative child n refers to leaf -n - 1."""

    planenum: int
    children: tuple[int, int]


@dataclass
class Leaf:
    """A BSP leaf."""

    contents: int = 0
    cluster: int = -1


@dataclass
class Edge:
    """An edge between two vertex indices."""

    v: tuple[int, int]


@dataclass
class Face:
    """A polygonal surface of the world."""

    planenum: int
    side: int
    firstedge: int
    numedges: int
    texinfo: int = 0
    lightofs: int = -1
    styles: list[int] = field(default_factory=lambda: [0, 255, 255, 255])


@dataclass
class TexInfo:
    """Texture projection and surface flags."""

    vecs: tuple[tuple[float, float, float, float], tuple[float, float, float, float]]
    flags: int = 0
    value: int = 0
    texture: str = ""


@dataclass
class Model:
    """A contiguous run of faces forming one model."""

    firstface: int
    numfaces: int
    headnode: int = 0


@dataclass
class Entity:
    """A set of key/value pairs."""

    pairs: dict[str, str] = field(default_factory=dict)

    def value_for_key(self, key: str) -> str:
        """Value of key, or an empty string."""
        return self.pairs.get(key, "")

    def float_for_key(self, key: str) -> float:
        """Leading number of the value of key, or 0."""
        value = _leading_float(self.value_for_key(key))
        return 0.0 if value is None else value

    def vector_for_key(self, key: str) -> Vec3:
        """Up to three numbers from the value of key; missing ones are 0."""
        values = [0.0, 0.0, 0.0]
        for axis, token in enumerate(self.value_for_key(key).split()[:3]):
            number = _leading_float(token)
            if number is None:
                break
            values[axis] = number
        return (values[0], values[1], values[2])


@dataclass
class BspWorld:
    """The lumps of a compiled map that lighting needs.

    ``visibility`` holds one uncompressed PVS row per cluster; an empty
    list means the map carries no visibility information.
    """

    planes: list[Plane] = field(default_factory=list)
    nodes: list[Node] = field(default_factory=list)
    leafs: list[Leaf] = field(default_factory=list)
    vertexes: list[Vec3] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    surfedges: list[int] = field(default_factory=list)
    faces: list[Face] = field(default_factory=list)
    texinfo: list[TexInfo] = field(default_factory=list)
    models: list[Model] = field(default_factory=list)
    entities: list[Entity] = field(default_factory=list)
    visibility: list[bytes] = field(default_factory=list)
    backplanes: list[Plane] = field(default_factory=list)
    nodeparents: list[int] = field(default_factory=list)
    leafparents: list[int] = field(default_factory=list)

    @property
    def numclusters(self) -> int:
        return len(self.visibility)

    def point_in_leafnum(self, point: Sequence[float]) -> int:
        """Index of the leaf that contains point."""
        if not self.nodes:
            raise ValueError("Empty map")
        nodenum = 0
        while nodenum >= 0:
            node = self.nodes[nodenum]
            plane = self.planes[node.planenum]
            if dot(point, plane.normal) - plane.dist > 0:
                nodenum = node.children[0]
            else:
                nodenum = node.children[1]
        return -nodenum - 1

    def point_in_leaf(self, point: Sequence[float]) -> Leaf:
        """The leaf that contains point."""
        return self.leafs[self.point_in_leafnum(point)]

    def pvs_for_origin(self, origin: Sequence[float]) -> bytes | None:
        """Potentially visible cluster bits from origin; None inside solid."""
        if not self.visibility:
            return b"\xff" * ((len(self.leafs) + 7) // 8)
        leaf = self.point_in_leaf(origin)
        if leaf.cluster == -1:
            return None
        return self.visibility[leaf.cluster]

    def face_points(self, face: Face) -> list[Vec3]:
        """Vertices of a face in winding order."""
        points = []
        for surfedge in self.surfedges[face.firstedge : face.firstedge + face.numedges]:
            if surfedge < 0:
                vertex = self.edges[-surfedge].v[1]
            else:
                vertex = self.edges[surfedge].v[0]
            points.append(self.vertexes[vertex])
        return points

    def make_backplanes(self) -> list[Plane]:
        """Build and store the reversed version of every plane."""
        self.backplanes = [plane.flipped() for plane in self.planes]
        return self.backplanes

    def make_parents(self) -> tuple[list[int], list[int]]:
        """Record the parent node of every node and leaf reachable from node 0."""
        nodeparents = [-1] * len(self.nodes)
        leafparents = [-1] * len(self.leafs)
        if self.nodes:
            stack = [(0, -1)]
            while stack:
                nodenum, parent = stack.pop()
                nodeparents[nodenum] = parent
                for child in self.nodes[nodenum].children:
                    if child < 0:
                        leafparents[-child - 1] = nodenum
                    else:
                        stack.append((child, nodenum))
        self.nodeparents = nodeparents
        self.leafparents = leafparents
        return nodeparents, leafparents