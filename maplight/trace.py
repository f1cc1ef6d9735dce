"""Point-to-point occlusion tests through the BSP tree."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .bsp import CONTENTS_SOLID, PLANE_X, PLANE_Y, PLANE_Z, BspWorld

ON_EPSILON = 0.1

# Leaf children are stored as negative numbers: _EMPTY_LEAF or _SOLID_LEAF.
_EMPTY_LEAF = -1
_SOLID_LEAF = -2


@dataclass(frozen=True)
class _TNode:
    type: int
    normal: tuple[float, float, float]
    dist: float
    children: tuple[int, int]

    def distances(self, start: Sequence[float], stop: Sequence[float]) -> tuple[float, float]:
        if self.type in (PLANE_X, PLANE_Y, PLANE_Z):
            return start[self.type] - self.dist, stop[self.type] - self.dist
        n = self.normal
        front = start[0] * n[0] + start[1] * n[1] + start[2] * n[2] - self.dist
        back = stop[0] * n[0] + stop[1] * n[1] + stop[2] * n[2] - self.dist
        return front, back


class TraceTree:
    """The world's BSP tree reduced to what line tracing needs."""

    def __init__(self, world: BspWorld) -> None:
        if not world.nodes:
            raise ValueError("Empty map")
        self._nodes: list[_TNode] = []
        for node in world.nodes:
            plane = world.planes[node.planenum]
            children = []
            for child in node.children:
                if child < 0:
                    solid = world.leafs[-child - 1].contents & CONTENTS_SOLID
                    children.append(_SOLID_LEAF if solid else _EMPTY_LEAF)
                else:
                    children.append(child)
            self._nodes.append(
                _TNode(plane.type, tuple(plane.normal), plane.dist, tuple(children))
            )

    def test_line(self, start: Sequence[float], stop: Sequence[float]) -> bool:
        """True if the segment from start to stop passes through solid."""
        stack = [(0, tuple(start), tuple(stop))]
        while stack:
            node, p0, p1 = stack.pop()
            if node < 0:
                if node == _SOLID_LEAF:
                    return True
                continue
            tnode = self._nodes[node]
            front, back = tnode.distances(p0, p1)

            if front >= -ON_EPSILON and back >= -ON_EPSILON:
                stack.append((tnode.children[0], p0, p1))
                continue
            if front < ON_EPSILON and back < ON_EPSILON:
                stack.append((tnode.children[1], p0, p1))
                continue

            side = 1 if front < 0 else 0
            frac = front / (front - back)
            mid = (
                p0[0] + (p1[0] - p0[0]) * frac,
                p0[1] + (p1[1] - p0[1]) * frac,
                p0[2] + (p1[2] - p0[2]) * frac,
            )
            # The near half is tested first, so it is pushed last.
            stack.append((tnode.children[1 - side], mid, p1))
            stack.append((tnode.children[side], p0, mid))
        return False