"""Portal files and the merging of portal visibility into cluster rows."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Sequence, TextIO

from .geometry import Vec3, cross, dot, length, normalize, subtract

PORTALFILE = "PRT1"
MAX_PORTALS = 32768
MAX_POINTS_ON_WINDING = 64
MAX_PORTALS_ON_LEAF = 128

_LEXEME = re.compile(r"[()]|[^\s()]+")

_log = logging.getLogger(__name__)


def _padded_bytes(bits: int) -> int:
    """Bytes for a bit row, padded to a multiple of 64 bits."""
    return ((bits + 63) & ~63) >> 3


def _set_bits(value: int) -> Iterator[int]:
    while value:
        low = value & -value
        yield low.bit_length() - 1
        value ^= low


class VisStatus(Enum):
    """Progress of the visibility calculation for one portal."""

    NONE = 0
    WORKING = 1
    DONE = 2


@dataclass(frozen=True)
class PortalPlane:
    """A plane: points p with dot(p, normal) == dist."""

    normal: Vec3
    dist: float

    def flipped(self) -> PortalPlane:
        """The same plane facing the other way."""
        return PortalPlane(
            (-self.normal[0], -self.normal[1], -self.normal[2]), -self.dist
        )


@dataclass(eq=False)
class Portal:
    """One direction of a file portal, looking into the neighbouring leaf.

    ``plane`` points into the neighbour ``leaf``. The bit rows hold one
    bit per portal.
    """

    plane: PortalPlane
    leaf: int
    winding: list[Vec3]
    origin: Vec3 = (0.0, 0.0, 0.0)
    radius: float = 0.0
    status: VisStatus = VisStatus.NONE
    portalfront: bytes | None = None
    portalflood: bytes | None = None
    portalvis: bytes | None = None
    nummightsee: int = 0


@dataclass
class VisLeaf:
    """A cluster and the indices of the portals that lead out of it."""

    portals: list[int] = field(default_factory=list)


def plane_from_winding(points: Sequence[Sequence[float]]) -> PortalPlane:
    """The plane through the first three points of a polygon."""
    if len(points) < 3:
        raise ValueError("a plane needs at least three points")
    v1 = subtract(points[2], points[1])
    v2 = subtract(points[0], points[1])
    normal, _ = normalize(cross(v2, v1))
    return PortalPlane(normal, dot(points[0], normal))


def portal_sphere(points: Sequence[Sequence[float]]) -> tuple[Vec3, float]:
    """Centre of the points and the largest distance from it to a point."""
    if not points:
        raise ValueError("empty winding has no sphere")
    count = len(points)
    center = tuple(sum(p[axis] for p in points) / count for axis in range(3))
    radius = max(length(subtract(p, center)) for p in points)
    return (center[0], center[1], center[2]), max(radius, 0.0)


@dataclass
class PortalMap:
    """Portals and clusters read from a portal file."""

    portalclusters: int
    portals: list[Portal] = field(default_factory=list)
    leafs: list[VisLeaf] = field(default_factory=list)
    sorted_portals: list[Portal] = field(default_factory=list)
    uncompressedvis: list[bytes] = field(default_factory=list)
    totalvis: int = 0

    def __post_init__(self) -> None:
        if not self.leafs:
            self.leafs = [VisLeaf() for _ in range(self.portalclusters)]
        if not self.uncompressedvis:
            self.uncompressedvis = [bytes(self.leafbytes)] * self.portalclusters

    @property
    def numportals(self) -> int:
        """Number of portals in the file; each is held in two directions."""
        return len(self.portals) // 2

    @property
    def leafbytes(self) -> int:
        return _padded_bytes(self.portalclusters)

    @property
    def portalbytes(self) -> int:
        return _padded_bytes(len(self.portals))

    def _cluster_mask(self) -> int:
        return (1 << self.portalclusters) - 1

    def sort_portals(self, nosort: bool = False) -> list[Portal]:
        """Order portals from the least complex, unless nosort is set."""
        self.sorted_portals = list(self.portals)
        if not nosort:
            self.sorted_portals.sort(key=lambda portal: portal.nummightsee)
        return self.sorted_portals

    def leaf_vector_from_portal_vector(self, portalbits: bytes) -> tuple[bytes, int]:
        """Clusters reached through the given portals, and how many there are."""
        bits = int.from_bytes(portalbits, "little")
        leafbits = 0
        for pnum in _set_bits(bits):
            if pnum >= len(self.portals):
                break
            leafbits |= 1 << self.portals[pnum].leaf
        count = bin(leafbits & self._cluster_mask()).count("1")
        return leafbits.to_bytes(self.leafbytes, "little"), count

    def cluster_merge(self, leafnum: int) -> bytes:
        """Merge the portal visibility of a cluster into its PVS row."""
        vector = 0
        for pnum in self.leafs[leafnum].portals:
            portal = self.portals[pnum]
            if portal.status is not VisStatus.DONE:
                raise RuntimeError("portal not done")
            vector |= int.from_bytes(portal.portalvis or b"", "little")
            vector |= 1 << pnum
        vector &= (1 << (self.portalbytes * 8)) - 1

        row, numvis = self.leaf_vector_from_portal_vector(
            vector.to_bytes(self.portalbytes, "little")
        )
        bits = int.from_bytes(row, "little")
        if bits & (1 << leafnum):
            _log.warning("Leaf portals saw into leaf")
        bits |= 1 << leafnum
        numvis += 1  # the cluster itself

        row = bits.to_bytes(self.leafbytes, "little")
        self.uncompressedvis[leafnum] = row
        _log.debug("cluster %4i : %4i visible", leafnum, numvis)
        self.totalvis += numvis
        return row

    def calc_phs(self, pvs_rows: Sequence[bytes] | None = None) -> list[bytes]:
        """Hearable sets: each PVS row ORed with the rows of what it sees."""
        rows = [
            int.from_bytes(row, "little")
            for row in (self.uncompressedvis if pvs_rows is None else pvs_rows)
        ]
        mask = self._cluster_mask()
        result = []
        count = 0
        for row in rows:
            merged = row
            for index in _set_bits(row):
                if index >= self.portalclusters:
                    raise ValueError("Bad bit in PVS")  # pad bits should be 0
                merged |= rows[index]
            count += bin(merged & mask).count("1")
            width = max(self.leafbytes, (merged.bit_length() + 7) // 8)
            result.append(merged.to_bytes(width, "little"))
        if self.portalclusters:
            _log.info("Average clusters hearable: %i", count // self.portalclusters)
        return result


class _Lexemes:
    def __init__(self, text: str) -> None:
        self._items = iter(_LEXEME.findall(text))

    def next(self, what: str) -> str:
        try:
            return next(self._items)
        except StopIteration:
            raise ValueError(f"LoadPortals: {what}") from None

    def integer(self, what: str) -> int:
        try:
            return int(self.next(what))
        except ValueError:
            raise ValueError(f"LoadPortals: {what}") from None

    def number(self, what: str) -> float:
        try:
            return float(self.next(what))
        except ValueError:
            raise ValueError(f"LoadPortals: {what}") from None

    def expect(self, symbol: str, what: str) -> None:
        if self.next(what) != symbol:
            raise ValueError(f"LoadPortals: {what}")


def load_portals(stream: TextIO) -> PortalMap:
    """Read a portal file; every file portal becomes two portals."""
    words = _Lexemes(stream.read())
    header = "failed to read header"
    magic = words.next(header)
    portalclusters = words.integer(header)
    numportals = words.integer(header)
    if magic != PORTALFILE:
        raise ValueError("LoadPortals: not a portal file")
    if portalclusters < 0 or numportals < 0:
        raise ValueError(f"LoadPortals: {header}")
    _log.info("%4i portalclusters", portalclusters)
    _log.info("%4i numportals", numportals)

    pmap = PortalMap(portalclusters)
    for i in range(numportals):
        what = f"reading portal {i}"
        numpoints = words.integer(what)
        front_leaf = words.integer(what)
        back_leaf = words.integer(what)
        if numpoints > MAX_POINTS_ON_WINDING:
            raise ValueError(f"LoadPortals: portal {i} has too many points")
        if not (0 <= front_leaf < portalclusters and 0 <= back_leaf < portalclusters):
            raise ValueError(f"LoadPortals: {what}")

        points: list[Vec3] = []
        for _ in range(numpoints):
            words.expect("(", what)
            points.append(
                (words.number(what), words.number(what), words.number(what))
            )
            words.expect(")", what)

        plane = plane_from_winding(points)

        for leafnum in (front_leaf, back_leaf):
            if len(pmap.leafs[leafnum].portals) == MAX_PORTALS_ON_LEAF:
                raise ValueError("Leaf with too many portals")

        forward = Portal(plane=plane.flipped(), leaf=back_leaf, winding=points)
        forward.origin, forward.radius = portal_sphere(points)
        pmap.leafs[front_leaf].portals.append(len(pmap.portals))
        pmap.portals.append(forward)

        reversed_points = points[::-1]
        backward = Portal(plane=plane, leaf=front_leaf, winding=reversed_points)
        backward.origin, backward.radius = portal_sphere(reversed_points)
        pmap.leafs[back_leaf].portals.append(len(pmap.portals))
        pmap.portals.append(backward)

    pmap.uncompressedvis = [bytes(pmap.leafbytes)] * portalclusters
    return pmap