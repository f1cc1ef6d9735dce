"""Light transfer between patches and the complete lighting pipeline."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence, TextIO

from .bsp import BspWorld
from .geometry import ORIGIN, Vec3, dot, normalize, subtract, vector_ma
from .lights import Lighter, LightOptions
from .patches import Patch, PatchSet
from .trace import TraceTree

TRANSFER_UNIT = 0x10000
TRANSFER_BYTES = 4
MAX_LIGHT_VALUE = 255.0
NOVIS_AMBIENT = 0.1

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transfer:
    """Share of a patch's light that reaches another patch.

    ``transfer`` is a 16-bit fraction of 0x10000; the values of one patch
    add up to about 0x10000.
    """

    patch: int
    transfer: int


class Radiosity:
    """Bounces light between the patches of a world."""

    def __init__(
        self,
        world: BspWorld,
        patches: PatchSet,
        tracer: TraceTree,
        options: LightOptions | None = None,
        nopvs: bool = False,
    ) -> None:
        self.world = world
        self.patches = patches
        self.tracer = tracer
        self.options = options or LightOptions()
        self.nopvs = nopvs
        count = len(patches)
        self.radiosity: list[Vec3] = [ORIGIN] * count  # light leaving a patch
        self.illumination: list[Vec3] = [ORIGIN] * count  # light arriving at a patch
        self.total_transfer = 0
        self.dump_dir: Path | None = None

    def _in_pvs(self, pvs: bytes, cluster: int) -> bool:
        byte = cluster >> 3
        return byte < len(pvs) and bool(pvs[byte] & (1 << (cluster & 7)))

    def make_transfers(self, index: int) -> list[Transfer]:
        """Find the patches that collect light from patch index."""
        patch = self.patches[index]
        patch.transfers = []
        pvs = self.world.pvs_for_origin(patch.origin)
        if pvs is None:
            return patch.transfers

        origin = patch.origin
        normal = patch.plane.normal
        weights: list[tuple[int, float]] = []
        total = 0.0
        for j, other in enumerate(self.patches):
            if j == index:
                continue
            if not self.nopvs:
                if other.cluster == -1 or not self._in_pvs(pvs, other.cluster):
                    continue
            delta, dist = normalize(subtract(other.origin, origin))
            if not dist:
                continue
            factor = dot(delta, normal) * -dot(delta, other.plane.normal)
            if factor <= 0:
                continue
            if self.tracer.test_line(origin, other.origin):
                continue
            trans = max(factor * other.area / (dist * dist), 0.0)
            if trans > 0:
                weights.append((j, trans))
                total += trans

        # Normalized so that all of the light is sent to the surroundings;
        # each share is kept as a 16-bit value.
        patch.transfers = [
            Transfer(j, int(weight * TRANSFER_UNIT / total) & 0xFFFF)
            for j, weight in weights
        ]
        self.total_transfer += len(patch.transfers)
        return patch.transfers

    def shoot_light(self, index: int) -> None:
        """Send the radiosity of patch index along its transfers."""
        send = tuple(c / TRANSFER_UNIT for c in self.radiosity[index])
        for transfer in self.patches[index].transfers:
            self.illumination[transfer.patch] = vector_ma(
                self.illumination[transfer.patch], transfer.transfer, send
            )

    def collect_light(self) -> float:
        """Fold arrived light into the patches; return the new total radiosity."""
        total = 0.0
        for i, patch in enumerate(self.patches):
            if patch.sky:
                # Skies never collect light; it is dropped.
                self.radiosity[i] = ORIGIN
                self.illumination[i] = ORIGIN
                continue
            arrived = self.illumination[i]
            patch.totallight = tuple(
                patch.totallight[j] + arrived[j] / patch.area for j in range(3)
            )
            self.radiosity[i] = tuple(
                arrived[j] * patch.reflectivity[j] for j in range(3)
            )
            total += sum(self.radiosity[i])
            self.illumination[i] = ORIGIN
        return total

    def bounce_light(self) -> list[float]:
        """Run every bounce; return the light added by each one."""
        for i, patch in enumerate(self.patches):
            self.radiosity[i] = tuple(
                patch.samplelight[j] * patch.reflectivity[j] * patch.area
                for j in range(3)
            )

        numbounce = self.options.numbounce
        added_per_bounce = []
        for bounce in range(numbounce):
            for i in range(len(self.patches)):
                self.shoot_light(i)
            added = self.collect_light()
            _log.debug("bounce:%i added:%f", bounce, added)
            if self.dump_dir is not None and bounce in (0, numbounce - 1):
                path = self.dump_dir / f"bounce{bounce}.txt"
                with path.open("w") as stream:
                    write_world(self.patches, stream)
            added_per_bounce.append(added)
        return added_per_bounce

    def free_transfers(self) -> None:
        """Drop every patch's transfer list."""
        for patch in self.patches:
            patch.transfers = []

    def check_patches(self) -> None:
        """Raise ValueError if any patch ended up with negative light."""
        for patch in self.patches:
            if any(c < 0 for c in patch.totallight):
                raise ValueError("negative patch totallight")


def write_world(patches: Iterable[Patch], stream: TextIO, divisor: float = 1.0) -> None:
    """Write every patch polygon with its light as plain text."""
    for patch in patches:
        points = patch.winding.points
        light = tuple(c / divisor for c in patch.totallight)
        stream.write(f"{len(points)}\n")
        for p in points:
            stream.write(
                "%5.2f %5.2f %5.2f %5.3f %5.3f %5.3f\n"
                % (p[0], p[1], p[2], light[0], light[1], light[2])
            )
        stream.write("\n")


def rad_world(
    world: BspWorld,
    reflectivity: Sequence[Vec3],
    options: LightOptions | None = None,
    nopvs: bool = False,
) -> Lighter:
    """Light a whole world; the returned lighter holds the lightmap data."""
    options = options or LightOptions()
    if not world.nodes or not world.faces:
        raise ValueError("Empty map")
    if options.maxlight > MAX_LIGHT_VALUE:
        options = dataclasses.replace(options, maxlight=MAX_LIGHT_VALUE)
    if not world.visibility:
        _log.info("No vis information, direct lighting only.")
        options = dataclasses.replace(options, numbounce=0, ambient=NOVIS_AMBIENT)

    world.make_backplanes()
    world.make_parents()
    tracer = TraceTree(world)

    # Turn each face into a single patch, then cut them to size.
    patches = PatchSet(world, reflectivity, options.subdiv)
    patches.make_patches()
    patches.subdivide_patches()

    lighter = Lighter(world, tracer, patches, options)
    lighter.create_direct_lights()
    for facenum in range(len(world.faces)):
        lighter.build_facelights(facenum)

    if options.numbounce > 0:
        radiosity = Radiosity(world, patches, tracer, options, nopvs)
        for index in range(len(patches)):
            radiosity.make_transfers(index)
        _log.debug(
            "transfer lists: %5.1f megs",
            radiosity.total_transfer * TRANSFER_BYTES / (1024 * 1024),
        )
        radiosity.bounce_light()
        radiosity.free_transfers()
        radiosity.check_patches()

    # Blend bounced light into direct light and save.
    lighter.pair_edges()
    lighter.link_plane_faces()
    lighter.lightdata = bytearray()
    for facenum in range(len(world.faces)):
        lighter.final_light_face(facenum)
    return lighter