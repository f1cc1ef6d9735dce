# maplight

`maplight` computes lighting and visibility data for maps held in memory as a
binary space partition (BSP) world. It covers two stages of a level build:

- **Radiosity lighting**: faces are cut into patches, direct light from light
  entities and bright surfaces is gathered at lightmap sample points, light
  is bounced between patches, and the result is written as lightmap bytes.
- **Portal visibility assembly**: a portal file listing the clusters of a map
  and the portals between them is loaded, portal visibility is merged into a
  potentially visible set (PVS) row per cluster, and those rows are expanded
  into potentially hearable sets (PHS).

The package uses only the Python standard library. Progress and warnings go
through the `logging` module.

## Installation

Install it with pip from a checkout of this project; add the `test` extra to
get pytest for the test suite.

## Modules

| Module                   | What it holds                                                          |
|--------------------------|------------------------------------------------------------------------|
| `maplight.geometry`      | Vector helpers (`dot`, `cross`, `normalize`, `color_normalize`, …) and `Winding` polygons with `area`, `center`, `bounds`, `clip` |
| `maplight.bsp`           | The in-memory world: `BspWorld`, `Plane`, `Node`, `Leaf`, `Edge`, `Face`, `TexInfo`, `Model`, `Entity` |
| `maplight.trace`         | `TraceTree`, with `test_line(start, stop)` telling whether a segment passes through solid |
| `maplight.patches`       | `Patch`, `PatchSet`, `texture_reflectivity`, `calc_texture_reflectivity` |
| `maplight.triangulation` | `Triangulation` of patch origins for interpolating bounced light      |
| `maplight.lightinfo`     | `LightInfo`: texture-space extents and world sample points of a face  |
| `maplight.lights`        | `Lighter`, `DirectLight`, `EmitType`, `FaceLight`, `LightOptions`     |
| `maplight.radiosity`     | `Radiosity`, `Transfer`, `write_world` and `rad_world`                |
| `maplight.portals`       | `load_portals`, `PortalMap`, `Portal`, `VisLeaf`, `VisStatus`         |

## Lighting a world

Fill a `BspWorld` with planes, nodes, leafs, vertexes, edges, surfedges,
faces, texinfo, models and entities. `visibility` holds one uncompressed PVS
row (`bytes`) per cluster; leave it empty if the map has none. Then compute
texture reflectivities and call `rad_world`:

```python
from maplight.bsp import BspWorld
from maplight.lights import LightOptions
from maplight.patches import calc_texture_reflectivity
from maplight.radiosity import rad_world

world = BspWorld(...)
reflectivity = calc_texture_reflectivity(world.texinfo, palette, load_texture)
lighter = rad_world(world, reflectivity, LightOptions(numbounce=4), nopvs=False)

lightmaps = bytes(lighter.lightdata)
```

`palette` is a flat sequence of RGB values (768 for a 256-colour palette).
`load_texture(name)` returns the palette indices of a texture's pixels, or
`None` (or raises `OSError`) when it cannot be loaded; such textures get a
reflectivity of 0.5 per channel.

`rad_world` raises `ValueError("Empty map")` when the world has no nodes or
no faces. It caps `maxlight` at 255, and when the world has no visibility it
turns bouncing off and uses an ambient of 0.1. Each lit face receives its
`lightofs` into `lighter.lightdata` and its `styles`; faces with sky or warp
textures are skipped.

`LightOptions` fields: `numbounce` (8), `extrasamples` (False, five samples
per point when True), `subdiv` (64, patch size), `ambient` (0), `maxlight`
(196), `lightscale` (1.0), `direct_scale` (0.4), `entity_scale` (1.0) and
`seed` (for the random mottling of `_minlight` faces).

The stages can also be run one by one: `TraceTree(world)` for occlusion,
`PatchSet.make_patches` and `subdivide_patches` for patches,
`Lighter.create_direct_lights`, `build_facelights` and `final_light_face` for
direct and final light, and `Radiosity.make_transfers`, `bounce_light` and
`check_patches` for the bounces. Setting `Radiosity.dump_dir` to a directory
writes the patches after the first and last bounce with `write_world`.

## Assembling visibility

```python
from maplight.portals import load_portals

with open("level.prt") as stream:
    portal_map = load_portals(stream)

portal_map.sort_portals()
```

`load_portals` reads the `PRT1` text format and raises `ValueError` on a bad
header, a malformed portal or a leaf with more than 128 portals. Every file
portal becomes two `Portal` objects, one per direction.

`PortalMap.cluster_merge(leafnum)` ORs the `portalvis` bits of a cluster's
portals into its uncompressed PVS row; every portal involved must have
`status` set to `VisStatus.DONE`. `PortalMap.calc_phs()` then returns one
hearable-set row per cluster.

## What the package does not do

- It does not read or write compiled map files or load image files: the
  world, palette and texture pixels must be supplied by the caller, and
  results are returned as Python objects and bytes.
- It does not run the portal flow that decides which portals see each other:
  each `Portal.portalvis` and `status` must be filled in before
  `cluster_merge`.
- Visibility rows are kept uncompressed; no run-length compression is done.
- There is no command-line program; everything is used from Python.

## Running the tests

The tests live in `tests/` and run with pytest.