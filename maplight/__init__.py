"""Radiosity lighting and portal visibility assembly for in-memory BSP worlds."""

__version__ = "0.1.0"

__all__ = [
    "bsp",
    "geometry",
    "lightinfo",
    "lights",
    "patches",
    "portals",
    "radiosity",
    "trace",
    "triangulation",
]