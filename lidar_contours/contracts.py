"""
Documentation-as-code contract for contour summary outputs.

Keeps the summary JSON written by ``scripts/run_contours.py`` interpretable
without reading the code that produced it.
"""

from __future__ import annotations

from typing import Dict

CONTOURS_PURPOSE = "lidar_contours"
CONTOURS_SEMANTICS = (
    "Each feature is an iso-elevation polyline traced from a locally regressed ground raster. "
    "Closed lines keep higher ground on their left (counter-clockwise around hills). "
    "Open lines end where the raster or the ground-point hull ends."
)

CONTOURS_CONTRACT: Dict[str, object] = {
    "schema_version": "1",
    "purpose": CONTOURS_PURPOSE,
    "semantic_unit": "contour_polyline",
    "coordinates": "tile_local",
    "elevation_property": "elevation",
    "kind_values": ["index", "contour", "form"],
    "scores": "error/energy are diagnostics of the refinement loop, not quality guarantees",
    "notes": CONTOURS_SEMANTICS,
}
