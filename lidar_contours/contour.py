"""
Contour polylines and per-level contour collections.

Orientation: every traced contour keeps higher ground on the left of the
direction of travel. A closed contour around a hill therefore runs
counter-clockwise in world coordinates (positive signed area) and one
around a depression runs clockwise.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

import numpy as np
from skimage.measure import approximate_polygon

# penalty for polylines too short to bend
SHORT_CONTOUR_ENERGY = 1000.0


@dataclass
class Contour:
    """Polyline at one elevation; closed contours repeat the first vertex last."""

    vertices: np.ndarray
    level: float
    closed: bool = False

    def __post_init__(self) -> None:
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 2)
        self.level = float(self.level)

    def __len__(self) -> int:
        return int(self.vertices.shape[0])

    def ring(self) -> np.ndarray:
        """Vertices without the closing duplicate."""
        if self.closed and len(self) > 1:
            return self.vertices[:-1]
        return self.vertices

    def length(self) -> float:
        if len(self) < 2:
            return 0.0
        return float(np.linalg.norm(np.diff(self.vertices, axis=0), axis=1).sum())

    def signed_area(self) -> Optional[float]:
        """Shoelace area; positive for counter-clockwise. ``None`` when open."""
        ring = self.ring()
        if not self.closed or len(ring) < 3:
            return None
        x = ring[:, 0]
        y = ring[:, 1]
        return float(0.5 * (np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))

    def bending_energy(self, length_exp: float = 1.0) -> float:
        """Sum of squared turning angles, each divided by its mean adjacent segment length.

        The sum is normalised by ``total_length ** length_exp``. Closed
        contours also bend at the closing vertex.
        """
        if len(self) < 3:
            return SHORT_CONTOUR_ENERGY
        if self.closed:
            ring = self.ring()
            segments = np.roll(ring, -1, axis=0) - ring
        else:
            segments = np.diff(self.vertices, axis=0)
        lengths = np.linalg.norm(segments, axis=1)
        keep = lengths > 0
        segments = segments[keep]
        lengths = lengths[keep]
        total = float(lengths.sum())
        if segments.shape[0] < 2 or total <= 0.0:
            return SHORT_CONTOUR_ENERGY

        units = segments / lengths[:, None]
        if self.closed:
            prev_u, cur_u = np.roll(units, 1, axis=0), units
            prev_l, cur_l = np.roll(lengths, 1), lengths
        else:
            prev_u, cur_u = units[:-1], units[1:]
            prev_l, cur_l = lengths[:-1], lengths[1:]
        dots = np.clip(np.einsum("ij,ij->i", prev_u, cur_u), -1.0, 1.0)
        angles = np.arccos(dots)
        energy = float(np.sum(angles * angles / ((prev_l + cur_l) / 2.0)))
        return energy / total**length_exp

    def simplified(self, tolerance: float) -> "Contour":
        """Douglas-Peucker simplified copy; closure is kept."""
        if tolerance <= 0 or len(self) < 3:
            return Contour(self.vertices.copy(), self.level, self.closed)
        return Contour(approximate_polygon(self.vertices, tolerance=tolerance), self.level, self.closed)


def _is_multiple(value: float, step: float) -> bool:
    remainder = math.fmod(value, step)
    tol = 1e-9 * max(1.0, abs(step))
    return abs(remainder) <= tol or abs(abs(remainder) - abs(step)) <= tol


def classify_level(level: float, interval: float, index_every: int = 5) -> str:
    """``"index"``, ``"contour"`` or ``"form"`` for a contour elevation."""
    if _is_multiple(level, index_every * interval):
        return "index"
    if _is_multiple(level, interval):
        return "contour"
    return "form"


class ContourSet:
    """Contours grouped by elevation level, in insertion order."""

    def __init__(self) -> None:
        self.by_level: Dict[float, List[Contour]] = {}

    def add(self, contour: Contour) -> None:
        self.by_level.setdefault(contour.level, []).append(contour)

    def extend(self, contours) -> None:
        for c in contours:
            self.add(c)

    def __iter__(self) -> Iterator[Contour]:
        for contours in self.by_level.values():
            yield from contours

    def __len__(self) -> int:
        return sum(len(v) for v in self.by_level.values())

    def levels(self) -> List[float]:
        return sorted(self.by_level)

    def at(self, level: float) -> List[Contour]:
        return self.by_level.get(float(level), [])

    def vertex_count(self) -> int:
        return sum(len(c) for c in self)

    def energy(self, length_exp: float = 1.0) -> float:
        return float(sum(c.bending_energy(length_exp) for c in self))

    def simplified(self, tolerance: float) -> "ContourSet":
        out = ContourSet()
        for c in self:
            out.add(c.simplified(tolerance))
        return out

    def to_geojson(self, interval: float, index_every: int = 5) -> Dict[str, object]:
        """FeatureCollection of LineStrings tagged with elevation and contour kind."""
        features = []
        for c in self:
            features.append(
                {
                    "type": "Feature",
                    "geometry": {
                        "type": "LineString",
                        "coordinates": [[float(x), float(y)] for x, y in c.vertices],
                    },
                    "properties": {
                        "elevation": c.level,
                        "kind": classify_level(c.level, interval, index_every),
                        "closed": c.closed,
                    },
                }
            )
        return {"type": "FeatureCollection", "features": features}
