"""
Marching squares with per-cell classification and global stitching.

Cell ``(r, c)`` has corners 0 = top-left ``(r, c)``, 1 = top-right
``(r, c+1)``, 2 = bottom-right ``(r+1, c+1)`` and 3 = bottom-left
``(r+1, c)``. Edge ``e`` joins corner ``e`` to corner ``(e + 1) % 4``, so 0 is
the top edge, 1 the right, 2 the bottom and 3 the left. The case index has
bit ``i`` set when corner ``i`` is at or above the level.

Segments are directed so that higher ground lies on their left. Crossing
points are computed once per grid edge, keyed by the edge's identity, so the
two cells sharing an edge produce bit-identical vertices and stitching never
compares floats.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, List, Tuple

import numpy as np

from .contour import Contour

# ("h", r, c): horizontal edge (r, c)-(r, c+1); ("v", r, c): vertical edge (r, c)-(r+1, c)
EdgeKey = Tuple[str, int, int]

EDGES: Dict[int, Tuple[int, ...]] = {
    1: (3, 0),
    2: (0, 1),
    3: (3, 1),
    4: (1, 2),
    6: (0, 2),
    7: (3, 2),
    8: (2, 3),
    9: (2, 0),
    11: (2, 1),
    12: (1, 3),
    13: (1, 0),
    14: (0, 3),
}


def _saddle_edges(index: int, corners: Tuple[float, float, float, float], level: float) -> Tuple[int, ...]:
    dr = (corners[0] + corners[2]) / 2.0
    dl = (corners[1] + corners[3]) / 2.0
    diagonal_dominates = abs(dr - level) > abs(dl - level)
    if index == 5:
        return (3, 0, 1, 2) if diagonal_dominates else (1, 0, 3, 2)
    return (0, 3, 2, 1) if diagonal_dominates else (0, 1, 2, 3)


def _edge_key(edge: int, r: int, c: int) -> EdgeKey:
    if edge == 0:
        return ("h", r, c)
    if edge == 1:
        return ("v", r, c + 1)
    if edge == 2:
        return ("h", r + 1, c)
    return ("v", r, c)


class _Stitcher:
    """Arena of open contours keyed by small ids, with endpoint tables."""

    def __init__(self) -> None:
        self.arena: Dict[int, Deque[EdgeKey]] = {}
        self.closed: Dict[int, bool] = {}
        self.by_start: Dict[EdgeKey, int] = {}
        self.by_end: Dict[EdgeKey, int] = {}
        self._next_id = 0

    def add_segment(self, start: EdgeKey, end: EdgeKey) -> None:
        tail = self.by_end.get(start)
        head = self.by_start.get(end)

        if tail is not None and head is not None:
            del self.by_end[start]
            del self.by_start[end]
            if tail == head:
                self.arena[tail].append(end)
                self.closed[tail] = True
                return
            absorbed = self.arena.pop(head)
            del self.closed[head]
            self.arena[tail].extend(absorbed)
            self.by_end[absorbed[-1]] = tail
            return

        if tail is not None:
            del self.by_end[start]
            self.arena[tail].append(end)
            self.by_end[end] = tail
            return

        if head is not None:
            del self.by_start[end]
            self.arena[head].appendleft(start)
            self.by_start[start] = head
            return

        cid = self._next_id
        self._next_id += 1
        self.arena[cid] = deque((start, end))
        self.closed[cid] = False
        self.by_start[start] = cid
        self.by_end[end] = cid


def trace_level(raster, level: float) -> List[Contour]:
    """All contours of ``raster`` at ``level``; open ones end on the raster or hull boundary."""
    z = raster.values
    rows, cols = z.shape
    if rows < 2 or cols < 2:
        return []

    level = float(level)
    tl = z[:-1, :-1]
    tr = z[:-1, 1:]
    br = z[1:, 1:]
    bl = z[1:, :-1]
    with np.errstate(invalid="ignore"):
        index = (
            (tl >= level).astype(np.int64)
            | ((tr >= level).astype(np.int64) << 1)
            | ((br >= level).astype(np.int64) << 2)
            | ((bl >= level).astype(np.int64) << 3)
        )
    finite = np.isfinite(tl) & np.isfinite(tr) & np.isfinite(br) & np.isfinite(bl)
    active = finite & (index != 0) & (index != 15)

    crossings: Dict[EdgeKey, Tuple[float, float]] = {}

    def crossing(key: EdgeKey) -> Tuple[float, float]:
        point = crossings.get(key)
        if point is None:
            kind, r, c = key
            a = float(z[r, c])
            if kind == "h":
                b = float(z[r, c + 1])
                t = (level - a) / (b - a)
                point = raster.index_to_coord(r, c + t)
            else:
                b = float(z[r + 1, c])
                t = (level - a) / (b - a)
                point = raster.index_to_coord(r + t, c)
            crossings[key] = point
        return point

    stitcher = _Stitcher()
    for r, c in zip(*np.nonzero(active)):
        r = int(r)
        c = int(c)
        case = int(index[r, c])
        if case in (5, 10):
            corners = (float(z[r, c]), float(z[r, c + 1]), float(z[r + 1, c + 1]), float(z[r + 1, c]))
            edges = _saddle_edges(case, corners, level)
        else:
            edges = EDGES[case]
        for i in range(0, len(edges), 2):
            stitcher.add_segment(_edge_key(edges[i], r, c), _edge_key(edges[i + 1], r, c))

    contours = []
    for cid, keys in stitcher.arena.items():
        vertices = np.array([crossing(k) for k in keys], dtype=np.float64)
        contours.append(Contour(vertices, level, stitcher.closed[cid]))
    return contours
