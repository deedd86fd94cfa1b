#!/usr/bin/env python3
"""
Contour lines from one classified LiDAR tile.

Per tile:
- Read LAS/LAZ, keep ground (and water) points, shift to tile-local coordinates
- Jitter x/y, add IDW ghost points at the tile corners
- Bound the interpolation region by the snapped convex hull of ground points
- Interpolate elevation / intensity / return-number rasters by local quadratic regression
  (attributes are summarised in the output; --elevation-only skips them)
- Trace contours (raw, normal-field smoothed, or iteratively refined)
- Write a summary JSON (and optionally GeoJSON), provenance and timings
"""

from __future__ import annotations

import argparse
import json
import math
import time
import warnings
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np

import sys
_HERE = Path(__file__).resolve()
_ROOT = _HERE.parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import laspy

from lidar_contours.contracts import CONTOURS_CONTRACT
from lidar_contours.errors import InsufficientPointsError, NoGroundPointsError
from lidar_contours.interpolate import compute_rasters
from lidar_contours.params import Algorithm, ContourParams, as_policy_dict
from lidar_contours.points import FIELDS, GROUND, WATER, PointSet
from lidar_contours.raster import RasterGrid
from lidar_contours.refine import elevation_range, generate_contours
from lidar_contours.utils.provenance import append_timings, write_provenance


def read_tile(las_path: Path, include_water: bool = True) -> Tuple[PointSet, Tuple[float, float]]:
    """Ground (and water) points of a tile, de-meaned in x/y; returns the offset too."""
    las = laspy.read(str(las_path))
    cls = np.asarray(las.classification, dtype=np.uint8)
    keep_classes = [GROUND, WATER] if include_water else [GROUND]
    keep = np.isin(cls, keep_classes)

    x = np.asarray(las.x, dtype=np.float64)[keep]
    y = np.asarray(las.y, dtype=np.float64)[keep]
    z = np.asarray(las.z, dtype=np.float64)[keep]
    offset = (float(x.mean()), float(y.mean())) if x.size else (0.0, 0.0)
    points = PointSet(
        x - offset[0],
        y - offset[1],
        z,
        classification=cls[keep],
        return_number=np.asarray(las.return_number, dtype=np.uint8)[keep],
        intensity=np.asarray(las.intensity, dtype=np.uint16)[keep],
    )
    return points, offset


def default_tile_size(points: PointSet, cell_size: float) -> float:
    b = points.bounds
    extent = max(b.max_x - b.min_x, b.max_y - b.min_y)
    return max(math.ceil(extent / cell_size), 2) * cell_size


def raster_summary(raster: RasterGrid) -> Dict[str, Optional[float]]:
    """Min, max and mean of the finite cells, plus the mean after min-max normalisation."""
    finite = raster.values[np.isfinite(raster.values)]
    if finite.size == 0:
        return {"min": None, "max": None, "mean": None, "normalized_mean": None}
    normalized = raster.normalized().values
    return {
        "min": float(finite.min()),
        "max": float(finite.max()),
        "mean": float(finite.mean()),
        "normalized_mean": float(np.nanmean(normalized)),
    }


def process_tile(
    las_path: Path,
    params: ContourParams,
    tile_size: Optional[float],
    include_water: bool,
    clip_to_hull: bool,
    chunk_size: int,
    seed: Optional[int],
    elevation_only: bool = False,
) -> Tuple[Dict, Optional[Dict]]:
    timings: Dict[str, float] = {}
    t0 = time.time()
    points, offset = read_tile(las_path, include_water=include_water)
    timings["read_s"] = time.time() - t0
    if params.verbose:
        print(f"Processing {las_path.name}: {len(points)} ground/water points", flush=True)

    info: Dict = {"path": str(las_path), "offset": list(offset), "n_points": len(points)}
    if not np.any(points.classification == GROUND):
        raise NoGroundPointsError()

    t1 = time.time()
    points = points.jitter(np.random.default_rng(seed))
    points.add_ghost_points(k=params.num_neighbors)
    if len(points) < 6:
        raise InsufficientPointsError(len(points))
    size = tile_size if tile_size is not None else default_tile_size(points, params.cell_size)
    side = int(round(size / params.cell_size))
    bounds = points.raster_bounds(size, params.cell_size)
    hull = points.bounded_convex_hull(bounds, snap_epsilon=2.0 * params.cell_size)
    rasters = compute_rasters(
        points,
        hull,
        bounds.top_left,
        side,
        params.cell_size,
        num_neighbors=params.num_neighbors,
        ridge_smoothing=params.ridge_smoothing,
        fields=("elevation",) if elevation_only else FIELDS,
        chunk_size=chunk_size,
        verbose=params.verbose,
    )
    timings["rasters_s"] = time.time() - t1

    t2 = time.time()
    z_range = elevation_range(rasters.elevation)
    result = generate_contours(rasters.elevation, z_range, params, clip=hull if clip_to_hull else None)
    timings["contours_s"] = time.time() - t2
    if not result.converged:
        warnings.warn(
            f"{las_path.name}: refinement used all {result.iterations} iterations without converging",
            RuntimeWarning,
            stacklevel=2,
        )

    contours = result.contours
    info.update(
        {
            "grid_side": side,
            "tile_size": size,
            "z_range": list(z_range),
            "levels": len(contours.levels()),
            "contours": len(contours),
            "closed_contours": sum(1 for c in contours if c.closed),
            "vertices": contours.vertex_count(),
            "error": result.error,
            "energy": result.energy,
            "iterations": result.iterations,
            "converged": result.converged,
            "scores": result.scores,
            "attributes": {
                name: raster_summary(getattr(rasters, name))
                for name in FIELDS
                if name != "elevation" and getattr(rasters, name) is not None
            },
            "timings": {k: round(v, 3) for k, v in timings.items()},
        }
    )
    if params.verbose:
        print(f"    -> {len(contours)} contours, {contours.vertex_count()} vertices", flush=True)
    return info, contours.to_geojson(params.contour_interval, params.index_every)


def main() -> None:
    parser = argparse.ArgumentParser(description="Contour lines from a classified LiDAR tile")
    parser.add_argument("--las", required=True, help="LAS/LAZ tile")
    parser.add_argument("--out", default="results/contours_summary.json", help="Output summary JSON path")
    parser.add_argument("--tile-size", type=float, default=None, help="Tile side in metres (default: tile extent)")
    parser.add_argument("--cell-size", type=float, default=0.5, help="Raster cell size in metres")
    parser.add_argument("--contour-interval", type=float, default=5.0, help="Contour interval in metres")
    parser.add_argument("--form-lines", action="store_true", help="Halve the interval to add form lines")
    parser.add_argument("--algorithm", default="raw", choices=[a.value for a in Algorithm], help="Contour algorithm")
    parser.add_argument("--smoothing-iterations", type=int, default=0, help="Refinement budget / smoothing passes")
    parser.add_argument("--lambda", dest="regularization_lambda", type=float, default=1.0, help="Energy weight in the refinement score")
    parser.add_argument("--min-threshold", type=float, default=0.0, help="Stop refining once the score drops to this")
    parser.add_argument("--convergence-threshold", type=float, default=1e-3, help="Stop refining once the score changes less than this")
    parser.add_argument("--num-neighbors", type=int, default=32, help="Neighbours per local regression")
    parser.add_argument("--ridge-smoothing", type=float, default=5.0, help="Ridge term of the local regression")
    parser.add_argument("--simplify-tolerance", type=float, default=0.0, help="Douglas-Peucker tolerance in metres (0 disables)")
    parser.add_argument("--chunk-size", type=int, default=65536, help="Raster cells interpolated per batch")
    parser.add_argument("--clip-to-hull", action="store_true", help="Score refinement only inside the ground-point hull")
    parser.add_argument("--ground-only", action="store_true", help="Ignore water-classified points")
    parser.add_argument("--seed", type=int, default=0, help="Seed for the x/y jitter")
    parser.add_argument("--elevation-only", action="store_true", help="Skip the intensity and return-number rasters")
    parser.add_argument("--emit-geojson", action="store_true", help="Write contours GeoJSON next to the summary")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress")

    args = parser.parse_args()

    las_path = Path(args.las).resolve()
    out_path = Path(args.out).resolve()
    out_path.parent.mkdir(parents=True, exist_ok=True)

    params = ContourParams(
        cell_size=args.cell_size,
        contour_interval=args.contour_interval,
        form_lines=args.form_lines,
        algorithm=Algorithm(args.algorithm),
        smoothing_iterations=args.smoothing_iterations,
        regularization_lambda=args.regularization_lambda,
        thresholds=(args.min_threshold, args.convergence_threshold),
        num_neighbors=args.num_neighbors,
        ridge_smoothing=args.ridge_smoothing,
        simplify_tolerance=args.simplify_tolerance,
        verbose=args.verbose,
    )
    params_dict = asdict(params)
    params_dict["algorithm"] = params.algorithm.value
    params_dict["thresholds"] = list(params.thresholds)

    summary: Dict = {
        "las": str(las_path),
        "contract": CONTOURS_CONTRACT,
        "policy": as_policy_dict(),
        "params": params_dict,
    }

    t0 = time.time()
    try:
        info, geojson = process_tile(
            las_path,
            params,
            tile_size=args.tile_size,
            include_water=not args.ground_only,
            clip_to_hull=args.clip_to_hull,
            chunk_size=args.chunk_size,
            seed=args.seed,
            elevation_only=args.elevation_only,
        )
        summary["tile"] = info
        summary["status"] = "ok"
    except (NoGroundPointsError, InsufficientPointsError) as exc:
        # no ground or too few points: fatal for this tile only, the caller moves on
        geojson = None
        summary["tile"] = {"path": str(las_path)}
        summary["status"] = "skipped"
        summary["reason"] = str(exc)
    total_s = time.time() - t0

    if args.emit_geojson and geojson is not None:
        geojson_path = out_path.parent / f"{las_path.stem}_contours.geojson"
        geojson_path.write_text(json.dumps(geojson))
        summary["geojson"] = str(geojson_path)

    with open(out_path, "w") as f:
        json.dump(summary, f, indent=2)

    tile = summary["tile"]
    print(
        json.dumps(
            {
                "status": summary["status"],
                "contours": tile.get("contours", 0),
                "vertices": tile.get("vertices", 0),
                "converged": tile.get("converged"),
            },
            indent=2,
        )
    )
    write_provenance(
        out_path.parent,
        filename="provenance_contours.json",
        extra={
            "script": "run_contours.py",
            "las": str(las_path),
            "params": params_dict,
            "timings": {"total_seconds": round(total_s, 3)},
        },
    )
    append_timings(
        out_path.parent,
        component="contours",
        timings={"total_seconds": round(total_s, 3), **tile.get("timings", {})},
        extra={"las": str(las_path), "status": summary["status"]},
    )


if __name__ == "__main__":
    main()
