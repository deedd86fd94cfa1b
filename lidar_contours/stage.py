"""
Contour generation stage.

Typed ``run()`` entry point over the CLI driver in ``scripts/run_contours.py``.
The driver owns all file handling (LAS/LAZ reading, GeoJSON and summary
output), so orchestration code shells out to it and gets back the summary
path, with failures surfaced as exceptions carrying the captured output.
"""

from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence


@dataclass
class ContourStageParams:
    """Configuration for one run of the contour CLI over a LAS/LAZ tile."""

    las_path: Path
    out_path: Path
    tile_size: Optional[float] = None
    cell_size: float = 0.5
    contour_interval: float = 5.0
    form_lines: bool = False
    algorithm: str = "raw"
    smoothing_iterations: int = 0
    regularization_lambda: float = 1.0
    thresholds: Sequence[float] = (0.0, 1e-3)
    num_neighbors: int = 32
    ridge_smoothing: float = 5.0
    simplify_tolerance: float = 0.0
    clip_to_hull: bool = False
    include_water: bool = True
    elevation_only: bool = False
    seed: Optional[int] = 0
    emit_geojson: bool = False
    verbose: bool = False
    timeout_s: Optional[float] = None


def build_command(params: ContourStageParams, script_path: Path) -> list[str]:
    cmd = [
        sys.executable,
        str(script_path),
        "--las",
        str(params.las_path),
        "--out",
        str(params.out_path),
        "--cell-size",
        str(params.cell_size),
        "--contour-interval",
        str(params.contour_interval),
        "--algorithm",
        params.algorithm,
        "--smoothing-iterations",
        str(params.smoothing_iterations),
        "--lambda",
        str(params.regularization_lambda),
        "--min-threshold",
        str(params.thresholds[0]),
        "--convergence-threshold",
        str(params.thresholds[1]),
        "--num-neighbors",
        str(params.num_neighbors),
        "--ridge-smoothing",
        str(params.ridge_smoothing),
        "--simplify-tolerance",
        str(params.simplify_tolerance),
    ]
    if params.tile_size is not None:
        cmd.extend(["--tile-size", str(params.tile_size)])
    if params.seed is not None:
        cmd.extend(["--seed", str(params.seed)])
    if params.form_lines:
        cmd.append("--form-lines")
    if params.clip_to_hull:
        cmd.append("--clip-to-hull")
    if not params.include_water:
        cmd.append("--ground-only")
    if params.elevation_only:
        cmd.append("--elevation-only")
    if params.emit_geojson:
        cmd.append("--emit-geojson")
    if params.verbose:
        cmd.append("--verbose")
    return cmd


def run(params: ContourStageParams) -> Path:
    """Execute the contour stage and return the summary JSON path."""

    script_path = Path(__file__).resolve().parent.parent / "scripts" / "run_contours.py"
    if not script_path.exists():
        raise FileNotFoundError(f"Contour CLI not found at {script_path}")

    params.out_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = build_command(params, script_path)

    try:
        subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=params.timeout_s,
        )
    except subprocess.TimeoutExpired as exc:
        raise TimeoutError(f"Contour stage timed out after {params.timeout_s}s: {' '.join(cmd)}") from exc
    except subprocess.CalledProcessError as exc:
        stdout = (exc.stdout or "").strip()
        stderr = (exc.stderr or "").strip()
        details = "\n".join(
            part
            for part in [
                f"cmd: {' '.join(cmd)}",
                f"exit_code: {exc.returncode}",
                f"stdout: {stdout}" if stdout else "",
                f"stderr: {stderr}" if stderr else "",
            ]
            if part
        )
        raise RuntimeError(f"Contour stage failed\n{details}") from exc
    return params.out_path
