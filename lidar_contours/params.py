"""
Configuration for contour generation.

``ContourParams`` is the bundle handed to the engine for one tile. The
profiles at the bottom are *recommendations*, not automatic overrides; the
CLI still accepts explicit flags. They exist so that the parameter stance
of a run is machine-readable and can be embedded in summary output.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class Algorithm(str, Enum):
    RAW = "raw"
    NORMAL_FIELD_SMOOTHING = "smooth"
    NAIVE_ITERATIVE_REFINEMENT = "refine"


@dataclass(frozen=True)
class ContourParams:
    """Inputs controlling raster interpolation and contour extraction."""

    cell_size: float = 0.5
    contour_interval: float = 5.0
    form_lines: bool = False
    algorithm: Algorithm = Algorithm.RAW
    # refinement budget for NAIVE_ITERATIVE_REFINEMENT, smoothing passes otherwise
    smoothing_iterations: int = 0
    regularization_lambda: float = 1.0
    # (min_threshold, convergence_threshold)
    thresholds: Tuple[float, float] = (0.0, 1e-3)
    num_neighbors: int = 32
    ridge_smoothing: float = 5.0
    max_normal_diff_degrees: float = 15.0
    smoothing_filter_size: int = 5
    half_size_step: int = 30
    control_points_per_side: int = 25
    simplify_tolerance: float = 0.0
    index_every: int = 5
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.cell_size > 0:
            raise ValueError(f"cell_size must be positive, got {self.cell_size}")
        if not self.contour_interval > 0:
            raise ValueError(f"contour_interval must be positive, got {self.contour_interval}")
        if not self.ridge_smoothing > 0:
            # the normal matrix is only guaranteed invertible with a ridge term
            raise ValueError(f"ridge_smoothing must be positive, got {self.ridge_smoothing}")
        if not 0 <= int(self.smoothing_iterations) <= 255:
            raise ValueError(f"smoothing_iterations must be in [0, 255], got {self.smoothing_iterations}")
        if self.num_neighbors < 6:
            raise ValueError("num_neighbors must be at least 6 to fit a quadratic surface")
        if self.simplify_tolerance < 0:
            raise ValueError("simplify_tolerance must be non-negative")
        if not isinstance(self.algorithm, Algorithm):
            object.__setattr__(self, "algorithm", Algorithm(self.algorithm))

    @property
    def effective_interval(self) -> float:
        return self.contour_interval / 2.0 if self.form_lines else self.contour_interval

    @property
    def min_threshold(self) -> float:
        return float(self.thresholds[0])

    @property
    def convergence_threshold(self) -> float:
        return float(self.thresholds[1])

    def contour_levels(self, z_min: float, z_max: float) -> list[float]:
        """Levels covering ``[z_min, z_max]`` on the effective interval grid."""
        interval = self.effective_interval
        count = int(math.ceil((z_max - z_min) / interval)) + 1
        start = math.floor(z_min / interval) * interval
        return [start + i * interval for i in range(max(count, 0))]


@dataclass(frozen=True)
class ContourProfile:
    name: str
    algorithm: Algorithm
    smoothing_iterations: int
    notes: str


RAW_PROFILE = ContourProfile(
    name="raw",
    algorithm=Algorithm.RAW,
    smoothing_iterations=0,
    notes="Trace the locally-regressed elevation raster directly. Most faithful, most jagged.",
)

SMOOTH_PROFILE = ContourProfile(
    name="normal_field_smoothing",
    algorithm=Algorithm.NORMAL_FIELD_SMOOTHING,
    smoothing_iterations=3,
    notes=(
        "One application of feature-preserving normal-vector smoothing before tracing. "
        "Keeps breaks in slope sharper than a plain blur."
    ),
)

REFINED_PROFILE = ContourProfile(
    name="iterative_refinement",
    algorithm=Algorithm.NAIVE_ITERATIVE_REFINEMENT,
    smoothing_iterations=5,
    notes=(
        "Searches for a raster whose contours are both smooth and faithful. "
        "Cost grows linearly with the iteration budget; treat scores as diagnostics."
    ),
)


def as_policy_dict() -> Dict[str, object]:
    """Small policy block that can be embedded in summary outputs."""
    return {
        "contours": {
            "default_profile": RAW_PROFILE.name,
            "profiles": {
                p.name: {"algorithm": p.algorithm.value, "smoothing_iterations": p.smoothing_iterations}
                for p in (RAW_PROFILE, SMOOTH_PROFILE, REFINED_PROFILE)
            },
            "scores_are_diagnostic_only": True,
        }
    }
