"""
Error taxonomy for the contour engine.

Only a few conditions are errors. Everything else that looks suspicious
(flat neighbourhoods, NaN cells outside the hull, a refinement loop that
runs out of budget) is handled in-line and never raised.
"""

from __future__ import annotations

from typing import Tuple


class LidarContoursError(ValueError):
    """Base class for engine errors."""


class NoGroundPointsError(LidarContoursError):
    """The tile holds no ground-classified point; no hull or raster can be built."""

    def __init__(self, message: str = "The area contains no ground points") -> None:
        super().__init__(message)


class InsufficientPointsError(LidarContoursError):
    """Too few points survive filtering to fit the local quadratic surface."""

    def __init__(self, count: int, required: int = 6) -> None:
        self.count = count
        self.required = required
        super().__init__(f"At least {required} points are needed for a quadratic fit, got {count}")


class DimensionMismatchError(LidarContoursError):
    """Two rasters that must be aligned differ in shape or cell size."""

    def __init__(self, left: Tuple[int, ...], right: Tuple[int, ...], what: str = "shape") -> None:
        self.left = left
        self.right = right
        super().__init__(f"Raster {what} mismatch: {left} vs {right}")
