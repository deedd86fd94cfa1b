"""Terrain raster and contour extraction for classified LiDAR tiles."""

__version__ = "0.1.0"

from .contour import Contour, ContourSet, classify_level  # noqa: F401
from .errors import (  # noqa: F401
    DimensionMismatchError,
    InsufficientPointsError,
    LidarContoursError,
    NoGroundPointsError,
)
from .interpolate import compute_rasters, interpolate  # noqa: F401
from .params import Algorithm, ContourParams  # noqa: F401
from .points import Bounds, Point, PointSet  # noqa: F401
from .raster import RasterGrid  # noqa: F401
from .refine import RefinementResult, extract_contours, generate_contours, refine_contours  # noqa: F401

__all__ = [
    "Algorithm",
    "Bounds",
    "Contour",
    "ContourParams",
    "ContourSet",
    "DimensionMismatchError",
    "InsufficientPointsError",
    "LidarContoursError",
    "NoGroundPointsError",
    "Point",
    "PointSet",
    "RasterGrid",
    "RefinementResult",
    "classify_level",
    "compute_rasters",
    "extract_contours",
    "generate_contours",
    "interpolate",
    "refine_contours",
]
