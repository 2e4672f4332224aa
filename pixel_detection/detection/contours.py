"""
Contour tracing and polygon clean-up for 2D detections.

Functions:
1. trace_outer_contour - boundary of a binary region, through pixel centres
2. rdp_simplify - Ramer-Douglas-Peucker point reduction
3. validate_polygon - fix self-intersections, drop degenerate polygons
4. polygon_centroid - area-weighted centroid of a contour

All coordinates are [x, y] (column, row) pairs in pixel units.
"""

from typing import Optional, Tuple

import cv2
import numpy as np
from shapely.geometry import Polygon
from shapely.validation import make_valid

from pixel_detection.utils.logging import get_logger

logger = get_logger(__name__)

# Douglas-Peucker tolerance used for simplified contours, in pixels
DEFAULT_SIMPLIFY_EPSILON = 0.5

# Polygons smaller than this (pixels^2) are treated as degenerate
MIN_POLYGON_AREA = 1e-6


def trace_outer_contour(mask: np.ndarray) -> Optional[np.ndarray]:
    """
    Trace the outer boundary of a binary region with OpenCV.

    The boundary runs through the centres of the region's edge pixels, with
    every boundary pixel kept (no chain approximation).

    Args:
        mask: 2D boolean array, one connected region

    Returns:
        (N, 2) float array of [x, y] points, or None if the mask is empty
    """
    if mask.ndim != 2:
        raise ValueError(f"Contours are traced on 2D masks, got {mask.ndim}D")
    if not mask.any():
        return None

    # One pixel of padding so regions touching the border close properly
    padded = np.pad(mask.astype(np.uint8), 1)
    contours, _ = cv2.findContours(padded, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
    if not contours:
        return None

    largest = max(contours, key=lambda c: (len(c), cv2.contourArea(c)))
    return largest.reshape(-1, 2).astype(np.float64) - 1.0


def rdp_simplify(points: np.ndarray, epsilon: float = DEFAULT_SIMPLIFY_EPSILON) -> np.ndarray:
    """
    Apply Ramer-Douglas-Peucker simplification using OpenCV.

    Args:
        points: Array of shape (N, 2) with coordinates
        epsilon: Maximum distance threshold for point removal (same units as points)

    Returns:
        Simplified array of points, shape (M, 2) where M <= N
    """
    if len(points) < 3:
        return points

    contour = np.asarray(points, dtype=np.float32).reshape(-1, 1, 2)
    simplified = cv2.approxPolyDP(contour, epsilon, closed=True)
    return simplified.reshape(-1, 2).astype(np.float64)


def validate_polygon(poly: Polygon) -> Optional[Polygon]:
    """
    Validate and fix a Shapely polygon.

    Self-intersecting polygons are repaired; when the repair splits the
    shape, the largest polygon is kept. Empty or zero-area results give None.

    Args:
        poly: Shapely Polygon object

    Returns:
        Valid Polygon or None if unfixable
    """
    if not poly.is_valid:
        poly = make_valid(poly)
        if poly.geom_type == 'MultiPolygon':
            poly = max(poly.geoms, key=lambda p: p.area)
        elif poly.geom_type == 'GeometryCollection':
            polys = [g for g in poly.geoms if g.geom_type == 'Polygon']
            if not polys:
                return None
            poly = max(polys, key=lambda p: p.area)
        elif poly.geom_type != 'Polygon':
            return None

    if poly.is_empty or poly.area < MIN_POLYGON_AREA:
        return None
    return poly


def polygon_centroid(contour: np.ndarray) -> Optional[Tuple[Tuple[float, float], float]]:
    """
    Centroid and area of a closed contour.

    Args:
        contour: (N, 2) [x, y] points

    Returns:
        ((cx, cy), area), or None for degenerate contours (< 3 points, no area)
    """
    if contour is None or len(contour) < 3:
        return None
    poly = validate_polygon(Polygon(contour))
    if poly is None:
        return None
    c = poly.centroid
    return (float(c.x), float(c.y)), float(poly.area)
