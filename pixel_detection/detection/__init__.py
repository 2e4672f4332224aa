"""
Spot detection from probability volumes.

Provides:
- Spot, Mesh: detections in physical coordinates
- extract_spots: threshold a probability volume into spots
- Contour helpers (tracing, simplification, polygon validation)

The per-frame detector and the caching previewer depend on the
probability runner and are imported from their modules:
    from pixel_detection.detection.detector import ProbabilityDetectorFactory
    from pixel_detection.detection.previewer import DetectionPreviewer
"""

from .spots import Spot, Mesh

from .contours import (
    DEFAULT_SIMPLIFY_EPSILON,
    trace_outer_contour,
    rdp_simplify,
    validate_polygon,
    polygon_centroid,
)

from .extraction import (
    threshold_mask,
    extract_spots,
    filter_by_quality,
)

__all__ = [
    'Spot',
    'Mesh',
    'DEFAULT_SIMPLIFY_EPSILON',
    'trace_outer_contour',
    'rdp_simplify',
    'validate_polygon',
    'polygon_centroid',
    'threshold_mask',
    'extract_spots',
    'filter_by_quality',
]
