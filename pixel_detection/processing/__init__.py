"""
Probability processing for the detection pipeline.

Provides:
- Interval and coordinate helpers (crop, zero-min, translate, de-interleave)
- ProbabilityVolume: a class probability map placed in image coordinates

The runner that drives the classifier lives in
pixel_detection.processing.probability and is imported from there:
    from pixel_detection.processing.probability import ProbabilityRunner
"""

from .coordinates import (
    CoordinateValidationError,
    Interval,
    crop_zero_min,
    select_class_channel,
    deinterleave,
    pixel_to_physical,
    physical_to_xyz,
)
from .volume import ProbabilityVolume

__all__ = [
    'CoordinateValidationError',
    'Interval',
    'crop_zero_min',
    'select_class_channel',
    'deinterleave',
    'pixel_to_physical',
    'physical_to_xyz',
    'ProbabilityVolume',
]
