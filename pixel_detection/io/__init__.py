"""
Image input for the detection pipeline.

Provides:
- CalibratedImage: numpy data with axis labels and spatial calibration
- load_image: read .npy / TIFF files into a CalibratedImage
"""

from .image import (
    CalibratedImage,
    load_image,
    AXES_ORDER,
    SPATIAL_AXES,
)

__all__ = [
    'CalibratedImage',
    'load_image',
    'AXES_ORDER',
    'SPATIAL_AXES',
]
