"""
Pixel-classifier detection package.

Turns the per-pixel class probabilities of a trained pixel classifier into
discrete spot detections in 2D (with contours) and 3D (with meshes).

Usage:
    from pixel_detection.io import CalibratedImage, load_image
    from pixel_detection.processing.probability import ProbabilityRunner
    from pixel_detection.detection.detector import ProbabilityDetectorFactory
    from pixel_detection.detection.previewer import DetectionPreviewer
    from pixel_detection.utils import get_logger, setup_logging, load_config
"""

# Version
__version__ = "0.1.0"

# Submodules are imported explicitly to keep import cycles out:
#   from pixel_detection.processing.probability import ProbabilityRunner
#   from pixel_detection.utils.logging import get_logger

__all__ = [
    "io",
    "classification",
    "detection",
    "processing",
    "utils",
    "cli",
]
