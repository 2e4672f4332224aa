"""
Pixel classification backend.

Provides:
- PixelClassifier: loaded, pre-trained per-pixel classifier (scikit-learn
  estimator + feature parameters, saved with joblib)
- ProcessingMode: 2D / 3D processing, fixed when the classifier is loaded
- compute_feature_stack: the per-pixel features the classifier consumes

Usage:
    from pixel_detection.classification import PixelClassifier

    classifier = PixelClassifier.load('classifier.joblib', is_3d=False)
    print(classifier.class_names)
"""

from .features import (
    DEFAULT_FEATURE_PARAMS,
    compute_feature_stack,
    resolve_feature_params,
)
from .pixel_classifier import (
    PixelClassifier,
    ProcessingMode,
    DUMMY_SHAPES,
)

__all__ = [
    'DEFAULT_FEATURE_PARAMS',
    'compute_feature_stack',
    'resolve_feature_params',
    'PixelClassifier',
    'ProcessingMode',
    'DUMMY_SHAPES',
]
