"""
Per-pixel feature stack fed to the pixel classifier.

Features are scikit-image's multiscale basic features (Gaussian-smoothed
intensity, gradient magnitude and Hessian eigenvalues at several scales),
computed on float32 data. The same parameters must be used at training and
prediction time, so they are stored in the classifier artifact.
"""

from typing import Any, Dict, Optional

import numpy as np
from skimage.feature import multiscale_basic_features

DEFAULT_FEATURE_PARAMS: Dict[str, Any] = {
    'intensity': True,
    'edges': True,
    'texture': True,
    'sigma_min': 0.5,
    'sigma_max': 8.0,
    'num_sigma': None,
}


def resolve_feature_params(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Defaults overlaid with ``params``; unknown keys are rejected."""
    resolved = dict(DEFAULT_FEATURE_PARAMS)
    if params:
        unknown = set(params) - set(DEFAULT_FEATURE_PARAMS)
        if unknown:
            raise ValueError(f"Unknown feature parameters: {sorted(unknown)}")
        resolved.update(params)
    return resolved


def compute_feature_stack(
    data: np.ndarray,
    params: Optional[Dict[str, Any]] = None,
    n_threads: int = 1,
) -> np.ndarray:
    """
    Compute the feature stack of a single-channel 2D or 3D image.

    Args:
        data: Image array (Y, X) or (Z, Y, X)
        params: Feature parameters (see DEFAULT_FEATURE_PARAMS)
        n_threads: Workers used across scales

    Returns:
        Array of shape data.shape + (n_features,), float32
    """
    if data.ndim not in (2, 3):
        raise ValueError(f"Feature stack needs a 2D or 3D image, got {data.ndim}D")
    params = resolve_feature_params(params)
    image = np.asarray(data, dtype=np.float32)
    features = multiscale_basic_features(
        image,
        intensity=params['intensity'],
        edges=params['edges'],
        texture=params['texture'],
        sigma_min=params['sigma_min'],
        sigma_max=params['sigma_max'],
        num_sigma=params['num_sigma'],
        workers=max(1, int(n_threads)),
        channel_axis=None,
    )
    return features.astype(np.float32, copy=False)
