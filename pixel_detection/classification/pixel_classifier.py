"""
Trained pixel classifier: load, describe, apply.

Wraps a pre-trained scikit-learn estimator that maps a per-pixel feature
vector to class probabilities. Training happens elsewhere; this module only
loads the saved artifact and applies it.

Artifact format (joblib):
    {
        'model': estimator with predict_proba (e.g. RandomForestClassifier),
        'class_names': ['background', 'nucleus', ...],   # predict_proba column order
        'feature_params': {...},                          # see features.py
        'is_3d': False,                                   # optional
    }

Output layout of apply_to_image():
    - 2D: (n_classes, Y, X), one channel per class
    - 3D: (1, Z * n_classes, Y, X), a single channel holding every class,
      slice-major along depth: depth slice z * n_classes + c is class c at z

Usage:
    classifier = PixelClassifier.load('classifier.joblib', is_3d=False)
    names = classifier.class_names
    probas = classifier.apply_to_image(image, n_threads=8)
"""

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import joblib
import numpy as np

from pixel_detection.classification.features import compute_feature_stack, resolve_feature_params
from pixel_detection.utils.errors import ClassifierLoadError, ComputationFailedError
from pixel_detection.utils.logging import get_logger

logger = get_logger(__name__)


class ProcessingMode(Enum):
    """Dimensionality the classifier was loaded for; fixed at load time."""
    TWO_D = "2d"
    THREE_D = "3d"

    @classmethod
    def from_is_3d(cls, is_3d: bool) -> "ProcessingMode":
        return cls.THREE_D if is_3d else cls.TWO_D

    @property
    def ndim(self) -> int:
        return 3 if self is ProcessingMode.THREE_D else 2


# Blank images classified once after loading to check the estimator accepts
# the feature stack.
DUMMY_SHAPES = {
    ProcessingMode.TWO_D: (16, 16),
    ProcessingMode.THREE_D: (4, 16, 16),
}

# Pixels per predict_proba call; chunks are spread over the worker threads.
PREDICT_CHUNK_PIXELS = 65536


class PixelClassifier:
    """
    A loaded pixel classifier.

    Immutable once built. To change the source file or dimensionality, load a
    new one.

    Attributes:
        model: Estimator exposing predict_proba
        class_names: Class labels in predict_proba column order
        mode: ProcessingMode (2D or 3D)
        feature_params: Feature stack parameters
        path: File the classifier was loaded from, if any
    """

    def __init__(
        self,
        model: Any,
        class_names: Sequence[str],
        mode: ProcessingMode = ProcessingMode.TWO_D,
        feature_params: Optional[Dict[str, Any]] = None,
        path: Optional[Union[str, Path]] = None,
    ):
        if not hasattr(model, 'predict_proba'):
            raise ClassifierLoadError(
                f"Classifier model {type(model).__name__} has no predict_proba method"
            )
        self._model = model
        self._class_names = tuple(str(n) for n in class_names)
        if not self._class_names:
            raise ClassifierLoadError("Classifier knows no classes")
        classes = getattr(model, 'classes_', None)
        if classes is not None and len(classes) != len(self._class_names):
            raise ClassifierLoadError(
                f"Classifier has {len(classes)} output classes but "
                f"{len(self._class_names)} class names"
            )
        self._mode = mode
        try:
            self._feature_params = resolve_feature_params(feature_params)
        except ValueError as e:
            raise ClassifierLoadError(str(e)) from e
        self._path = str(path) if path is not None else None

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: Union[str, Path], is_3d: bool = False) -> "PixelClassifier":
        """
        Load a classifier artifact and check it works in the requested mode.

        Args:
            path: Path to the joblib artifact
            is_3d: Load for 3D (True) or 2D (False) processing

        Returns:
            PixelClassifier

        Raises:
            ClassifierLoadError: Missing, unreadable, malformed or
                mode-incompatible file
        """
        path = Path(path)
        mode = ProcessingMode.from_is_3d(is_3d)
        base_message = f"Problem loading the classifier for file {path}"

        if not path.is_file():
            raise ClassifierLoadError(f"{base_message}: file not found")

        try:
            artifact = joblib.load(path)
        except Exception as e:
            raise ClassifierLoadError(f"{base_message}: {e}") from e

        if not isinstance(artifact, dict) or 'model' not in artifact:
            raise ClassifierLoadError(
                f"{base_message}: expected a dict with a 'model' entry, "
                f"got {type(artifact).__name__}"
            )

        model = artifact['model']
        class_names = artifact.get('class_names')
        if class_names is None:
            classes = getattr(model, 'classes_', None)
            if classes is None:
                raise ClassifierLoadError(f"{base_message}: no class names in artifact")
            class_names = [str(c) for c in classes]

        saved_is_3d = artifact.get('is_3d')
        if saved_is_3d is not None and bool(saved_is_3d) != is_3d:
            raise ClassifierLoadError(
                f"{base_message}: classifier was saved for "
                f"{'3D' if saved_is_3d else '2D'} images but {mode.value.upper()} "
                f"processing was requested"
            )

        try:
            classifier = cls(
                model=model,
                class_names=class_names,
                mode=mode,
                feature_params=artifact.get('feature_params'),
                path=path,
            )
        except ClassifierLoadError as e:
            raise ClassifierLoadError(f"{base_message}: {e}") from e

        classifier._check_with_dummy_image(base_message)
        logger.info(
            f"Loaded {mode.value} classifier from {path.name} "
            f"with {classifier.num_classes} classes: {', '.join(classifier.class_names)}"
        )
        return classifier

    def _check_with_dummy_image(self, base_message: str) -> None:
        dummy = np.zeros(DUMMY_SHAPES[self._mode], dtype=np.float32)
        try:
            self.apply_to_image(dummy, n_threads=1)
        except Exception as e:
            raise ClassifierLoadError(
                f"{base_message}: classifier cannot process {self._mode.value.upper()} "
                f"feature stacks ({e})"
            ) from e

    def save(self, path: Union[str, Path]) -> Path:
        """Write the classifier artifact with joblib."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        artifact = {
            'model': self._model,
            'class_names': list(self._class_names),
            'feature_params': dict(self._feature_params),
            'is_3d': self._mode is ProcessingMode.THREE_D,
        }
        joblib.dump(artifact, path)
        logger.info(f"Classifier saved to: {path}")
        return path

    # ------------------------------------------------------------------
    # Description
    # ------------------------------------------------------------------

    @property
    def class_names(self) -> Tuple[str, ...]:
        return self._class_names

    @property
    def num_classes(self) -> int:
        return len(self._class_names)

    @property
    def mode(self) -> ProcessingMode:
        return self._mode

    @property
    def feature_params(self) -> Dict[str, Any]:
        return dict(self._feature_params)

    @property
    def path(self) -> Optional[str]:
        return self._path

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def apply_to_image(self, data: np.ndarray, n_threads: int = 1) -> np.ndarray:
        """
        Classify every pixel of a zero-origin, single-channel image.

        Args:
            data: (Y, X) in 2D mode, (Z, Y, X) in 3D mode
            n_threads: Threads for feature computation and prediction

        Returns:
            float32 probabilities in [0, 1], layout described in the module docstring

        Raises:
            ComputationFailedError: Wrong dimensionality or estimator output
        """
        if data.ndim != self._mode.ndim:
            raise ComputationFailedError(
                f"Classifier loaded for {self._mode.value.upper()} cannot process "
                f"a {data.ndim}D image"
            )
        n_threads = max(1, int(n_threads))

        features = compute_feature_stack(data, self._feature_params, n_threads=n_threads)
        flat = features.reshape(-1, features.shape[-1])
        probas = self._predict_pixels(flat, n_threads)

        if probas.ndim != 2 or probas.shape[1] != self.num_classes:
            raise ComputationFailedError(
                f"Classifier returned probabilities of shape {probas.shape}, "
                f"expected (n_pixels, {self.num_classes})"
            )

        probas = np.clip(probas, 0.0, 1.0).astype(np.float32, copy=False)
        probas = probas.reshape(data.shape + (self.num_classes,))

        if self._mode is ProcessingMode.THREE_D:
            nz, ny, nx = data.shape
            # (Z, Y, X, k) -> (Z, k, Y, X) -> one channel of Z*k slices
            interleaved = probas.transpose(0, 3, 1, 2).reshape(nz * self.num_classes, ny, nx)
            return np.ascontiguousarray(interleaved[np.newaxis])

        return np.ascontiguousarray(probas.transpose(2, 0, 1))

    def _predict_pixels(self, flat: np.ndarray, n_threads: int) -> np.ndarray:
        n_pixels = flat.shape[0]
        bounds: List[Tuple[int, int]] = [
            (start, min(start + PREDICT_CHUNK_PIXELS, n_pixels))
            for start in range(0, n_pixels, PREDICT_CHUNK_PIXELS)
        ]

        def predict(bound: Tuple[int, int]) -> np.ndarray:
            start, stop = bound
            return np.asarray(self._model.predict_proba(flat[start:stop]), dtype=np.float64)

        if n_threads == 1 or len(bounds) == 1:
            chunks = [predict(b) for b in bounds]
        else:
            # map() keeps chunk order, so the result does not depend on n_threads
            with ThreadPoolExecutor(max_workers=n_threads) as executor:
                chunks = list(executor.map(predict, bounds))

        return np.concatenate(chunks, axis=0)

    def __repr__(self) -> str:
        return (
            f"PixelClassifier(path={self._path!r}, mode={self._mode.value}, "
            f"classes={list(self._class_names)})"
        )
