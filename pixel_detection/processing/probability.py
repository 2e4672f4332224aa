"""
Probability computation around a loaded pixel classifier.

ProbabilityRunner owns one classifier (one file, one processing mode) and
the last probability volume it computed. Steps of compute_probabilities():

1. Check the requested class index against the classifier's class count
2. Crop the image to the interval, re-expressed zero-origin for the backend
3. Run the classifier (one probability channel per class)
4. Keep the requested class channel
5. In 3D, de-interleave the depth slices of that class
6. Translate the result back to the interval's minimum
7. Remember the volume and the image calibration as "last computed"

Public methods never raise: on failure they return None (or False), log
the problem and leave it in ``error_message``. A failed computation keeps
the previous result.

Usage:
    runner = ProbabilityRunner('/path/to/classifier.joblib', is_3d=False)
    if not runner.load_classifier():
        print(runner.error_message)
    volume = runner.compute_probabilities(image, interval, class_index=1)
    spots = runner.get_spots_from_last_probabilities(threshold=0.5, simplify=True)
"""

from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from pixel_detection.classification.pixel_classifier import PixelClassifier, ProcessingMode
from pixel_detection.detection.extraction import extract_spots
from pixel_detection.detection.spots import Spot
from pixel_detection.io.image import CalibratedImage
from pixel_detection.processing.coordinates import (
    CoordinateValidationError,
    Interval,
    deinterleave,
    select_class_channel,
)
from pixel_detection.processing.volume import ProbabilityVolume
from pixel_detection.utils.config import get_thread_count
from pixel_detection.utils.errors import (
    ClassIndexOutOfRangeError,
    ClassifierLoadError,
    ComputationFailedError,
    DetectionError,
    NotComputedYetError,
    NotLoadedError,
)
from pixel_detection.utils.logging import get_logger

logger = get_logger(__name__)

# Signature of the classifier loader: (path, is_3d) -> classifier
ClassifierLoader = Callable[[str, bool], Any]


class ProbabilityRunner:
    """
    Runs a pixel classifier on image regions and keeps the last result.

    Not thread-safe: callers serialize calls on one instance.

    Attributes:
        classifier_path: Classifier artifact path
        mode: ProcessingMode chosen at construction
        n_threads: Threads for classification and spot extraction
        error_message: Message of the last failure, None after a success
    """

    def __init__(
        self,
        classifier_path: str,
        is_3d: bool,
        n_threads: Optional[int] = None,
        loader: Optional[ClassifierLoader] = None,
    ):
        self.classifier_path = str(classifier_path)
        self.mode = ProcessingMode.from_is_3d(is_3d)
        self.n_threads = n_threads if n_threads is not None else get_thread_count()
        self.error_message: Optional[str] = None
        self._loader = loader if loader is not None else PixelClassifier.load
        self._classifier = None
        self._last_output: Optional[ProbabilityVolume] = None
        self._last_calibration: Optional[Tuple[float, ...]] = None

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def set_num_threads(self, n_threads: Optional[int] = None) -> None:
        """Set the thread count; None uses the configured default."""
        self.n_threads = max(1, int(n_threads)) if n_threads is not None else get_thread_count()

    # ------------------------------------------------------------------
    # Classifier
    # ------------------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        return self._classifier is not None

    @property
    def classifier(self):
        return self._classifier

    def load_classifier(self) -> bool:
        """
        Load the classifier from ``classifier_path``.

        Returns:
            True on success; False with ``error_message`` set otherwise
        """
        self.error_message = None
        self._classifier = None
        try:
            self._classifier = self._loader(self.classifier_path, self.mode is ProcessingMode.THREE_D)
        except ClassifierLoadError as e:
            return self._fail(e, False)
        except Exception as e:
            return self._fail(
                ClassifierLoadError(
                    f"Problem loading the classifier for file {self.classifier_path}: {e}"
                ),
                False,
            )
        return True

    def get_class_names(self) -> Optional[Tuple[str, ...]]:
        """Class labels in class-index order, or None if no classifier is loaded."""
        self.error_message = None
        if self._classifier is None:
            return self._fail(NotLoadedError(), None)
        return tuple(self._classifier.class_names)

    # ------------------------------------------------------------------
    # Probabilities
    # ------------------------------------------------------------------

    @property
    def last_probabilities(self) -> Optional[ProbabilityVolume]:
        return self._last_output

    @property
    def last_calibration(self) -> Optional[Tuple[float, ...]]:
        return self._last_calibration

    def compute_probabilities(
        self,
        image: CalibratedImage,
        interval: Interval,
        class_index: int,
    ) -> Optional[ProbabilityVolume]:
        """
        Probability map of one class over ``interval`` of ``image``.

        Args:
            image: Single-channel, single-frame spatial image
            interval: Region to classify, in image coordinates
            class_index: 0-based class index

        Returns:
            ProbabilityVolume placed at ``interval``, or None on failure
        """
        self.error_message = None
        try:
            output = self._compute(image, interval, class_index)
        except DetectionError as e:
            return self._fail(e, None)
        except Exception as e:
            return self._fail(ComputationFailedError(str(e) or type(e).__name__, cause=e), None)

        self._last_output = output
        self._last_calibration = tuple(image.calibration)
        return output

    def _compute(self, image: CalibratedImage, interval: Interval, class_index: int) -> ProbabilityVolume:
        if self._classifier is None:
            raise NotLoadedError()

        num_classes = self._classifier.num_classes
        if class_index < 0 or class_index >= num_classes:
            raise ClassIndexOutOfRangeError(class_index, num_classes)

        if image.data.ndim != self.mode.ndim or interval.ndim != self.mode.ndim:
            raise ComputationFailedError(
                f"{self.mode.value.upper()} classifier got a {image.data.ndim}D image "
                f"and a {interval.ndim}D interval"
            )

        try:
            cropped = image.crop(interval)
        except CoordinateValidationError as e:
            raise ComputationFailedError(str(e), cause=e) from e

        logger.debug(f"Classifying {cropped.data.shape} crop of {image.name} at {interval}")
        probas = np.asarray(self._classifier.apply_to_image(cropped.data, self.n_threads))

        channel = select_class_channel(probas, class_index)
        if self.mode is ProcessingMode.THREE_D:
            # Class planes are interleaved along depth: z * num_classes + class_index
            channel = deinterleave(channel, start=class_index, step=num_classes, axis=0)

        if channel.shape != interval.shape:
            raise ComputationFailedError(
                f"Classifier output of shape {channel.shape} does not match "
                f"the requested region {interval.shape}"
            )

        return ProbabilityVolume(data=channel, interval=interval)

    # ------------------------------------------------------------------
    # Spots
    # ------------------------------------------------------------------

    def get_spots_from_last_probabilities(
        self,
        threshold: float,
        simplify: bool = True,
        smoothing_scale: float = -1.0,
        frame: int = 0,
    ) -> Optional[List[Spot]]:
        """Spots from the last computed volume; None before any successful computation."""
        self.error_message = None
        if self._classifier is None:
            return self._fail(NotLoadedError(), None)
        if self._last_output is None:
            return self._fail(NotComputedYetError(), None)
        return self.get_spots(
            self._last_output,
            self._last_calibration,
            threshold,
            simplify=simplify,
            smoothing_scale=smoothing_scale,
            frame=frame,
        )

    def get_spots(
        self,
        volume: ProbabilityVolume,
        calibration: Sequence[float],
        threshold: float,
        simplify: bool = True,
        smoothing_scale: float = -1.0,
        frame: int = 0,
    ) -> Optional[List[Spot]]:
        """Spots from any probability volume, in this runner's processing mode."""
        self.error_message = None
        try:
            return extract_spots(
                volume,
                calibration,
                threshold,
                self.mode,
                simplify=simplify,
                n_threads=self.n_threads,
                smoothing_scale=smoothing_scale,
                frame=frame,
            )
        except Exception as e:
            return self._fail(ComputationFailedError(str(e) or type(e).__name__, cause=e), None)

    # ------------------------------------------------------------------

    def _fail(self, error: DetectionError, value):
        self.error_message = error.message
        logger.error(f"[{error.kind}] {error.message}")
        return value
