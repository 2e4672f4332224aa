"""
Detection preview with probability caching.

Classifying a frame is slow; thresholding its probability map is fast. The
previewer remembers which (image, frame, classifier file, class, channel)
produced its cached probability volume and only re-runs the classifier when
one of them changes. Changing the threshold alone re-thresholds the cached
volume.

States:
    Empty - no usable volume (initially, and after any failure)
    Valid - a volume computed for ``key`` is cached

Usage:
    previewer = DetectionPreviewer()
    result = previewer.preview(image, frame=0, settings=settings)
    if result is None:
        print(previewer.error_message)
    else:
        show(result.probabilities, result.spots)
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pixel_detection.detection.extraction import filter_by_quality
from pixel_detection.detection.spots import Spot
from pixel_detection.io.image import CalibratedImage
from pixel_detection.processing.coordinates import Interval
from pixel_detection.processing.probability import ClassifierLoader, ProbabilityRunner
from pixel_detection.processing.volume import ProbabilityVolume
from pixel_detection.utils.config import (
    KEY_CLASS_INDEX,
    KEY_CLASSIFIER_FILEPATH,
    KEY_PROBA_THRESHOLD,
    KEY_SMOOTHING_SCALE,
    KEY_TARGET_CHANNEL,
    check_classifier_path,
    check_settings,
)
from pixel_detection.utils.logging import get_logger

logger = get_logger(__name__)

STATE_EMPTY = "Empty"
STATE_VALID = "Valid"


@dataclass(frozen=True, eq=False)
class RecomputeKey:
    """
    Identity of the inputs behind a cached probability volume.

    The image is compared by identity (a different image object forces a
    recomputation even if it holds the same pixels); the other fields by value.
    """
    image: Any
    frame: int
    classifier_path: str
    class_index: int
    channel: int

    def matches(self, other: Optional["RecomputeKey"]) -> bool:
        return (
            other is not None
            and self.image is other.image
            and self.frame == other.frame
            and self.classifier_path == other.classifier_path
            and self.class_index == other.class_index
            and self.channel == other.channel
        )


@dataclass
class PreviewResult:
    """
    Output of a preview.

    Attributes:
        spots: Spots above the threshold
        probabilities: Copy of the cached probability volume, for display
        recomputed: Whether the classifier ran for this preview
        frame: Frame the spots belong to
    """
    spots: List[Spot]
    probabilities: ProbabilityVolume
    recomputed: bool
    frame: int


class DetectionPreviewer:
    """
    Previews detections for one frame, caching the last probability volume.

    Not thread-safe: callers (typically a background worker) serialize calls.

    Attributes:
        error_message: Message of the last failure, None after a success
    """

    def __init__(self, n_threads: Optional[int] = None, loader: Optional[ClassifierLoader] = None):
        self.error_message: Optional[str] = None
        self._n_threads = n_threads
        self._loader = loader
        self._runner: Optional[ProbabilityRunner] = None
        self._key: Optional[RecomputeKey] = None
        # Loaded only to list class names; never holds probabilities
        self._names_runner: Optional[ProbabilityRunner] = None

    @property
    def state(self) -> str:
        if self._runner is None or self._key is None or self._runner.last_probabilities is None:
            return STATE_EMPTY
        return STATE_VALID

    @property
    def key(self) -> Optional[RecomputeKey]:
        return self._key

    @property
    def cached_probabilities(self) -> Optional[ProbabilityVolume]:
        return self._runner.last_probabilities if self.state == STATE_VALID else None

    def needs_recompute(self, key: RecomputeKey) -> bool:
        """True unless a volume computed for an identical key is cached."""
        return self.state == STATE_EMPTY or not key.matches(self._key)

    def invalidate(self) -> None:
        """Drop the cached volume and classifier."""
        self._runner = None
        self._key = None

    def preview(
        self,
        image: CalibratedImage,
        frame: int,
        settings: Dict[str, Any],
        interval: Optional[Interval] = None,
    ) -> Optional[PreviewResult]:
        """
        Detect spots in one frame, reusing cached probabilities when possible.

        Args:
            image: Full image (all channels and frames)
            frame: 0-based frame index
            settings: Detector settings dict (channel is 1-based)
            interval: Region of interest; defaults to the whole frame

        Returns:
            PreviewResult, or None with ``error_message`` set
        """
        self.error_message = None
        settings = dict(settings)

        ok, message = check_classifier_path(settings.get(KEY_CLASSIFIER_FILEPATH))
        if not ok:
            return self._fail(message)
        ok, message = check_settings(settings, check_file=False)
        if not ok:
            return self._fail(message)

        classifier_path = str(settings[KEY_CLASSIFIER_FILEPATH])
        channel = int(settings[KEY_TARGET_CHANNEL]) - 1
        class_index = int(settings[KEY_CLASS_INDEX])
        threshold = float(settings[KEY_PROBA_THRESHOLD])
        smoothing_scale = float(settings.get(KEY_SMOOTHING_SCALE, -1.0))
        simplify = True

        try:
            frame_image = image.hyperslice(channel, frame)
        except (IndexError, ValueError) as e:
            return self._fail(str(e))

        key = RecomputeKey(
            image=image,
            frame=frame,
            classifier_path=classifier_path,
            class_index=class_index,
            channel=channel,
        )

        recomputed = False
        if self.needs_recompute(key):
            logger.info("Recomputing probabilities.")
            self.invalidate()
            runner = ProbabilityRunner(
                classifier_path, frame_image.is_3d, n_threads=self._n_threads, loader=self._loader
            )
            if not runner.load_classifier():
                return self._fail(runner.error_message)

            roi = interval if interval is not None else frame_image.interval()
            if roi.ndim != frame_image.data.ndim:
                roi = roi.squeeze()
            if runner.compute_probabilities(frame_image, roi, class_index) is None:
                return self._fail("Problem computing probabilities: " + runner.error_message)

            self._runner = runner
            self._key = key
            recomputed = True

        logger.info("Creating spots from probabilities.")
        spots = self._runner.get_spots_from_last_probabilities(
            threshold, simplify=simplify, smoothing_scale=smoothing_scale, frame=frame
        )
        if spots is None:
            message = "Problem creating spots: " + self._runner.error_message
            self.invalidate()
            return self._fail(message)

        spots = filter_by_quality(spots, threshold)
        logger.info(f"Found {len(spots)} spots in frame {frame}.")
        return PreviewResult(
            spots=spots,
            probabilities=self.cached_probabilities.copy(),
            recomputed=recomputed,
            frame=frame,
        )

    def get_class_names(self, classifier_path: str, is_3d: bool) -> Optional[Tuple[str, ...]]:
        """
        Class names known to a classifier file.

        Reuses the loaded classifier when it matches the path and mode.
        """
        self.error_message = None
        classifier_path = str(classifier_path)
        for runner in (self._runner, self._names_runner):
            if (
                runner is not None
                and runner.is_loaded
                and runner.classifier_path == classifier_path
                and runner.mode.ndim == (3 if is_3d else 2)
            ):
                return runner.get_class_names()

        logger.info("Discovering class names in classifier.")
        runner = ProbabilityRunner(classifier_path, is_3d, n_threads=self._n_threads, loader=self._loader)
        if not runner.load_classifier():
            return self._fail(runner.error_message)
        self._names_runner = runner

        names = runner.get_class_names()
        logger.info(f"Found {len(names)} classes in classifier.")
        return names

    def _fail(self, message: str):
        self.error_message = message
        logger.error(message)
        return None
