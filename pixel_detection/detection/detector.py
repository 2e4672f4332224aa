"""
Per-frame detector and the factory that configures it.

The factory is given the full (multi-channel, multi-frame) image and a
settings dict once, loads the classifier, then hands out one
ProbabilityDetector per frame. Frames are meant to be processed one after
another, each using all threads (see ``forbid_multithreading``).

Usage:
    factory = ProbabilityDetectorFactory()
    if not factory.set_target(image, settings):
        raise SystemExit(factory.error_message)
    for frame in range(image.n_frames):
        detector = factory.get_detector(image.hyperslice().interval(), frame)
        if detector.check_input() and detector.process():
            spots = detector.result
"""

from typing import Any, Dict, List, Optional

from pixel_detection.detection.spots import Spot
from pixel_detection.io.image import CalibratedImage
from pixel_detection.processing.coordinates import Interval
from pixel_detection.processing.probability import ClassifierLoader, ProbabilityRunner
from pixel_detection.utils.config import (
    DEFAULT_SMOOTHING_SCALE,
    KEY_CLASS_INDEX,
    KEY_CLASSIFIER_FILEPATH,
    KEY_PROBA_THRESHOLD,
    KEY_SMOOTHING_SCALE,
    KEY_TARGET_CHANNEL,
    check_classifier_path,
    check_settings,
    get_default_settings,
)
from pixel_detection.utils.logging import ProcessingTimer, get_logger

logger = get_logger(__name__)

BASE_ERROR_MESSAGE = "ProbabilityDetector: "


class ProbabilityDetector:
    """
    Detects spots in one frame of one channel.

    Attributes:
        interval: Region to process, squeezed to the image dimensionality
        result: Spots found by the last process() call
        error_message: Set when check_input() or process() fails
        processing_time: Duration of the last process() call, milliseconds
    """

    def __init__(
        self,
        runner: ProbabilityRunner,
        image: Optional[CalibratedImage],
        interval: Interval,
        class_index: int,
        proba_threshold: float,
        simplify: bool = True,
        smoothing_scale: float = DEFAULT_SMOOTHING_SCALE,
        frame: int = 0,
    ):
        self.runner = runner
        self.image = image
        if image is not None and interval.ndim != image.data.ndim:
            interval = interval.squeeze()
        self.interval = interval
        self.class_index = class_index
        self.proba_threshold = proba_threshold
        self.simplify = simplify
        self.smoothing_scale = smoothing_scale
        self.frame = frame

        self.result: List[Spot] = []
        self.error_message: Optional[str] = None
        self.processing_time: float = 0.0

    def check_input(self) -> bool:
        if self.image is None:
            self.error_message = BASE_ERROR_MESSAGE + "Image is null."
            return False
        if self.interval.ndim != self.image.data.ndim:
            self.error_message = (
                BASE_ERROR_MESSAGE
                + f"Interval is {self.interval.ndim}D but the image is {self.image.data.ndim}D."
            )
            return False
        return True

    def process(self) -> bool:
        with ProcessingTimer(logger, f"detection in frame {self.frame}", verbose=False) as timer:
            probabilities = self.runner.compute_probabilities(self.image, self.interval, self.class_index)
            if probabilities is None:
                self.error_message = (
                    BASE_ERROR_MESSAGE + "Problem computing probabilities: " + self.runner.error_message
                )
                return False

            spots = self.runner.get_spots(
                probabilities,
                self.image.calibration,
                self.proba_threshold,
                simplify=self.simplify,
                smoothing_scale=self.smoothing_scale,
                frame=self.frame,
            )
            if spots is None:
                self.error_message = (
                    BASE_ERROR_MESSAGE + "Problem creating spots: " + self.runner.error_message
                )
                return False

        self.result = spots
        self.processing_time = timer.duration_ms
        return True


class ProbabilityDetectorFactory:
    """
    Configures ProbabilityDetectors from an image and a settings dict.

    Attributes:
        image: Full image to operate on (all channels and frames)
        settings: Detector settings dict
        runner: Loaded ProbabilityRunner shared by the detectors
        error_message: Set when set_target() or check_settings() fails
    """

    key = "PIXEL_CLASSIFIER_DETECTOR"
    name = "Pixel classifier detector"
    info_text = (
        "Detects objects from the probability map of a trained pixel classifier. "
        "Works for 2D and 3D images; returns contours for 2D images and meshes "
        "for 3D images. Provide the path to a saved classifier artifact, the "
        "class to detect and a probability threshold."
    )

    # Frames run one after another, each with all threads.
    forbid_multithreading = True

    def __init__(self, n_threads: Optional[int] = None, loader: Optional[ClassifierLoader] = None):
        self.image: Optional[CalibratedImage] = None
        self.settings: Optional[Dict[str, Any]] = None
        self.runner: Optional[ProbabilityRunner] = None
        self.error_message: Optional[str] = None
        self._n_threads = n_threads
        self._loader = loader

    def set_target(self, image: CalibratedImage, settings: Dict[str, Any]) -> bool:
        """Check the classifier file, load the classifier and validate settings."""
        self.error_message = None
        ok, message = check_classifier_path(settings.get(KEY_CLASSIFIER_FILEPATH))
        if not ok:
            self.error_message = message
            return False

        classifier_path = settings[KEY_CLASSIFIER_FILEPATH]
        is_3d = image.hyperslice(0, 0).is_3d
        runner = ProbabilityRunner(classifier_path, is_3d, n_threads=self._n_threads, loader=self._loader)
        if not runner.load_classifier():
            self.error_message = runner.error_message
            return False

        self.runner = runner
        self.image = image
        self.settings = settings
        return self.check_settings(settings)

    def get_detector(self, interval: Interval, frame: int) -> ProbabilityDetector:
        if self.runner is None or self.image is None:
            raise RuntimeError("set_target() must succeed before detectors can be created")
        channel = self.settings[KEY_TARGET_CHANNEL] - 1
        smoothing_scale = self.settings.get(KEY_SMOOTHING_SCALE)
        return ProbabilityDetector(
            self.runner,
            self.image.hyperslice(channel, frame),
            interval,
            class_index=self.settings[KEY_CLASS_INDEX],
            proba_threshold=float(self.settings[KEY_PROBA_THRESHOLD]),
            simplify=True,
            smoothing_scale=DEFAULT_SMOOTHING_SCALE if smoothing_scale is None else float(smoothing_scale),
            frame=frame,
        )

    def check_settings(self, settings: Dict[str, Any]) -> bool:
        ok, message = check_settings(settings)
        if not ok:
            self.error_message = message
            return False
        if self.image is not None and settings[KEY_TARGET_CHANNEL] > self.image.n_channels:
            self.error_message = (
                f"{KEY_TARGET_CHANNEL}: channel {settings[KEY_TARGET_CHANNEL]} requested "
                f"but the image has {self.image.n_channels} channel(s)"
            )
            return False
        return True

    @staticmethod
    def get_default_settings() -> Dict[str, Any]:
        return get_default_settings()

    def copy(self) -> "ProbabilityDetectorFactory":
        return ProbabilityDetectorFactory(n_threads=self._n_threads, loader=self._loader)
