"""
Pytest fixtures for pixel_detection tests.

Provides synthetic images, stub classifiers that count their calls, and real
scikit-learn classifier artifacts written to temporary directories.
"""

import pytest
import numpy as np
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from pixel_detection.classification.pixel_classifier import PixelClassifier, ProcessingMode
from pixel_detection.classification.features import compute_feature_stack
from pixel_detection.io.image import CalibratedImage


# Small feature stack so the real classifiers train and predict quickly
FAST_FEATURE_PARAMS = {'sigma_min': 0.5, 'sigma_max': 2.0}


class StubClassifier:
    """
    Classifier stand-in whose probabilities follow the input image.

    The last class gets probability 1.0 where the pixel value is > 0 and 0.0
    elsewhere; the first class gets the complement; any other class is 0.
    Output layout matches PixelClassifier.apply_to_image.

    Attributes:
        calls: Number of apply_to_image calls
        inputs: Shapes of the arrays it was applied to
    """

    def __init__(self, num_classes=2, is_3d=False, class_names=None):
        self.class_names = tuple(class_names or [f"class_{i}" for i in range(num_classes)])
        self.num_classes = len(self.class_names)
        self.mode = ProcessingMode.from_is_3d(is_3d)
        self.calls = 0
        self.inputs = []

    def apply_to_image(self, data, n_threads=1):
        self.calls += 1
        self.inputs.append(data.shape)
        foreground = (np.asarray(data) > 0).astype(np.float32)
        planes = [np.zeros_like(foreground) for _ in range(self.num_classes)]
        planes[0] = 1.0 - foreground
        planes[-1] = foreground
        probas = np.stack(planes, axis=0)
        if self.mode is ProcessingMode.THREE_D:
            nz, ny, nx = data.shape
            # (k, Z, Y, X) -> (Z, k, Y, X) -> one channel of Z*k slices
            interleaved = probas.transpose(1, 0, 2, 3).reshape(nz * self.num_classes, ny, nx)
            return interleaved[np.newaxis]
        return probas


class StubLoader:
    """
    Loader stand-in for ProbabilityRunner: (path, is_3d) -> StubClassifier.

    Attributes:
        loads: (path, is_3d) of every load
        classifiers: Every classifier handed out, in order
    """

    def __init__(self, num_classes=2, fail_with=None):
        self.num_classes = num_classes
        self.fail_with = fail_with
        self.loads = []
        self.classifiers = []

    def __call__(self, path, is_3d):
        self.loads.append((path, is_3d))
        if self.fail_with is not None:
            raise self.fail_with
        classifier = StubClassifier(num_classes=self.num_classes, is_3d=is_3d)
        self.classifiers.append(classifier)
        return classifier

    @property
    def apply_calls(self):
        """Total apply_to_image calls over all handed-out classifiers."""
        return sum(c.calls for c in self.classifiers)


@pytest.fixture
def stub_loader():
    """Loader of two-class stub classifiers."""
    return StubLoader(num_classes=2)


@pytest.fixture
def stub_loader_3_classes():
    """Loader of three-class stub classifiers."""
    return StubLoader(num_classes=3)


@pytest.fixture
def classifier_file(tmp_path):
    """
    An existing, readable file standing for a classifier artifact.

    Stub loaders never open it; it only passes the readability checks.
    """
    path = tmp_path / "stub_classifier.joblib"
    path.write_bytes(b"stub")
    return path


@pytest.fixture
def square_image_2d():
    """
    8x8 image with a 3x3 foreground square at rows/cols 3-5.

    Its pixel centroid is (row 4, col 4).

    Returns:
        CalibratedImage with unit calibration
    """
    data = np.zeros((8, 8), dtype=np.float32)
    data[3:6, 3:6] = 1.0
    return CalibratedImage(data=data, axes="YX", name="square")


@pytest.fixture
def two_squares_image_2d():
    """16x16 image with two separate 3x3 squares, one dim and one bright."""
    data = np.zeros((16, 16), dtype=np.float32)
    data[2:5, 2:5] = 1.0
    data[10:13, 9:12] = 2.0
    return CalibratedImage(data=data, axes="YX", name="two_squares")


@pytest.fixture
def cube_image_3d():
    """
    8x12x12 volume with a 3x4x4 foreground box, calibration (2.0, 0.5, 0.5).

    Box voxel indices: z 2-4, y 4-7, x 4-7.
    """
    data = np.zeros((8, 12, 12), dtype=np.float32)
    data[2:5, 4:8, 4:8] = 1.0
    return CalibratedImage(data=data, axes="ZYX", calibration=(2.0, 0.5, 0.5), name="cube")


@pytest.fixture
def timelapse_image():
    """
    Two-channel, three-frame 2D image (axes TCYX).

    Channel 2 (index 1) holds a 3x3 square that moves one pixel right per
    frame; channel 1 is empty.
    """
    data = np.zeros((3, 2, 10, 10), dtype=np.float32)
    for t in range(3):
        data[t, 1, 3:6, 2 + t:5 + t] = 1.0
    return CalibratedImage(data=data, axes="TCYX", name="timelapse")


def _blob_training_image(shape):
    data = np.zeros(shape, dtype=np.float32)
    center = tuple(s // 2 for s in shape)
    slices = tuple(slice(c - s // 5, c + s // 5) for c, s in zip(center, shape))
    data[slices] = 1.0
    rng = np.random.default_rng(0)
    data += rng.normal(0.0, 0.05, size=shape).astype(np.float32)
    labels = (data > 0.5).astype(int)
    return data, labels


def _train_classifier(shape, is_3d):
    from sklearn.ensemble import RandomForestClassifier

    data, labels = _blob_training_image(shape)
    features = compute_feature_stack(data, FAST_FEATURE_PARAMS)
    X = features.reshape(-1, features.shape[-1])
    y = labels.ravel()
    model = RandomForestClassifier(n_estimators=10, max_depth=6, random_state=0)
    model.fit(X, y)
    classifier = PixelClassifier(
        model=model,
        class_names=["background", "object"],
        mode=ProcessingMode.from_is_3d(is_3d),
        feature_params=FAST_FEATURE_PARAMS,
    )
    return classifier, data


@pytest.fixture(scope="session")
def trained_classifier_2d():
    """RandomForest pixel classifier trained on a 32x32 blob image."""
    return _train_classifier((32, 32), is_3d=False)


@pytest.fixture(scope="session")
def trained_classifier_3d():
    """RandomForest pixel classifier trained on a 10x20x20 blob volume."""
    return _train_classifier((10, 20, 20), is_3d=True)


@pytest.fixture
def rf_artifact_2d(tmp_path, trained_classifier_2d):
    """Path to a saved 2D classifier artifact, plus its training image."""
    classifier, data = trained_classifier_2d
    path = classifier.save(tmp_path / "rf_2d.joblib")
    return path, data


@pytest.fixture
def rf_artifact_3d(tmp_path, trained_classifier_3d):
    """Path to a saved 3D classifier artifact, plus its training volume."""
    classifier, data = trained_classifier_3d
    path = classifier.save(tmp_path / "rf_3d.joblib")
    return path, data
