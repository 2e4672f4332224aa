"""
Tests for DetectionPreviewer: when probabilities are recomputed and when the
cached volume is reused.

Stub loaders count classifier loads and applications, so every test can
check exactly how many times the classifier ran.
"""

import pytest
import numpy as np

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import StubLoader
from pixel_detection.detection.previewer import (
    STATE_EMPTY,
    STATE_VALID,
    DetectionPreviewer,
    RecomputeKey,
)
from pixel_detection.io.image import CalibratedImage
from pixel_detection.processing.coordinates import Interval
from pixel_detection.utils.config import (
    CLASSIFIER_PATH_NOT_SET,
    KEY_CLASS_INDEX,
    KEY_CLASSIFIER_FILEPATH,
    KEY_PROBA_THRESHOLD,
    KEY_SMOOTHING_SCALE,
    KEY_TARGET_CHANNEL,
    get_default_settings,
)
from pixel_detection.utils.errors import ClassifierLoadError


@pytest.fixture
def settings(classifier_file):
    """Settings detecting class 1 in channel 2 of the time-lapse image."""
    settings = get_default_settings()
    settings[KEY_CLASSIFIER_FILEPATH] = str(classifier_file)
    settings[KEY_TARGET_CHANNEL] = 2
    settings[KEY_CLASS_INDEX] = 1
    settings[KEY_PROBA_THRESHOLD] = 0.5
    return settings


@pytest.fixture
def previewer(stub_loader):
    return DetectionPreviewer(n_threads=1, loader=stub_loader)


class TestRecomputeKey:
    """Tests for RecomputeKey matching."""

    def test_image_compared_by_identity(self, square_image_2d):
        twin = CalibratedImage(data=square_image_2d.data.copy())
        key = RecomputeKey(square_image_2d, 0, "a", 1, 0)
        assert key.matches(RecomputeKey(square_image_2d, 0, "a", 1, 0))
        assert not key.matches(RecomputeKey(twin, 0, "a", 1, 0))

    @pytest.mark.parametrize("field, value", [
        ("frame", 1),
        ("classifier_path", "b"),
        ("class_index", 2),
        ("channel", 1),
    ])
    def test_each_field_matters(self, square_image_2d, field, value):
        base = dict(image=square_image_2d, frame=0, classifier_path="a", class_index=1, channel=0)
        key = RecomputeKey(**base)
        changed = RecomputeKey(**{**base, field: value})
        assert not key.matches(changed)

    def test_none_never_matches(self, square_image_2d):
        assert not RecomputeKey(square_image_2d, 0, "a", 1, 0).matches(None)


class TestPreview:
    """Tests for DetectionPreviewer.preview."""

    def test_first_preview_computes(self, previewer, stub_loader, timelapse_image, settings):
        assert previewer.state == STATE_EMPTY
        result = previewer.preview(timelapse_image, 0, settings)

        assert result is not None
        assert result.recomputed
        assert result.frame == 0
        assert previewer.state == STATE_VALID
        assert stub_loader.apply_calls == 1
        assert len(result.spots) == 1
        # Square in frame 0 covers rows 3-5, cols 2-4
        assert (result.spots[0].x, result.spots[0].y) == pytest.approx((3.0, 4.0))

    def test_threshold_change_reuses_cache(self, previewer, stub_loader, timelapse_image, settings):
        previewer.preview(timelapse_image, 0, settings)
        for threshold in (0.2, 0.7, 0.99):
            settings[KEY_PROBA_THRESHOLD] = threshold
            result = previewer.preview(timelapse_image, 0, settings)
            assert not result.recomputed
        assert stub_loader.apply_calls == 1
        assert len(stub_loader.loads) == 1

    def test_smoothing_change_reuses_cache(self, previewer, stub_loader, timelapse_image, settings):
        previewer.preview(timelapse_image, 0, settings)
        settings[KEY_SMOOTHING_SCALE] = 1.0
        result = previewer.preview(timelapse_image, 0, settings)
        assert not result.recomputed
        assert stub_loader.apply_calls == 1

    def test_repeated_preview_is_cached(self, previewer, stub_loader, timelapse_image, settings):
        first = previewer.preview(timelapse_image, 0, settings)
        second = previewer.preview(timelapse_image, 0, settings)
        assert stub_loader.apply_calls == 1
        np.testing.assert_array_equal(first.probabilities.data, second.probabilities.data)
        assert [s.position for s in first.spots] == [s.position for s in second.spots]

    def test_frame_change_recomputes(self, previewer, stub_loader, timelapse_image, settings):
        previewer.preview(timelapse_image, 0, settings)
        result = previewer.preview(timelapse_image, 1, settings)
        assert result.recomputed
        assert stub_loader.apply_calls == 2
        assert result.spots[0].x == pytest.approx(4.0)
        assert result.spots[0].frame == 1

    def test_class_change_recomputes(self, previewer, stub_loader, timelapse_image, settings):
        previewer.preview(timelapse_image, 0, settings)
        settings[KEY_CLASS_INDEX] = 0
        result = previewer.preview(timelapse_image, 0, settings)
        assert result.recomputed
        assert stub_loader.apply_calls == 2

    def test_channel_change_recomputes(self, previewer, stub_loader, timelapse_image, settings):
        previewer.preview(timelapse_image, 0, settings)
        settings[KEY_TARGET_CHANNEL] = 1
        result = previewer.preview(timelapse_image, 0, settings)
        assert result.recomputed
        assert stub_loader.apply_calls == 2
        # Channel 1 is empty
        assert result.spots == []

    def test_classifier_change_recomputes(self, previewer, stub_loader, timelapse_image,
                                          settings, tmp_path):
        previewer.preview(timelapse_image, 0, settings)
        other = tmp_path / "other.joblib"
        other.write_bytes(b"stub")
        settings[KEY_CLASSIFIER_FILEPATH] = str(other)
        result = previewer.preview(timelapse_image, 0, settings)
        assert result.recomputed
        assert stub_loader.apply_calls == 2
        assert stub_loader.loads[-1][0] == str(other)

    def test_new_image_recomputes(self, previewer, stub_loader, timelapse_image, settings):
        previewer.preview(timelapse_image, 0, settings)
        twin = CalibratedImage(data=timelapse_image.data.copy(), axes="TCYX")
        result = previewer.preview(twin, 0, settings)
        assert result.recomputed
        assert stub_loader.apply_calls == 2

    def test_interval_restricts_computation(self, previewer, stub_loader, timelapse_image, settings):
        interval = Interval(min=(2, 1), max=(7, 6))
        result = previewer.preview(timelapse_image, 0, settings, interval=interval)
        assert result.probabilities.interval == interval
        assert stub_loader.classifiers[0].inputs == [(6, 6)]
        assert result.spots[0].x == pytest.approx(3.0)

    def test_quality_filter(self, classifier_file):
        data = np.zeros((12, 12), dtype=np.float32)
        data[2:5, 2:5] = 1.0
        image = CalibratedImage(data=data)
        previewer = DetectionPreviewer(n_threads=1, loader=StubLoader())
        settings = get_default_settings()
        settings[KEY_CLASSIFIER_FILEPATH] = str(classifier_file)
        settings[KEY_CLASS_INDEX] = 1
        settings[KEY_PROBA_THRESHOLD] = 0.5
        result = previewer.preview(image, 0, settings)
        assert all(s.quality >= 0.5 for s in result.spots)

    def test_cached_probabilities(self, previewer, timelapse_image, settings):
        assert previewer.cached_probabilities is None
        result = previewer.preview(timelapse_image, 0, settings)
        cached = previewer.cached_probabilities
        assert cached is not result.probabilities
        np.testing.assert_array_equal(cached.data, result.probabilities.data)
        previewer.invalidate()
        assert previewer.cached_probabilities is None

    def test_returned_probabilities_are_a_copy(self, previewer, timelapse_image, settings):
        result = previewer.preview(timelapse_image, 0, settings)
        result.probabilities.data[:] = 0.0
        again = previewer.preview(timelapse_image, 0, settings)
        assert again.probabilities.data.max() == 1.0
        assert len(again.spots) == 1


class TestPreviewFailures:
    """Tests for preview failure handling."""

    def test_classifier_path_not_set(self, previewer, stub_loader, timelapse_image, settings):
        settings[KEY_CLASSIFIER_FILEPATH] = None
        assert previewer.preview(timelapse_image, 0, settings) is None
        assert previewer.error_message == CLASSIFIER_PATH_NOT_SET
        assert stub_loader.loads == []

    def test_classifier_path_unreadable(self, previewer, timelapse_image, settings, tmp_path):
        settings[KEY_CLASSIFIER_FILEPATH] = str(tmp_path / "missing.joblib")
        assert previewer.preview(timelapse_image, 0, settings) is None
        assert previewer.error_message.startswith("Problem with classifier file:")

    def test_load_failure_leaves_cache_empty(self, timelapse_image, settings):
        loader = StubLoader(fail_with=ClassifierLoadError("Problem loading the classifier for file x"))
        previewer = DetectionPreviewer(n_threads=1, loader=loader)
        assert previewer.preview(timelapse_image, 0, settings) is None
        assert previewer.state == STATE_EMPTY
        assert "Problem loading the classifier" in previewer.error_message

    def test_compute_failure_leaves_cache_empty(self, previewer, stub_loader, timelapse_image, settings):
        previewer.preview(timelapse_image, 0, settings)
        assert previewer.state == STATE_VALID

        settings[KEY_CLASS_INDEX] = 2
        assert previewer.preview(timelapse_image, 0, settings) is None
        assert previewer.state == STATE_EMPTY
        assert "only knows 2 classes" in previewer.error_message

        # Going back to the previous settings recomputes
        settings[KEY_CLASS_INDEX] = 1
        result = previewer.preview(timelapse_image, 0, settings)
        assert result.recomputed
        assert stub_loader.apply_calls == 2

    def test_missing_key(self, previewer, stub_loader, timelapse_image, settings):
        del settings[KEY_CLASS_INDEX]
        assert previewer.preview(timelapse_image, 0, settings) is None
        assert f"Mandatory key {KEY_CLASS_INDEX} was not found." in previewer.error_message
        assert stub_loader.loads == []

    def test_non_numeric_threshold(self, previewer, stub_loader, timelapse_image, settings):
        settings[KEY_PROBA_THRESHOLD] = "high"
        assert previewer.preview(timelapse_image, 0, settings) is None
        assert KEY_PROBA_THRESHOLD in previewer.error_message
        assert stub_loader.loads == []

    @pytest.mark.parametrize("threshold", [-0.1, 1.5])
    def test_threshold_out_of_range(self, previewer, timelapse_image, settings, threshold):
        settings[KEY_PROBA_THRESHOLD] = threshold
        assert previewer.preview(timelapse_image, 0, settings) is None
        assert "out of range" in previewer.error_message

    def test_invalid_settings_keep_cache(self, previewer, stub_loader, timelapse_image, settings):
        previewer.preview(timelapse_image, 0, settings)
        settings[KEY_CLASS_INDEX] = "one"
        assert previewer.preview(timelapse_image, 0, settings) is None
        assert previewer.state == STATE_VALID
        settings[KEY_CLASS_INDEX] = 1
        assert not previewer.preview(timelapse_image, 0, settings).recomputed
        assert stub_loader.apply_calls == 1

    def test_bad_channel(self, previewer, timelapse_image, settings):
        settings[KEY_TARGET_CHANNEL] = 5
        assert previewer.preview(timelapse_image, 0, settings) is None
        assert "Channel 4" in previewer.error_message

    def test_success_clears_error(self, previewer, timelapse_image, settings):
        settings[KEY_TARGET_CHANNEL] = 5
        previewer.preview(timelapse_image, 0, settings)
        settings[KEY_TARGET_CHANNEL] = 2
        assert previewer.preview(timelapse_image, 0, settings) is not None
        assert previewer.error_message is None


class TestClassNames:
    """Tests for DetectionPreviewer.get_class_names."""

    def test_loads_once_and_caches(self, previewer, stub_loader, classifier_file):
        names = previewer.get_class_names(classifier_file, is_3d=False)
        assert names == ("class_0", "class_1")
        previewer.get_class_names(classifier_file, is_3d=False)
        assert len(stub_loader.loads) == 1

    def test_reuses_preview_classifier(self, previewer, stub_loader, timelapse_image, settings):
        previewer.preview(timelapse_image, 0, settings)
        previewer.get_class_names(settings[KEY_CLASSIFIER_FILEPATH], is_3d=False)
        assert len(stub_loader.loads) == 1

    def test_mode_change_reloads(self, previewer, stub_loader, classifier_file):
        previewer.get_class_names(classifier_file, is_3d=False)
        previewer.get_class_names(classifier_file, is_3d=True)
        assert stub_loader.loads[-1] == (str(classifier_file), True)
        assert len(stub_loader.loads) == 2

    def test_load_failure(self):
        loader = StubLoader(fail_with=ClassifierLoadError("Problem loading the classifier for file x"))
        previewer = DetectionPreviewer(loader=loader)
        assert previewer.get_class_names("x", is_3d=False) is None
        assert previewer.error_message
