"""
Tests for coordinate handling utilities.

Tests the interval arithmetic, cropping and de-interleaving helpers in
pixel_detection/processing/coordinates.py, and ProbabilityVolume placement.
"""

import pytest
import numpy as np

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pixel_detection.processing.coordinates import (
    CoordinateValidationError,
    Interval,
    crop_zero_min,
    select_class_channel,
    deinterleave,
    pixel_to_physical,
    physical_to_xyz,
)
from pixel_detection.processing.volume import ProbabilityVolume


class TestInterval:
    """Tests for the Interval box."""

    def test_from_shape(self):
        interval = Interval.from_shape((4, 6))
        assert interval.min == (0, 0)
        assert interval.max == (3, 5)
        assert interval.shape == (4, 6)
        assert interval.ndim == 2

    def test_from_shape_with_origin(self):
        interval = Interval.from_shape((2, 3), origin=(10, 20))
        assert interval.min == (10, 20)
        assert interval.max == (11, 22)

    def test_min_greater_than_max_rejected(self):
        with pytest.raises(CoordinateValidationError):
            Interval(min=(5, 0), max=(4, 3))

    def test_mismatched_dimensions_rejected(self):
        with pytest.raises(CoordinateValidationError):
            Interval(min=(0, 0, 0), max=(3, 3))

    def test_translate_and_zero_min_round_trip(self):
        interval = Interval(min=(3, 7), max=(9, 12))
        zeroed = interval.zero_min()
        assert zeroed.min == (0, 0)
        assert zeroed.shape == interval.shape
        assert zeroed.translate(interval.min) == interval

    def test_slices_select_interval(self):
        data = np.arange(100).reshape(10, 10)
        interval = Interval(min=(2, 3), max=(4, 6))
        assert data[interval.slices].shape == (3, 4)
        assert data[interval.slices][0, 0] == 23

    def test_squeeze_drops_singleton_axes(self):
        interval = Interval(min=(5, 0, 0), max=(5, 7, 9))
        squeezed = interval.squeeze()
        assert squeezed.ndim == 2
        assert squeezed.min == (0, 0)
        assert squeezed.max == (7, 9)

    def test_contains(self):
        outer = Interval.from_shape((10, 10))
        assert outer.contains(Interval(min=(2, 2), max=(9, 9)))
        assert not outer.contains(Interval(min=(2, 2), max=(10, 9)))
        assert not outer.contains(Interval.from_shape((2, 2, 2)))


class TestCropZeroMin:
    """Tests for crop_zero_min."""

    def test_crop_is_zero_origin_copy(self):
        data = np.arange(64, dtype=np.float32).reshape(8, 8)
        interval = Interval(min=(2, 3), max=(5, 6))
        cropped = crop_zero_min(data, interval)
        assert cropped.shape == (4, 4)
        assert cropped[0, 0] == data[2, 3]
        cropped[0, 0] = -1
        assert data[2, 3] != -1

    def test_crop_outside_image_rejected(self):
        data = np.zeros((8, 8))
        with pytest.raises(CoordinateValidationError):
            crop_zero_min(data, Interval(min=(5, 5), max=(8, 8)))


class TestSelectClassChannel:
    """Tests for select_class_channel."""

    def test_picks_requested_class(self):
        stack = np.stack([np.full((2, 2), c, dtype=np.float32) for c in range(3)])
        assert np.all(select_class_channel(stack, 2) == 2)

    def test_single_channel_returned_as_is(self):
        stack = np.arange(24, dtype=np.float32).reshape(1, 6, 2, 2)
        channel = select_class_channel(stack, 1)
        assert channel.shape == (6, 2, 2)
        np.testing.assert_array_equal(channel, stack[0])

    def test_out_of_range(self):
        stack = np.zeros((2, 4, 4))
        with pytest.raises(IndexError):
            select_class_channel(stack, 2)


class TestDeinterleave:
    """Tests for de-interleaving slice-major 3D classifier output."""

    def _interleaved(self, num_classes, depth):
        # Slice z * k + c holds the value 100 * c + z
        slices = [
            np.full((3, 4), 100 * c + z, dtype=np.float32)
            for z in range(depth)
            for c in range(num_classes)
        ]
        return np.stack(slices, axis=0)

    @pytest.mark.parametrize("class_index", [0, 1, 2])
    def test_recovers_class_slices_in_order(self, class_index):
        num_classes, depth = 3, 5
        channel = self._interleaved(num_classes, depth)
        assert channel.shape[0] == num_classes * depth

        result = deinterleave(channel, start=class_index, step=num_classes)

        assert result.shape == (depth, 3, 4)
        for z in range(depth):
            assert np.all(result[z] == 100 * class_index + z)

    def test_single_class_is_identity(self):
        channel = self._interleaved(1, 4)
        np.testing.assert_array_equal(deinterleave(channel, start=0, step=1), channel)

    def test_invalid_step(self):
        with pytest.raises(ValueError):
            deinterleave(np.zeros((4, 2, 2)), start=0, step=0)

    def test_start_beyond_depth(self):
        with pytest.raises(CoordinateValidationError):
            deinterleave(np.zeros((2, 2, 2)), start=3, step=4)


class TestPhysicalCoordinates:
    """Tests for pixel_to_physical and physical_to_xyz."""

    def test_pixel_to_physical(self):
        assert pixel_to_physical((2, 4), (0.5, 0.25)) == (1.0, 1.0)

    def test_pixel_to_physical_dimension_mismatch(self):
        with pytest.raises(CoordinateValidationError):
            pixel_to_physical((1, 2, 3), (1.0, 1.0))

    def test_physical_to_xyz_2d(self):
        assert physical_to_xyz((3.0, 7.0)) == (7.0, 3.0, 0.0)

    def test_physical_to_xyz_3d(self):
        assert physical_to_xyz((1.0, 2.0, 3.0)) == (3.0, 2.0, 1.0)


class TestProbabilityVolume:
    """Tests for ProbabilityVolume placement."""

    def test_value_at_uses_image_coordinates(self):
        data = np.arange(12, dtype=np.float32).reshape(3, 4)
        volume = ProbabilityVolume(data=data, interval=Interval(min=(10, 20), max=(12, 23)))
        assert volume.origin == (10, 20)
        assert volume.value_at((10, 20)) == 0.0
        assert volume.value_at((12, 23)) == 11.0

    def test_shape_mismatch_rejected(self):
        with pytest.raises(CoordinateValidationError):
            ProbabilityVolume(data=np.zeros((3, 3)), interval=Interval.from_shape((3, 4)))

    def test_copy_is_independent(self):
        volume = ProbabilityVolume(data=np.zeros((2, 2)), interval=Interval.from_shape((2, 2)))
        copied = volume.copy()
        copied.data[0, 0] = 1.0
        assert volume.data[0, 0] == 0.0
        assert copied.interval == volume.interval
