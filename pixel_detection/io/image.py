"""
Calibrated multi-dimensional images.

A CalibratedImage wraps a numpy array with an axes string (a subsequence of
"TCZYX", in that order) and the physical pixel size of its spatial axes.
The detection core consumes one channel of one frame at a time, obtained
with ``hyperslice(channel, frame)``.

Usage:
    from pixel_detection.io import CalibratedImage, load_image

    img = load_image("/path/to/stack.tif", axes="TZYX", calibration=(2.0, 0.5, 0.5))
    frame_img = img.hyperslice(channel=0, frame=3)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from pixel_detection.processing.coordinates import Interval, crop_zero_min
from pixel_detection.utils.logging import get_logger

logger = get_logger(__name__)

AXES_ORDER = "TCZYX"
SPATIAL_AXES = "ZYX"


@dataclass(eq=False)
class CalibratedImage:
    """
    Image data plus axis labels and spatial calibration.

    Equality is identity: two images holding the same pixels are still
    different images for caching purposes.

    Attributes:
        data: Pixel array, axes as described by ``axes``
        axes: Axis labels, a subsequence of "TCZYX" in that order
        calibration: Physical pixel size of each spatial axis, same order as
            the spatial axes in ``axes`` (e.g. (dz, dy, dx) for "ZYX")
        name: Image name, kept through crops and hyperslices
        units: Physical unit of the calibration
    """
    data: np.ndarray
    axes: str = "YX"
    calibration: Optional[Tuple[float, ...]] = None
    name: str = "image"
    units: str = "pixel"
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.axes = self.axes.upper()
        if len(self.axes) != self.data.ndim:
            raise ValueError(
                f"Axes '{self.axes}' do not match data with {self.data.ndim} dimensions"
            )
        positions = [AXES_ORDER.find(a) for a in self.axes]
        if -1 in positions or positions != sorted(positions) or len(set(self.axes)) != len(self.axes):
            raise ValueError(f"Axes must be a subsequence of '{AXES_ORDER}', got '{self.axes}'")
        if 'Y' not in self.axes or 'X' not in self.axes:
            raise ValueError(f"Axes must contain Y and X, got '{self.axes}'")

        n_spatial = len(self.spatial_axes)
        if self.calibration is None:
            self.calibration = (1.0,) * n_spatial
        self.calibration = tuple(float(c) for c in self.calibration)
        if len(self.calibration) != n_spatial:
            raise ValueError(
                f"Calibration {self.calibration} does not match spatial axes '{self.spatial_axes}'"
            )
        if any(c <= 0 for c in self.calibration):
            raise ValueError(f"Calibration values must be positive, got {self.calibration}")

    @property
    def spatial_axes(self) -> str:
        return "".join(a for a in self.axes if a in SPATIAL_AXES)

    @property
    def is_3d(self) -> bool:
        return 'Z' in self.axes

    @property
    def n_channels(self) -> int:
        return self.data.shape[self.axes.index('C')] if 'C' in self.axes else 1

    @property
    def n_frames(self) -> int:
        return self.data.shape[self.axes.index('T')] if 'T' in self.axes else 1

    @property
    def spatial_shape(self) -> Tuple[int, ...]:
        return tuple(self.data.shape[self.axes.index(a)] for a in self.spatial_axes)

    def interval(self) -> Interval:
        """Interval covering the full spatial extent."""
        return Interval.from_shape(self.spatial_shape)

    def hyperslice(self, channel: int = 0, frame: int = 0) -> "CalibratedImage":
        """
        Single-channel, single-frame spatial view.

        A Z axis of size 1 is dropped, so a single plane is a 2D image.

        Args:
            channel: 0-based channel index
            frame: 0-based frame index
        """
        if not 0 <= channel < self.n_channels:
            raise IndexError(f"Channel {channel} out of range [0, {self.n_channels})")
        if not 0 <= frame < self.n_frames:
            raise IndexError(f"Frame {frame} out of range [0, {self.n_frames})")

        data = self.data
        axes = self.axes
        if 'T' in axes:
            data = np.take(data, frame, axis=axes.index('T'))
            axes = axes.replace('T', '')
        if 'C' in axes:
            data = np.take(data, channel, axis=axes.index('C'))
            axes = axes.replace('C', '')

        calibration = self.calibration
        if 'Z' in axes and data.shape[axes.index('Z')] == 1:
            data = np.take(data, 0, axis=axes.index('Z'))
            axes = axes.replace('Z', '')
            calibration = calibration[1:]

        return replace(self, data=data, axes=axes, calibration=calibration,
                       metadata=dict(self.metadata))

    def crop(self, interval: Interval) -> "CalibratedImage":
        """
        Crop a spatial-only image to ``interval``, re-expressed zero-origin.

        Calibration, axes, name and metadata are carried over.
        """
        if self.axes != self.spatial_axes:
            raise ValueError(
                f"Only spatial images can be cropped, got axes '{self.axes}'; hyperslice first"
            )
        cropped = crop_zero_min(self.data, interval)
        return replace(self, data=cropped, metadata=dict(self.metadata))


def load_image(
    path: Union[str, Path],
    axes: str = "YX",
    calibration: Optional[Sequence[float]] = None,
    units: str = "pixel",
) -> CalibratedImage:
    """
    Load an image from a .npy or TIFF (or any format skimage reads) file.

    Args:
        path: Image file path
        axes: Axis labels of the stored array
        calibration: Spatial pixel sizes, numpy order (default all 1)
        units: Calibration unit

    Returns:
        CalibratedImage
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")

    if path.suffix == ".npy":
        data = np.load(path)
    else:
        from skimage import io as skio
        data = skio.imread(str(path))

    logger.info(f"Loaded image {path.name}: shape {data.shape}, dtype {data.dtype}")
    return CalibratedImage(
        data=data,
        axes=axes,
        calibration=tuple(calibration) if calibration is not None else None,
        name=path.stem,
        units=units,
    )
