"""
Coordinate handling for probability volumes.

Convention: intervals, shapes and calibrations are stored in numpy axis
order, ``(y, x)`` in 2D and ``(z, y, x)`` in 3D. Physical spot positions are
exposed as x, y, z (see pixel_detection.detection.spots).

Coordinate System:
    - Origin: Top-left corner of the full (un-cropped) image, index 0
    - An Interval's min/max are inclusive pixel indices
    - A ProbabilityVolume's data[0, 0] sits at interval.min

Key Operations:
    - crop to an interval, then re-express it zero-origin for the backend
    - translate a zero-origin result back to the interval's minimum
    - de-interleave the backend's slice-major 3D output
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np


class CoordinateValidationError(ValueError):
    """Raised when an interval or volume placement is inconsistent."""
    pass


@dataclass(frozen=True)
class Interval:
    """
    Axis-aligned integer box with inclusive per-axis min and max.

    Attributes:
        min: Per-axis minimum index, numpy axis order
        max: Per-axis maximum index (inclusive), numpy axis order
    """
    min: Tuple[int, ...]
    max: Tuple[int, ...]

    def __post_init__(self):
        mins = tuple(int(v) for v in self.min)
        maxs = tuple(int(v) for v in self.max)
        if len(mins) != len(maxs):
            raise CoordinateValidationError(
                f"Interval min and max differ in dimensionality: {mins} vs {maxs}"
            )
        if len(mins) == 0:
            raise CoordinateValidationError("Interval must have at least one dimension")
        for axis, (lo, hi) in enumerate(zip(mins, maxs)):
            if lo > hi:
                raise CoordinateValidationError(
                    f"Interval min > max on axis {axis}: {lo} > {hi}"
                )
        object.__setattr__(self, 'min', mins)
        object.__setattr__(self, 'max', maxs)

    @classmethod
    def from_shape(cls, shape: Sequence[int], origin: Optional[Sequence[int]] = None) -> "Interval":
        """Interval covering an array of ``shape`` placed at ``origin`` (default zeros)."""
        if origin is None:
            origin = (0,) * len(shape)
        if len(origin) != len(shape):
            raise CoordinateValidationError(
                f"Origin {tuple(origin)} does not match shape {tuple(shape)}"
            )
        if any(s < 1 for s in shape):
            raise CoordinateValidationError(f"Cannot build an interval for empty shape {tuple(shape)}")
        return cls(
            min=tuple(origin),
            max=tuple(o + s - 1 for o, s in zip(origin, shape)),
        )

    @property
    def ndim(self) -> int:
        return len(self.min)

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(hi - lo + 1 for lo, hi in zip(self.min, self.max))

    @property
    def slices(self) -> Tuple[slice, ...]:
        """Slices selecting this interval from an array whose origin is 0."""
        return tuple(slice(lo, hi + 1) for lo, hi in zip(self.min, self.max))

    def translate(self, offset: Sequence[int]) -> "Interval":
        if len(offset) != self.ndim:
            raise CoordinateValidationError(
                f"Offset {tuple(offset)} does not match interval dimensionality {self.ndim}"
            )
        return Interval(
            min=tuple(lo + o for lo, o in zip(self.min, offset)),
            max=tuple(hi + o for hi, o in zip(self.max, offset)),
        )

    def zero_min(self) -> "Interval":
        """Same extent, moved so that min is 0 on every axis."""
        return Interval.from_shape(self.shape)

    def squeeze(self) -> "Interval":
        """Drop axes of size 1 (a single Z plane makes a 2D interval)."""
        keep = [i for i, s in enumerate(self.shape) if s > 1]
        if not keep:
            keep = [self.ndim - 1]
        return Interval(
            min=tuple(self.min[i] for i in keep),
            max=tuple(self.max[i] for i in keep),
        )

    def contains(self, other: "Interval") -> bool:
        if other.ndim != self.ndim:
            return False
        return all(
            slo <= olo and ohi <= shi
            for slo, shi, olo, ohi in zip(self.min, self.max, other.min, other.max)
        )

    def __repr__(self) -> str:
        return f"Interval(min={self.min}, max={self.max})"


def crop_zero_min(data: np.ndarray, interval: Interval) -> np.ndarray:
    """
    Crop ``data`` to ``interval`` and return it zero-origin.

    ``data`` is assumed to have its origin at index 0 on every axis. The
    result is a contiguous copy, so the backend never writes into the source.

    Raises:
        CoordinateValidationError: If the interval does not fit in the data
    """
    bounds = Interval.from_shape(data.shape)
    if interval.ndim != data.ndim or not bounds.contains(interval):
        raise CoordinateValidationError(
            f"{interval} does not fit in an image of shape {data.shape}"
        )
    return np.ascontiguousarray(data[interval.slices])


def select_class_channel(stack: np.ndarray, class_index: int) -> np.ndarray:
    """
    Take one class channel from a backend output with a leading channel axis.

    A single-channel output (3D, classes interleaved along depth) has no class
    axis to slice; its only channel is returned as is.
    """
    if stack.shape[0] == 1:
        return stack[0]
    if class_index >= stack.shape[0]:
        raise IndexError(
            f"Class index {class_index} out of range for output with {stack.shape[0]} channels"
        )
    return stack[class_index]


def deinterleave(channel: np.ndarray, start: int, step: int, axis: int = 0) -> np.ndarray:
    """
    Rebuild a contiguous volume from depth-interleaved slices.

    Takes slices ``start, start + step, start + 2*step, ...`` along ``axis``
    up to the channel's extent and stacks them in ascending order.

    Args:
        channel: Interleaved volume, depth along ``axis``
        start: Index of the first slice to keep (the class index)
        step: Interleave period (the number of classes)
        axis: Depth axis (0 for ``(z, y, x)``)

    Returns:
        De-interleaved volume with ``ceil((depth - start) / step)`` slices
    """
    if step < 1:
        raise ValueError(f"step must be >= 1, got {step}")
    if start < 0:
        raise ValueError(f"start must be >= 0, got {start}")
    depth = channel.shape[axis]
    slices: List[np.ndarray] = [
        np.take(channel, z, axis=axis) for z in range(start, depth, step)
    ]
    if not slices:
        raise CoordinateValidationError(
            f"No slice left after de-interleaving depth {depth} from {start} by {step}"
        )
    return np.stack(slices, axis=axis)


def pixel_to_physical(
    index: Iterable[float],
    calibration: Sequence[float],
) -> Tuple[float, ...]:
    """Multiply per-axis pixel coordinates by the calibration (numpy axis order)."""
    index = tuple(index)
    if len(index) != len(calibration):
        raise CoordinateValidationError(
            f"Coordinate {index} does not match calibration {tuple(calibration)}"
        )
    return tuple(float(i) * float(c) for i, c in zip(index, calibration))


def physical_to_xyz(physical: Sequence[float]) -> Tuple[float, float, float]:
    """
    Reorder a numpy-order physical position into (x, y, z).

    2D positions get z = 0.
    """
    if len(physical) == 2:
        y, x = physical
        return float(x), float(y), 0.0
    if len(physical) == 3:
        z, y, x = physical
        return float(x), float(y), float(z)
    raise CoordinateValidationError(f"Expected a 2D or 3D position, got {tuple(physical)}")
