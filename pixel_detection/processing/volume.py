"""
ProbabilityVolume: one class's probability map placed in image coordinates.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from pixel_detection.processing.coordinates import CoordinateValidationError, Interval


@dataclass(eq=False)
class ProbabilityVolume:
    """
    Dense probability samples over an explicit interval.

    Attributes:
        data: Probabilities, float, shape equal to interval.shape
        interval: Placement of data[0, ...] (interval.min) in the source image
    """
    data: np.ndarray
    interval: Interval

    def __post_init__(self):
        if tuple(self.data.shape) != self.interval.shape:
            raise CoordinateValidationError(
                f"Volume of shape {self.data.shape} does not match {self.interval}"
            )

    @property
    def ndim(self) -> int:
        return self.data.ndim

    @property
    def origin(self) -> Tuple[int, ...]:
        return self.interval.min

    def value_at(self, index: Sequence[int]) -> float:
        """Probability at a pixel index given in source image coordinates."""
        local = tuple(int(i) - o for i, o in zip(index, self.interval.min))
        if len(local) != self.ndim or any(
            i < 0 or i >= s for i, s in zip(local, self.data.shape)
        ):
            raise IndexError(f"{tuple(index)} is outside {self.interval}")
        return float(self.data[local])

    def copy(self) -> "ProbabilityVolume":
        """Independent copy, safe to hand to a display or to modify."""
        return ProbabilityVolume(data=self.data.copy(), interval=self.interval)

    def __repr__(self) -> str:
        return f"ProbabilityVolume(shape={self.data.shape}, interval={self.interval})"
