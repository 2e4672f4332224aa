"""
Spot: a detected object in physical coordinates.

A spot is a point (x, y, z) with a quality score and an optional shape: a
polygon contour for 2D detections or a triangle mesh for 3D detections.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np


@dataclass(eq=False)
class Mesh:
    """
    Triangle mesh in physical units.

    Attributes:
        vertices: (N, 3) array of [x, y, z]
        faces: (M, 3) array of vertex indices
    """
    vertices: np.ndarray
    faces: np.ndarray

    @property
    def n_vertices(self) -> int:
        return int(len(self.vertices))

    @property
    def n_faces(self) -> int:
        return int(len(self.faces))


@dataclass(eq=False)
class Spot:
    """
    A single detection.

    Attributes:
        x, y, z: Physical position (z is 0 for 2D detections)
        radius: Radius of the disc (2D) or sphere (3D) with the same area/volume
        quality: Classifier probability for the detection
        frame: Frame the detection belongs to
        contour: Optional (N, 2) polygon of physical [x, y] vertices (2D)
        mesh: Optional Mesh (3D)
        features: Additional measurements (area, pixel count, ...)
    """
    x: float
    y: float
    z: float
    radius: float
    quality: float
    frame: int = 0
    contour: Optional[np.ndarray] = None
    mesh: Optional[Mesh] = None
    features: Dict[str, Any] = field(default_factory=dict)

    @property
    def position(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    @property
    def has_contour(self) -> bool:
        return self.contour is not None

    @property
    def has_mesh(self) -> bool:
        return self.mesh is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for serialization. Meshes are summarized."""
        return {
            'frame': self.frame,
            'x': self.x,
            'y': self.y,
            'z': self.z,
            'radius': self.radius,
            'quality': self.quality,
            'contour': self.contour.tolist() if self.contour is not None else None,
            'n_mesh_vertices': self.mesh.n_vertices if self.mesh is not None else None,
            'features': self.features,
        }

    def __repr__(self) -> str:
        shape = "contour" if self.has_contour else ("mesh" if self.has_mesh else "point")
        return (
            f"Spot(x={self.x:.3f}, y={self.y:.3f}, z={self.z:.3f}, "
            f"r={self.radius:.3f}, q={self.quality:.3f}, {shape})"
        )
