"""
Pydantic schemas for detector settings and exported detection files.

Usage:
    from pixel_detection.utils.schemas import DetectorSettings, validate_detection_file

    settings = DetectorSettings.from_settings_dict(settings_dict)
    detections = validate_detection_file("/path/to/detections.json")
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pixel_detection.utils.config import (
    KEY_CLASS_INDEX,
    KEY_CLASSIFIER_FILEPATH,
    KEY_PROBA_THRESHOLD,
    KEY_SMOOTHING_SCALE,
    KEY_TARGET_CHANNEL,
)


# =============================================================================
# Settings
# =============================================================================

class DetectorSettings(BaseModel):
    """Typed view of a detector settings dict."""
    target_channel: int = Field(1, ge=1, description="1-based channel")
    classifier_filepath: Optional[str] = None
    class_index: int = Field(0, ge=0, description="0-based class index")
    proba_threshold: float = Field(0.5, ge=0.0, le=1.0)
    smoothing_scale: float = -1.0

    @classmethod
    def from_settings_dict(cls, settings: Dict[str, Any]) -> "DetectorSettings":
        """Build from a dict keyed by the config KEY_* constants."""
        values = {
            'target_channel': settings.get(KEY_TARGET_CHANNEL),
            'classifier_filepath': settings.get(KEY_CLASSIFIER_FILEPATH),
            'class_index': settings.get(KEY_CLASS_INDEX),
            'proba_threshold': settings.get(KEY_PROBA_THRESHOLD),
            'smoothing_scale': settings.get(KEY_SMOOTHING_SCALE),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})


# =============================================================================
# Detection export
# =============================================================================

class SpotRecord(BaseModel):
    """A single exported spot, physical units."""
    model_config = ConfigDict(extra="allow")

    frame: int = Field(..., ge=0)
    x: float
    y: float
    z: float = 0.0
    radius: float = Field(..., ge=0.0)
    quality: float
    contour: Optional[List[List[float]]] = None
    n_mesh_vertices: Optional[int] = None
    features: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('contour')
    @classmethod
    def validate_contour(cls, v: Optional[List[List[float]]]) -> Optional[List[List[float]]]:
        """Contours are closed polygons of [x, y] pairs."""
        if v is None:
            return v
        if len(v) < 3:
            raise ValueError(f"Contour must have at least 3 points, got {len(v)}")
        for point in v:
            if len(point) != 2:
                raise ValueError(f"Contour points must be [x, y] pairs, got {point}")
        return v


class DetectionFile(BaseModel):
    """Schema for *_detections.json files written by the CLI."""
    model_config = ConfigDict(extra="allow")

    image_name: str
    mode: Literal["2d", "3d"]
    calibration: List[float]
    settings: DetectorSettings
    class_names: Optional[List[str]] = None
    total_detections: Optional[int] = None
    frames_processed: Optional[int] = None
    timestamp: Optional[str] = None
    spots: List[SpotRecord] = Field(default_factory=list)


def validate_detection_file(
    file_path: Union[str, Path],
    raise_on_error: bool = True
) -> Optional[DetectionFile]:
    """
    Validate a detections JSON file.

    Args:
        file_path: Path to JSON file
        raise_on_error: If True, raise on validation error; otherwise return None

    Returns:
        Validated DetectionFile, or None if validation fails and raise_on_error=False
    """
    file_path = Path(file_path)

    if not file_path.exists():
        if raise_on_error:
            raise FileNotFoundError(f"File not found: {file_path}")
        return None

    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
        return DetectionFile.model_validate(data)

    except json.JSONDecodeError as e:
        if raise_on_error:
            raise ValueError(f"Invalid JSON in {file_path}: {e}")
        return None

    except Exception as e:
        if raise_on_error:
            raise ValueError(f"Validation failed for {file_path}: {e}")
        return None
