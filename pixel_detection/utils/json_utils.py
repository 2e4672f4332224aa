"""
JSON export of detection results.

Spots carry numpy contours and numpy scalars from region measurements. A
classifier that returns NaN probabilities gives NaN qualities. ``to_json_value``
turns all of these into plain JSON values; ``atomic_json_dump`` writes the
result so that a crashed run never leaves a truncated detections file.

Usage:
    from pixel_detection.utils.json_utils import atomic_json_dump

    atomic_json_dump(detection_file.model_dump(), "cells_detections.json", indent=2)
"""

import json
import math
import os
import tempfile
from pathlib import Path

import numpy as np

from pixel_detection.processing.coordinates import Interval


def to_json_value(obj):
    """
    Convert a detection payload to plain JSON types.

    - numpy arrays (contours, mesh vertices) become nested lists
    - numpy scalars become Python numbers
    - NaN and infinite floats become None (strict JSON has no NaN token)
    - Interval becomes ``{"min": [...], "max": [...]}``
    - objects with ``to_dict()`` (spots) are converted through it
    - paths become strings
    """
    if isinstance(obj, dict):
        return {str(k): to_json_value(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_json_value(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return to_json_value(obj.tolist())
    if isinstance(obj, (bool, np.bool_)):
        return bool(obj)
    if isinstance(obj, (int, np.integer)):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        v = float(obj)
        return None if (math.isnan(v) or math.isinf(v)) else v
    if isinstance(obj, Interval):
        return {'min': list(obj.min), 'max': list(obj.max)}
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, 'to_dict'):
        return to_json_value(obj.to_dict())
    return obj


def atomic_json_dump(data, filepath, indent=None):
    """
    Write detections as JSON through a temp file and ``os.replace()``.

    The target either holds the complete document or is left as it was.

    Args:
        data: Payload; converted with to_json_value() first
        filepath: Target path (str or Path); parent directories are created
        indent: Passed to json.dump

    Raises:
        TypeError: If the payload holds a value with no JSON form
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    data = to_json_value(data)

    fd, tmp_path = tempfile.mkstemp(dir=filepath.parent, prefix=f".{filepath.stem}.", suffix='.tmp')
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=indent, allow_nan=False)
        os.replace(tmp_path, filepath)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
