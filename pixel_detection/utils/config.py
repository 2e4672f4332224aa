"""
Detector settings: keys, defaults, validation and config file loading.

Settings travel as a plain dict keyed by the constants below, as supplied by
an external settings collaborator (GUI form, JSON file, command line).

Usage:
    from pixel_detection.utils.config import get_default_settings, check_settings

    settings = get_default_settings()
    settings[KEY_CLASSIFIER_FILEPATH] = "/path/to/classifier.joblib"
    ok, message = check_settings(settings)

Environment Variables:
    PIXEL_DETECTION_CLASSIFIER: Default classifier file path
    PIXEL_DETECTION_THREADS: Number of threads used for classification and extraction
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pixel_detection.utils.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# SETTINGS KEYS
# =============================================================================

# Channel to process. 1-based, as shown to users; converted to 0-based internally.
KEY_TARGET_CHANNEL = "TARGET_CHANNEL"

# Path to the trained pixel classifier artifact.
KEY_CLASSIFIER_FILEPATH = "CLASSIFIER_FILEPATH"

# Index of the class whose probability map creates objects. 0-based.
KEY_CLASS_INDEX = "CLASS_INDEX"

# Probability threshold, 0 to 1.
KEY_PROBA_THRESHOLD = "PROBA_THRESHOLD"

# Gaussian smoothing of the probability map before thresholding, physical units.
# Non-positive values disable smoothing.
KEY_SMOOTHING_SCALE = "SMOOTHING_SCALE"

DEFAULT_TARGET_CHANNEL = 1
DEFAULT_CLASS_INDEX = 0
DEFAULT_PROBA_THRESHOLD = 0.5
DEFAULT_SMOOTHING_SCALE = -1.0

DETECTOR_DEFAULTS: Dict[str, Any] = {
    KEY_TARGET_CHANNEL: DEFAULT_TARGET_CHANNEL,
    KEY_CLASSIFIER_FILEPATH: None,
    KEY_CLASS_INDEX: DEFAULT_CLASS_INDEX,
    KEY_PROBA_THRESHOLD: DEFAULT_PROBA_THRESHOLD,
}

MANDATORY_KEYS = [
    KEY_TARGET_CHANNEL,
    KEY_CLASS_INDEX,
    KEY_PROBA_THRESHOLD,
    KEY_CLASSIFIER_FILEPATH,
]

OPTIONAL_KEYS = [
    KEY_SMOOTHING_SCALE,
]

# Expected types per key. Integers are accepted where floats are expected.
_SETTING_TYPES = {
    KEY_TARGET_CHANNEL: int,
    KEY_CLASS_INDEX: int,
    KEY_PROBA_THRESHOLD: float,
    KEY_CLASSIFIER_FILEPATH: str,
    KEY_SMOOTHING_SCALE: float,
}

CLASSIFIER_PATH_NOT_SET = "The path to the classifier file is not set."


def get_default_settings() -> Dict[str, Any]:
    """
    Return a fresh copy of the default detector settings.

    PIXEL_DETECTION_CLASSIFIER, when set, provides the classifier path.
    """
    settings = copy.deepcopy(DETECTOR_DEFAULTS)
    env_path = os.getenv("PIXEL_DETECTION_CLASSIFIER")
    if env_path:
        settings[KEY_CLASSIFIER_FILEPATH] = env_path
    return settings


def get_thread_count() -> int:
    """
    Number of threads for classification and extraction.

    Reads PIXEL_DETECTION_THREADS, falling back to all available cores.
    """
    env_value = os.getenv("PIXEL_DETECTION_THREADS")
    if env_value:
        try:
            return max(1, int(env_value))
        except ValueError:
            logger.warning(f"Ignoring invalid PIXEL_DETECTION_THREADS={env_value!r}")
    return os.cpu_count() or 1


# =============================================================================
# VALIDATION
# =============================================================================

def can_read_file(path: Optional[Union[str, Path]]) -> Tuple[bool, str]:
    """
    Check that a file exists and can be read.

    Returns:
        (ok, reason) - reason is empty when ok is True
    """
    if path is None or str(path) == "":
        return False, CLASSIFIER_PATH_NOT_SET

    path = Path(path)
    if not path.exists():
        return False, f"File {path} does not exist."
    if not path.is_file():
        return False, f"{path} is not a file."
    if not os.access(path, os.R_OK):
        return False, f"File {path} exists but cannot be read."
    return True, ""


def check_classifier_path(path: Optional[Union[str, Path]]) -> Tuple[bool, str]:
    """
    Readability check with the user-facing message wording.

    Distinguishes "path not set" from "path unreadable".
    """
    if path is None or str(path) == "":
        return False, CLASSIFIER_PATH_NOT_SET
    ok, reason = can_read_file(path)
    if not ok:
        return False, f"Problem with classifier file: {reason}"
    return True, ""


def _check_parameter(settings: Dict[str, Any], key: str, expected_type: type) -> List[str]:
    if key not in settings:
        return []
    value = settings[key]
    if value is None:
        # Only the classifier path may legitimately be unset here; it is
        # reported with a dedicated message by check_classifier_path.
        if key == KEY_CLASSIFIER_FILEPATH:
            return []
        return [f"{key}: value is not set"]
    if expected_type is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return [f"{key}: expected numeric type, got {type(value).__name__}"]
    elif expected_type is int:
        if isinstance(value, bool) or not isinstance(value, int):
            return [f"{key}: expected int, got {type(value).__name__}"]
    elif not isinstance(value, expected_type):
        return [f"{key}: expected {expected_type.__name__}, got {type(value).__name__}"]
    return []


def check_settings(settings: Dict[str, Any], check_file: bool = True) -> Tuple[bool, str]:
    """
    Validate a detector settings dict.

    Checks types, mandatory and unknown keys, value ranges and, optionally,
    that the classifier file can be read.

    Args:
        settings: Settings dict
        check_file: Also check classifier file readability

    Returns:
        (ok, error_message) - error_message is empty when ok is True
    """
    errors: List[str] = []
    for key, expected_type in _SETTING_TYPES.items():
        errors.extend(_check_parameter(settings, key, expected_type))

    for key in MANDATORY_KEYS:
        if key not in settings:
            errors.append(f"Mandatory key {key} was not found.")
    for key in settings:
        if key not in MANDATORY_KEYS and key not in OPTIONAL_KEYS:
            errors.append(f"Unknown key {key}.")

    if not errors:
        if settings[KEY_TARGET_CHANNEL] < 1:
            errors.append(
                f"{KEY_TARGET_CHANNEL}: channels are 1-based, got {settings[KEY_TARGET_CHANNEL]}"
            )
        if settings[KEY_CLASS_INDEX] < 0:
            errors.append(f"{KEY_CLASS_INDEX}: must be >= 0, got {settings[KEY_CLASS_INDEX]}")
        threshold = settings[KEY_PROBA_THRESHOLD]
        if threshold < 0.0 or threshold > 1.0:
            errors.append(f"{KEY_PROBA_THRESHOLD}: value {threshold} out of range [0, 1]")

    if errors:
        return False, "\n".join(errors)

    if check_file:
        ok, message = check_classifier_path(settings.get(KEY_CLASSIFIER_FILEPATH))
        if not ok:
            return False, message

    return True, ""


# =============================================================================
# CONFIG FILES
# =============================================================================

def load_config(
    config_path: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> Dict[str, Any]:
    """
    Load detector settings from a JSON file, merged over the defaults.

    Missing keys use DETECTOR_DEFAULTS. Keyword overrides win over both;
    overrides whose value is None are ignored.

    Args:
        config_path: Optional JSON file with a flat settings dict
        **overrides: Settings keys to force

    Returns:
        Settings dict
    """
    settings = get_default_settings()

    if config_path is not None:
        config_path = Path(config_path)
        if config_path.exists():
            try:
                with open(config_path, 'r') as f:
                    file_settings = json.load(f)
                settings.update(file_settings)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Could not load config from {config_path}: {e}")
        else:
            logger.warning(f"Config file {config_path} not found, using defaults")

    for key, value in overrides.items():
        if value is not None:
            settings[key] = value

    return settings
