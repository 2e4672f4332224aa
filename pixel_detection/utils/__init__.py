"""
Utility modules for the detection pipeline.

Provides:
- Detector settings keys, defaults and validation
- Logging utilities
- Error kinds
- JSON export helpers live in pixel_detection.utils.json_utils

Schemas require pydantic - import separately if needed:
    from pixel_detection.utils.schemas import DetectorSettings, DetectionFile
"""

from .config import (
    KEY_TARGET_CHANNEL,
    KEY_CLASSIFIER_FILEPATH,
    KEY_CLASS_INDEX,
    KEY_PROBA_THRESHOLD,
    KEY_SMOOTHING_SCALE,
    DETECTOR_DEFAULTS,
    get_default_settings,
    get_thread_count,
    can_read_file,
    check_classifier_path,
    check_settings,
    load_config,
)

from .logging import (
    get_logger,
    setup_logging,
    log_parameters,
    format_parameter,
    ProcessingTimer,
)

from .errors import (
    DetectionError,
    ClassifierLoadError,
    NotLoadedError,
    ClassIndexOutOfRangeError,
    NotComputedYetError,
    ComputationFailedError,
    SettingsError,
)

__all__ = [
    # Config
    'KEY_TARGET_CHANNEL',
    'KEY_CLASSIFIER_FILEPATH',
    'KEY_CLASS_INDEX',
    'KEY_PROBA_THRESHOLD',
    'KEY_SMOOTHING_SCALE',
    'DETECTOR_DEFAULTS',
    'get_default_settings',
    'get_thread_count',
    'can_read_file',
    'check_classifier_path',
    'check_settings',
    'load_config',
    # Logging
    'get_logger',
    'setup_logging',
    'log_parameters',
    'format_parameter',
    'ProcessingTimer',
    # Errors
    'DetectionError',
    'ClassifierLoadError',
    'NotLoadedError',
    'ClassIndexOutOfRangeError',
    'NotComputedYetError',
    'ComputationFailedError',
    'SettingsError',
]
