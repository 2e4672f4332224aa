"""
Error kinds raised inside the detection pipeline.

Internal helpers raise these; the public runner, detector and previewer
methods catch them, log them and expose the message through their
``error_message`` attribute instead of propagating.
"""

from typing import Optional


class DetectionError(Exception):
    """Base class for all pipeline errors."""

    kind = "DetectionError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ClassifierLoadError(DetectionError):
    """Bad path, unreadable file, or an artifact the backend cannot use."""

    kind = "ClassifierLoadFailed"


class NotLoadedError(DetectionError):
    """An operation needed a classifier before one was loaded."""

    kind = "NotLoaded"

    def __init__(self, message: str = "The classifier is not loaded."):
        super().__init__(message)


class ClassIndexOutOfRangeError(DetectionError):
    """Requested class index is >= the number of classes the classifier knows."""

    kind = "ClassIndexOutOfRange"

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        # Class numbers are shown 1-based to users, indices stay 0-based.
        super().__init__(
            f"Requested class #{requested + 1}, but classifier only knows "
            f"{available} classes (class index {requested}, 0-based)."
        )


class NotComputedYetError(DetectionError):
    """Spots were requested before any probability computation succeeded."""

    kind = "NotComputedYet"

    def __init__(self, message: str = "Probabilities have not been computed yet."):
        super().__init__(message)


class ComputationFailedError(DetectionError):
    """The classification backend failed; its message is passed through."""

    kind = "ComputationFailed"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class SettingsError(DetectionError):
    """Detector settings are missing, mistyped or out of range."""

    kind = "InvalidSettings"
