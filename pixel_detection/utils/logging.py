"""
Logging configuration for the detection pipeline.

Library modules only create loggers; the command line configures handlers
once. Log records go to stderr so that commands printing results (class
lists) keep stdout clean.

Usage:
    from pixel_detection.utils.logging import get_logger, setup_logging

    logger = get_logger(__name__)

    # Once, at application start
    setup_logging(level="INFO", log_file="/path/to/output/run.log")

    logger.info("Recomputing probabilities.")
    logger.error("Problem loading the classifier for file %s", path)
"""

import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Marks handlers installed by setup_logging, so a second call replaces them
# without touching handlers added by the embedding application or by pytest.
_HANDLER_TAG = "_pixel_detection_handler"


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, named after it (pass ``__name__``)."""
    return logging.getLogger(name)


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True,
    format_string: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """
    Configure the root logger for command line use.

    Calling it again replaces the handlers of the previous call.

    Args:
        level: Logging level name or number
        log_file: Optional file receiving the same records (appended)
        console: Whether to log to stderr
        format_string: Record format

    Returns:
        Root logger instance
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(format_string)
    handlers = []
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode='a'))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_TAG, True)
        root_logger.addHandler(handler)

    if log_file:
        root_logger.info(f"Logging to file: {log_file}")
    return root_logger


def format_parameter(value: Any) -> str:
    """
    Short, human-readable form of a run parameter.

    Calibrations and other numeric tuples print compactly ("(2, 0.5, 0.5)"),
    unset values print as "-", arrays print their shape, and long lists are
    summarized.
    """
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (float, np.floating)):
        return f"{float(value):g}"
    if isinstance(value, np.ndarray):
        return f"array{value.shape} {value.dtype}"
    if isinstance(value, (list, tuple)):
        if len(value) > 5:
            return f"[{len(value)} items]"
        return "(" + ", ".join(format_parameter(v) for v in value) + ")"
    return str(value)


def log_parameters(logger: logging.Logger, params: Dict[str, Any], title: str = "Parameters") -> None:
    """Log run parameters as an aligned block, one per line."""
    width = max((len(str(key)) for key in params), default=0)
    logger.info(f"{'=' * 50}")
    logger.info(title)
    logger.info(f"{'=' * 50}")
    for key, value in params.items():
        logger.info(f"  {str(key):<{width}} : {format_parameter(value)}")
    logger.info(f"{'=' * 50}")


class ProcessingTimer:
    """
    Context manager that times an operation.

    The elapsed time is available afterwards as ``duration_ms``. Set
    ``verbose=False`` to time silently (the per-frame detector does this).
    """

    def __init__(self, logger: logging.Logger, operation: str, verbose: bool = True):
        self.logger = logger
        self.operation = operation
        self.verbose = verbose
        self.start_time: Optional[float] = None
        self.duration_ms: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        if self.verbose:
            self.logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000.0
        if exc_type is not None:
            self.logger.error(
                f"Failed: {self.operation} after {self.duration_ms:.0f} ms - {exc_val}"
            )
        elif self.verbose:
            self.logger.info(f"Completed: {self.operation} in {self.duration_ms:.0f} ms")
        return False
