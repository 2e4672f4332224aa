#!/usr/bin/env python3
"""
Command line interface for pixel-classifier detection.

Usage:
    pixel-detection run image.tif --classifier nuclei.joblib --class-index 1
    pixel-detection run stack.npy --axes TZYX --pixel-size 2.0 0.5 0.5 --classifier cells3d.joblib
    pixel-detection classes --classifier nuclei.joblib
    pixel-detection validate detections.json

Subcommands:
    run         Detect spots in every frame of an image
    classes     List the classes a classifier knows
    validate    Validate detection JSON files
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
from tqdm import tqdm

from pixel_detection.utils.config import (
    KEY_CLASS_INDEX,
    KEY_CLASSIFIER_FILEPATH,
    KEY_PROBA_THRESHOLD,
    KEY_SMOOTHING_SCALE,
    KEY_TARGET_CHANNEL,
    load_config,
)
from pixel_detection.utils.errors import DetectionError, SettingsError
from pixel_detection.utils.logging import format_parameter, get_logger, log_parameters, setup_logging


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""

    parser = argparse.ArgumentParser(
        prog="pixel-detection",
        description="Detect objects from the probability maps of a trained pixel classifier",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Detect class 1 in a 2D image
  pixel-detection run cells.tif --classifier nuclei.joblib --class-index 1 -o cells.json

  # 3D time-lapse with anisotropic voxels, frames 0 to 4 only
  pixel-detection run movie.npy --axes TZYX --pixel-size 2.0 0.3 0.3 \\
      --classifier cells3d.joblib --frames 0 1 2 3 4

  # List the classes of a classifier
  pixel-detection classes --classifier nuclei.joblib
""",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress most output",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Write logs to file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # === RUN command ===
    run_parser = subparsers.add_parser(
        "run",
        help="Detect spots in an image",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_run_arguments(run_parser)

    # === CLASSES command ===
    classes_parser = subparsers.add_parser(
        "classes",
        help="List the classes a classifier knows",
    )
    classes_parser.add_argument("--classifier", type=Path, required=True, help="Classifier artifact")
    classes_parser.add_argument("--3d", dest="is_3d", action="store_true", help="Load for 3D images")

    # === VALIDATE command ===
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate detection JSON files",
    )
    validate_parser.add_argument(
        "files",
        type=Path,
        nargs="+",
        help="JSON files to validate",
    )
    validate_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on first validation error",
    )

    return parser


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    """Add arguments of the run command."""
    parser.add_argument("image", type=Path, help="Image file (.npy, .tif, ...)")
    parser.add_argument("--classifier", type=Path, help="Classifier artifact (joblib)")
    parser.add_argument("--config", type=Path, help="JSON file with detector settings")

    # Image layout
    image_group = parser.add_argument_group("Image")
    image_group.add_argument("--axes", default="YX",
                             help="Axes of the stored array, subsequence of TCZYX (default: YX)")
    image_group.add_argument("--pixel-size", type=float, nargs="+",
                             help="Pixel size of each spatial axis, in axis order (default: 1)")
    image_group.add_argument("--units", default="pixel", help="Unit of the pixel size")

    # Detector settings (override --config)
    detector_group = parser.add_argument_group("Detector")
    detector_group.add_argument("--channel", type=int, help="Channel to process, 1-based")
    detector_group.add_argument("--class-index", type=int, help="Class to detect, 0-based")
    detector_group.add_argument("--threshold", type=float, help="Probability threshold (0-1)")
    detector_group.add_argument("--smoothing-scale", type=float,
                                help="Gaussian smoothing of the probability map, physical units")
    detector_group.add_argument("--no-simplify", action="store_true",
                                help="Keep dense 2D contours")

    # Processing
    processing_group = parser.add_argument_group("Processing")
    processing_group.add_argument("--frames", type=int, nargs="+",
                                  help="0-based frames to process (default: all)")
    processing_group.add_argument("--threads", type=int,
                                  help="Threads for classification (default: PIXEL_DETECTION_THREADS or all cores)")

    # Output
    output_group = parser.add_argument_group("Output")
    output_group.add_argument("--output", "-o", type=Path,
                              help="Detections JSON (default: <image>_detections.json)")
    output_group.add_argument("--save-probabilities", type=Path,
                              help="Save the probability map of the last processed frame (.npy)")


def _build_settings(args: argparse.Namespace) -> Dict[str, Any]:
    """Detector settings from --config and command line overrides."""
    overrides = {
        KEY_CLASSIFIER_FILEPATH: str(args.classifier) if args.classifier else None,
        KEY_TARGET_CHANNEL: args.channel,
        KEY_CLASS_INDEX: args.class_index,
        KEY_PROBA_THRESHOLD: args.threshold,
        KEY_SMOOTHING_SCALE: args.smoothing_scale,
    }
    settings = load_config(args.config, **overrides)
    if settings.get(KEY_CLASSIFIER_FILEPATH) is None:
        raise SettingsError("No classifier given: use --classifier or set it in --config")
    return settings


def cmd_run(args: argparse.Namespace) -> int:
    """Execute the run command."""
    from pixel_detection.detection.detector import ProbabilityDetectorFactory
    from pixel_detection.io.image import load_image
    from pixel_detection.utils.json_utils import atomic_json_dump
    from pixel_detection.utils.schemas import DetectionFile, DetectorSettings

    logger = get_logger(__name__)

    try:
        settings = _build_settings(args)
    except DetectionError as e:
        logger.error(e.message)
        return 1

    try:
        image = load_image(args.image, axes=args.axes, calibration=args.pixel_size, units=args.units)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load image: {e}")
        return 1

    frames = args.frames if args.frames else list(range(image.n_frames))
    bad_frames = [f for f in frames if not 0 <= f < image.n_frames]
    if bad_frames:
        logger.error(f"Frames {bad_frames} out of range, image has {image.n_frames} frame(s)")
        return 1

    interval = image.hyperslice(0, 0).interval()
    log_parameters(logger, {
        "image": args.image,
        "axes": image.axes,
        "calibration": f"{format_parameter(image.calibration)} {image.units}",
        "interval": interval,
        "frames": frames,
        **settings,
    }, title="Detection run")

    factory = ProbabilityDetectorFactory(n_threads=args.threads)
    if not factory.set_target(image, settings):
        logger.error(factory.error_message)
        return 1

    spots = []
    probabilities = None
    for frame in tqdm(frames, desc="Frames", disable=args.quiet):
        detector = factory.get_detector(interval, frame)
        detector.simplify = not args.no_simplify
        if not detector.check_input() or not detector.process():
            logger.error(detector.error_message)
            return 1
        logger.debug(
            f"Frame {frame}: {len(detector.result)} spots in {detector.processing_time:.0f} ms"
        )
        spots.extend(detector.result)
        probabilities = factory.runner.last_probabilities

    logger.info(f"Found {len(spots)} spots in {len(frames)} frame(s)")

    spatial = image.hyperslice(0, 0)
    output = DetectionFile(
        image_name=image.name,
        mode="3d" if spatial.is_3d else "2d",
        calibration=list(spatial.calibration),
        settings=DetectorSettings.from_settings_dict(settings),
        class_names=list(factory.runner.get_class_names()),
        total_detections=len(spots),
        frames_processed=len(frames),
        timestamp=datetime.now().isoformat(),
        spots=[s.to_dict() for s in spots],
    )

    output_path = args.output or args.image.with_name(f"{args.image.stem}_detections.json")
    atomic_json_dump(output.model_dump(), output_path, indent=2)
    logger.info(f"Detections saved to: {output_path}")

    if args.save_probabilities and probabilities is not None:
        args.save_probabilities.parent.mkdir(parents=True, exist_ok=True)
        np.save(args.save_probabilities, probabilities.data)
        logger.info(f"Probabilities of frame {frames[-1]} saved to: {args.save_probabilities}")

    return 0


def cmd_classes(args: argparse.Namespace) -> int:
    """Execute the classes command."""
    from pixel_detection.processing.probability import ProbabilityRunner

    logger = get_logger(__name__)

    runner = ProbabilityRunner(str(args.classifier), args.is_3d)
    if not runner.load_classifier():
        logger.error(runner.error_message)
        return 1

    for index, name in enumerate(runner.get_class_names()):
        print(f"{index}\t{name}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Execute the validate command."""
    from pixel_detection.utils.schemas import validate_detection_file

    logger = get_logger(__name__)

    errors = 0
    for file_path in args.files:
        try:
            result = validate_detection_file(file_path, raise_on_error=True)
            logger.info(f"{file_path}: valid, {len(result.spots)} spots")
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"{file_path}: {e}")
            errors += 1
            if args.strict:
                return 1

    if errors:
        logger.error(f"{errors} file(s) failed validation")
        return 1

    logger.info(f"All {len(args.files)} file(s) valid")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else "INFO")
    setup_logging(level=level, log_file=args.log_file)

    if args.command == "run":
        return cmd_run(args)
    elif args.command == "classes":
        return cmd_classes(args)
    elif args.command == "validate":
        return cmd_validate(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
