"""
Turn a probability volume into spots.

Pixels with probability strictly greater than the threshold are foreground.
Connected foreground regions (8-connectivity in 2D, 26 in 3D) become spots:

- 2D: spot at the centroid of the region's outer contour, with the contour
  attached (dense, or Douglas-Peucker simplified)
- 3D: spot at the voxel centroid, with a marching-cubes mesh attached

Spot quality is the maximum probability inside the region. Positions,
contours and meshes are in physical units: pixel index (in source image
coordinates) times calibration.

Regions are processed in parallel; results are returned in label (raster)
order, so the output does not depend on the thread count.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy import ndimage
from skimage.measure import label, marching_cubes

from pixel_detection.classification.pixel_classifier import ProcessingMode
from pixel_detection.detection.contours import (
    DEFAULT_SIMPLIFY_EPSILON,
    polygon_centroid,
    rdp_simplify,
    trace_outer_contour,
)
from pixel_detection.detection.spots import Mesh, Spot
from pixel_detection.processing.coordinates import physical_to_xyz, pixel_to_physical
from pixel_detection.processing.volume import ProbabilityVolume
from pixel_detection.utils.logging import get_logger

logger = get_logger(__name__)


def threshold_mask(
    data: np.ndarray,
    threshold: float,
    calibration: Optional[Sequence[float]] = None,
    smoothing_scale: float = -1.0,
) -> np.ndarray:
    """
    Foreground mask: ``probability > threshold``.

    Args:
        data: Probability array
        threshold: Strict lower bound for foreground
        calibration: Pixel sizes, needed when smoothing
        smoothing_scale: Gaussian sigma in physical units; <= 0 disables

    Returns:
        Boolean mask, same shape as data
    """
    values = data
    if smoothing_scale is not None and smoothing_scale > 0:
        if calibration is None:
            calibration = (1.0,) * data.ndim
        sigma = [smoothing_scale / c for c in calibration]
        values = ndimage.gaussian_filter(data.astype(np.float64), sigma=sigma)
    # NaN compares False, so undefined samples are background
    return values > threshold


def extract_spots(
    volume: ProbabilityVolume,
    calibration: Sequence[float],
    threshold: float,
    mode: ProcessingMode,
    simplify: bool = True,
    n_threads: int = 1,
    smoothing_scale: float = -1.0,
    frame: int = 0,
) -> List[Spot]:
    """
    Threshold a probability volume and build one spot per connected region.

    Args:
        volume: Probability volume in source image coordinates
        calibration: Physical pixel size per axis, numpy order
        threshold: Foreground is probability > threshold
        mode: 2D (contours) or 3D (meshes)
        simplify: Simplify 2D contours
        n_threads: Worker threads across regions
        smoothing_scale: Optional Gaussian smoothing before thresholding
        frame: Frame number stored on the spots

    Returns:
        Spots in label order
    """
    if volume.ndim != mode.ndim:
        raise ValueError(
            f"{mode.value.upper()} extraction needs a {mode.ndim}D volume, got {volume.ndim}D"
        )
    if len(calibration) != volume.ndim:
        raise ValueError(
            f"Calibration {tuple(calibration)} does not match a {volume.ndim}D volume"
        )
    calibration = tuple(float(c) for c in calibration)

    mask = threshold_mask(volume.data, threshold, calibration, smoothing_scale)
    labels = label(mask, connectivity=volume.ndim)
    regions = [
        (region_label, bbox)
        for region_label, bbox in enumerate(ndimage.find_objects(labels), start=1)
        if bbox is not None
    ]
    if not regions:
        return []

    def build(region: Tuple[int, Tuple[slice, ...]]) -> Spot:
        region_label, bbox = region
        region_mask = labels[bbox] == region_label
        region_proba = volume.data[bbox]
        offset = tuple(o + s.start for o, s in zip(volume.origin, bbox))
        if mode is ProcessingMode.THREE_D:
            return _spot_from_region_3d(region_mask, region_proba, offset, calibration, frame)
        return _spot_from_region_2d(region_mask, region_proba, offset, calibration, simplify, frame)

    n_threads = max(1, int(n_threads))
    if n_threads == 1 or len(regions) == 1:
        spots = [build(r) for r in regions]
    else:
        with ThreadPoolExecutor(max_workers=n_threads) as executor:
            spots = list(executor.map(build, regions))

    logger.debug(f"Extracted {len(spots)} spots above threshold {threshold}")
    return spots


def filter_by_quality(spots: List[Spot], threshold: float) -> List[Spot]:
    """Keep spots whose quality is at least ``threshold``."""
    return [s for s in spots if s.quality >= threshold]


def _region_quality(region_mask: np.ndarray, region_proba: np.ndarray) -> float:
    values = region_proba[region_mask]
    return float(np.nanmax(values)) if values.size else float('nan')


def _spot_from_region_2d(
    region_mask: np.ndarray,
    region_proba: np.ndarray,
    offset: Tuple[int, ...],
    calibration: Tuple[float, ...],
    simplify: bool,
    frame: int,
) -> Spot:
    dy, dx = calibration
    n_pixels = int(region_mask.sum())
    area = n_pixels * dy * dx
    quality = _region_quality(region_mask, region_proba)

    contour = trace_outer_contour(region_mask)
    if contour is not None and simplify:
        contour = rdp_simplify(contour, DEFAULT_SIMPLIFY_EPSILON)

    centroid = polygon_centroid(contour) if contour is not None else None
    if centroid is not None:
        (cx, cy), _ = centroid
        contour_phys = (contour + np.array([offset[1], offset[0]])) * np.array([dx, dy])
    else:
        # Lines and single pixels have no polygon: point spot at the pixel centroid
        rows, cols = np.nonzero(region_mask)
        cy, cx = float(rows.mean()), float(cols.mean())
        contour_phys = None

    physical = pixel_to_physical((cy + offset[0], cx + offset[1]), calibration)
    x, y, z = physical_to_xyz(physical)

    return Spot(
        x=x, y=y, z=z,
        radius=math.sqrt(area / math.pi),
        quality=quality,
        frame=frame,
        contour=contour_phys,
        features={
            'area': area,
            'n_pixels': n_pixels,
            'n_contour_points': int(len(contour_phys)) if contour_phys is not None else 0,
        },
    )


def _spot_from_region_3d(
    region_mask: np.ndarray,
    region_proba: np.ndarray,
    offset: Tuple[int, ...],
    calibration: Tuple[float, ...],
    frame: int,
) -> Spot:
    n_voxels = int(region_mask.sum())
    volume = n_voxels * float(np.prod(calibration))
    quality = _region_quality(region_mask, region_proba)

    indices = np.nonzero(region_mask)
    centroid = tuple(float(idx.mean()) + o for idx, o in zip(indices, offset))
    x, y, z = physical_to_xyz(pixel_to_physical(centroid, calibration))

    mesh = None
    padded = np.pad(region_mask.astype(np.float32), 1)
    try:
        verts, faces, _, _ = marching_cubes(padded, level=0.5, spacing=calibration)
        # Undo the padding, move to source coordinates, reorder (z, y, x) -> (x, y, z)
        shift = np.array([(o - 1) * c for o, c in zip(offset, calibration)])
        verts = (verts + shift)[:, ::-1]
        mesh = Mesh(vertices=np.ascontiguousarray(verts), faces=faces)
    except (ValueError, RuntimeError) as e:
        logger.debug(f"No mesh for region at {offset}: {e}")

    return Spot(
        x=x, y=y, z=z,
        radius=(3.0 * volume / (4.0 * math.pi)) ** (1.0 / 3.0),
        quality=quality,
        frame=frame,
        mesh=mesh,
        features={
            'volume': volume,
            'n_pixels': n_voxels,
            'n_mesh_faces': mesh.n_faces if mesh is not None else 0,
        },
    )
