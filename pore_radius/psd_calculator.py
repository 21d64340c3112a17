"""
Pore Size Distribution Calculator
==================================

Main pipeline computing the radius-based pore-size distribution of a binary
volume, an image-based analogue of mercury intrusion porosimetry.

Pipeline:
    1. Validate the binary volume (True = pore)
    2. Distance field over the volume padded with one solid layer
    3. Critical radius map C0 = ceil(D - tol) - 0.5
    4. Radius propagation C1 (largest covering sphere label, serial or pooled)
    5. Radius histogram Re over half-integer edges

Outputs:
    C0  float64, half-integer critical radii on pore voxels, 0 on solid
    C1  uint16 labels, 0 = unassigned, s + 1 = covered by a radius-s sphere
    Re  uint32 counts, bin k = voxels labelled k, at least 100 bins
"""

import logging
import warnings
from concurrent.futures import Executor
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .config_loader import load_config
from .distance_transform import compute_edt
from .local_thickness import (
    DEFAULT_TOLERANCE,
    compute_critical_radius_map,
    compute_radius_labels,
)

logger = logging.getLogger(__name__)

CONFIG = load_config()
PROCESSING_CONFIG = CONFIG.get("processing") or {}

DEFAULT_USE_PARALLEL = bool(PROCESSING_CONFIG.get("use_parallel", True))
DEFAULT_MAX_WORKERS = PROCESSING_CONFIG.get("max_workers")
DEFAULT_BATCH_SIZE = int(PROCESSING_CONFIG.get("batch_size", 1))
DEFAULT_USE_GPU = bool(PROCESSING_CONFIG.get("use_gpu", False))
DEFAULT_RADIUS_TOLERANCE = float(PROCESSING_CONFIG.get("tolerance", DEFAULT_TOLERANCE))
MIN_HISTOGRAM_BINS = int(PROCESSING_CONFIG.get("min_histogram_bins", 100))


class InvalidVolumeError(ValueError):
    """Raised when the input is not a non-empty, two-valued 3D volume."""


def validate_binary_volume(binary_volume: Any) -> np.ndarray:
    """
    Check the input volume and return it as a boolean array.

    Boolean volumes are returned unchanged. Numeric volumes are accepted only
    when they are already two-valued with 0 as the solid value (e.g. {0, 1}
    or {0, 255}); they are converted with a warning. No threshold is ever
    guessed for grayscale data.

    Raises:
        InvalidVolumeError: If the volume is not 3D, is empty, or is not a
                            two-valued grid.
    """
    volume = np.asarray(binary_volume)

    if volume.ndim != 3:
        raise InvalidVolumeError(
            f"Expected 3D volume, got shape {volume.shape}"
        )
    if volume.size == 0:
        raise InvalidVolumeError(f"Volume is empty: shape {volume.shape}")

    if volume.dtype == bool:
        return volume

    if not np.issubdtype(volume.dtype, np.integer) and not np.issubdtype(volume.dtype, np.floating):
        raise InvalidVolumeError(f"Unsupported volume dtype {volume.dtype}")

    values = np.unique(volume)
    if not np.all(np.isfinite(values)):
        raise InvalidVolumeError("Volume contains non-finite values")
    two_valued = values.size == 1 or (values.size == 2 and 0 in values)
    if not two_valued:
        shown = values[:5].tolist()
        raise InvalidVolumeError(
            f"Volume must be binary (0 = solid, non-zero = pore); found "
            f"{values.size} distinct values starting with {shown}. "
            f"Binarize grayscale data before computing the PSD."
        )

    warnings.warn(
        f"Converting volume from {volume.dtype} to bool",
        UserWarning
    )
    return volume != 0


def max_radius_index(critical_radius_map: np.ndarray) -> int:
    """``round(max(C0) - 0.5 + 1)``, rounding halves up."""
    peak = float(critical_radius_map.max()) if critical_radius_map.size else 0.0
    return int(np.floor(peak - 0.5 + 1 + 0.5))


def compute_radius_histogram(
    radius_labels: np.ndarray,
    critical_radius_map: np.ndarray,
    min_bins: int = MIN_HISTOGRAM_BINS,
) -> np.ndarray:
    """
    Count voxels per radius label (Re).

    Args:
        radius_labels: C1 label volume.
        critical_radius_map: C0 map; fixes the number of populated bins.
        min_bins: Minimum histogram length. Bins beyond the largest label
                  stay zero.

    Returns:
        uint32 array of length ``max(max_radius_index(C0), min_bins)``.
        Element ``k - 1`` holds the number of voxels labelled ``k``.
    """
    if min_bins < 1:
        raise ValueError(f"min_bins must be >= 1, got {min_bins}")

    n_populated = max_radius_index(critical_radius_map)
    histogram = np.zeros(max(n_populated, min_bins), dtype=np.uint32)
    if n_populated < 1:
        return histogram

    # Bins centred on integer labels: [0.5, 1.5), [1.5, 2.5), ...
    edges = np.arange(0.5, n_populated + 1.0, 1.0)
    counts, _ = np.histogram(radius_labels, bins=edges)
    histogram[:n_populated] = counts.astype(np.uint32)
    return histogram


def compute_psd(
    binary_volume: np.ndarray,
    use_parallel: bool = DEFAULT_USE_PARALLEL,
    executor: Optional[Executor] = None,
    max_workers: Optional[int] = DEFAULT_MAX_WORKERS,
    batch_size: int = DEFAULT_BATCH_SIZE,
    use_gpu: bool = DEFAULT_USE_GPU,
    tolerance: float = DEFAULT_RADIUS_TOLERANCE,
    min_bins: int = MIN_HISTOGRAM_BINS,
) -> Dict[str, Any]:
    """
    Complete radius PSD pipeline.

    Args:
        binary_volume: 3D array. True = pore, False = solid.
        use_parallel: Run radius propagation on a worker pool; falls back
                      to serial execution with identical output.
        executor: Caller-owned executor for radius propagation.
        max_workers: Pool size when the pool is created here.
        batch_size: Radii per propagation task.
        use_gpu: Compute the distance field with CuPy when available.
        tolerance: Floating-point guard for the critical radius ceiling.
        min_bins: Minimum histogram length.

    Returns:
        Dictionary with:
            - 'critical_radius': C0
            - 'radius_labels': C1
            - 'histogram': Re
            - 'total_pore_voxels': number of pore voxels
            - 'labelled_voxels': number of voxels with C1 > 0
            - 'porosity': pore fraction of the volume
            - 'max_radius': largest critical radius in voxels (-1 if none)
            - 'shape': volume shape

    Raises:
        InvalidVolumeError: If input validation fails.
        ValueError: If ``min_bins`` is below 1.

    Example:
        >>> volume = np.ones((3, 3, 3), dtype=bool)
        >>> psd = compute_psd(volume, use_parallel=False)
        >>> psd['histogram'][:3].tolist()
        [20, 7, 0]
    """
    volume = validate_binary_volume(binary_volume)
    if min_bins < 1:
        raise ValueError(f"min_bins must be >= 1, got {min_bins}")

    logger.info("Volume shape: %s, porosity: %.4f", volume.shape, volume.mean())
    logger.info("Parallel: %s, GPU: %s", use_parallel, use_gpu)

    logger.info("[1/3] Computing padded Euclidean distance field...")
    distance_field = compute_edt(volume, use_gpu=use_gpu)
    critical_radius = compute_critical_radius_map(distance_field, volume, tolerance)
    max_radius = max_radius_index(critical_radius) - 1 if volume.any() else -1
    logger.info("  Critical radius map complete. Max radius: %d voxels", max_radius)

    logger.info("[2/3] Propagating radii...")
    radius_labels = compute_radius_labels(
        critical_radius,
        use_parallel=use_parallel,
        executor=executor,
        max_workers=max_workers,
        batch_size=batch_size,
    )

    logger.info("[3/3] Building radius histogram...")
    histogram = compute_radius_histogram(radius_labels, critical_radius, min_bins)

    total_pore_voxels = int(volume.sum())
    labelled_voxels = int(np.count_nonzero(radius_labels))
    logger.info(
        "PSD complete: %s pore voxels, %s labelled, %d bins",
        f"{total_pore_voxels:,}",
        f"{labelled_voxels:,}",
        histogram.size,
    )

    return {
        'critical_radius': critical_radius,
        'radius_labels': radius_labels,
        'histogram': histogram,
        'total_pore_voxels': total_pore_voxels,
        'labelled_voxels': labelled_voxels,
        'porosity': float(volume.mean()),
        'max_radius': max_radius,
        'shape': tuple(int(d) for d in volume.shape),
    }


def pore_size_distribution(
    binary_volume: np.ndarray,
    use_parallel: bool = DEFAULT_USE_PARALLEL,
    **kwargs: Any,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Shorthand for :func:`compute_psd` returning ``(C0, C1, Re)``."""
    psd = compute_psd(binary_volume, use_parallel=use_parallel, **kwargs)
    return psd['critical_radius'], psd['radius_labels'], psd['histogram']
