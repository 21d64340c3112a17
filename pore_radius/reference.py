"""
Reference (Brute-Force) Radius PSD
===================================

Direct geometric computation of C0, C1 and Re, with no distance transform.
It exists to validate the optimized pipeline bit for bit and costs orders
of magnitude more; keep it to volumes of a few tens of voxels per axis.

Definitions:
    Sphere of radius l around voxel p: every voxel q of the cube
    [p - l, p + l] with sqrt(|q - p|^2) <= l.

    Critical radius: grow l = 1, 2, ... until the cube leaves the volume or
    the sphere contains a solid voxel (first failing l = l_fail);
    C0 = l_fail - 0.5.

    Labels: for dp from max(C0) - 0.5 down to 0, every voxel with
    C0 == dp + 0.5 writes dp + 1 into each still-unset voxel of its
    radius-dp sphere (first writer wins).
"""

import logging
from typing import Tuple

import numpy as np

from .psd_calculator import MIN_HISTOGRAM_BINS, validate_binary_volume

logger = logging.getLogger(__name__)


def _sphere_mask(radius: int) -> np.ndarray:
    """Voxels of the (2r+1)^3 cube within Euclidean distance ``radius``."""
    offsets = np.arange(-radius, radius + 1)
    di, dj, dk = np.meshgrid(offsets, offsets, offsets, indexing="ij")
    return np.sqrt(di ** 2 + dj ** 2 + dk ** 2) <= radius


def _cube(center: Tuple[int, int, int], radius: int) -> Tuple[slice, slice, slice]:
    return tuple(slice(c - radius, c + radius + 1) for c in center)


def _cube_inside(center: Tuple[int, int, int], radius: int, shape: Tuple[int, ...]) -> bool:
    return all(c - radius >= 0 and c + radius <= dim - 1 for c, dim in zip(center, shape))


def reference_critical_radius(binary_volume: np.ndarray) -> np.ndarray:
    """C0 by growing a discrete sphere around every pore voxel."""
    volume = validate_binary_volume(binary_volume)
    critical = np.zeros(volume.shape, dtype=np.float64)
    spheres = {}

    for i in range(volume.shape[0]):
        for j in range(volume.shape[1]):
            for k in range(volume.shape[2]):
                if not volume[i, j, k]:
                    continue
                center = (i, j, k)
                l = 0
                while True:
                    critical[center] = l + 0.5
                    l += 1
                    if not _cube_inside(center, l, volume.shape):
                        break
                    if l not in spheres:
                        spheres[l] = _sphere_mask(l)
                    if not volume[_cube(center, l)][spheres[l]].all():
                        break

    return critical


def reference_radius_labels(critical_radius_map: np.ndarray) -> np.ndarray:
    """C1 by stamping spheres from the largest critical radius down."""
    labels = np.zeros(critical_radius_map.shape, dtype=np.uint16)
    if not (critical_radius_map > 0).any():
        return labels

    max_radius = int(round(float(critical_radius_map.max()) - 0.5))
    for dp in range(max_radius, -1, -1):
        sphere = _sphere_mask(dp)
        for center in zip(*np.nonzero(critical_radius_map == dp + 0.5)):
            cube = labels[_cube(center, dp)]
            unset = sphere & (cube == 0)
            cube[unset] = dp + 1

    return labels


def reference_histogram(
    radius_labels: np.ndarray,
    min_bins: int = MIN_HISTOGRAM_BINS,
) -> np.ndarray:
    """Re by counting every label voxel by voxel."""
    if min_bins < 1:
        raise ValueError(f"min_bins must be >= 1, got {min_bins}")
    max_label = int(radius_labels.max()) if radius_labels.size else 0
    histogram = np.zeros(max(max_label, min_bins), dtype=np.uint32)
    for label in radius_labels.ravel():
        if label > 0:
            histogram[label - 1] += 1
    return histogram


def reference_pore_size_distribution(
    binary_volume: np.ndarray,
    min_bins: int = MIN_HISTOGRAM_BINS,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Brute-force ``(C0, C1, Re)`` for cross-validation.

    Example:
        >>> volume = np.zeros((3, 3, 3), dtype=bool)
        >>> volume[1, 1, 1] = True
        >>> c0, c1, re = reference_pore_size_distribution(volume)
        >>> float(c0[1, 1, 1]), int(c1[1, 1, 1]), int(re[0])
        (0.5, 1, 1)
    """
    volume = validate_binary_volume(binary_volume)
    logger.debug("Reference PSD on volume %s (%d pore voxels)", volume.shape, int(volume.sum()))

    critical = reference_critical_radius(volume)
    labels = reference_radius_labels(critical)
    histogram = reference_histogram(labels, min_bins)
    return critical, labels, histogram
