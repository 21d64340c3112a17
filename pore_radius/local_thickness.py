"""
Critical Radius Map and Radius Propagation
===========================================

Turns the padded distance field into the two per-voxel outputs of the
pipeline:

    C0  critical radius map. Pore voxels hold ``ceil(D - tol) - 0.5``, the
        half-integer encoding of the largest discrete sphere that fits around
        the voxel. Solid voxels hold 0.
    C1  radius labels. Every voxel covered by a sphere of radius ``s``
        centered on a voxel whose critical radius is ``s`` receives label
        ``s + 1``; the largest covering radius wins.

Propagation Algorithm (local thickness, Hildebrand & Ruegsegger 1997):
    For every distinct radius s present in C0:
        1. Centers = voxels whose integer radius equals s
        2. Dilate centers by s (distance transform of the center set <= s)
        3. Candidate label s + 1 on the dilated set
    Candidates are reduced with an element-wise maximum. The reduction is
    associative, commutative and idempotent, so radii may be processed in
    any order, in any grouping, serially or on a worker pool.

References:
    Hildebrand, T., & Rüegsegger, P. (1997). A new method for the model-
    independent assessment of thickness in three-dimensional images.
    Journal of Microscopy, 185(1), 67-75.
"""

import logging
from concurrent.futures import Executor, as_completed
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .distance_transform import distance_to_mask
from .execution import execution_context, submit_all

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 1e-12
SOLID_RADIUS = -1

Bounds = Tuple[slice, slice, slice]


def compute_critical_radius_map(
    distance_field: np.ndarray,
    pore_mask: Optional[np.ndarray] = None,
    tolerance: float = DEFAULT_TOLERANCE,
) -> np.ndarray:
    """
    Map the distance field to half-integer critical radii (C0).

    Args:
        distance_field: Padded EDT of the pore phase (float64).
        pore_mask: Pore voxels. Defaults to ``distance_field > 0``.
        tolerance: Subtracted before ``ceil`` so that distances landing on an
                   exact integer are not pushed to the next radius by
                   floating-point noise.

    Returns:
        float64 array: ``k - 0.5`` (k >= 1) on pore voxels, 0 elsewhere.
    """
    if pore_mask is None:
        pore_mask = distance_field > 0

    critical = np.zeros(distance_field.shape, dtype=np.float64)
    critical[pore_mask] = np.ceil(distance_field[pore_mask] - tolerance) - 0.5
    return critical


def compute_radius_field(critical_radius_map: np.ndarray) -> np.ndarray:
    """Integer radius ``round(C0 - 0.5)`` per pore voxel, -1 on solid voxels."""
    radius_field = np.full(critical_radius_map.shape, SOLID_RADIUS, dtype=np.int32)
    pore = critical_radius_map > 0
    radius_field[pore] = np.rint(critical_radius_map[pore] - 0.5).astype(np.int32)
    return radius_field


def distinct_radii(radius_field: np.ndarray) -> List[int]:
    """Radii present in the field, largest first."""
    values = np.unique(radius_field)
    return [int(v) for v in values[::-1] if v >= 0]


def label_dtype_for(max_label: int) -> np.dtype:
    """Smallest unsigned label type holding ``max_label`` (uint16 or uint32)."""
    if max_label <= np.iinfo(np.uint16).max:
        return np.dtype(np.uint16)
    return np.dtype(np.uint32)


def _center_bounds(centers: np.ndarray, radius: int) -> Bounds:
    """Bounding box of the centers grown by ``radius``, clamped to the volume."""
    bounds = []
    for axis, dim in enumerate(centers.shape):
        other_axes = tuple(a for a in range(centers.ndim) if a != axis)
        hits = np.flatnonzero(centers.any(axis=other_axes))
        start = max(int(hits[0]) - radius, 0)
        stop = min(int(hits[-1]) + radius + 1, dim)
        bounds.append(slice(start, stop))
    return tuple(bounds)


def _union_bounds(boxes: Sequence[Bounds]) -> Bounds:
    return tuple(
        slice(min(box[axis].start for box in boxes), max(box[axis].stop for box in boxes))
        for axis in range(3)
    )


def dilate_centers(
    radius_field: np.ndarray, radius: int
) -> Optional[Tuple[Bounds, np.ndarray]]:
    """
    Voxels within Euclidean distance ``radius`` of any center of that radius.

    Returns:
        ``(bounds, mask)`` where ``mask`` covers ``radius_field[bounds]``, or
        None when no voxel has this radius. Voxels outside ``bounds`` are
        farther than ``radius`` from every center.
    """
    centers = radius_field == radius
    if not centers.any():
        return None

    bounds = _center_bounds(centers, radius)
    within = distance_to_mask(centers, bounds) <= radius
    return bounds, within


def _propagate_batch(
    radius_field: np.ndarray,
    radii: Sequence[int],
    label_dtype: np.dtype,
) -> Optional[Tuple[Bounds, np.ndarray]]:
    """Candidate label buffer for a group of radii, reduced locally by max."""
    pieces = []
    for radius in radii:
        piece = dilate_centers(radius_field, radius)
        if piece is not None:
            pieces.append((radius, piece[0], piece[1]))
    if not pieces:
        return None

    bounds = _union_bounds([box for _, box, _ in pieces])
    shape = tuple(sl.stop - sl.start for sl in bounds)
    candidate = np.zeros(shape, dtype=label_dtype)
    for radius, box, within in pieces:
        local = tuple(
            slice(b.start - u.start, b.stop - u.start) for b, u in zip(box, bounds)
        )
        view = candidate[local]
        label = radius + 1
        view[within & (view < label)] = label
    return bounds, candidate


def _batched(radii: Sequence[int], batch_size: int) -> List[List[int]]:
    return [list(radii[i:i + batch_size]) for i in range(0, len(radii), batch_size)]


def propagate_radii(
    radius_field: np.ndarray,
    radii: Optional[Sequence[int]] = None,
    executor: Optional[Executor] = None,
    batch_size: int = 1,
) -> np.ndarray:
    """
    Build the radius label volume (C1) from an integer radius field.

    Args:
        radius_field: Output of :func:`compute_radius_field`.
        radii: Radii to process, in any order. Defaults to every radius
               present, largest first.
        executor: Where radius batches run. None runs them serially.
        batch_size: Radii handled by one task.

    Returns:
        Label volume (uint16, or uint32 if labels would overflow uint16).
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    if radii is None:
        radii = distinct_radii(radius_field)
    radii = [int(r) for r in radii if r >= 0]

    max_label = (max(radii) + 1) if radii else 1
    label_dtype = label_dtype_for(max_label)
    labels = np.zeros(radius_field.shape, dtype=label_dtype)
    if not radii:
        return labels

    batches = _batched(radii, batch_size)
    logger.debug(
        "Propagating %d radii in %d task(s) (max radius %d)",
        len(radii),
        len(batches),
        max_label - 1,
    )

    def task(batch: List[int]):
        return _propagate_batch(radius_field, batch, label_dtype)

    with execution_context(use_parallel=executor is not None, executor=executor) as pool:
        futures = submit_all(pool, task, batches)
        for done, future in enumerate(as_completed(futures), start=1):
            result = future.result()
            if result is not None:
                bounds, candidate = result
                view = labels[bounds]
                np.maximum(view, candidate, out=view)
            if len(batches) > 50 and done % 10 == 0:
                logger.info("    Progress: %d/%d radius tasks reduced", done, len(batches))

    return labels


def compute_radius_labels(
    critical_radius_map: np.ndarray,
    use_parallel: bool = True,
    executor: Optional[Executor] = None,
    max_workers: Optional[int] = None,
    batch_size: int = 1,
) -> np.ndarray:
    """
    Radius propagation (C1) from a critical radius map (C0).

    Args:
        critical_radius_map: C0 from :func:`compute_critical_radius_map`.
        use_parallel: Run radius tasks on a worker pool. Falls back to
                      serial execution, with identical output, when no
                      pool is available.
        executor: Caller-owned executor to use instead of a new pool.
        max_workers: Pool size when a pool is created here.
        batch_size: Radii per task.

    Returns:
        Label volume; 0 = unassigned/solid, ``s + 1`` = largest covering
        sphere radius ``s``.

    Example:
        >>> from pore_radius.distance_transform import compute_edt
        >>> volume = np.zeros((3, 3, 3), dtype=bool)
        >>> volume[1, 1, 1] = True
        >>> c0 = compute_critical_radius_map(compute_edt(volume))
        >>> int(compute_radius_labels(c0)[1, 1, 1])
        1
    """
    radius_field = compute_radius_field(critical_radius_map)
    radii = distinct_radii(radius_field)

    with execution_context(use_parallel, executor, max_workers) as pool:
        return propagate_radii(radius_field, radii, executor=pool, batch_size=batch_size)
