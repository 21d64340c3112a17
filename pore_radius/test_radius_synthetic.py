"""
Synthetic Volume Test Suite for Radius PSD Validation
======================================================

Generates test volumes with known radius maps and checks the
EDT -> C0 -> C1 -> Re pipeline against them and against the brute-force
reference.

Test Cases:
    1. Small closed shapes - 3x3x3 cube, isolated voxel, tube, thin slab
    2. Degenerate volumes - all solid, invalid input
    3. Two blobs - distinct radii produce distinct histogram bins
    4. Random volumes - reference = serial = parallel, bit for bit
    5. Scheduling - radius order, batch size and executor fallbacks
"""

import random
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from scipy.ndimage import distance_transform_edt

from pore_radius import execution
from pore_radius.distance_transform import compute_edt
from pore_radius.local_thickness import (
    compute_critical_radius_map,
    compute_radius_field,
    compute_radius_labels,
    dilate_centers,
    distinct_radii,
    label_dtype_for,
    propagate_radii,
)
from pore_radius.psd_calculator import (
    InvalidVolumeError,
    compute_psd,
    compute_radius_histogram,
    max_radius_index,
    pore_size_distribution,
    validate_binary_volume,
)
from pore_radius.reference import reference_pore_size_distribution


def generate_cube_pore(
    volume_shape=(9, 9, 9),
    side: int = 5,
    corner=(2, 2, 2)
) -> np.ndarray:
    """
    Cubic pore of ``side`` voxels embedded in solid.

    Expected C0 at the cube center: ceil(side / 2) - 0.5 for odd sides.
    """
    volume = np.zeros(volume_shape, dtype=bool)
    z, y, x = corner
    volume[z:z + side, y:y + side, x:x + side] = True
    return volume


def generate_single_sphere(volume_size: int = 15, radius: int = 5, center=None) -> np.ndarray:
    """Ball of Euclidean radius ``radius`` (sqrt(d2) <= radius)."""
    if center is None:
        center = (volume_size // 2,) * 3
    zz, yy, xx = np.indices((volume_size,) * 3)
    cz, cy, cx = center
    dist = np.sqrt((zz - cz) ** 2 + (yy - cy) ** 2 + (xx - cx) ** 2)
    return dist <= radius


def generate_two_blobs() -> np.ndarray:
    """
    A 5-voxel cube and a 3-voxel cube separated by solid.

    Expected radii: 2 for the large cube center, 1 for the small one.
    """
    volume = np.zeros((7, 7, 13), dtype=bool)
    volume[1:6, 1:6, 1:6] = True
    volume[2:5, 2:5, 8:11] = True
    return volume


def generate_random_volume(shape=(8, 8, 8), porosity: float = 0.7, seed: int = 42) -> np.ndarray:
    """Uncorrelated pore/solid voxels with the given pore probability."""
    rng = np.random.default_rng(seed)
    return rng.random(shape) < porosity


def assert_same_outputs(first, second):
    for a, b in zip(first, second):
        assert a.shape == b.shape
        np.testing.assert_array_equal(a, b)


# ---------------------------------------------------------------------------
# Distance field and critical radius map
# ---------------------------------------------------------------------------

def test_edt_treats_volume_edges_as_solid():
    volume = np.ones((3, 3, 3), dtype=bool)
    edt = compute_edt(volume)

    assert edt.dtype == np.float64
    assert edt[1, 1, 1] == 2.0
    assert edt[0, 0, 0] == 1.0
    assert edt[0, 1, 1] == 1.0


def test_edt_rejects_non_3d_input():
    with pytest.raises(ValueError):
        compute_edt(np.ones((4, 4), dtype=bool))


def test_critical_radius_keeps_exact_integer_distances():
    distance = np.array([[[1.0, 2.0, 2.0 + 1e-13, 2.5, 0.0]]])
    critical = compute_critical_radius_map(distance)

    np.testing.assert_array_equal(critical, [[[0.5, 1.5, 1.5, 2.5, 0.0]]])


def test_critical_radius_zero_on_solid():
    volume = generate_cube_pore()
    critical = compute_critical_radius_map(compute_edt(volume), volume)

    assert np.all(critical[~volume] == 0)
    assert np.all(critical[volume] >= 0.5)
    assert np.all((critical[volume] - 0.5) % 1 == 0)


# ---------------------------------------------------------------------------
# Known shapes
# ---------------------------------------------------------------------------

def test_all_pore_cube():
    """3x3x3 all-pore volume: only the center fits a radius-1 sphere."""
    volume = np.ones((3, 3, 3), dtype=bool)
    c0, c1, re = pore_size_distribution(volume, use_parallel=False)

    expected_c0 = np.full((3, 3, 3), 0.5)
    expected_c0[1, 1, 1] = 1.5
    np.testing.assert_array_equal(c0, expected_c0)

    # Center and its six face neighbours are covered by the radius-1 sphere
    expected_c1 = np.ones((3, 3, 3), dtype=np.uint16)
    expected_c1[1, 1, 1] = 2
    for axis in range(3):
        for offset in (0, 2):
            index = [1, 1, 1]
            index[axis] = offset
            expected_c1[tuple(index)] = 2
    np.testing.assert_array_equal(c1, expected_c1)

    assert re.dtype == np.uint32
    assert re.size == 100
    assert re[:3].tolist() == [20, 7, 0]
    assert re[2:].sum() == 0

    assert_same_outputs((c0, c1, re), reference_pore_size_distribution(volume))


def test_isolated_voxel():
    volume = np.zeros((3, 3, 3), dtype=bool)
    volume[1, 1, 1] = True
    c0, c1, re = pore_size_distribution(volume, use_parallel=True)

    assert c0[1, 1, 1] == 0.5
    assert c0.sum() == 0.5
    assert c1[1, 1, 1] == 1
    assert c1.sum() == 1
    assert re[0] == 1
    assert re[1:].sum() == 0


def test_tube_labels():
    """3x3x7 tube: the axis fits radius 1 except at the two open ends."""
    volume = np.ones((3, 3, 7), dtype=bool)
    c0, c1, re = pore_size_distribution(volume, use_parallel=False)

    assert c0[1, 1, 1:6].tolist() == [1.5] * 5
    assert c0[1, 1, 0] == 0.5
    assert c0[1, 1, 6] == 0.5
    # 7 axis voxels + 4 face neighbours for each of the 5 centers
    assert re[:2].tolist() == [36, 27]
    assert_same_outputs((c0, c1, re), reference_pore_size_distribution(volume))


def test_thin_slab_is_radius_zero():
    volume = np.ones((1, 6, 6), dtype=bool)
    c0, c1, re = pore_size_distribution(volume, use_parallel=False)

    assert np.all(c0 == 0.5)
    assert np.all(c1 == 1)
    assert re[0] == 36


def test_embedded_cube_center_radius():
    volume = generate_cube_pore(side=5)
    psd = compute_psd(volume, use_parallel=False)

    assert psd['critical_radius'][4, 4, 4] == 2.5
    assert psd['max_radius'] == 2
    assert psd['total_pore_voxels'] == 125
    assert_same_outputs(
        (psd['critical_radius'], psd['radius_labels'], psd['histogram']),
        reference_pore_size_distribution(volume),
    )


def test_single_sphere_matches_reference():
    volume = generate_single_sphere(volume_size=11, radius=4)
    optimized = pore_size_distribution(volume, use_parallel=True)

    assert_same_outputs(optimized, reference_pore_size_distribution(volume))
    # The ball center fits a sphere of radius 4 and nothing larger
    assert optimized[0][5, 5, 5] == 4.5
    assert optimized[2][4] > 0
    assert optimized[2][5:].sum() == 0


def test_all_solid_volume():
    volume = np.zeros((4, 5, 6), dtype=bool)
    psd = compute_psd(volume, use_parallel=True)

    assert not psd['critical_radius'].any()
    assert not psd['radius_labels'].any()
    assert psd['histogram'].size == 100
    assert not psd['histogram'].any()
    assert psd['max_radius'] == -1
    assert psd['porosity'] == 0.0


def test_two_blobs_fill_distinct_bins():
    volume = generate_two_blobs()
    c0, c1, re = pore_size_distribution(volume, use_parallel=True)

    # Labels r + 1 live at histogram index r
    assert re[2] > 0
    assert re[1] > 0
    assert re[3:].sum() == 0
    assert c1[3, 3, 3] == 3
    assert c1[3, 3, 9] == 2
    assert_same_outputs((c0, c1, re), reference_pore_size_distribution(volume))


# ---------------------------------------------------------------------------
# Equivalence and invariants
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("seed", range(5))
@pytest.mark.parametrize("shape", [(4, 5, 6), (8, 8, 8), (3, 9, 7)])
def test_reference_serial_parallel_identical(seed, shape):
    volume = generate_random_volume(shape, porosity=0.75, seed=seed)

    reference = reference_pore_size_distribution(volume)
    serial = pore_size_distribution(volume, use_parallel=False)
    parallel = pore_size_distribution(volume, use_parallel=True, max_workers=3)

    assert_same_outputs(reference, serial)
    assert_same_outputs(serial, parallel)


@pytest.mark.parametrize("seed", [0, 7, 21])
def test_histogram_conservation_and_coverage(seed):
    volume = generate_random_volume((10, 10, 10), porosity=0.85, seed=seed)
    psd = compute_psd(volume, use_parallel=True)
    labels = psd['radius_labels']

    # Every pore voxel covers itself, nothing outside the pore phase is labelled
    assert int(psd['histogram'].sum()) == int(volume.sum())
    assert np.all(labels[~volume] == 0)
    assert np.all(labels[volume] >= 1)

    radius_field = compute_radius_field(psd['critical_radius'])
    assert np.all(labels[volume].astype(np.int64) >= radius_field[volume] + 1)


@pytest.mark.parametrize("seed", [2, 5, 13])
def test_labels_come_from_largest_covering_sphere(seed):
    volume = generate_random_volume((11, 11, 11), porosity=0.85, seed=seed)
    labels = compute_psd(volume, use_parallel=True)['radius_labels']
    radius_field = compute_radius_field(compute_critical_radius_map(compute_edt(volume), volume))

    radii = distinct_radii(radius_field)
    within = {s: distance_transform_edt(radius_field != s) <= s for s in radii}
    for s in radii:
        labelled = labels == s + 1
        # A center of radius s reaches every voxel labelled s + 1 ...
        assert np.all(within[s][labelled])
        # ... and no larger sphere covers it
        for t in radii:
            if t > s:
                assert not np.any(within[t][labelled])


def test_radius_order_does_not_matter():
    volume = generate_random_volume((9, 9, 9), porosity=0.8, seed=3)
    c0 = compute_critical_radius_map(compute_edt(volume), volume)
    radius_field = compute_radius_field(c0)

    radii = distinct_radii(radius_field)
    expected = propagate_radii(radius_field)

    shuffled = list(radii)
    random.Random(5).shuffle(shuffled)
    np.testing.assert_array_equal(propagate_radii(radius_field, shuffled), expected)
    np.testing.assert_array_equal(propagate_radii(radius_field, radii[::-1]), expected)


@pytest.mark.parametrize("batch_size", [1, 2, 3, 50])
def test_batch_size_does_not_change_labels(batch_size):
    volume = generate_single_sphere(volume_size=13, radius=5)
    expected = compute_psd(volume, use_parallel=False)['radius_labels']

    labels = compute_psd(volume, use_parallel=True, batch_size=batch_size)['radius_labels']
    np.testing.assert_array_equal(labels, expected)


def test_invalid_batch_size():
    radius_field = compute_radius_field(np.full((2, 2, 2), 0.5))
    with pytest.raises(ValueError):
        propagate_radii(radius_field, batch_size=0)


def test_dilate_centers_missing_radius():
    radius_field = compute_radius_field(np.full((3, 3, 3), 0.5))
    assert dilate_centers(radius_field, 4) is None


def test_label_dtype_widens():
    assert label_dtype_for(1) == np.uint16
    assert label_dtype_for(65535) == np.uint16
    assert label_dtype_for(65536) == np.uint32


def test_histogram_grows_past_min_bins():
    critical = np.zeros((1, 1, 3))
    critical[0, 0, 0] = 149.5
    critical[0, 0, 1] = 0.5
    labels = np.zeros((1, 1, 3), dtype=np.uint16)
    labels[0, 0, 0] = 150
    labels[0, 0, 1] = 1

    assert max_radius_index(critical) == 150
    histogram = compute_radius_histogram(labels, critical)
    assert histogram.size == 150
    assert histogram[149] == 1
    assert histogram[0] == 1
    assert histogram.sum() == 2


def test_histogram_respects_min_bins_argument():
    volume = np.ones((3, 3, 3), dtype=bool)
    psd = compute_psd(volume, use_parallel=False, min_bins=5)
    assert psd['histogram'].tolist() == [20, 7, 0, 0, 0]


# ---------------------------------------------------------------------------
# Execution fallbacks
# ---------------------------------------------------------------------------

def test_parallel_without_pool_matches_serial(monkeypatch, caplog):
    volume = generate_two_blobs()
    serial = pore_size_distribution(volume, use_parallel=False)

    def unavailable(*args, **kwargs):
        raise RuntimeError("can't start new thread")

    monkeypatch.setattr(execution, "ThreadPoolExecutor", unavailable)
    with caplog.at_level("WARNING"):
        parallel = pore_size_distribution(volume, use_parallel=True)

    assert_same_outputs(serial, parallel)
    assert "running serially" in caplog.text


def test_shut_down_executor_falls_back(caplog):
    volume = generate_random_volume((6, 6, 6), porosity=0.8, seed=11)
    c0 = compute_critical_radius_map(compute_edt(volume), volume)
    expected = compute_radius_labels(c0, use_parallel=False)

    pool = ThreadPoolExecutor(max_workers=2)
    pool.shutdown()
    with caplog.at_level("WARNING"):
        labels = compute_radius_labels(c0, use_parallel=True, executor=pool)

    np.testing.assert_array_equal(labels, expected)
    assert "serially" in caplog.text


def test_caller_executor_stays_open():
    volume = generate_cube_pore(side=5)
    with ThreadPoolExecutor(max_workers=2) as pool:
        psd = compute_psd(volume, use_parallel=True, executor=pool)
        assert pool.submit(lambda: 1).result() == 1
    assert psd['radius_labels'][4, 4, 4] == 3


def test_serial_executor_rejects_after_shutdown():
    executor = execution.SerialExecutor()
    assert executor.submit(lambda x: x + 1, 1).result() == 2
    executor.shutdown()
    with pytest.raises(RuntimeError):
        executor.submit(lambda: None)


def test_invalid_max_workers():
    with pytest.raises(ValueError):
        with execution.execution_context(True, max_workers=0):
            pass


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("bad_volume", [
    np.ones((4, 4), dtype=bool),
    np.ones((2, 2, 2, 2), dtype=bool),
    np.zeros((0, 3, 3), dtype=bool),
    np.array([[[0, 1], [2, 0]]], dtype=np.uint8),
    np.array([[[1, 2], [2, 1]]], dtype=np.int32),
    np.array([[[0.0, np.nan], [1.0, 0.0]]]),
    np.array([[["a", "b"], ["a", "b"]]]),
])
def test_invalid_volumes_rejected(bad_volume):
    with pytest.raises(InvalidVolumeError):
        compute_psd(bad_volume, use_parallel=False)


def test_invalid_volume_error_is_value_error():
    with pytest.raises(ValueError):
        validate_binary_volume(np.ones(5, dtype=bool))


def test_two_valued_numeric_volume_is_converted():
    volume = np.zeros((3, 3, 3), dtype=np.uint8)
    volume[1, 1, 1] = 255

    with pytest.warns(UserWarning):
        converted = validate_binary_volume(volume)
    assert converted.dtype == bool
    assert converted.sum() == 1

    with pytest.warns(UserWarning):
        c0, c1, re = pore_size_distribution(volume, use_parallel=False)
    assert re[0] == 1

    # Negative pore values are fine as long as 0 is the solid phase
    signed = np.zeros((3, 3, 3), dtype=np.int8)
    signed[1, 1, 1] = -1
    with pytest.warns(UserWarning):
        converted = validate_binary_volume(signed)
    assert converted.sum() == 1
    assert converted[1, 1, 1]


def test_boolean_volume_passes_through():
    volume = np.ones((2, 2, 2), dtype=bool)
    assert validate_binary_volume(volume) is volume


@pytest.mark.parametrize("min_bins", [0, -3])
def test_histogram_floor_below_one_rejected(min_bins):
    volume = np.zeros((3, 3, 3), dtype=bool)

    with pytest.raises(ValueError, match="min_bins"):
        compute_psd(volume, use_parallel=False, min_bins=min_bins)
    with pytest.raises(ValueError, match="min_bins"):
        reference_pore_size_distribution(volume, min_bins)


def test_histogram_floor_of_one_matches_reference():
    volume = np.zeros((3, 3, 3), dtype=bool)
    optimized = pore_size_distribution(volume, use_parallel=False, min_bins=1)

    assert optimized[2].tolist() == [0]
    assert_same_outputs(optimized, reference_pore_size_distribution(volume, 1))
