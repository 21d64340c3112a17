"""
Radius Pore Size Distribution Package
======================================

Image-based analogue of mercury intrusion porosimetry for binary 3D volumes
(True = pore). Every pore voxel is assigned the radius of the largest discrete
sphere that covers it and the voxel counts per radius form the distribution.

Core Modules:
    - distance_transform: Padded Euclidean distance field (CPU/GPU)
    - local_thickness: Critical radius map (C0) and radius propagation (C1)
    - execution: Thread pool / serial executor selection
    - psd_calculator: Validation, histogram (Re) and main pipeline
    - reference: Brute-force oracle for cross-validation
    - volume_io: Slice stacks, TIFF/.npy loading, binarization, sub-volumes
    - psd_output: DataFrame formatter and export
    - benchmark: Timing and equivalence table

Quick Start:
    >>> from pore_radius import compute_psd, psd_to_dataframe, save_psd_dataframe
    >>>
    >>> # Load your segmented volume (boolean array, True = pore)
    >>> volume = np.load('segmented_scan.npy')
    >>>
    >>> # Compute PSD
    >>> psd = compute_psd(volume, use_parallel=True)
    >>>
    >>> # Export results
    >>> df = psd_to_dataframe(psd)
    >>> save_psd_dataframe(df, 'results/psd.csv')

Outputs:
    - C0: half-integer critical radius per pore voxel
    - C1: radius label s + 1 of the largest covering sphere
    - Re: voxel count per label, at least 100 bins
"""

__version__ = "1.0.0"
__author__ = "PSD Calculator Team"

from .distance_transform import compute_edt
from .local_thickness import (
    compute_critical_radius_map,
    compute_radius_field,
    compute_radius_labels,
    propagate_radii,
)
from .execution import SerialExecutor, execution_context
from .psd_calculator import (
    InvalidVolumeError,
    compute_psd,
    compute_radius_histogram,
    pore_size_distribution,
    validate_binary_volume,
)
from .reference import reference_pore_size_distribution
from .volume_io import binarize_volume, extract_subvolume, load_volume
from .psd_output import (
    psd_to_dataframe,
    save_psd_dataframe,
    load_psd_dataframe,
    save_radius_volumes,
    plot_psd
)
from .benchmark import benchmark_time_complexity

__all__ = [
    # Main API
    'compute_psd',
    'pore_size_distribution',
    'psd_to_dataframe',
    'save_psd_dataframe',
    'load_psd_dataframe',
    'save_radius_volumes',
    'plot_psd',

    # Advanced components
    'compute_edt',
    'compute_critical_radius_map',
    'compute_radius_field',
    'compute_radius_labels',
    'propagate_radii',
    'compute_radius_histogram',
    'validate_binary_volume',
    'InvalidVolumeError',
    'SerialExecutor',
    'execution_context',

    # Validation and I/O
    'reference_pore_size_distribution',
    'benchmark_time_complexity',
    'load_volume',
    'binarize_volume',
    'extract_subvolume',
]
