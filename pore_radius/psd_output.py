"""
PSD Output Formatter
====================

Converts radius PSD results to Pandas DataFrames and writes them to disk.

Output Format:
    - Radius_px: Sphere radius s in voxels
    - Label: Radius label s + 1 stored in C1
    - Volume_Count: Number of voxels carrying the label
    - Volume_Fraction: Share of labelled voxels in the bin [0-1]
    - Cumulative_Fraction: Volume fraction in bins with radius >= Radius_px,
      the intrusion curve read from large pores to small ones
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def psd_to_dataframe(
    psd_dict: Dict[str, Any],
    include_metadata: bool = True
) -> pd.DataFrame:
    """
    Convert a ``compute_psd`` result to a DataFrame, one row per histogram bin.

    Example:
        >>> psd = compute_psd(volume)
        >>> df = psd_to_dataframe(psd)
        >>> df[df['Volume_Count'] > 0]
    """
    histogram = np.asarray(psd_dict['histogram'], dtype=np.int64)
    labels = np.arange(1, histogram.size + 1)
    total = int(histogram.sum())

    if total > 0:
        fraction = histogram / total
        cumulative = np.cumsum(fraction[::-1])[::-1]
    else:
        fraction = np.zeros(histogram.size, dtype=np.float64)
        cumulative = np.zeros(histogram.size, dtype=np.float64)

    df = pd.DataFrame({
        'Radius_px': labels - 1,
        'Label': labels,
        'Volume_Count': histogram,
        'Volume_Fraction': fraction,
        'Cumulative_Fraction': cumulative,
    })

    if include_metadata:
        df.attrs['total_pore_voxels'] = int(psd_dict.get('total_pore_voxels', total))
        df.attrs['labelled_voxels'] = int(psd_dict.get('labelled_voxels', total))
        df.attrs['porosity'] = float(psd_dict.get('porosity', 0.0))
        df.attrs['max_radius_px'] = int(psd_dict.get('max_radius', labels.size - 1))
        if 'shape' in psd_dict:
            df.attrs['volume_shape'] = list(psd_dict['shape'])

    return df


def save_psd_dataframe(
    df: pd.DataFrame,
    output_path: str,
    format: str = 'csv',
    metadata: Optional[Dict] = None
) -> Path:
    """
    Save a PSD DataFrame with optional metadata.

    Supported Formats:
        - csv: data table plus a sidecar ``<name>_metadata.json``
        - json: one document with 'metadata' and 'data'

    Returns:
        Path of the written data file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    full_metadata = dict(df.attrs)
    if metadata is not None:
        full_metadata.update(metadata)

    if format == 'csv':
        output_path = output_path.with_suffix('.csv')
        df.to_csv(output_path, index=False, float_format='%.6f')
        logger.info("Saved CSV: %s", output_path)

        if full_metadata:
            metadata_path = _metadata_path(output_path)
            with open(metadata_path, 'w', encoding='utf-8') as f:
                json.dump(full_metadata, f, indent=2, default=_json_default)
            logger.info("Saved metadata: %s", metadata_path)

    elif format == 'json':
        output_path = output_path.with_suffix('.json')
        output_dict = {
            'metadata': full_metadata,
            'data': df.to_dict(orient='records')
        }
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(output_dict, f, indent=2, default=_json_default)
        logger.info("Saved JSON: %s", output_path)

    else:
        raise ValueError(
            f"Unknown format '{format}'. Supported: csv, json"
        )

    return output_path


def _metadata_path(data_path: Path) -> Path:
    return data_path.with_name(f"{data_path.stem}_metadata.json")


def _json_default(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def load_psd_dataframe(
    input_path: str,
    format: Optional[str] = None
) -> pd.DataFrame:
    """Load a PSD DataFrame written by :func:`save_psd_dataframe`."""
    input_path = Path(input_path)

    if format is None:
        format_map = {'.csv': 'csv', '.json': 'json'}
        ext = input_path.suffix.lower()
        format = format_map.get(ext)
        if format is None:
            raise ValueError(
                f"Cannot auto-detect format from extension '{ext}'"
            )

    if format == 'csv':
        df = pd.read_csv(input_path)
        metadata_path = _metadata_path(input_path)
        if metadata_path.exists():
            with open(metadata_path, 'r', encoding='utf-8') as f:
                df.attrs = json.load(f)

    elif format == 'json':
        with open(input_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        df = pd.DataFrame(data['data'])
        df.attrs = data.get('metadata', {})

    else:
        raise ValueError(f"Unsupported format: {format}")

    return df


def save_radius_volumes(psd_dict: Dict[str, Any], output_path: str) -> Path:
    """Store C0, C1 and Re in one compressed ``.npz`` archive."""
    output_path = Path(output_path).with_suffix('.npz')
    output_path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(
        output_path,
        critical_radius=psd_dict['critical_radius'],
        radius_labels=psd_dict['radius_labels'],
        histogram=psd_dict['histogram'],
    )
    logger.info("Saved radius volumes: %s", output_path)
    return output_path


def plot_psd(
    df: pd.DataFrame,
    psd_dict: Optional[Dict[str, Any]] = None,
    binary_volume: Optional[np.ndarray] = None,
    save_path: Optional[str] = None
) -> None:
    """
    Plot the radius distribution and, when volumes are given, middle slices.

    With ``psd_dict`` and ``binary_volume`` the figure is a 2x2 grid: input
    slice, distribution, C0 slice, C1 slice. Otherwise it shows the
    distribution and the cumulative curve.
    """
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        raise ImportError(
            "Plotting requires 'matplotlib'. "
            "Install with: pip install matplotlib"
        )

    populated = df[df['Volume_Count'] > 0]
    last_radius = int(populated['Radius_px'].max()) if len(populated) else 0
    shown = df[df['Radius_px'] <= max(last_radius + 1, 1)]

    if psd_dict is not None and binary_volume is not None:
        mid = binary_volume.shape[0] // 2
        fig, axes = plt.subplots(2, 2, figsize=(10, 8))
        axes[0, 0].imshow(binary_volume[mid], cmap='gray')
        axes[0, 0].set_title('Pore Mask')
        axes[0, 1].bar(shown['Radius_px'], shown['Volume_Count'], color='tab:blue')
        axes[0, 1].set_title('Pore Distribution')
        axes[0, 1].set_xlabel('Radius (voxels)')
        axes[1, 0].imshow(psd_dict['critical_radius'][mid], cmap='viridis')
        axes[1, 0].set_title('C0 (critical radius)')
        axes[1, 1].imshow(psd_dict['radius_labels'][mid], cmap='jet')
        axes[1, 1].set_title('C1 (radius labels)')
        for ax in (axes[0, 0], axes[1, 0], axes[1, 1]):
            ax.axis('off')
    else:
        fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(10, 8))
        ax1.bar(shown['Radius_px'], shown['Volume_Count'], color='tab:blue')
        ax1.set_ylabel('Voxel Count', fontsize=12)
        ax1.set_title('Pore Size Distribution', fontsize=14, fontweight='bold')
        ax1.grid(True, alpha=0.3)

        ax2.plot(shown['Radius_px'], shown['Cumulative_Fraction'], 'g-', linewidth=2)
        ax2.set_xlabel('Radius (voxels)', fontsize=12)
        ax2.set_ylabel('Cumulative Volume Fraction', fontsize=12)
        ax2.set_title('Intrusion Curve', fontsize=14, fontweight='bold')
        ax2.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path is not None:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')
        logger.info("Plot saved: %s", save_path)
        plt.close(fig)
    else:
        plt.show()
