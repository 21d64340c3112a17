"""
Volume Loading and Sub-Volume Extraction
=========================================

Builds the boolean pore volume consumed by the PSD pipeline:

    image stack / multi-page TIFF / .npy  ->  grayscale volume (Z, Y, X)
    grayscale volume  ->  [0, 1] intensities  ->  global Otsu binarization
    full volume  ->  aligned sub-volume (optional)

Slice files are ordered by the last number in their name so that
``slice_2.png`` sorts before ``slice_10.png``.
"""

import logging
import re
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import tifffile
from PIL import Image
from skimage.filters import threshold_otsu
from tqdm import tqdm

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp"}
TIFF_EXTENSIONS = {".tif", ".tiff"}

SubvolumeRequest = Union[None, str, float, Sequence[float], Sequence[Sequence[int]]]


def _slice_number(path: Path) -> int:
    numbers = re.findall(r"\d+", path.stem)
    return int(numbers[-1]) if numbers else 0


def list_slice_files(folder: Path, extension: Optional[str] = None) -> list:
    """Image files of ``folder`` sorted by their trailing slice number."""
    if extension is None:
        extensions = IMAGE_EXTENSIONS
    else:
        ext = extension.lower()
        extensions = {ext if ext.startswith(".") else f".{ext}"}
    files = [p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in extensions]
    return sorted(files, key=lambda p: (_slice_number(p), p.name))


def _read_slice(path: Path) -> np.ndarray:
    img = Image.open(path)
    if img.mode in ("RGB", "RGBA", "P", "LA"):
        img = img.convert("L")
    return np.array(img)


def load_image_stack(folder_path: Union[str, Path], extension: Optional[str] = None) -> np.ndarray:
    """
    Read a folder of 2D slices into a (Z, Y, X) grayscale volume.

    Raises:
        FileNotFoundError: If the folder does not exist.
        ValueError: If no slices are found or slice shapes differ.
    """
    folder = Path(folder_path)
    if not folder.exists():
        raise FileNotFoundError(f"Folder not found: {folder_path}")

    image_files = list_slice_files(folder, extension)
    if not image_files:
        raise ValueError(f"No image files found in {folder_path}")

    first = _read_slice(image_files[0])
    volume = np.zeros((len(image_files),) + first.shape, dtype=first.dtype)
    volume[0] = first
    for i, img_path in enumerate(tqdm(image_files[1:], desc="Stacking Images"), start=1):
        img = _read_slice(img_path)
        if img.shape != first.shape:
            raise ValueError(
                f"All images must have identical dimensions. File '{img_path.name}' "
                f"has shape {img.shape}, expected {first.shape}"
            )
        volume[i] = img

    logger.info("Loaded %d slices from %s -> shape %s", len(image_files), folder, volume.shape)
    return volume


def load_volume(path: Union[str, Path], extension: Optional[str] = None) -> np.ndarray:
    """Load a volume from a slice folder, a multi-page TIFF or a ``.npy`` file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Volume not found: {path}")
    if path.is_dir():
        return load_image_stack(path, extension)

    suffix = path.suffix.lower()
    if suffix == ".npy":
        volume = np.load(path)
    elif suffix in TIFF_EXTENSIONS:
        volume = tifffile.imread(path)
    else:
        raise ValueError(f"Unsupported volume file type '{suffix}': {path}")

    logger.info("Loaded volume %s from %s", volume.shape, path)
    return volume


def save_volume_tiff(volume: np.ndarray, output_path: Union[str, Path]) -> Path:
    """Write a volume as one zlib-compressed multi-page TIFF (bool stored as 0/255)."""
    output_path = Path(output_path).with_suffix(".tif")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    data = volume.astype(np.uint8) * 255 if volume.dtype == bool else volume
    tifffile.imwrite(output_path, data, compression="zlib")
    logger.info("Saved volume %s to %s", volume.shape, output_path)
    return output_path


def normalize_intensity(volume: np.ndarray) -> np.ndarray:
    """Scale uint8/uint16 data to [0, 1] float32; floats are left as-is."""
    if volume.dtype == np.uint8:
        return volume.astype(np.float32) / 255.0
    if volume.dtype == np.uint16:
        return volume.astype(np.float32) / 65535.0
    return volume.astype(np.float32, copy=False)


def binarize_volume(
    gray_volume: np.ndarray,
    threshold: Optional[float] = None,
    invert: bool = False,
) -> np.ndarray:
    """
    Global binarization of a grayscale volume (True = pore).

    Args:
        gray_volume: Grayscale (Z, Y, X) volume, any numeric dtype.
        threshold: Level in [0, 1] applied to the normalized intensities.
                   None computes a global Otsu level on the min-max
                   rescaled volume.
        invert: Mark voxels at or below the level as pore (dark pores).

    Returns:
        Boolean volume.
    """
    if gray_volume.dtype == bool:
        return ~gray_volume if invert else gray_volume.copy()

    intensities = normalize_intensity(gray_volume)

    if threshold is None:
        low, high = float(intensities.min()), float(intensities.max())
        if high > low:
            intensities = (intensities - low) / (high - low)
            level = float(threshold_otsu(intensities))
        else:
            level = high
        logger.info("Global Otsu threshold: %.4f", level)
    else:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must lie in [0, 1], got {threshold}")
        level = float(threshold)

    binary = intensities > level
    if invert:
        binary = ~binary
    logger.info("Binarized volume: porosity %.4f", binary.mean())
    return binary


def _axis_start(full: int, size: int, align: str) -> int:
    if align == "end":
        start = full - size
    elif align == "center":
        start = (full - size) // 2
    else:
        start = 0
    return max(0, min(start, full - size))


def _parse_alignment(alignment: str) -> Tuple[str, str, str]:
    """Alignment per (Z, Y, X) axis: 'start', 'center' or 'end'."""
    text = (alignment or "center").lower()
    centered = "center" in text

    def pick(start_word: str, end_word: str) -> str:
        if end_word in text:
            return "end"
        if start_word in text:
            return "start"
        return "center" if centered else "start"

    return pick("front", "back"), pick("top", "bottom"), pick("left", "right")


def extract_subvolume(
    volume: np.ndarray,
    subvolume: SubvolumeRequest,
    alignment: str = "center",
) -> np.ndarray:
    """
    Crop a sub-volume without reloading data.

    Args:
        volume: Full (Z, Y, X) volume.
        subvolume: One of
            - None: whole volume
            - "fit": centred cube whose side is the smallest dimension
            - scalar < 1: same proportion of every axis
            - scalar >= 1: cube of that side
            - 3 values, all < 1: per-axis proportions (Z, Y, X)
            - 3 values: per-axis sizes (Z, Y, X)
            - 3x2 ranges: explicit inclusive [start, stop] per axis
        alignment: Words combining front/back (Z), top/bottom (Y),
                   left/right (X) and center, e.g. "top-left-front".
                   Unnamed axes are centred when "center" appears, else
                   start-aligned.

    Returns:
        View of the requested region. Sizes are clamped to the volume.
    """
    if volume.ndim != 3:
        raise ValueError(f"Expected 3D volume, got shape {volume.shape}")
    if subvolume is None:
        return volume

    full = volume.shape

    if isinstance(subvolume, str):
        if subvolume.lower() != "fit":
            raise ValueError(f"Invalid subvolume '{subvolume}'. Must be 'fit'")
        side = min(full)
        sizes = (side, side, side)
        aligns = ("center", "center", "center")
    else:
        values = np.asarray(subvolume, dtype=float)
        if values.shape == (3, 2):
            ranges = values.astype(int)
            region = tuple(slice(int(lo), int(hi) + 1) for lo, hi in ranges)
            return volume[region]
        if values.ndim == 0:
            values = np.repeat(values, 3)
        if values.shape != (3,) or np.any(values <= 0):
            raise ValueError(
                "Invalid subvolume. Must be 'fit', a positive scalar, "
                "3 positive values, or 3x2 ranges"
            )
        if np.all(values < 1):
            sizes = tuple(int(round(f * v)) for f, v in zip(full, values))
        else:
            sizes = tuple(int(round(v)) for v in values)
        aligns = _parse_alignment(alignment)

    sizes = tuple(max(1, min(s, f)) for s, f in zip(sizes, full))
    starts = [_axis_start(f, s, a) for f, s, a in zip(full, sizes, aligns)]
    region = tuple(slice(st, st + s) for st, s in zip(starts, sizes))

    logger.info(
        "Sub-volume Z=[%d %d], Y=[%d %d], X=[%d %d], alignment=%s",
        region[0].start, region[0].stop - 1,
        region[1].start, region[1].stop - 1,
        region[2].start, region[2].stop - 1,
        alignment,
    )
    return volume[region]
