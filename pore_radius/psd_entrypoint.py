"""Entrypoint for computing the radius PSD of a volume on disk."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from .benchmark import outputs_identical
from .config_loader import load_config
from .psd_calculator import compute_psd
from .psd_output import plot_psd, psd_to_dataframe, save_psd_dataframe, save_radius_volumes
from .reference import reference_pore_size_distribution
from .volume_io import binarize_volume, extract_subvolume, load_volume, save_volume_tiff

logger = logging.getLogger(__name__)


def _parse_subvolume(value: Optional[str]) -> Any:
    if value is None:
        return None
    if value.lower() == "fit":
        return "fit"
    parts = [float(part) for part in value.split(",") if part.strip()]
    if len(parts) == 1:
        return parts[0]
    if len(parts) == 3:
        return parts
    raise argparse.ArgumentTypeError(
        f"--subvolume expects 'fit', one value or three comma-separated values, got '{value}'"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compute the radius pore-size distribution of a binary 3D volume"
    )
    parser.add_argument(
        "input",
        nargs="?",
        help="Volume to analyse: .npy file, multi-page TIFF or folder of slices "
             "(default: paths.input_volume_path from the config)",
    )
    parser.add_argument("--config", type=Path, help="Alternative YAML config file")
    parser.add_argument("--output-dir", type=Path, help="Directory for the exported results")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--parallel",
        dest="parallel",
        action="store_const",
        const=True,
        default=None,
        help="Propagate radii on a thread pool (falls back to serial if unavailable)",
    )
    mode.add_argument(
        "--serial",
        dest="parallel",
        action="store_const",
        const=False,
        help="Propagate radii in the calling thread",
    )
    parser.add_argument("--workers", type=int, help="Thread pool size")
    parser.add_argument("--batch-size", type=int, help="Radii per propagation task")
    parser.add_argument("--threshold", type=float, help="Binarization level in [0, 1] (default: Otsu)")
    parser.add_argument("--invert", action="store_true", default=None, help="Dark voxels are pores")
    parser.add_argument("--extension", help="Slice file extension filter, e.g. .bmp")
    parser.add_argument("--subvolume", type=_parse_subvolume, help="'fit', a size, or 'z,y,x' sizes")
    parser.add_argument("--alignment", help="Sub-volume alignment, e.g. top-left-front")
    parser.add_argument(
        "--reference",
        dest="verify",
        action="store_true",
        help="Also run the brute-force reference and fail on any difference (small volumes only)",
    )
    parser.add_argument("--plot", action="store_true", default=None, help="Save a PNG summary figure")
    parser.add_argument(
        "--save-binary", action="store_true", default=None, help="Save the analysed binary volume as TIFF"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {"paths": {}, "image_params": {}, "processing": {}, "output_settings": {}}
    if args.input:
        overrides["paths"]["input_volume_path"] = args.input
    if args.output_dir:
        overrides["paths"]["output_dir"] = str(args.output_dir)
    if args.parallel is not None:
        overrides["processing"]["use_parallel"] = args.parallel
    if args.workers is not None:
        overrides["processing"]["max_workers"] = args.workers
    if args.batch_size is not None:
        overrides["processing"]["batch_size"] = args.batch_size
    if args.threshold is not None:
        overrides["image_params"]["threshold"] = args.threshold
    if args.invert:
        overrides["image_params"]["invert"] = True
    if args.extension:
        overrides["image_params"]["extension"] = args.extension
    if args.subvolume is not None:
        overrides["image_params"]["subvolume"] = args.subvolume
    if args.alignment:
        overrides["image_params"]["alignment"] = args.alignment
    if args.plot:
        overrides["output_settings"]["save_plot"] = True
    if args.save_binary:
        overrides["output_settings"]["save_binary"] = True
    return overrides


def _normalize_export_formats(value: Any) -> List[str]:
    if not value:
        return ["csv"]
    if isinstance(value, str):
        value = [value]
    return [str(item).lower() for item in value]


def _build_compute_kwargs(config: Dict[str, Any]) -> Dict[str, Any]:
    processing = config.get("processing") or {}
    kwargs: Dict[str, Any] = {}

    if "use_parallel" in processing:
        kwargs["use_parallel"] = bool(processing["use_parallel"])
    if processing.get("max_workers") is not None:
        kwargs["max_workers"] = int(processing["max_workers"])
    if processing.get("batch_size") is not None:
        kwargs["batch_size"] = int(processing["batch_size"])
    if "use_gpu" in processing:
        kwargs["use_gpu"] = bool(processing["use_gpu"])
    if processing.get("tolerance") is not None:
        kwargs["tolerance"] = float(processing["tolerance"])
    if processing.get("min_histogram_bins") is not None:
        kwargs["min_bins"] = int(processing["min_histogram_bins"])

    return kwargs


def prepare_volume(config: Dict[str, Any]) -> np.ndarray:
    """Load, binarize and crop the configured input volume."""
    paths = config.get("paths") or {}
    image_params = config.get("image_params") or {}

    input_volume = paths.get("input_volume_path")
    if not input_volume:
        raise ValueError("No input volume: pass a path or set paths.input_volume_path")

    volume = load_volume(input_volume, image_params.get("extension"))
    if volume.ndim != 3:
        raise ValueError(f"Expected a 3D volume, got shape {volume.shape}")

    volume = extract_subvolume(
        volume,
        image_params.get("subvolume"),
        image_params.get("alignment") or "center",
    )
    return binarize_volume(
        volume,
        threshold=image_params.get("threshold"),
        invert=bool(image_params.get("invert", False)),
    )


def _export_results(
    df, output_dir: Path, base_name: str, formats: Iterable[str], metadata: Dict[str, Any]
) -> None:
    base_path = output_dir / base_name
    for fmt in formats:
        written = save_psd_dataframe(df, str(base_path), format=fmt, metadata=metadata)
        logger.info("Exported PSD results as %s at %s", fmt, written)


def run(config: Dict[str, Any], verify: bool = False) -> Dict[str, Any]:
    """Run the configured PSD job and export its results."""
    paths = config.get("paths") or {}
    output_settings = config.get("output_settings") or {}

    volume = prepare_volume(config)
    compute_kwargs = _build_compute_kwargs(config)
    logger.info("Computing PSD with configuration: %s", compute_kwargs)
    psd = compute_psd(volume, **compute_kwargs)

    if verify:
        logger.info("Running brute-force reference for verification...")
        reference = reference_pore_size_distribution(volume, compute_kwargs.get("min_bins", 100))
        optimized = (psd["critical_radius"], psd["radius_labels"], psd["histogram"])
        c0_equal, c1_equal, re_equal = outputs_identical(reference, optimized)
        if not (c0_equal and c1_equal and re_equal):
            raise RuntimeError(
                f"Reference mismatch: C0 equal={c0_equal}, C1 equal={c1_equal}, Re equal={re_equal}"
            )
        logger.info("Reference check passed: C0, C1 and Re identical")

    output_dir = Path(paths.get("output_dir", "."))
    output_dir.mkdir(parents=True, exist_ok=True)
    base_name = output_settings.get("filename", "psd")

    df = psd_to_dataframe(psd)
    formats = _normalize_export_formats(output_settings.get("export_formats"))
    metadata = dict(output_settings.get("metadata") or {})
    metadata.setdefault("input_volume_path", str(paths.get("input_volume_path")))
    metadata.setdefault("output_dir", str(output_dir))
    metadata.setdefault("export_formats", list(formats))
    _export_results(df, output_dir, base_name, formats, metadata)

    if output_settings.get("save_volumes", True):
        save_radius_volumes(psd, str(output_dir / f"{base_name}_volumes"))
    if output_settings.get("save_binary", False):
        save_volume_tiff(volume, output_dir / f"{base_name}_binary")
    if output_settings.get("save_plot", False):
        plot_psd(df, psd, volume, save_path=str(output_dir / f"{base_name}.png"))

    return psd


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    logger.info("Starting PSD entrypoint")

    try:
        config = load_config(_config_overrides(args), config_path=args.config)
        run(config, verify=args.verify)
        logger.info("PSD entrypoint completed")
    except Exception:
        logger.exception("PSD entrypoint failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
