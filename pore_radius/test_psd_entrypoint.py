"""End-to-end tests for the ``pore-radius`` command."""

import json

import numpy as np
import pytest
from PIL import Image

from pore_radius.psd_entrypoint import main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("PORE_RADIUS_CONFIG_JSON", raising=False)
    monkeypatch.delenv("PORE_RADIUS_CONFIG", raising=False)


def test_npy_volume_with_reference_check(tmp_path):
    volume = np.zeros((7, 7, 7), dtype=bool)
    volume[1:6, 1:6, 1:6] = True
    source = tmp_path / "cube.npy"
    np.save(source, volume)
    out = tmp_path / "results"

    main([str(source), "--output-dir", str(out), "--serial", "--reference", "--save-binary"])

    assert (out / "psd.csv").exists()
    metadata = json.loads((out / "psd_metadata.json").read_text())
    assert metadata['total_pore_voxels'] == 125
    assert metadata['input_volume_path'] == str(source.resolve())

    with np.load(out / "psd_volumes.npz") as archive:
        assert archive['critical_radius'][3, 3, 3] == 2.5
        assert int(archive['histogram'].sum()) == 125

    assert (out / "psd_binary.tif").exists()


def test_grayscale_stack_is_binarized(tmp_path):
    stack = tmp_path / "slices"
    stack.mkdir()
    for z in range(5):
        data = np.zeros((5, 5), dtype=np.uint8)
        if 1 <= z <= 3:
            data[1:4, 1:4] = 220
        Image.fromarray(data).save(stack / f"img_{z}.png")
    out = tmp_path / "results"

    main([str(stack), "--output-dir", str(out), "--parallel", "--workers", "2"])

    with np.load(out / "psd_volumes.npz") as archive:
        assert archive['critical_radius'][2, 2, 2] == 1.5
        assert int(archive['histogram'].sum()) == 27


def test_dark_pores_with_subvolume(tmp_path):
    volume = np.full((6, 6, 6), 255, dtype=np.uint8)
    volume[2:5, 2:5, 2:5] = 0
    source = tmp_path / "scan.npy"
    np.save(source, volume)
    out = tmp_path / "results"

    main([
        str(source), "--output-dir", str(out), "--invert",
        "--subvolume", "5,5,5", "--alignment", "bottom-right-back",
    ])

    with np.load(out / "psd_volumes.npz") as archive:
        assert archive['critical_radius'].shape == (5, 5, 5)
        assert int(archive['histogram'].sum()) == 27


def test_failure_exits_with_status_one(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main([str(tmp_path / "missing.npy"), "--output-dir", str(tmp_path)])
    assert excinfo.value.code == 1
