"""Tests for YAML/env configuration loading."""

import json
from pathlib import Path

import pytest

from pore_radius.config_loader import load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("PORE_RADIUS_CONFIG_JSON", raising=False)
    monkeypatch.delenv("PORE_RADIUS_CONFIG", raising=False)


def test_packaged_defaults():
    config = load_config()

    assert config['processing']['use_parallel'] is True
    assert config['processing']['batch_size'] == 1
    assert config['processing']['min_histogram_bins'] == 100
    assert config['processing']['tolerance'] == pytest.approx(1e-12)
    assert config['output_settings']['export_formats'] == ['csv']
    assert Path(config['paths']['output_dir']).is_absolute()


def test_overrides_are_deep_merged():
    config = load_config({'processing': {'batch_size': 4}, 'paths': {'output_dir': 'out'}})

    assert config['processing']['batch_size'] == 4
    assert config['processing']['use_parallel'] is True
    assert config['paths']['output_dir'] == str(Path.cwd() / 'out')


def test_env_json_replaces_file(monkeypatch):
    monkeypatch.setenv("PORE_RADIUS_CONFIG_JSON", json.dumps({'processing': {'use_parallel': False}}))
    config = load_config()

    assert config['processing'] == {'use_parallel': False}
    assert 'output_dir' in config['paths']


def test_env_path_and_explicit_path(monkeypatch, tmp_path):
    custom = tmp_path / "custom.yaml"
    custom.write_text("processing:\n  max_workers: 2\npaths:\n  input_volume_path: scan.npy\n")

    monkeypatch.setenv("PORE_RADIUS_CONFIG", str(custom))
    config = load_config()
    assert config['processing']['max_workers'] == 2
    assert Path(config['paths']['input_volume_path']).is_absolute()

    monkeypatch.delenv("PORE_RADIUS_CONFIG")
    assert load_config(config_path=custom)['processing']['max_workers'] == 2


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(config_path=tmp_path / "missing.yaml")
