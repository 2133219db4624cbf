"""
Unit tests for checkpoint storage.

Tests cover field round trips, updater state restoration and pickled
sources.
"""

import json

import numpy as np
import pytest

from lattice_gauge.core.config import MonteCarloConfig
from lattice_gauge.core.lattice import Lattice
from lattice_gauge.models.gauge_field import LatticeGaugeField
from lattice_gauge.models.sources import VACUUM
from lattice_gauge.samplers.metropolis import MetropolisUpdater
from lattice_gauge.storage.checkpoint import FORMAT_VERSION, load_checkpoint, save_checkpoint


class StaticCharge:
    def __init__(self, sites):
        self.sites = sites


class TestCheckpoint:
    """Test saving and loading fields."""

    def test_field_round_trip(self, hot_field, tmp_path):
        json_path = save_checkpoint(tmp_path / "ckpt", hot_field, metadata={"run": "a"})
        assert json_path.exists()
        assert (tmp_path / "ckpt.npz").exists()

        loaded, info = load_checkpoint(tmp_path / "ckpt")
        np.testing.assert_array_equal(loaded.link_array, hot_field.link_array)
        assert loaded.group == hot_field.group
        assert loaded.beta == hot_field.beta
        assert loaded.lattice == hot_field.lattice
        assert loaded.source is VACUUM
        assert info["metadata"] == {"run": "a"}
        assert info["format_version"] == FORMAT_VERSION
        assert info["updater"] is None

    def test_shared_lattice(self, hot_field, tmp_path):
        save_checkpoint(tmp_path / "ckpt", hot_field)
        loaded, _ = load_checkpoint(tmp_path / "ckpt.json", lattice=hot_field.lattice)
        assert loaded.lattice is hot_field.lattice
        with pytest.raises(ValueError):
            load_checkpoint(tmp_path / "ckpt", lattice=Lattice.torus([4, 6]))

    def test_precision_preserved(self, torus_4x4, tmp_path):
        field = LatticeGaugeField.random(torus_4x4, "SU2", 1.0, rng=1, precision="single")
        save_checkpoint(tmp_path / "single", field)
        loaded, _ = load_checkpoint(tmp_path / "single")
        assert loaded.link_array.dtype == np.complex64
        np.testing.assert_array_equal(loaded.link_array, field.link_array)

    def test_resume_matches_uninterrupted_run(self, torus_4x4, tmp_path):
        config = MonteCarloConfig(n_hits=2)
        field = LatticeGaugeField.random(torus_4x4, "SU3", 3.0, rng=2)
        updater = MetropolisUpdater(field, config, rng=3)
        for _ in range(2):
            updater.sweep()
        save_checkpoint(tmp_path / "resume", field, updater)

        loaded, info = load_checkpoint(tmp_path / "resume")
        resumed = MetropolisUpdater(loaded, config)
        resumed.set_state(info["updater"])

        for _ in range(2):
            updater.sweep()
            resumed.sweep()
        np.testing.assert_array_equal(loaded.link_array, field.link_array)
        assert resumed.sweep_count == updater.sweep_count == 4

    def test_source_round_trip(self, torus_4x4, tmp_path):
        field = LatticeGaugeField.identity(torus_4x4, "U1", 1.0,
                                           source=StaticCharge([(0, 0), (2, 2)]))
        save_checkpoint(tmp_path / "charged", field)
        assert (tmp_path / "charged.source.pkl").exists()

        loaded, info = load_checkpoint(tmp_path / "charged")
        assert info["has_source"]
        assert loaded.source.sites == [(0, 0), (2, 2)]

    def test_unsupported_version(self, hot_field, tmp_path):
        json_path = save_checkpoint(tmp_path / "old", hot_field)
        info = json.loads(json_path.read_text())
        info["format_version"] = 0
        json_path.write_text(json.dumps(info))
        with pytest.raises(ValueError):
            load_checkpoint(tmp_path / "old")
