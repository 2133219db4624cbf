"""
Unit tests for source attachment and field history.

Tests cover the VACUUM marker, source replacement and borrowing, rebuilding
a field around a new source type and rewinding/replaying a history.
"""

import copy
import pickle

import numpy as np
import pytest

from lattice_gauge.core.config import MonteCarloConfig
from lattice_gauge.core.lattice import Lattice
from lattice_gauge.models.gauge_field import LatticeGaugeField
from lattice_gauge.models.sources import (
    VACUUM, CoupledSource, FieldHistory, FieldSnapshot, Vacuum, is_vacuum,
)
from lattice_gauge.samplers.metropolis import MetropolisUpdater


class ChargeDensity:
    """Toy coupled source that counts the sweeps it has seen."""

    def __init__(self, charge=1.0):
        self.charge = charge
        self.evolutions = 0

    def evolve(self, field, rng):
        self.evolutions += 1


class TestVacuum:
    """Test the vacuum marker."""

    def test_singleton(self):
        assert Vacuum() is VACUUM
        assert copy.copy(VACUUM) is VACUUM
        assert copy.deepcopy(VACUUM) is VACUUM
        assert pickle.loads(pickle.dumps(VACUUM)) is VACUUM
        assert not VACUUM
        assert repr(VACUUM) == "VACUUM"

    def test_default_source(self, torus_4x4):
        field = LatticeGaugeField.identity(torus_4x4, "U1", 1.0)
        assert is_vacuum(field.source)
        assert not field.has_source

    def test_protocol(self):
        assert isinstance(ChargeDensity(), CoupledSource)
        assert not isinstance(VACUUM, CoupledSource)


class TestSourceSlot:
    """Test replacing, borrowing and rebuilding around sources."""

    def test_replace_source_round_trip(self, torus_4x4):
        first = ChargeDensity(1.0)
        field = LatticeGaugeField.identity(torus_4x4, "U1", 1.0, source=first)
        second = ChargeDensity(2.0)

        old = field.replace_source(second)
        assert old is first
        assert field.source is second
        assert field.replace_source(old) is second
        assert field.source is first

    def test_with_source_preserves_links(self, hot_field):
        lattice = hot_field.lattice
        links = hot_field.link_array.copy()
        source = ChargeDensity()

        rebuilt = hot_field.with_source(source)

        assert rebuilt.lattice is lattice
        assert rebuilt.source is source
        assert rebuilt.beta == 2.0
        np.testing.assert_array_equal(rebuilt.link_array, links)
        with pytest.raises(RuntimeError):
            _ = hot_field.links
        assert "consumed" in repr(hot_field)

    def test_with_source_changes_type(self, torus_4x4):
        field = LatticeGaugeField.identity(torus_4x4, "SU2", 1.0, source=ChargeDensity())
        rebuilt = field.with_source({"sites": [(0, 0)]})
        assert rebuilt.source == {"sites": [(0, 0)]}
        assert rebuilt.with_source(VACUUM).source is VACUUM

    def test_into_parts(self, hot_field):
        lattice, links, beta, source = hot_field.into_parts()
        assert lattice is hot_field.lattice
        assert len(links) == lattice.num_edges
        assert beta == 2.0
        assert source is VACUUM
        with pytest.raises(RuntimeError):
            hot_field.clone()

    def test_borrow_source(self, torus_4x4):
        field = LatticeGaugeField.identity(torus_4x4, "U1", 1.0, source=ChargeDensity())
        with field.borrow_source() as source:
            source.charge = 5.0
            with pytest.raises(RuntimeError):
                with field.borrow_source():
                    pass
            with pytest.raises(RuntimeError):
                field.replace_source(ChargeDensity())
        assert field.source.charge == 5.0
        with field.borrow_source():
            pass

    def test_clone_copies_source(self, torus_4x4):
        field = LatticeGaugeField.identity(torus_4x4, "U1", 1.0, source=ChargeDensity())
        clone = field.clone()
        clone.source.charge = -1.0
        assert field.source.charge == 1.0


class TestFieldHistory:
    """Test recording, rewinding and replaying snapshots."""

    def _history(self, field, updater, n_sweeps):
        history = FieldHistory()
        history.record(field)
        for _ in range(n_sweeps):
            updater.sweep()
            history.record(field)
        return history

    def test_snapshots_are_immutable(self, hot_field):
        history = FieldHistory()
        snapshot = history.record(hot_field)
        with pytest.raises(ValueError):
            snapshot.links[0, 0, 0] = 0
        hot_field.links.data[0, 0, 0] = hot_field.group.identity()
        assert not np.array_equal(snapshot.links[0, 0, 0], hot_field.link((0, 0), 0))

    def test_rewind(self, hot_field):
        updater = MetropolisUpdater(hot_field, MonteCarloConfig(), rng=1)
        history = self._history(hot_field, updater, 3)
        assert [s.sweep for s in history] == [0, 1, 2, 3]

        snapshot = history.rewind(1)
        assert len(history) == 2
        assert snapshot.sweep == 1
        assert history.latest is snapshot

    def test_max_length(self, hot_field):
        history = FieldHistory(max_length=2)
        for _ in range(4):
            history.record(hot_field)
        assert len(history) == 2
        with pytest.raises(ValueError):
            FieldHistory(max_length=0)

    def test_restore(self, hot_field):
        snapshot = hot_field.snapshot()
        updater = MetropolisUpdater(hot_field, MonteCarloConfig(), rng=2)
        updater.sweep()
        assert not np.array_equal(hot_field.link_array, snapshot.links)
        hot_field.restore(snapshot)
        np.testing.assert_array_equal(hot_field.link_array, snapshot.links)

    def test_restore_rejects_other_lattice(self, torus_4x4):
        field = LatticeGaugeField.random(torus_4x4, "U1", 1.0, rng=6)
        snapshot = field.snapshot()
        open_field = LatticeGaugeField.identity(Lattice.open([4, 4]), "U1", 1.0)

        with pytest.raises(ValueError):
            open_field.restore(snapshot)
        assert open_field.num_links == 24
        assert open_field.average_plaquette() == 1

    def test_restore_rejects_other_group(self, torus_4x4):
        snapshot = LatticeGaugeField.identity(torus_4x4, "SU2", 1.0).snapshot()
        field = LatticeGaugeField.identity(torus_4x4, "SU3", 1.0)
        with pytest.raises(ValueError):
            field.restore(snapshot)

    def test_restore_keeps_only_lattice_edges(self, torus_4x4):
        # bare snapshot without lattice metadata but with every slot marked present
        periodic = LatticeGaugeField.random(torus_4x4, "U1", 1.0, rng=7).snapshot()
        snapshot = FieldSnapshot(links=periodic.links, present=periodic.present,
                                 beta=1.0, source=VACUUM)
        open_lattice = Lattice.open([4, 4])
        field = LatticeGaugeField.identity(open_lattice, "U1", 1.0)

        field.restore(snapshot)
        assert field.num_links == open_lattice.num_edges
        field.links.require_complete()
        np.testing.assert_array_equal(field.links.data[0, 3], field.group.identity((4,)))
        assert np.isfinite(field.average_plaquette())

    def test_replay_resumes_updater_state(self, torus_4x4):
        field = LatticeGaugeField.random(torus_4x4, "SU2", 2.0, rng=11)
        updater = MetropolisUpdater(field, MonteCarloConfig(reproject_interval=2), rng=12)
        history = FieldHistory()
        history.record(field, updater=updater)
        for _ in range(4):
            updater.sweep()
            history.record(field, updater=updater)
        assert [s.sweep for s in history] == [0, 1, 2, 3, 4]
        reference = [s.links.copy() for s in history]

        history.replay(field, 1, updater, 2)

        assert updater.sweep_count == 3
        assert history.latest.sweep == 3
        assert [s.sweep for s in history] == [0, 1, 2, 3]
        for snapshot, links in zip(history, reference):
            np.testing.assert_array_equal(snapshot.links, links)

    def test_replay_without_updater_state_resets_sweep_count(self, hot_field):
        updater = MetropolisUpdater(hot_field, MonteCarloConfig(), rng=13)
        history = self._history(hot_field, updater, 4)
        assert updater.sweep_count == 4

        history.replay(hot_field, 1, updater, 2)
        assert updater.sweep_count == history.latest.sweep == 3

    def test_replay_with_correction(self, torus_4x4):
        field = LatticeGaugeField.random(torus_4x4, "U1", 1.0, rng=3, source=ChargeDensity())
        updater = MetropolisUpdater(field, MonteCarloConfig(), rng=4)
        history = self._history(field, updater, 4)

        def correction(f):
            f.set_link((0, 0), 0, f.group.identity())
            f.replace_source(ChargeDensity(charge=3.0))

        last = history.replay(field, 1, updater, 2, correction=correction)

        assert [s.sweep for s in history] == [0, 1, 2, 3]
        assert last is history.latest
        np.testing.assert_array_equal(history[1].links[0, 0, 0], [[1.0]])
        assert history[1].source.charge == 3.0
        # the corrected source evolved once per replayed sweep
        assert field.source.evolutions == 2
        np.testing.assert_array_equal(field.link_array, last.links)

    def test_replay_requires_bound_updater(self, hot_field):
        other = hot_field.clone()
        updater = MetropolisUpdater(other, MonteCarloConfig(), rng=5)
        history = FieldHistory()
        history.record(hot_field)
        with pytest.raises(ValueError):
            history.replay(hot_field, 0, updater, 1)
