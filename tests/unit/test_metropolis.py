"""
Unit tests for the Metropolis updater.

Tests cover acceptance behavior at zero and finite coupling, the parity
classes and their sequential fallback, threaded chunks, handling of
non-finite proposals, coupled sources and state round trips.
"""

import numpy as np
import pandas as pd
import pytest

from lattice_gauge.core.config import (FieldConfig, LatticeConfig, MonteCarloConfig,
                                       SimulationConfig)
from lattice_gauge.core.errors import NumericInstability
from lattice_gauge.core.lattice import Lattice
from lattice_gauge.models.gauge_field import LatticeGaugeField
from lattice_gauge.observables.wilson import average_wilson_loop, staple, staple_array
from lattice_gauge.samplers import MetropolisUpdater, Phase, SweepStats, run_replicas


class CountingSource:
    def __init__(self):
        self.calls = 0

    def evolve(self, field, rng):
        self.calls += 1


class TestAcceptance:
    """Test acceptance rates and probabilities."""

    def test_zero_coupling_accepts_everything(self, torus_4x4, group_name):
        field = LatticeGaugeField.random(torus_4x4, group_name, beta=0.0, rng=1)
        updater = MetropolisUpdater(field, MonteCarloConfig(n_hits=3), rng=2)
        for _ in range(3):
            updater.sweep()
        assert updater.acceptance_rate == 1.0
        assert updater.stats.proposals == 3 * 3 * torus_4x4.num_edges

    def test_finite_coupling_rejects_some(self, hot_field):
        updater = MetropolisUpdater(hot_field, MonteCarloConfig(epsilon=1.0), rng=3)
        for _ in range(5):
            updater.sweep()
        assert 0.0 < updater.acceptance_rate < 1.0

    def test_epsilon_controls_acceptance(self, torus_4x4):
        rates = []
        for epsilon in (0.1, 2.0):
            field = LatticeGaugeField.identity(torus_4x4, "SU2", 4.0)
            updater = MetropolisUpdater(field, MonteCarloConfig(epsilon=epsilon), rng=4)
            for _ in range(5):
                updater.sweep()
            rates.append(updater.acceptance_rate)
        assert rates[0] > rates[1]

    def test_acceptance_probability(self, hot_field):
        updater = MetropolisUpdater(hot_field, rng=5)
        assert updater.acceptance_probability(-1.0) == 1.0
        assert updater.acceptance_probability(0.0) == 1.0
        assert updater.acceptance_probability(1.0) == pytest.approx(np.exp(-1.0))
        with pytest.raises(NumericInstability):
            updater.acceptance_probability(np.nan)
        with pytest.raises(NumericInstability):
            updater.acceptance_probability(np.inf)

    def test_links_stay_on_manifold(self, hot_field):
        updater = MetropolisUpdater(hot_field, MonteCarloConfig(n_hits=2), rng=6)
        for _ in range(5):
            updater.sweep()
        assert hot_field.manifold_deviation() <= hot_field.tolerance

    @pytest.mark.statistical
    def test_ordering_from_cold_start(self, torus_4x4):
        # At strong coupling a cold start disorders quickly
        field = LatticeGaugeField.identity(torus_4x4, "U1", 0.5)
        updater = MetropolisUpdater(field, MonteCarloConfig(epsilon=2.0, n_hits=4), rng=7)
        for _ in range(50):
            updater.sweep()
        assert field.average_plaquette() < 0.8


class TestStaples:
    """Test the vectorized staple sum against the edge-by-edge version."""

    @pytest.mark.parametrize("periodic", [True, False])
    def test_staple_array_matches_local(self, group_name, periodic, rng):
        lattice = Lattice([4, 4, 2], periodic=periodic)
        field = LatticeGaugeField.random(lattice, group_name, 1.0, rng=rng)
        for mu in range(3):
            staples = staple_array(lattice, field.group, field.link_array, mu)
            for cell in [(0, 0, 0), (1, 2, 1), (3, 3, 0)]:
                if lattice.has_edge(cell, mu):
                    np.testing.assert_allclose(staples[cell], staple(field, cell, mu),
                                               atol=1e-13)

    def test_staple_reproduces_local_action(self, hot_field):
        # ReTr(U A) is the sum of ReTr over the 2 (D - 1) plaquettes containing U
        group = hot_field.group
        cell, mu = (1, 1), 0
        u = hot_field.link(cell, mu)
        local = group.re_trace(u @ staple(hot_field, cell, mu))
        plaquettes = (group.re_trace(hot_field.plaquette((1, 1), 0, 1))
                      + group.re_trace(hot_field.plaquette((1, 0), 0, 1)))
        assert local == pytest.approx(plaquettes, abs=1e-12)


class TestSweepOrder:
    """Test parity classes and the sequential fallback."""

    def test_parity_classes(self, torus_4x4):
        field = LatticeGaugeField.identity(torus_4x4, "U1", 1.0)
        updater = MetropolisUpdater(field, rng=8)
        assert updater.checkerboard
        assert [mu for mu, _ in updater._classes] == [0, 1, 0, 1]
        assert sum(len(index[0]) for _, index in updater._classes) == torus_4x4.num_edges

    def test_open_lattice_classes(self, open_3x4):
        field = LatticeGaugeField.random(open_3x4, "SU2", 1.0, rng=9)
        updater = MetropolisUpdater(field, rng=10)
        assert sum(len(index[0]) for _, index in updater._classes) == open_3x4.num_edges
        updater.sweep()
        np.testing.assert_array_equal(field.links.data[0, 2], field.group.identity((4,)))
        assert updater.stats.proposals == open_3x4.num_edges

    def test_odd_extent_falls_back(self, caplog):
        lattice = Lattice.torus([3, 4])
        field = LatticeGaugeField.random(lattice, "U1", 1.0, rng=11)
        updater = MetropolisUpdater(field, MonteCarloConfig(n_hits=2), rng=12)
        assert not updater.checkerboard
        assert "sequential" in caplog.text

        stats = updater.sweep()
        assert stats.proposals == 2 * lattice.num_edges
        assert 0 < stats.accepted <= stats.proposals
        assert field.manifold_deviation() <= field.tolerance

    def test_odd_extent_zero_coupling(self):
        field = LatticeGaugeField.random(Lattice.torus([3, 3]), "SU3", 0.0, rng=13)
        updater = MetropolisUpdater(field, rng=14)
        updater.sweep()
        assert updater.acceptance_rate == 1.0

    def test_update_link(self, hot_field):
        updater = MetropolisUpdater(hot_field, MonteCarloConfig(n_hits=5, epsilon=0.2), rng=15)
        before = hot_field.link((2, 1), 1)
        changed, stats = updater.update_link((2, 1), 1)
        assert stats.proposals == 5
        assert changed == (stats.accepted > 0)
        if changed:
            assert not np.array_equal(hot_field.link((2, 1), 1), before)


class TestNonFinite:
    """Test handling of proposals with non-finite action differences."""

    def test_nan_link_skipped_and_reset(self, torus_4x4):
        field = LatticeGaugeField.random(torus_4x4, "SU2", 1.0, rng=16)
        field.links.data[0, 1, 1] = np.nan
        updater = MetropolisUpdater(field, MonteCarloConfig(max_retries=2), rng=17)

        stats = updater.sweep()

        assert stats.skipped > 0
        assert stats.retries > 0
        assert stats.resets == 1
        assert np.all(np.isfinite(field.link_array))
        assert field.manifold_deviation() <= field.tolerance

    def test_sequential_skip(self, caplog):
        lattice = Lattice.torus([3, 4])
        field = LatticeGaugeField.random(lattice, "U1", 1.0, rng=18)
        field.links.data[1, 0, 0] = np.nan
        updater = MetropolisUpdater(field, MonteCarloConfig(max_retries=1), rng=19)
        stats = updater.sweep()
        assert stats.skipped > 0
        assert "Skipping update" in caplog.text
        assert np.all(np.isfinite(field.link_array))


class TestThreadedChunks:
    """Test the joblib-threaded class update."""

    def test_threaded_sweep(self):
        lattice = Lattice.torus([32, 32])
        config = MonteCarloConfig(n_jobs=2, epsilon=1.0)

        results = []
        for _ in range(2):
            field = LatticeGaugeField.random(lattice, "U1", 1.0, rng=20)
            updater = MetropolisUpdater(field, config, rng=21)
            updater.sweep()
            results.append(field.link_array.copy())
            assert 0.0 < updater.acceptance_rate < 1.0
            assert updater.stats.proposals == lattice.num_edges

        np.testing.assert_array_equal(results[0], results[1])


class TestSchedule:
    """Test thermalization, measurement and state handling."""

    def test_run(self, torus_4x4):
        field = LatticeGaugeField.random(torus_4x4, "SU2", 2.0, rng=22)
        config = MonteCarloConfig(n_therm=2, n_measurements=3, measurement_interval=2)
        updater = MetropolisUpdater(field, config, rng=23)
        history = updater.run()

        assert isinstance(history, pd.DataFrame)
        assert list(history.columns) == ["sweep", "acceptance", "plaquette"]
        assert history["sweep"].tolist() == [4, 6, 8]
        assert updater.phase is Phase.DONE
        assert updater.sweep_count == 8
        assert len(updater.acceptance_history) == 8

    def test_custom_observables(self, hot_field):
        updater = MetropolisUpdater(hot_field, rng=24)
        history = updater.measure(
            n_measurements=2,
            observables={"w22": lambda f: float(average_wilson_loop(f, 2, 2))},
        )
        assert list(history.columns) == ["sweep", "acceptance", "w22"]
        assert updater.phase is Phase.MEASUREMENT
        with pytest.raises(ValueError):
            updater.measure(n_measurements=1, interval=0)

    def test_coupled_source_evolves(self, torus_4x4):
        field = LatticeGaugeField.identity(torus_4x4, "U1", 1.0, source=CountingSource())
        updater = MetropolisUpdater(field, rng=25)
        updater.thermalize(3)
        assert field.source.calls == 3

    def test_reproject_interval(self, torus_4x4):
        field = LatticeGaugeField.random(torus_4x4, "U1", 1.0, rng=26)
        updater = MetropolisUpdater(field, MonteCarloConfig(reproject_interval=2), rng=27)
        updater.sweep()
        field.links.data[0, 0, 0] = np.nan
        assert updater.sweep().resets == 1

    def test_state_round_trip(self, hot_field):
        config = MonteCarloConfig(n_hits=2)
        first = MetropolisUpdater(hot_field, config, rng=28)
        for _ in range(2):
            first.sweep()

        copy = hot_field.clone()
        second = MetropolisUpdater(copy, config, rng=99)
        second.set_state(first.get_state())
        assert second.sweep_count == 2
        assert second.stats.proposals == first.stats.proposals

        first.sweep()
        second.sweep()
        np.testing.assert_array_equal(hot_field.link_array, copy.link_array)

    def test_sweep_stats(self):
        a = SweepStats(proposals=10, accepted=4)
        a.merge(SweepStats(proposals=10, accepted=6, skipped=1))
        assert a.acceptance_rate == 0.5
        assert a.to_dict()["skipped"] == 1
        assert SweepStats().acceptance_rate == 0.0


class TestReplicas:
    """Test independent replica chains."""

    def test_run_replicas(self):
        config = SimulationConfig(
            lattice=LatticeConfig(extents=[4, 4]),
            field=FieldConfig(group="U1", beta=1.0, start="hot", seed=1),
            monte_carlo=MonteCarloConfig(n_therm=2, n_measurements=3, seed=2),
        )
        history = run_replicas(config, n_replicas=2, n_jobs=1)
        assert list(history.columns[:2]) == ["replica", "sweep"]
        assert sorted(history["replica"].unique()) == [0, 1]
        assert len(history) == 6

        again = run_replicas(config, n_replicas=2, n_jobs=1)
        pd.testing.assert_frame_equal(history, again)

    def test_invalid_replica_count(self):
        with pytest.raises(ValueError):
            run_replicas(SimulationConfig(), n_replicas=0)
