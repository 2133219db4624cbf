"""
Unit tests for the Wilson gradient flow and the t0 / w0 scales.

The uniform-flux U(1) field is a stationary point of the flow with
E = 2 (1 - cos phi), so t0 = sqrt(0.3 / E) and w0 = (0.15 / E)^(1/4).
"""

import numpy as np
import pandas as pd
import pytest

from lattice_gauge.core.config import FlowConfig
from lattice_gauge.core.errors import ConvergenceFailure
from lattice_gauge.models.gauge_field import LatticeGaugeField
from lattice_gauge.observables.flow import (
    FlowTrajectory, GradientFlow, energy_density, find_t0, flow, flow_force,
)

FLUX_ENERGY = 2 * (1 - np.cos(2 * np.pi / 16))


class TestEnergyDensity:
    """Test the plaquette energy density."""

    def test_identity_zero(self, torus_4x4, group_name):
        field = LatticeGaugeField.identity(torus_4x4, group_name, 1.0)
        assert energy_density(field) == 0.0

    def test_uniform_flux(self, flux_field):
        assert energy_density(flux_field) == pytest.approx(FLUX_ENERGY, rel=1e-12)

    def test_flux_is_stationary(self, flux_field):
        np.testing.assert_allclose(flow_force(flux_field), 0.0, atol=1e-14)

    def test_force_in_algebra(self, hot_field):
        force = flow_force(hot_field)
        group = hot_field.group
        np.testing.assert_allclose(force, -group.adjoint(force), atol=1e-14)
        if group.special:
            np.testing.assert_allclose(group.trace(force), 0.0, atol=1e-13)


class TestGradientFlow:
    """Test the Runge-Kutta integrator."""

    @pytest.mark.parametrize("step", [0.0, -0.01])
    def test_invalid_step_before_clone(self, hot_field, monkeypatch, step):
        def fail_clone():
            raise AssertionError("clone must not be reached")

        before = hot_field.link_array.copy()
        monkeypatch.setattr(hot_field, "clone", fail_clone)
        with pytest.raises(ConvergenceFailure):
            GradientFlow(step, 1.0).run(hot_field)
        np.testing.assert_array_equal(hot_field.link_array, before)

    @pytest.mark.parametrize("step, t_max", [
        (0.1, np.inf), (0.1, np.nan), (np.inf, 1.0), (np.nan, 1.0),
    ])
    def test_non_finite_schedule(self, hot_field, monkeypatch, step, t_max):
        def fail_clone():
            raise AssertionError("clone must not be reached")

        monkeypatch.setattr(hot_field, "clone", fail_clone)
        with pytest.raises(ConvergenceFailure):
            GradientFlow(step, t_max).run(hot_field)

    def test_horizon_shorter_than_step(self, hot_field):
        with pytest.raises(ConvergenceFailure):
            GradientFlow(0.1, 0.05).run(hot_field)

    def test_invalid_sample_interval(self):
        with pytest.raises(ValueError):
            GradientFlow(0.01, 1.0, sample_interval=0)

    def test_original_unchanged(self, hot_field):
        before = hot_field.link_array.copy()
        flowed, _ = GradientFlow(0.05, 0.2).run(hot_field)
        np.testing.assert_array_equal(hot_field.link_array, before)
        assert flowed.lattice is hot_field.lattice
        assert not np.array_equal(flowed.link_array, before)

    def test_flow_stays_on_manifold(self, hot_field):
        flowed, _ = GradientFlow(0.05, 0.5).run(hot_field)
        assert flowed.manifold_deviation() <= flowed.tolerance

    def test_energy_decreases(self, hot_field):
        _, trajectory = GradientFlow(0.02, 0.4).run(hot_field)
        assert np.all(np.diff(trajectory.energies) <= 1e-12)
        assert trajectory.plaquettes[-1] > trajectory.plaquettes[0]

    def test_sampling_schedule(self, hot_field):
        _, trajectory = GradientFlow(0.02, 0.3, sample_interval=4).run(hot_field)
        np.testing.assert_allclose(trajectory.times, [0.0, 0.08, 0.16, 0.24, 0.3])

    def test_flow_wrapper(self, flux_field):
        flowed = flow(flux_field, FlowConfig(step_size=0.05, t_max=0.5))
        np.testing.assert_allclose(flowed.link_array, flux_field.link_array, atol=1e-12)


class TestReferenceScales:
    """Test t0 and w0 on the stationary flux configuration."""

    def test_t0(self, flux_field):
        t0 = GradientFlow(0.02, 2.0).t0(flux_field)
        assert t0 == pytest.approx(np.sqrt(0.3 / FLUX_ENERGY), rel=1e-3)

    def test_w0(self, flux_field):
        w0 = GradientFlow(0.02, 2.0).w0(flux_field)
        assert w0 == pytest.approx((0.15 / FLUX_ENERGY) ** 0.25, rel=1e-3)

    def test_find_t0(self, flux_field):
        assert find_t0(flux_field, 0.02, 2.0, sample_interval=2) == pytest.approx(
            np.sqrt(0.3 / FLUX_ENERGY), rel=1e-3)

    def test_trajectory_constant_energy(self, flux_field):
        _, trajectory = GradientFlow(0.02, 2.0).run(flux_field)
        np.testing.assert_allclose(trajectory.energies, FLUX_ENERGY, rtol=1e-10)

    def test_target_not_bracketed(self, torus_4x4):
        field = LatticeGaugeField.identity(torus_4x4, "SU2", 1.0)
        flow_ = GradientFlow(0.05, 1.0)
        with pytest.raises(ConvergenceFailure):
            flow_.t0(field)
        with pytest.raises(ConvergenceFailure):
            flow_.w0(field)

    def test_horizon_too_short_for_t0(self, flux_field):
        with pytest.raises(ConvergenceFailure):
            GradientFlow(0.02, 1.0).t0(flux_field)


class TestFlowTrajectory:
    """Test trajectory bookkeeping."""

    def test_dataframe(self):
        trajectory = FlowTrajectory(np.array([0.0, 1.0, 2.0]), np.array([0.2, 0.2, 0.2]),
                                    np.array([0.9, 0.9, 0.9]))
        df = trajectory.to_dataframe()
        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == ["t", "E", "t2E", "plaquette"]
        np.testing.assert_allclose(df["t2E"], [0.0, 0.2, 0.8])

    def test_exact_crossing(self):
        trajectory = FlowTrajectory(np.array([0.0, 1.0, 2.0]), np.array([0.3, 0.3, 0.3]),
                                    np.array([1.0, 1.0, 1.0]))
        assert trajectory.t0() == 1.0

    def test_short_trajectory(self):
        trajectory = FlowTrajectory(np.array([0.0]), np.array([1.0]), np.array([1.0]))
        with pytest.raises(ConvergenceFailure):
            trajectory.t0()

    def test_non_finite_energies(self):
        trajectory = FlowTrajectory(np.array([0.0, 1.0]), np.array([0.1, np.nan]),
                                    np.array([1.0, 1.0]))
        with pytest.raises(ConvergenceFailure):
            trajectory.t0()
