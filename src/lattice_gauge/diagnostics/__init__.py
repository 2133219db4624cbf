"""Time-series diagnostics and exact reference values."""

from .exact_solutions import (bessel_i, bessel_ratio, bessel_ratio_recurrence,
                              bessel_ratio_scipy, compare_u1_plaquette, cross_check,
                              u1_2d_creutz_ratio, u1_2d_plaquette, u1_2d_wilson_loop)
from .mcmc_diag import (binning_analysis, binning_error, compute_acceptance_rate,
                        compute_autocorrelation, compute_mcse, diagnose_chain,
                        diagnose_history, effective_sample_size,
                        integrated_autocorrelation_time, jackknife_error)

__all__ = [
    "bessel_i", "bessel_ratio", "bessel_ratio_recurrence", "bessel_ratio_scipy",
    "compare_u1_plaquette", "cross_check", "u1_2d_plaquette", "u1_2d_wilson_loop",
    "u1_2d_creutz_ratio",
    "compute_autocorrelation", "integrated_autocorrelation_time", "effective_sample_size",
    "compute_acceptance_rate", "binning_analysis", "binning_error", "jackknife_error",
    "compute_mcse", "diagnose_chain", "diagnose_history",
]
