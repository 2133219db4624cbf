"""
MCMC diagnostics for measurement time series.

Implements autocorrelation, integrated autocorrelation time, effective
sample size and the binning and jackknife error estimates used to quote
Monte Carlo averages.
"""

from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np
import pandas as pd


def compute_autocorrelation(x: np.ndarray, max_lag: int = None) -> np.ndarray:
    """
    Compute autocorrelation function for time series.

    Args:
        x: Time series data
        max_lag: Maximum lag to compute (default: len(x)//4, at most 1000)

    Returns:
        Array of autocorrelation values for lags 0 to max_lag. A constant
        series has autocorrelation 1 at lag 0 and 0 elsewhere.
    """
    x = np.asarray(x, dtype=float).flatten()
    if max_lag is None:
        max_lag = min(len(x) // 4, 1000)

    x = x - np.mean(x)
    c = np.correlate(x, x, 'full')[len(x) - 1:]
    if c[0] == 0:
        acf = np.zeros(len(x))
        acf[0] = 1.0
        return acf[:max_lag + 1]
    c = c / c[0]

    return c[:max_lag + 1]


def integrated_autocorrelation_time(x: np.ndarray, c: float = 5.0) -> float:
    """
    Integrated autocorrelation time tau_int = 1 + 2 sum_k rho(k).

    The sum is cut with Sokal's automatic window: stop at the first lag
    k >= c * tau_int(k).

    Args:
        x: Time series
        c: Window parameter

    Returns:
        Integrated autocorrelation time (1 for uncorrelated data)
    """
    acf = compute_autocorrelation(x, max_lag=len(x) // 2)

    tau_int = 1.0
    for k in range(1, len(acf)):
        tau_int += 2 * acf[k]
        if k >= c * tau_int:
            break

    return max(tau_int, 1.0)


def effective_sample_size(x: np.ndarray) -> float:
    """
    ESS = n / tau_int.

    Args:
        x: Samples; for 2D input the minimum over columns is returned

    Returns:
        Effective sample size
    """
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        return len(x) / integrated_autocorrelation_time(x)
    return min(effective_sample_size(x[:, i]) for i in range(x.shape[1]))


def compute_acceptance_rate(accepted: Sequence) -> float:
    """
    Mean acceptance over a sequence of per-proposal booleans or per-sweep rates.
    """
    accepted = np.asarray(accepted, dtype=float)
    if accepted.size == 0:
        return 0.0
    return float(np.mean(accepted))


def binning_analysis(x: np.ndarray, min_bins: int = 16) -> pd.DataFrame:
    """
    Standard error of the mean for doubling bin sizes.

    The error grows with the bin size until bins are longer than the
    autocorrelation time, then plateaus.

    Returns:
        DataFrame with columns bin_size, n_bins, error
    """
    x = np.asarray(x, dtype=float)
    rows = []
    bin_size = 1
    while len(x) // bin_size >= min_bins:
        n_bins = len(x) // bin_size
        means = x[:n_bins * bin_size].reshape(n_bins, bin_size).mean(axis=1)
        error = np.std(means, ddof=1) / np.sqrt(n_bins)
        rows.append({"bin_size": bin_size, "n_bins": n_bins, "error": float(error)})
        bin_size *= 2
    return pd.DataFrame(rows, columns=["bin_size", "n_bins", "error"])


def binning_error(x: np.ndarray, min_bins: int = 16) -> float:
    """Largest binned standard error; a conservative error of the mean."""
    table = binning_analysis(x, min_bins)
    if table.empty:
        x = np.asarray(x, dtype=float)
        return float(np.std(x, ddof=1) / np.sqrt(len(x))) if len(x) > 1 else float("nan")
    return float(table["error"].max())


def jackknife_error(x: np.ndarray, estimator: Callable[[np.ndarray], float] = np.mean,
                    n_blocks: int = 20) -> Dict[str, float]:
    """
    Blocked jackknife estimate and error of a (possibly nonlinear) statistic.

    Args:
        x: Samples along the first axis
        estimator: Function of a sample array
        n_blocks: Number of jackknife blocks

    Returns:
        Dictionary with 'estimate', 'error' and 'bias'
    """
    x = np.asarray(x)
    n_blocks = min(n_blocks, len(x))
    if n_blocks < 2:
        raise ValueError("Jackknife needs at least two samples")
    block = len(x) // n_blocks
    x = x[:block * n_blocks]

    full = float(estimator(x))
    leave_out = np.array([
        estimator(np.concatenate([x[:i * block], x[(i + 1) * block:]]))
        for i in range(n_blocks)
    ], dtype=float)
    mean_leave_out = np.mean(leave_out)
    error = np.sqrt((n_blocks - 1) / n_blocks * np.sum((leave_out - mean_leave_out) ** 2))
    bias = (n_blocks - 1) * (mean_leave_out - full)
    return {"estimate": full - bias, "error": float(error), "bias": float(bias)}


def compute_mcse(x: np.ndarray, method: str = 'batch') -> float:
    """
    Compute Monte Carlo Standard Error (MCSE).

    Args:
        x: MCMC samples
        method: 'batch' or 'spectral'

    Returns:
        MCSE estimate
    """
    x = np.asarray(x, dtype=float)
    n = len(x)

    if method == 'batch':
        batch_size = int(np.sqrt(n))
        n_batches = n // batch_size
        batch_means = x[:n_batches * batch_size].reshape(n_batches, batch_size).mean(axis=1)
        return float(np.std(batch_means, ddof=1) / np.sqrt(n_batches))
    elif method == 'spectral':
        tau = integrated_autocorrelation_time(x)
        return float(np.sqrt(np.var(x, ddof=1) * tau / n))
    raise ValueError(f"Unknown MCSE method '{method}'")


def diagnose_chain(samples: np.ndarray,
                   burn_in: Optional[int] = None,
                   thin: int = 1) -> Dict[str, Any]:
    """
    Comprehensive diagnostics for a scalar measurement series.

    Args:
        samples: Measurement series
        burn_in: Number of leading samples to discard
        thin: Thinning factor

    Returns:
        Dictionary of diagnostic metrics
    """
    samples = np.asarray(samples, dtype=float)
    if burn_in is not None:
        samples = samples[burn_in:]
    if thin > 1:
        samples = samples[::thin]

    n = len(samples)
    acf = compute_autocorrelation(samples, max_lag=min(100, n // 4))
    tau_int = integrated_autocorrelation_time(samples)
    quantiles = np.percentile(samples, [2.5, 25, 50, 75, 97.5])

    return {
        'n_samples': n,
        'mean': float(np.mean(samples)),
        'std': float(np.std(samples)),
        'ess': float(n / tau_int),
        'ess_per_sample': float(1 / tau_int),
        'tau_int': float(tau_int),
        'binning_error': binning_error(samples),
        'mcse': compute_mcse(samples, 'spectral'),
        'acf_lag_1': float(acf[1]) if len(acf) > 1 else None,
        'acf_lag_10': float(acf[10]) if len(acf) > 10 else None,
        'quantiles': {
            '2.5%': float(quantiles[0]),
            '25%': float(quantiles[1]),
            '50%': float(quantiles[2]),
            '75%': float(quantiles[3]),
            '97.5%': float(quantiles[4]),
        },
    }


def diagnose_history(history: pd.DataFrame, column: str = "plaquette",
                     burn_in: Optional[int] = None) -> Dict[str, Any]:
    """diagnose_chain on one column of an updater history, plus acceptance."""
    if column not in history:
        raise KeyError(f"Column '{column}' not in history {list(history.columns)}")
    diagnostics = diagnose_chain(history[column].to_numpy(), burn_in=burn_in)
    if "acceptance" in history:
        diagnostics['acceptance_rate'] = compute_acceptance_rate(history["acceptance"])
    return diagnostics
