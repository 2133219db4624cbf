"""
Exact reference values for solvable gauge theories.

In two dimensions with open or periodic boundaries in the thermodynamic
limit, U(1) lattice gauge theory with the Wilson action factorizes into
independent plaquettes, each distributed as exp(beta cos theta). Hence

    <ReTr U_p> = I1(beta) / I0(beta)
    <W(R, T)>  = (I1(beta) / I0(beta)) ** (R * T)

with I0, I1 the modified Bessel functions of the first kind.

Three independent evaluations of the ratio are provided: a power series in
`decimal` arithmetic at a configurable number of digits, Miller's backward
recurrence for the continued fraction, and scipy.special.
"""

import logging
from decimal import Decimal, localcontext
from typing import Dict, Union

from scipy import special

logger = logging.getLogger(__name__)

Number = Union[int, float, str, Decimal]


def bessel_i(order: int, x: Number, digits: int = 40) -> Decimal:
    """
    Modified Bessel function I_order(x) by its power series

        I_n(x) = sum_k (x/2)^(2k+n) / (k! (k+n)!)

    evaluated with `digits` significant decimal digits.
    """
    if order < 0:
        raise ValueError(f"order must be non-negative, got {order}")
    if digits < 1:
        raise ValueError(f"digits must be positive, got {digits}")

    with localcontext() as ctx:
        ctx.prec = digits + 10
        half = Decimal(str(x)) / 2
        term = half ** order if order > 0 else Decimal(1)
        for j in range(1, order + 1):
            term /= j
        total = term
        quarter = half * half
        eps = Decimal(10) ** (-(digits + 5))
        k = 0
        while True:
            k += 1
            term = term * quarter / (k * (k + order))
            total += term
            if abs(term) <= eps * abs(total):
                break
    with localcontext() as ctx:
        ctx.prec = digits
        return +total


def bessel_ratio(x: Number, digits: int = 40) -> Decimal:
    """I1(x) / I0(x) to `digits` significant digits."""
    with localcontext() as ctx:
        ctx.prec = digits + 10
        ratio = bessel_i(1, x, digits + 10) / bessel_i(0, x, digits + 10)
    with localcontext() as ctx:
        ctx.prec = digits
        return +ratio


def bessel_ratio_recurrence(x: float, n_terms: int = 200) -> float:
    """
    I1(x) / I0(x) by Miller's backward recurrence

        r_n = I_{n+1} / I_n = x / (2 (n + 1) + x r_{n+1}),

    started from r_N = 0 at a large N.
    """
    x = float(x)
    if x == 0:
        return 0.0
    r = 0.0
    for n in range(n_terms, -1, -1):
        r = x / (2 * (n + 1) + x * r)
    return r


def bessel_ratio_scipy(x: float) -> float:
    """I1(x) / I0(x) from exponentially scaled scipy Bessel functions."""
    return float(special.i1e(x) / special.i0e(x))


def strong_coupling_plaquette(beta: float) -> float:
    """Small-beta expansion beta/2 - beta^3/16 + beta^5/96."""
    return beta / 2 - beta ** 3 / 16 + beta ** 5 / 96


def weak_coupling_plaquette(beta: float) -> float:
    """Large-beta expansion 1 - 1/(2 beta) - 1/(8 beta^2)."""
    return 1 - 1 / (2 * beta) - 1 / (8 * beta ** 2)


def u1_2d_plaquette(beta: float, digits: int = 40) -> float:
    """Exact <plaquette> of 2D U(1) lattice gauge theory."""
    if beta < 0:
        raise ValueError(f"beta must be non-negative, got {beta}")
    return float(bessel_ratio(beta, digits))


def u1_2d_wilson_loop(beta: float, r: int, t: int, digits: int = 40) -> float:
    """Exact <W(r, t)>: the area law (I1/I0)^(r t)."""
    if r < 0 or t < 0:
        raise ValueError(f"Loop extents must be non-negative, got r={r}, t={t}")
    with localcontext() as ctx:
        ctx.prec = digits
        return float(bessel_ratio(beta, digits) ** (r * t))


def u1_2d_creutz_ratio(beta: float, digits: int = 40) -> float:
    """Exact Creutz ratio -ln(I1/I0), the same for every r, t >= 1."""
    with localcontext() as ctx:
        ctx.prec = digits
        return float(-bessel_ratio(beta, digits).ln())


def cross_check(beta: float, digits: int = 40) -> Dict[str, float]:
    """
    Evaluate I1/I0 by every method.

    Returns:
        Dictionary with the series, recurrence and scipy values and the
        largest absolute disagreement among them
    """
    values = {
        "series": float(bessel_ratio(beta, digits)),
        "recurrence": bessel_ratio_recurrence(beta),
        "scipy": bessel_ratio_scipy(beta),
    }
    spread = max(values.values()) - min(values.values())
    values["max_difference"] = float(spread)
    logger.debug(f"Bessel ratio cross-check at beta={beta}: spread {spread:.2e}")
    return values


def compare_u1_plaquette(measured: float, beta: float, error: float = 0.0,
                         tolerance: float = 1e-3) -> Dict[str, float]:
    """
    Compare a measured 2D U(1) plaquette with the exact value.

    Args:
        measured: Monte Carlo average
        beta: Coupling
        error: Statistical error of `measured`
        tolerance: Absolute tolerance floor

    Returns:
        Dictionary with the exact value, the deviation, the tolerance used
        (max of the floor and four standard errors) and a 'passed' flag
    """
    exact = u1_2d_plaquette(beta)
    allowed = max(tolerance, 4 * error)
    deviation = abs(measured - exact)
    return {
        "exact": exact,
        "measured": float(measured),
        "deviation": float(deviation),
        "tolerance": float(allowed),
        "passed": bool(deviation <= allowed),
    }
