"""
Continuum-limit quantities built from plaquettes: the field strength and
the topological charge.
"""

import logging
from typing import Sequence

import numpy as np

from .wilson import plaquette, plaquette_field

logger = logging.getLogger(__name__)


def field_strength(field, cell: Sequence[int], mu: int, nu: int) -> np.ndarray:
    """
    Anti-Hermitian part (U_mu,nu - U_mu,nu^dagger) / 2 of the plaquette,
    which approximates i a^2 F_mu,nu. Zero for mu == nu.
    """
    group = field.group
    if mu == nu:
        return np.zeros((group.n, group.n), dtype=field.precision.complex_dtype)
    p = plaquette(field, cell, mu, nu)
    return (p - group.adjoint(p)) / 2


def field_strength_array(field, mu: int, nu: int) -> np.ndarray:
    """field_strength at every site; zero where the plaquette leaves the lattice."""
    group = field.group
    loops, mask = plaquette_field(field, mu, nu)
    strength = (loops - group.adjoint(loops)) / 2
    return np.where(mask[..., None, None], strength, 0)


def topological_charge_density(field) -> np.ndarray:
    """
    q(x) = -1/(2 pi^2) [Tr F01 F23 - Tr F02 F13 + Tr F03 F12] at every site.

    Uses the generator normalization Tr(T^a T^b) = delta/2. Defined only in
    four or more dimensions; lower-dimensional lattices give zeros.
    """
    lattice = field.lattice
    real = field.precision.real_dtype
    if lattice.dimension < 4:
        return np.zeros(lattice.extents, dtype=real)

    group = field.group
    f = {}
    for mu, nu in ((0, 1), (2, 3), (0, 2), (1, 3), (0, 3), (1, 2)):
        f[(mu, nu)] = field_strength_array(field, mu, nu)

    def tr(a, b):
        return group.re_trace(group.multiply(f[a], f[b]))

    total = tr((0, 1), (2, 3)) - tr((0, 2), (1, 3)) + tr((0, 3), (1, 2))
    return (-total / (2 * np.pi ** 2)).astype(real)


def topological_charge(field) -> float:
    """Total charge Q = sum_x q(x); close to an integer for smooth fields."""
    return float(np.sum(topological_charge_density(field)))
