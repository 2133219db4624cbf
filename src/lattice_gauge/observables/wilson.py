"""
Wilson-type observables: plaquettes, rectangular loops, Polyakov loops and
the gauge actions built from them.

All functions are read-only traversals of a field. Single-loop queries walk
the oriented edges returned by the lattice; averages use vectorized kernels
over the whole link array. Both paths multiply links in the same order, so
a single loop and the corresponding entry of a loop array agree exactly.
"""

import logging
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np

from ..core.errors import NumericInstability, TopologyError
from ..core.links import line_product, shift

logger = logging.getLogger(__name__)

# Rectangle coefficient c1 of the standard improved actions; c0 = 1 - 8 c1
IMPROVED_ACTIONS = {
    "wilson": 0.0,
    "symanzik": -1.0 / 12.0,
    "iwasaki": -0.331,
    "dbw2": -1.4088,
}


# Single loops

def path_product(field, path) -> np.ndarray:
    """Ordered product of the links along a sequence of oriented edges."""
    group = field.group
    result = None
    for edge in path:
        link = field.link(edge.cell, edge.direction)
        if edge.sign < 0:
            link = group.adjoint(link)
        result = link if result is None else group.multiply(result, link)
    return result


def plaquette(field, cell: Sequence[int], mu: int, nu: int) -> np.ndarray:
    """U_mu(x) U_nu(x+mu) U_mu(x+nu)^dagger U_nu(x)^dagger as a group element."""
    return path_product(field, field.lattice.plaquette_corners(cell, mu, nu))


def wilson_loop(field, cell: Sequence[int], r: int, t: int,
                mu: int = 0, nu: int = 1) -> np.ndarray:
    """Ordered product around the r x t rectangle at `cell` in the (mu, nu) plane."""
    return path_product(field, field.lattice.loop_path(cell, mu, nu, r, t))


def rectangle(field, cell: Sequence[int], mu: int, nu: int) -> np.ndarray:
    """The 2 x 1 loop, extended along mu."""
    return wilson_loop(field, cell, 2, 1, mu, nu)


def plaquette_action(field, cell: Sequence[int], mu: int, nu: int) -> float:
    """Local Wilson action beta (1 - ReTr U_p / N) of one plaquette."""
    p = plaquette(field, cell, mu, nu)
    return field.beta * (1 - field.group.re_trace(p) / field.group.n)


def polyakov_loop(field, spatial_cell: Sequence[int], temporal_dir: int = 0) -> np.ndarray:
    """
    Ordered product of the temporal links at a fixed spatial position.

    Args:
        field: Gauge field
        spatial_cell: The D - 1 spatial coordinates (the temporal
            coordinate is omitted)
        temporal_dir: Direction treated as time; must be periodic

    Returns:
        The Polyakov loop as a group element
    """
    lattice = field.lattice
    _check_temporal(lattice, temporal_dir)
    spatial_cell = tuple(spatial_cell)
    if len(spatial_cell) != lattice.dimension - 1:
        raise ValueError(
            f"Spatial cell needs {lattice.dimension - 1} coordinates, got {len(spatial_cell)}"
        )

    cell = spatial_cell[:temporal_dir] + (0,) + spatial_cell[temporal_dir:]
    cell = lattice.normalize(cell)
    group = field.group
    result = None
    for _ in range(lattice.extents[temporal_dir]):
        link = field.link(cell, temporal_dir)
        result = link if result is None else group.multiply(result, link)
        cell = lattice.neighbor(cell, temporal_dir, 1)
    return result


# Vectorized loop arrays

def loop_field(field, mu: int, nu: int, r: int = 1,
               t: int = 1) -> Tuple[np.ndarray, np.ndarray]:
    """
    r x t loops at every site of the (mu, nu) plane.

    Returns:
        (loops, mask): loop matrices of shape (*extents, n, n) and the
        boolean mask of sites where the loop fits on the lattice
    """
    lattice = field.lattice
    mask = lattice.loop_mask(mu, nu, r, t)
    return loop_array(field.group, field.link_array, mu, nu, r, t), mask


def loop_array(group, links: np.ndarray, mu: int, nu: int, r: int, t: int) -> np.ndarray:
    """Kernel behind loop_field, operating on a raw (D, *extents, n, n) array."""
    if r < 1 or t < 1:
        raise ValueError(f"Loop extents must be positive, got r={r}, t={t}")
    side_mu = line_product(group, links, mu, r)
    side_nu = line_product(group, links, nu, t)
    result = group.multiply(side_mu, shift(side_nu, mu, r))
    result = group.multiply(result, group.adjoint(shift(side_mu, nu, t)))
    return group.multiply(result, group.adjoint(side_nu))


def plaquette_field(field, mu: int, nu: int) -> Tuple[np.ndarray, np.ndarray]:
    return loop_field(field, mu, nu, 1, 1)


def _planes(field, mu: Optional[int], nu: Optional[int]):
    if mu is None and nu is None:
        planes = field.lattice.planes()
        if not planes:
            raise TopologyError(f"{field.lattice} has no planes")
        return planes
    if mu is None or nu is None:
        raise ValueError("Give both mu and nu, or neither")
    field.lattice._check_plane(mu, nu)
    return [(mu, nu)]


def average_wilson_loop(field, r: int, t: int, mu: Optional[int] = None,
                        nu: Optional[int] = None):
    """
    Mean of ReTr W(r, t) / N over all positions (and planes, if none given).

    A zero extent is the trivial loop with value 1.
    """
    if r < 0 or t < 0:
        raise ValueError(f"Loop extents must be non-negative, got r={r}, t={t}")
    real = field.precision.real_dtype.type
    if r == 0 or t == 0:
        return real(1)

    total = real(0)
    count = 0
    for a, b in _planes(field, mu, nu):
        loops, mask = loop_field(field, a, b, r, t)
        total = total + np.sum(field.group.re_trace(loops)[mask])
        count += int(mask.sum())
    if count == 0:
        raise TopologyError(f"No {r}x{t} loop fits on {field.lattice}")
    return real(total / (count * field.group.n))


def average_plaquette(field):
    """
    Mean of ReTr U_p / N over all distinct plaquettes.

    Equal to 1 exactly for the identity configuration.
    """
    return average_wilson_loop(field, 1, 1)


def average_rectangle(field):
    """Mean over both orientations of the 2 x 1 loop."""
    real = field.precision.real_dtype.type
    return real((average_wilson_loop(field, 2, 1) + average_wilson_loop(field, 1, 2)) / 2)


def creutz_ratio(field, r: int, t: int, mu: Optional[int] = None,
                 nu: Optional[int] = None) -> float:
    """
    chi(r, t) = -ln( W(r, t) W(r-1, t-1) / (W(r, t-1) W(r-1, t)) ).

    Raises:
        NumericInstability: If the ratio is not a positive finite number,
            which happens once the loops are lost in statistical noise
    """
    if r < 1 or t < 1:
        raise ValueError(f"Creutz ratio needs r, t >= 1, got r={r}, t={t}")

    def w(a, b):
        return average_wilson_loop(field, a, b, mu, nu)

    with np.errstate(all="ignore"):
        ratio = (w(r, t) * w(r - 1, t - 1)) / (w(r, t - 1) * w(r - 1, t))
    if not np.isfinite(ratio) or ratio <= 0:
        raise NumericInstability(f"Creutz ratio argument {ratio} for r={r}, t={t} is not positive")
    return -float(np.log(ratio))


def average_polyakov_loop(field, temporal_dir: int = 0) -> complex:
    """Spatial average of Tr P / N; near zero when confined."""
    lattice = field.lattice
    _check_temporal(lattice, temporal_dir)
    line = line_product(field.group, field.link_array, temporal_dir,
                        lattice.extents[temporal_dir])
    # Every site on a periodic time line holds a cyclic rotation of the same loop,
    # so the slice at t = 0 is enough
    first = np.take(line, 0, axis=temporal_dir)
    return complex(np.mean(field.group.trace(first)) / field.group.n)


def _check_temporal(lattice, temporal_dir: int):
    lattice._check_direction(temporal_dir)
    if not lattice.periodic[temporal_dir]:
        raise TopologyError(
            f"Polyakov loop needs a periodic time direction, dimension "
            f"{temporal_dir} is open"
        )


# Actions

def plaquette_sum(field) -> float:
    """Sum over plaquettes of 1 - ReTr U_p / N."""
    total = 0
    for mu, nu in _planes(field, None, None):
        loops, mask = plaquette_field(field, mu, nu)
        total = total + np.sum(1 - field.group.re_trace(loops)[mask] / field.group.n)
    return total


def wilson_action(field) -> float:
    """S_W = beta sum_p (1 - ReTr U_p / N)."""
    return field.beta * plaquette_sum(field)


def improved_action(field, action: Union[str, float] = "symanzik") -> float:
    """
    Gauge action with plaquette and 2 x 1 rectangle terms.

    S = beta [c0 sum_p (1 - ReTr U_p / N) + c1 sum_rect (1 - ReTr U_rect / N)]
    with c0 = 1 - 8 c1. `action` is a name from IMPROVED_ACTIONS or c1 itself.
    """
    coefficients = action_coefficients(action)
    c0, c1 = coefficients["c0"], coefficients["c1"]

    group = field.group
    rect_total = 0
    for mu, nu in _planes(field, None, None):
        for r, t in ((2, 1), (1, 2)):
            loops, mask = loop_field(field, mu, nu, r, t)
            rect_total = rect_total + np.sum(1 - group.re_trace(loops)[mask] / group.n)
    return field.beta * (c0 * plaquette_sum(field) + c1 * rect_total)


def action_coefficients(action: Union[str, float]) -> Dict[str, float]:
    """Coefficients c0 and c1 of an improved action."""
    if isinstance(action, str):
        key = action.lower()
        if key not in IMPROVED_ACTIONS:
            raise ValueError(
                f"Unknown improved action '{action}', expected one of {list(IMPROVED_ACTIONS)}"
            )
        c1 = IMPROVED_ACTIONS[key]
    else:
        c1 = float(action)
    return {"c0": 1 - 8 * c1, "c1": c1}


# Staples

def staple_array(lattice, group, links: np.ndarray, mu: int) -> np.ndarray:
    """
    Sum of staples A_mu(x) around every mu-link.

    With this convention ReTr(U_mu(x) A_mu(x)) is the sum of ReTr over the
    plaquettes containing U_mu(x). Staples that leave an open boundary are
    dropped.
    """
    adj = group.adjoint
    mul = group.multiply
    u_mu = links[mu]
    total = np.zeros_like(u_mu)
    for nu in range(lattice.dimension):
        if nu == mu:
            continue
        u_nu = links[nu]
        # U_nu(x+mu) U_mu(x+nu)^dag U_nu(x)^dag
        upper = mul(mul(shift(u_nu, mu), adj(shift(u_mu, nu))), adj(u_nu))
        # U_nu(x+mu-nu)^dag U_mu(x-nu)^dag U_nu(x-nu)
        u_nu_back = shift(u_nu, nu, -1)
        lower = mul(mul(adj(shift(u_nu_back, mu)), adj(shift(u_mu, nu, -1))), u_nu_back)

        upper_mask = lattice.plaquette_mask(mu, nu)
        lower_mask = shift(upper_mask, nu, -1) & lattice.backward_mask(nu)
        total = total + np.where(upper_mask[..., None, None], upper, 0)
        total = total + np.where(lower_mask[..., None, None], lower, 0)
    return total


def staple(field, cell: Sequence[int], mu: int) -> np.ndarray:
    """
    Staple sum A_mu(x) of a single link, read edge by edge.

    Only the links of the plaquettes containing U_mu(x) are touched.
    """
    lattice = field.lattice
    group = field.group
    adj = group.adjoint
    mul = group.multiply
    x = lattice.normalize(cell)
    x_mu = lattice.neighbor(x, mu, 1)
    total = np.zeros((group.n, group.n), dtype=field.precision.complex_dtype)
    for nu in range(lattice.dimension):
        if nu == mu:
            continue
        if lattice.has_edge(x, nu) and lattice.has_edge(x_mu, nu):
            x_nu = lattice.neighbor(x, nu, 1)
            total = total + mul(mul(field.link(x_mu, nu), adj(field.link(x_nu, mu))),
                                adj(field.link(x, nu)))
        if lattice.backward_mask(nu)[x]:
            x_back = lattice.neighbor(x, nu, -1)
            x_back_mu = lattice.neighbor(x_back, mu, 1)
            total = total + mul(mul(adj(field.link(x_back_mu, nu)), adj(field.link(x_back, mu))),
                                field.link(x_back, nu))
    return total
