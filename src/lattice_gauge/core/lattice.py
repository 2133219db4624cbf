"""
Immutable D-dimensional lattice topology.

A Lattice owns the extents and the per-dimension periodicity flags. It is
never mutated after construction, so every field, updater and flow built on
it shares the same instance by reference.

Conventions:
    - A cell is a tuple of D integers, each in [0, extent).
    - A link is identified by an Edge (cell, direction): the directed edge
      from `cell` to `cell + e_direction`.
    - An OrientedEdge additionally carries the traversal sign: +1 walks the
      stored link forwards (U), -1 walks it backwards (U^dagger).
    - Plaquette corners are enumerated in the fixed order +mu, +nu, -mu, -nu.
"""

import itertools
import logging
from collections import namedtuple
from typing import Iterator, List, Sequence, Tuple, Union

import numpy as np

from .errors import TopologyError

logger = logging.getLogger(__name__)

Cell = Tuple[int, ...]

Edge = namedtuple("Edge", ["cell", "direction"])
OrientedEdge = namedtuple("OrientedEdge", ["cell", "direction", "sign"])


class CellSequence:
    """Lazy, finite and restartable sequence of all lattice cells."""

    def __init__(self, lattice: "Lattice"):
        self._lattice = lattice

    def __iter__(self) -> Iterator[Cell]:
        return itertools.product(*(range(n) for n in self._lattice.extents))

    def __len__(self) -> int:
        return self._lattice.num_sites


class EdgeSequence:
    """Lazy, finite and restartable sequence of all directed link edges."""

    def __init__(self, lattice: "Lattice"):
        self._lattice = lattice

    def __iter__(self) -> Iterator[Edge]:
        lattice = self._lattice
        for cell in lattice.all_cells():
            for direction in range(lattice.dimension):
                if lattice.has_edge(cell, direction):
                    yield Edge(cell, direction)

    def __len__(self) -> int:
        return self._lattice.num_edges


class Lattice:
    """
    Hypercubic lattice with per-dimension periodic or open boundaries.

    Args:
        extents: Number of sites along each dimension
        periodic: Single flag applied to every dimension, or one flag per
            dimension (default: fully periodic)
    """

    def __init__(self, extents: Sequence[int],
                 periodic: Union[bool, Sequence[bool]] = True):
        extents = tuple(int(n) for n in extents)
        if len(extents) == 0:
            raise ValueError("Lattice needs at least one dimension")

        if isinstance(periodic, (bool, np.bool_)):
            periodic = (bool(periodic),) * len(extents)
        else:
            periodic = tuple(bool(p) for p in periodic)

        if len(periodic) != len(extents):
            raise ValueError(
                f"Got {len(periodic)} periodicity flags for "
                f"{len(extents)} dimensions"
            )

        for dim, (n, p) in enumerate(zip(extents, periodic)):
            if n < 1:
                raise ValueError(f"Extent along dimension {dim} must be positive, got {n}")
            if p and n < 2:
                # A periodic extent of one would make a link its own neighbour
                raise ValueError(
                    f"Periodic dimension {dim} needs at least 2 sites, got {n}"
                )

        self._extents = extents
        self._periodic = periodic

        logger.debug(f"Created lattice extents={extents} periodic={periodic}")

    @classmethod
    def torus(cls, shape: Sequence[int]) -> "Lattice":
        """Fully periodic lattice."""
        return cls(shape, periodic=True)

    @classmethod
    def open(cls, shape: Sequence[int]) -> "Lattice":
        """Lattice with open boundaries in every dimension."""
        return cls(shape, periodic=False)

    @property
    def dimension(self) -> int:
        return len(self._extents)

    @property
    def extents(self) -> Tuple[int, ...]:
        return self._extents

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._extents

    @property
    def periodic(self) -> Tuple[bool, ...]:
        return self._periodic

    @property
    def num_sites(self) -> int:
        return int(np.prod(self._extents))

    @property
    def num_edges(self) -> int:
        """Number of directed links implied by the topology."""
        return sum(int(self.edge_mask(mu).sum()) for mu in range(self.dimension))

    @property
    def num_plaquettes(self) -> int:
        total = 0
        for mu, nu in self.planes():
            total += int(self.plaquette_mask(mu, nu).sum())
        return total

    def planes(self) -> List[Tuple[int, int]]:
        """All ordered pairs (mu, nu) with mu < nu."""
        return list(itertools.combinations(range(self.dimension), 2))

    def wrap(self, coordinate: int, dim: int) -> int:
        """
        Map a coordinate along one dimension into [0, extent).

        Periodic dimensions wrap modulo the extent; open dimensions raise
        TopologyError for coordinates outside the lattice.
        """
        self._check_direction(dim)
        extent = self._extents[dim]
        coordinate = int(coordinate)
        if self._periodic[dim]:
            return coordinate % extent
        if coordinate < 0 or coordinate >= extent:
            raise TopologyError(
                f"Coordinate {coordinate} leaves open dimension {dim} "
                f"with extent {extent}"
            )
        return coordinate

    def normalize(self, cell: Sequence[int]) -> Cell:
        """Validate a cell and wrap its periodic coordinates."""
        cell = tuple(cell)
        if len(cell) != self.dimension:
            raise ValueError(
                f"Cell {cell} has {len(cell)} coordinates, lattice has "
                f"dimension {self.dimension}"
            )
        return tuple(self.wrap(x, dim) for dim, x in enumerate(cell))

    def contains(self, cell: Sequence[int]) -> bool:
        cell = tuple(cell)
        return len(cell) == self.dimension and all(
            0 <= x < n for x, n in zip(cell, self._extents)
        )

    def neighbor(self, cell: Sequence[int], direction: int, sign: int = 1) -> Cell:
        """
        Cell one step from `cell` along `direction`.

        Args:
            cell: Starting cell
            direction: Dimension index to step along
            sign: +1 for a forward step, -1 for a backward step

        Returns:
            The neighbouring cell

        Raises:
            TopologyError: If the step leaves an open dimension
        """
        self._check_direction(direction)
        if sign not in (1, -1):
            raise ValueError(f"sign must be +1 or -1, got {sign}")
        cell = self.normalize(cell)
        moved = list(cell)
        moved[direction] = self.wrap(cell[direction] + sign, direction)
        return tuple(moved)

    def shift(self, cell: Sequence[int], direction: int, steps: int) -> Cell:
        """Move `steps` sites along `direction` (negative steps go backwards)."""
        sign = 1 if steps >= 0 else -1
        for _ in range(abs(steps)):
            cell = self.neighbor(cell, direction, sign)
        return self.normalize(cell)

    def has_edge(self, cell: Sequence[int], direction: int) -> bool:
        """Whether the forward link from `cell` along `direction` exists."""
        self._check_direction(direction)
        if not self.contains(cell):
            return False
        return self._periodic[direction] or cell[direction] < self._extents[direction] - 1

    def loop_path(self, cell: Sequence[int], mu: int, nu: int,
                  r: int, t: int) -> Tuple[OrientedEdge, ...]:
        """
        Oriented edges of the r x t rectangle spanned by mu and nu.

        The path walks r steps along +mu, t steps along +nu, r steps
        along -mu and t steps along -nu.
        """
        self._check_plane(mu, nu)
        if r < 1 or t < 1:
            raise ValueError(f"Loop extents must be positive, got r={r}, t={t}")

        path = []
        current = self.normalize(cell)
        for direction, steps, sign in ((mu, r, 1), (nu, t, 1), (mu, r, -1), (nu, t, -1)):
            for _ in range(steps):
                if sign > 0:
                    path.append(OrientedEdge(current, direction, 1))
                    current = self.neighbor(current, direction, 1)
                else:
                    current = self.neighbor(current, direction, -1)
                    path.append(OrientedEdge(current, direction, -1))
        return tuple(path)

    def plaquette_corners(self, cell: Sequence[int], mu: int, nu: int) -> Tuple[OrientedEdge, ...]:
        """The four oriented edges of the plaquette at `cell` in order +mu, +nu, -mu, -nu."""
        return self.loop_path(cell, mu, nu, 1, 1)

    def all_cells(self) -> CellSequence:
        return CellSequence(self)

    def all_oriented_edges(self) -> EdgeSequence:
        return EdgeSequence(self)

    def site_parity(self, cell: Sequence[int]) -> int:
        """0 for even sites, 1 for odd sites."""
        return sum(self.normalize(cell)) % 2

    # Array views used by the vectorized kernels

    def coordinates(self, dim: int) -> np.ndarray:
        """Broadcast array holding the coordinate along `dim` for every site."""
        self._check_direction(dim)
        shape = [1] * self.dimension
        shape[dim] = self._extents[dim]
        coords = np.arange(self._extents[dim]).reshape(shape)
        return np.broadcast_to(coords, self._extents)

    def parity_array(self) -> np.ndarray:
        total = np.zeros(self._extents, dtype=int)
        for dim in range(self.dimension):
            total = total + self.coordinates(dim)
        return total % 2

    def edge_mask(self, direction: int) -> np.ndarray:
        """Sites whose forward link along `direction` exists."""
        self._check_direction(direction)
        if self._periodic[direction]:
            return np.ones(self._extents, dtype=bool)
        return self.coordinates(direction) < self._extents[direction] - 1

    def backward_mask(self, direction: int) -> np.ndarray:
        """Sites that have a backward neighbour along `direction`."""
        self._check_direction(direction)
        if self._periodic[direction]:
            return np.ones(self._extents, dtype=bool)
        return self.coordinates(direction) >= 1

    def loop_mask(self, mu: int, nu: int, r: int, t: int) -> np.ndarray:
        """Sites at which an r x t loop in the (mu, nu) plane fits on the lattice."""
        self._check_plane(mu, nu)
        mask = np.ones(self._extents, dtype=bool)
        for direction, steps in ((mu, r), (nu, t)):
            if not self._periodic[direction]:
                mask = mask & (self.coordinates(direction) < self._extents[direction] - steps)
        return mask

    def plaquette_mask(self, mu: int, nu: int) -> np.ndarray:
        return self.loop_mask(mu, nu, 1, 1)

    def is_checkerboard_safe(self) -> bool:
        """
        Whether the even/odd site coloring separates neighbours.

        Fails when a periodic dimension has an odd extent, because the
        wrap-around step then joins two sites of equal parity.
        """
        return all(
            n % 2 == 0 for n, p in zip(self._extents, self._periodic) if p
        )

    def _check_direction(self, direction: int):
        if not 0 <= direction < self.dimension:
            raise ValueError(
                f"Direction {direction} out of range for dimension {self.dimension}"
            )

    def _check_plane(self, mu: int, nu: int):
        self._check_direction(mu)
        self._check_direction(nu)
        if mu == nu:
            raise ValueError(f"Plane directions must differ, got mu=nu={mu}")

    def to_dict(self) -> dict:
        return {"extents": list(self._extents), "periodic": list(self._periodic)}

    def __eq__(self, other) -> bool:
        if not isinstance(other, Lattice):
            return NotImplemented
        return self._extents == other._extents and self._periodic == other._periodic

    def __hash__(self) -> int:
        return hash((self._extents, self._periodic))

    def __repr__(self) -> str:
        return f"Lattice(extents={self._extents}, periodic={self._periodic})"
