"""
Storage of link variables.

Links live in one contiguous array of shape (D, *extents, n, n): entry
[mu, x] holds U_mu(x), the group element on the edge from x to x + e_mu.
Slots for edges that the topology does not imply (the last site along an
open dimension) hold the identity and are never exposed as keys.

LinkMap wraps that array as a read-only Mapping from Edge to matrix so code
that walks individual edges and the vectorized kernels share one store.
"""

import logging
from collections.abc import Mapping
from typing import Iterator, List, Optional

import numpy as np

from .errors import MissingLink, TopologyError
from .groups import GaugeGroup
from .lattice import Edge, Lattice

logger = logging.getLogger(__name__)


class LinkMap(Mapping):
    """
    Mapping from Edge(cell, direction) to the (n, n) link matrix.

    Args:
        lattice: Lattice the links live on
        group: Gauge group of the link values
        data: Array of shape (D, *extents, n, n)
        present: Boolean array of shape (D, *extents) marking stored links
            (default: every edge implied by the lattice)
    """

    def __init__(self, lattice: Lattice, group: GaugeGroup, data: np.ndarray,
                 present: Optional[np.ndarray] = None):
        expected = (lattice.dimension,) + lattice.extents + (group.n, group.n)
        if data.shape != expected:
            raise ValueError(f"Link array has shape {data.shape}, expected {expected}")

        self.lattice = lattice
        self.group = group
        self._data = data
        self._valid = valid_edge_mask(lattice)
        if present is None:
            present = self._valid.copy()
        else:
            present = np.asarray(present, dtype=bool) & self._valid
        self._present = present

    @classmethod
    def identity(cls, lattice: Lattice, group: GaugeGroup, dtype) -> "LinkMap":
        shape = (lattice.dimension,) + lattice.extents
        return cls(lattice, group, group.identity(shape, dtype=dtype))

    @property
    def data(self) -> np.ndarray:
        """Raw link array; only valid where `present` is set."""
        return self._data

    @property
    def present(self) -> np.ndarray:
        return self._present

    @property
    def valid(self) -> np.ndarray:
        return self._valid

    @property
    def dtype(self):
        return self._data.dtype

    def _index(self, edge) -> tuple:
        cell, direction = edge
        if not self.lattice.has_edge(cell, direction):
            raise TopologyError(f"Edge {tuple(edge)} is not part of {self.lattice}")
        return (int(direction),) + tuple(int(x) for x in cell)

    def __getitem__(self, edge) -> np.ndarray:
        index = self._index(edge)
        if not self._present[index]:
            raise MissingLink(Edge(tuple(edge[0]), edge[1]))
        return self._data[index].copy()

    def __setitem__(self, edge, value):
        index = self._index(edge)
        self._data[index] = value
        self._present[index] = True

    def __contains__(self, edge) -> bool:
        try:
            index = self._index(edge)
        except (TopologyError, ValueError, TypeError):
            return False
        return bool(self._present[index])

    def __iter__(self) -> Iterator[Edge]:
        for index in zip(*np.nonzero(self._present)):
            yield Edge(tuple(int(x) for x in index[1:]), int(index[0]))

    def __len__(self) -> int:
        return int(self._present.sum())

    def is_complete(self) -> bool:
        return bool(np.array_equal(self._present, self._valid))

    def missing_edges(self) -> List[Edge]:
        missing = self._valid & ~self._present
        return [Edge(tuple(int(x) for x in index[1:]), int(index[0]))
                for index in zip(*np.nonzero(missing))]

    def extra_edges(self) -> List[Edge]:
        """Slots marked present that the lattice does not have."""
        extra = self._present & ~self._valid
        return [Edge(tuple(int(x) for x in index[1:]), int(index[0]))
                for index in zip(*np.nonzero(extra))]

    def require_complete(self):
        """
        Raise MissingLink unless exactly the lattice's edges carry links.

        Reports the first edge without a stored link, or else the first
        stored link on an edge outside the lattice.
        """
        if self.is_complete():
            return
        missing = self.missing_edges()
        if missing:
            raise MissingLink(
                missing[0],
                f"{len(missing)} link(s) missing, first at {missing[0]}"
            )
        extra = self.extra_edges()
        raise MissingLink(
            extra[0],
            f"{len(extra)} link(s) stored on edges outside the lattice, first at {extra[0]}"
        )

    def copy(self) -> "LinkMap":
        return LinkMap(self.lattice, self.group, self._data.copy(), self._present.copy())

    def __repr__(self) -> str:
        return (f"LinkMap(group={self.group.name}, links={len(self)}/"
                f"{int(self._valid.sum())}, dtype={self._data.dtype})")


def valid_edge_mask(lattice: Lattice) -> np.ndarray:
    """Boolean array (D, *extents) of the edges implied by the topology."""
    return np.stack([lattice.edge_mask(mu) for mu in range(lattice.dimension)])


def links_from_mapping(lattice: Lattice, group: GaugeGroup, values: Mapping,
                       dtype) -> LinkMap:
    """Build a LinkMap from any mapping of (cell, direction) to matrices."""
    links = LinkMap.identity(lattice, group, dtype)
    links.present[...] = False
    for edge, value in values.items():
        value = np.asarray(value, dtype=dtype)
        if value.shape != (group.n, group.n):
            value = value.reshape(group.n, group.n)
        links[edge] = value
    return links


def shift(array: np.ndarray, direction: int, steps: int = 1) -> np.ndarray:
    """
    Site-array view shifted so that result[x] = array[x + steps * e_direction].

    The leading axes of `array` are the lattice axes; wrapped values at open
    boundaries are garbage and must be masked by the caller.
    """
    return np.roll(array, -steps, axis=direction)


def line_product(group: GaugeGroup, link_array: np.ndarray, direction: int,
                 length: int) -> np.ndarray:
    """Ordered product U_d(x) U_d(x + d) ... U_d(x + (length - 1) d) at every site."""
    links = link_array[direction]
    result = links
    for step in range(1, length):
        result = group.multiply(result, shift(links, direction, step))
    return result
