"""
Lattice gauge field: links, coupling and an attached source.

A LatticeGaugeField owns a LinkMap over a shared Lattice, the coupling beta
and a generic source slot (VACUUM by default). The lattice is never copied:
clones and rebuilt fields keep a reference to the same instance.
"""

import copy
import logging
from contextlib import contextmanager
from typing import Any, Generic, Iterator, Mapping, Optional, Sequence, Tuple, TypeVar, Union

import numpy as np

from ..core.errors import GroupManifoldViolation
from ..core.groups import GaugeGroup, get_group
from ..core.lattice import Lattice
from ..core.links import LinkMap, links_from_mapping
from ..core.numerics import NumericBackend, Precision
from ..observables import wilson
from .sources import VACUUM, FieldSnapshot

logger = logging.getLogger(__name__)

S = TypeVar("S")
T = TypeVar("T")


class LatticeGaugeField(Generic[S]):
    """
    Gauge configuration on a lattice.

    Build instances through the classmethods `identity`, `random`,
    `from_links` or `from_links_unchecked` rather than the constructor.

    Args:
        lattice: Shared lattice topology
        group: Gauge group of the links
        beta: Coupling constant
        links: Link storage
        source: Attached source (default: VACUUM)
        precision: Floating precision of the link storage
    """

    def __init__(self, lattice: Lattice, group: GaugeGroup, beta: float,
                 links: LinkMap, source: S = VACUUM,
                 precision: Precision = Precision.DOUBLE):
        if beta < 0:
            raise ValueError(f"beta must be non-negative, got {beta}")
        if links.lattice is not lattice:
            raise ValueError("Link map was built over a different lattice")
        if links.dtype != precision.complex_dtype:
            raise ValueError(
                f"Link dtype {links.dtype} does not match precision {precision.value}"
            )
        self._lattice = lattice
        self._group = group
        self._beta = float(beta)
        self._links = links
        self._source = source
        self._precision = precision
        self._borrowed = False
        self._consumed = False

    # Constructors

    @classmethod
    def identity(cls, lattice: Lattice, group: Union[str, GaugeGroup], beta: float,
                 precision: Union[str, Precision] = Precision.DOUBLE,
                 source: Any = VACUUM,
                 backend: Optional[NumericBackend] = None) -> "LatticeGaugeField":
        """Cold start: every link is the identity."""
        group = get_group(group, backend)
        precision = Precision.parse(precision)
        links = LinkMap.identity(lattice, group, precision.complex_dtype)
        field = cls(lattice, group, beta, links, source, precision)
        logger.info(f"Created cold {group.name} field on {lattice} with beta={beta}")
        return field

    @classmethod
    def random(cls, lattice: Lattice, group: Union[str, GaugeGroup], beta: float,
               rng: Union[None, int, np.random.Generator] = None,
               precision: Union[str, Precision] = Precision.DOUBLE,
               source: Any = VACUUM,
               backend: Optional[NumericBackend] = None) -> "LatticeGaugeField":
        """Hot start: independent Haar-distributed links."""
        group = get_group(group, backend)
        precision = Precision.parse(precision)
        rng = np.random.default_rng(rng)
        links = LinkMap.identity(lattice, group, precision.complex_dtype)
        shape = (lattice.dimension,) + lattice.extents
        sample = group.sample_haar(rng, shape, dtype=precision.complex_dtype)
        links.data[...] = np.where(links.valid[..., None, None], sample, links.data)
        field = cls(lattice, group, beta, links, source, precision)
        logger.info(f"Created hot {group.name} field on {lattice} with beta={beta}")
        return field

    @classmethod
    def from_links(cls, lattice: Lattice, group: Union[str, GaugeGroup], beta: float,
                   links: Mapping, precision: Union[str, Precision] = Precision.DOUBLE,
                   source: Any = VACUUM,
                   backend: Optional[NumericBackend] = None) -> "LatticeGaugeField":
        """
        Build a field from a mapping (cell, direction) -> matrix.

        Raises:
            MissingLink: If an edge implied by the lattice has no entry
            GroupManifoldViolation: If a value is off the group manifold
        """
        field = cls.from_links_unchecked(lattice, group, beta, links, precision,
                                         source, backend)
        field._links.require_complete()
        field.check_manifold()
        return field

    @classmethod
    def from_links_unchecked(cls, lattice: Lattice, group: Union[str, GaugeGroup],
                             beta: float, links: Mapping,
                             precision: Union[str, Precision] = Precision.DOUBLE,
                             source: Any = VACUUM,
                             backend: Optional[NumericBackend] = None) -> "LatticeGaugeField":
        """
        Build a field without checking completeness.

        Absent edges surface later as MissingLink on lookup.
        """
        group = get_group(group, backend)
        precision = Precision.parse(precision)
        if isinstance(links, LinkMap):
            link_map = LinkMap(lattice, group, links.data.astype(precision.complex_dtype),
                               links.present.copy())
        else:
            link_map = links_from_mapping(lattice, group, links, precision.complex_dtype)
        return cls(lattice, group, beta, link_map, source, precision)

    @classmethod
    def from_config(cls, field_config, lattice: Lattice) -> "LatticeGaugeField":
        """Build a vacuum field from a FieldConfig."""
        if field_config.start == "hot":
            return cls.random(lattice, field_config.group, field_config.beta,
                              rng=field_config.seed, precision=field_config.precision)
        return cls.identity(lattice, field_config.group, field_config.beta,
                            precision=field_config.precision)

    # Accessors

    def _check_alive(self):
        if self._consumed:
            raise RuntimeError("Field was consumed by with_source() or into_parts()")

    @property
    def lattice(self) -> Lattice:
        return self._lattice

    @property
    def group(self) -> GaugeGroup:
        return self._group

    @property
    def beta(self) -> float:
        return self._beta

    @property
    def precision(self) -> Precision:
        return self._precision

    @property
    def tolerance(self) -> float:
        return self._precision.tolerance

    @property
    def links(self) -> LinkMap:
        self._check_alive()
        return self._links

    @property
    def link_array(self) -> np.ndarray:
        """Full (D, *extents, n, n) link array; raises MissingLink if incomplete."""
        self._check_alive()
        self._links.require_complete()
        return self._links.data

    @property
    def num_links(self) -> int:
        return len(self.links)

    def link(self, cell: Sequence[int], direction: int) -> np.ndarray:
        """Copy of U_direction(cell); raises MissingLink if absent."""
        return self.links[(self._lattice.normalize(cell), direction)]

    def set_link(self, cell: Sequence[int], direction: int, value: np.ndarray,
                 check: bool = True):
        """
        Overwrite one link.

        Raises:
            GroupManifoldViolation: If `check` is set and the value is off
                the manifold
        """
        value = np.asarray(value, dtype=self._precision.complex_dtype).reshape(
            self._group.n, self._group.n)
        if check:
            deviation = float(self._group.deviation(value))
            if deviation > self.tolerance:
                raise GroupManifoldViolation(deviation, self.tolerance)
        self.links[(self._lattice.normalize(cell), direction)] = value

    # Source slot

    @property
    def source(self) -> S:
        self._check_alive()
        return self._source

    @property
    def has_source(self) -> bool:
        return self._source is not VACUUM

    def replace_source(self, new: S) -> S:
        """Swap in a new source of the same kind and return the old one."""
        self._check_alive()
        if self._borrowed:
            raise RuntimeError("Source is currently borrowed")
        old, self._source = self._source, new
        return old

    @contextmanager
    def borrow_source(self) -> Iterator[S]:
        """Exclusive mutable access to the source for the duration of the block."""
        self._check_alive()
        if self._borrowed:
            raise RuntimeError("Source is already borrowed")
        self._borrowed = True
        try:
            yield self._source
        finally:
            self._borrowed = False

    def with_source(self, new: T) -> "LatticeGaugeField[T]":
        """
        Rebuild the field around a new source, possibly of another type.

        The link storage moves into the new field untouched and the lattice
        reference is shared. This field is consumed and unusable afterwards.
        """
        self._check_alive()
        if self._borrowed:
            raise RuntimeError("Source is currently borrowed")
        rebuilt = LatticeGaugeField(self._lattice, self._group, self._beta, self._links,
                                    new, self._precision)
        self._consumed = True
        self._links = None
        self._source = None
        logger.debug(f"Rebuilt field with source type {type(new).__name__}")
        return rebuilt

    def into_parts(self) -> Tuple[Lattice, LinkMap, float, S]:
        """Consume the field and return (lattice, links, beta, source)."""
        self._check_alive()
        parts = (self._lattice, self._links, self._beta, self._source)
        self._consumed = True
        self._links = None
        self._source = None
        return parts

    # Copies and snapshots

    def clone(self) -> "LatticeGaugeField[S]":
        """Independent copy of links and source over the same lattice."""
        self._check_alive()
        return LatticeGaugeField(self._lattice, self._group, self._beta, self._links.copy(),
                                 copy.deepcopy(self._source), self._precision)

    def snapshot(self, sweep: int = 0) -> FieldSnapshot:
        self._check_alive()
        return FieldSnapshot.capture(self, sweep)

    def restore(self, snapshot: FieldSnapshot):
        """
        Overwrite links, coupling and source in place from a snapshot.

        Raises:
            ValueError: If the snapshot was taken on a different lattice or
                group
        """
        self._check_alive()
        if snapshot.lattice is not None and snapshot.lattice != self._lattice:
            raise ValueError(f"Snapshot was taken on {snapshot.lattice}, not {self._lattice}")
        if snapshot.group is not None and snapshot.group != self._group:
            raise ValueError(
                f"Snapshot holds {snapshot.group.name} links, field is {self._group.name}"
            )
        if snapshot.links.shape != self._links.data.shape:
            raise ValueError("Snapshot was taken on a different lattice or group")
        valid = self._links.valid
        self._links.data[...] = snapshot.links
        self._links.data[~valid] = self._group.identity(dtype=self._links.dtype)
        self._links.present[...] = snapshot.present & valid
        self._beta = float(snapshot.beta)
        self._source = copy.deepcopy(snapshot.source)

    # Manifold maintenance

    def manifold_deviation(self) -> float:
        """Largest manifold deviation over the stored links."""
        links = self.links
        deviation = self._group.deviation(links.data)[links.present]
        return float(np.max(deviation)) if deviation.size else 0.0

    def check_manifold(self):
        deviation = self.manifold_deviation()
        if deviation > self.tolerance:
            raise GroupManifoldViolation(deviation, self.tolerance)

    def reproject(self) -> int:
        """
        Project every link back onto the group manifold.

        Links that cannot be recovered are reset to the identity and
        reported with a warning.

        Returns:
            Number of links reset to the identity
        """
        links = self.links
        projected, ok = self._group.reproject(links.data, self.tolerance)
        links.data[...] = projected
        failed = int(np.sum(~ok & links.present))
        if failed:
            logger.warning(
                f"Reprojection failed for {failed} link(s) beyond tolerance "
                f"{self.tolerance:.1e}; reset to identity"
            )
        return failed

    # Gauge transformations

    def gauge_transform(self, g: np.ndarray):
        """
        Apply U_mu(x) -> g(x) U_mu(x) g(x + mu)^dagger in place.

        Args:
            g: Site matrices of shape (*extents, n, n)
        """
        links = self.link_array
        group = self._group
        for mu in range(self._lattice.dimension):
            forward = np.roll(g, -1, axis=mu)
            transformed = group.multiply(group.multiply(g, links[mu]), group.adjoint(forward))
            links[mu] = np.where(self._links.valid[mu][..., None, None], transformed, links[mu])

    def random_gauge_transform(self, rng: Union[None, int, np.random.Generator] = None) -> np.ndarray:
        """Apply a Haar-random gauge transformation and return the site matrices."""
        rng = np.random.default_rng(rng)
        g = self._group.sample_haar(rng, self._lattice.extents, dtype=self._precision.complex_dtype)
        self.gauge_transform(g)
        return g

    # Observables

    def plaquette(self, cell: Sequence[int], mu: int, nu: int) -> np.ndarray:
        return wilson.plaquette(self, cell, mu, nu)

    def average_plaquette(self):
        return wilson.average_plaquette(self)

    def wilson_loop(self, cell: Sequence[int], r: int, t: int,
                    mu: int = 0, nu: int = 1) -> np.ndarray:
        return wilson.wilson_loop(self, cell, r, t, mu, nu)

    def average_wilson_loop(self, r: int, t: int, mu: Optional[int] = None,
                            nu: Optional[int] = None):
        return wilson.average_wilson_loop(self, r, t, mu, nu)

    def polyakov_loop(self, spatial_cell: Sequence[int], temporal_dir: int = 0) -> np.ndarray:
        return wilson.polyakov_loop(self, spatial_cell, temporal_dir)

    def average_polyakov_loop(self, temporal_dir: int = 0) -> complex:
        return wilson.average_polyakov_loop(self, temporal_dir)

    def creutz_ratio(self, r: int, t: int) -> float:
        return wilson.creutz_ratio(self, r, t)

    def wilson_action(self) -> float:
        return wilson.wilson_action(self)

    def __repr__(self) -> str:
        if self._consumed:
            return "LatticeGaugeField(<consumed>)"
        return (f"LatticeGaugeField(group={self._group.name}, lattice={self._lattice}, "
                f"beta={self._beta}, precision={self._precision.value}, "
                f"source={self._source!r})")
