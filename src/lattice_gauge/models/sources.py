"""
Source attachment for gauge fields.

A field carries a generic source slot. The vacuum case uses the VACUUM
singleton, which holds no data. Sources that take part in the dynamics
implement the CoupledSource protocol; the updater calls their `evolve`
hook once per sweep.

FieldHistory keeps immutable snapshots of past configurations so a run can
be rewound, corrected and replayed forward.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

import numpy as np

logger = logging.getLogger(__name__)


class Vacuum:
    """Marker for a field without an attached source."""

    __slots__ = ()
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (Vacuum, ())

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "VACUUM"


VACUUM = Vacuum()


@runtime_checkable
class CoupledSource(Protocol):
    """A source evolved together with the gauge links."""

    def evolve(self, field, rng: np.random.Generator) -> None:
        """Update the source in place given the current links."""
        ...


def is_vacuum(source: Any) -> bool:
    return source is VACUUM


@dataclass(frozen=True)
class FieldSnapshot:
    """
    Immutable copy of a field's links, coupling and source.

    The lattice and group are recorded so the snapshot can only be restored
    into a compatible field. `updater_state` holds the updater's sweep count
    and RNG state when the snapshot was recorded together with an updater.
    """
    links: np.ndarray
    present: np.ndarray
    beta: float
    source: Any
    sweep: int = 0
    lattice: Any = None
    group: Any = None
    updater_state: Optional[Dict[str, Any]] = None

    @classmethod
    def capture(cls, field, sweep: int = 0,
                updater_state: Optional[Dict[str, Any]] = None) -> "FieldSnapshot":
        links = field.links.data.copy()
        present = field.links.present.copy()
        links.setflags(write=False)
        present.setflags(write=False)
        return cls(links=links, present=present, beta=field.beta,
                   source=copy.deepcopy(field.source), sweep=sweep,
                   lattice=field.lattice, group=field.group,
                   updater_state=copy.deepcopy(updater_state))


class FieldHistory:
    """
    Ordered sequence of field snapshots.

    Rewinding reslices the sequence; replaying restores a snapshot into a
    live field and runs the updater forward again, recording as it goes.
    """

    def __init__(self, max_length: Optional[int] = None):
        if max_length is not None and max_length < 1:
            raise ValueError(f"max_length must be positive, got {max_length}")
        self.max_length = max_length
        self._snapshots: List[FieldSnapshot] = []

    def record(self, field, sweep: Optional[int] = None, updater=None) -> FieldSnapshot:
        """
        Append a snapshot of `field`.

        Args:
            field: Field to capture
            sweep: Sweep label (default: the updater's sweep count, else one
                past the previous snapshot)
            updater: Updater whose state is stored alongside, so a replay
                from this snapshot resumes its sweep count and RNG stream
        """
        updater_state = None
        if updater is not None:
            updater_state = updater.get_state()
            if sweep is None:
                sweep = updater.sweep_count
        if sweep is None:
            sweep = self._snapshots[-1].sweep + 1 if self._snapshots else 0
        snapshot = FieldSnapshot.capture(field, sweep, updater_state)
        self._snapshots.append(snapshot)
        if self.max_length is not None and len(self._snapshots) > self.max_length:
            self._snapshots.pop(0)
        return snapshot

    def __len__(self) -> int:
        return len(self._snapshots)

    def __getitem__(self, index):
        return self._snapshots[index]

    def __iter__(self):
        return iter(self._snapshots)

    @property
    def latest(self) -> FieldSnapshot:
        if not self._snapshots:
            raise IndexError("History is empty")
        return self._snapshots[-1]

    def truncate(self, length: int):
        """Keep only the first `length` snapshots."""
        if length < 0:
            raise ValueError(f"length must be non-negative, got {length}")
        del self._snapshots[length:]

    def rewind(self, index: int) -> FieldSnapshot:
        """Drop every snapshot after `index` and return the snapshot at `index`."""
        snapshot = self._snapshots[index]
        if index < 0:
            index += len(self._snapshots)
        self.truncate(index + 1)
        logger.debug(f"Rewound history to sweep {snapshot.sweep}")
        return snapshot

    def replay(self, field, index: int, updater, n_sweeps: int,
               correction: Optional[Callable[[Any], None]] = None) -> FieldSnapshot:
        """
        Rewind to `index`, restore it into `field`, apply `correction` and
        run `n_sweeps` updater sweeps, recording each resulting state.

        The updater is rewound too: to the stored updater state when the
        snapshot has one, otherwise only its sweep count is reset to the
        snapshot's sweep.

        Args:
            field: Live field to overwrite; must be the updater's field
            index: Snapshot to restart from
            updater: Updater bound to `field`
            n_sweeps: Number of sweeps to recompute
            correction: Optional callable applied to the restored field
                before replaying (e.g. editing links or swapping the source)

        Returns:
            The last recorded snapshot
        """
        if updater.field is not field:
            raise ValueError("Updater is not bound to the field being replayed")
        snapshot = self.rewind(index)
        field.restore(snapshot)
        if snapshot.updater_state is not None:
            updater.set_state(copy.deepcopy(snapshot.updater_state))
        else:
            updater.sweep_count = snapshot.sweep
        if correction is not None:
            correction(field)
            # The corrected state replaces the rewound one
            self._snapshots[-1] = FieldSnapshot.capture(field, snapshot.sweep,
                                                        snapshot.updater_state)

        for _ in range(n_sweeps):
            updater.sweep()
            self.record(field, updater.sweep_count, updater)
        logger.info(f"Replayed {n_sweeps} sweeps from sweep {snapshot.sweep}")
        return self.latest
