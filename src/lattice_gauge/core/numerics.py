"""
Floating precision selection and the injected numeric capability.

All transcendental evaluation in the core (exp, log, sqrt, sin, cos, atan2)
goes through a NumericBackend instance. The default backend is numpy; any
object exposing the same callables can be injected instead.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

import numpy as np


class Precision(Enum):
    """Floating precision used for link storage and arithmetic."""

    SINGLE = "single"
    DOUBLE = "double"
    EXTENDED = "extended"

    @classmethod
    def parse(cls, value: Union[str, "Precision"]) -> "Precision":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown precision '{value}', expected one of "
                f"{[p.value for p in cls]}"
            ) from None

    @property
    def real_dtype(self) -> np.dtype:
        return {
            Precision.SINGLE: np.dtype(np.float32),
            Precision.DOUBLE: np.dtype(np.float64),
            Precision.EXTENDED: np.dtype(np.longdouble),
        }[self]

    @property
    def complex_dtype(self) -> np.dtype:
        return {
            Precision.SINGLE: np.dtype(np.complex64),
            Precision.DOUBLE: np.dtype(np.complex128),
            Precision.EXTENDED: np.dtype(np.clongdouble),
        }[self]

    @property
    def epsilon(self) -> float:
        """Machine epsilon of the real type."""
        return float(np.finfo(self.real_dtype).eps)

    @property
    def tolerance(self) -> float:
        """
        Working tolerance for manifold checks and exact comparisons.

        Chosen as a thousand machine epsilons: about 1e-4 in single,
        2e-13 in double and 1e-16 in x87 extended precision.
        """
        return 1e3 * self.epsilon


@dataclass(frozen=True)
class NumericBackend:
    """Uniform numeric capability consumed by the core."""

    name: str
    exp: Callable
    log: Callable
    sqrt: Callable
    sin: Callable
    cos: Callable
    arctan2: Callable
    abs: Callable


NUMPY_BACKEND = NumericBackend(
    name="numpy",
    exp=np.exp,
    log=np.log,
    sqrt=np.sqrt,
    sin=np.sin,
    cos=np.cos,
    arctan2=np.arctan2,
    abs=np.abs,
)


def resolve_backend(backend: Optional[NumericBackend]) -> NumericBackend:
    """Return the given backend, or the numpy backend when none is injected."""
    return NUMPY_BACKEND if backend is None else backend
