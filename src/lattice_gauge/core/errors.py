"""Error taxonomy for lattice gauge computations."""


class LatticeGaugeError(Exception):
    """Base class for all errors raised by the lattice gauge core."""


class TopologyError(LatticeGaugeError, ValueError):
    """
    A neighbor or path lookup crossed a non-periodic boundary.

    Fatal to the query that raised it. Callers can recover by choosing a
    different boundary policy (e.g. a periodic dimension).
    """


class MissingLink(LatticeGaugeError, LookupError):
    """
    A link expected by the lattice is absent from the link map.

    This indicates corrupted state and never happens for fields built by the
    validated constructors.
    """

    def __init__(self, edge, message: str = None):
        self.edge = edge
        super().__init__(message or f"No link variable stored for edge {edge}")


class GroupManifoldViolation(LatticeGaugeError, ArithmeticError):
    """Reprojection could not bring an element back onto the group manifold."""

    def __init__(self, deviation: float, tolerance: float, message: str = None):
        self.deviation = deviation
        self.tolerance = tolerance
        super().__init__(
            message or f"Manifold deviation {deviation:.3e} exceeds tolerance {tolerance:.3e}"
        )


class NumericInstability(LatticeGaugeError, ArithmeticError):
    """Non-finite value in an action difference or acceptance probability."""


class ConvergenceFailure(LatticeGaugeError, RuntimeError):
    """Gradient flow could not produce or bracket the requested scale."""
