"""
Gauge groups U(1), SU(2) and SU(3).

Every operation acts on batches: an element is stored as an (n, n) complex
matrix and a batch as an array of shape (..., n, n). U(1) uses n = 1 so the
same kernels serve all three groups.

The algebra convention is anti-Hermitian: exp(X) maps a (traceless)
anti-Hermitian matrix X to a group element.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple, Union

import numpy as np

from .numerics import NumericBackend, Precision, resolve_backend

logger = logging.getLogger(__name__)


class GaugeGroup(ABC):
    """
    Abstract compact matrix group.

    Subclasses supply the representation size, the reprojection onto the
    manifold and the exponential map; the rest is shared matrix algebra.
    """

    name: str = ""
    n: int = 0
    special: bool = True

    def __init__(self, backend: Optional[NumericBackend] = None):
        self.backend = resolve_backend(backend)

    # Basic algebra

    def identity(self, shape: Tuple[int, ...] = (),
                 dtype=np.complex128) -> np.ndarray:
        eye = np.eye(self.n, dtype=dtype)
        return np.broadcast_to(eye, tuple(shape) + (self.n, self.n)).copy()

    def multiply(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        return np.matmul(a, b)

    def adjoint(self, a: np.ndarray) -> np.ndarray:
        return np.conj(np.swapaxes(a, -1, -2))

    def inverse(self, a: np.ndarray) -> np.ndarray:
        """Group inverse; equal to the adjoint on the manifold."""
        return self.adjoint(a)

    def trace(self, a: np.ndarray) -> np.ndarray:
        return np.trace(a, axis1=-2, axis2=-1)

    def re_trace(self, a: np.ndarray) -> np.ndarray:
        return np.real(self.trace(a))

    def determinant(self, a: np.ndarray) -> np.ndarray:
        """Determinant by explicit cofactor expansion (works in every precision)."""
        if self.n == 1:
            return a[..., 0, 0]
        if self.n == 2:
            return a[..., 0, 0] * a[..., 1, 1] - a[..., 0, 1] * a[..., 1, 0]
        return (
            a[..., 0, 0] * (a[..., 1, 1] * a[..., 2, 2] - a[..., 1, 2] * a[..., 2, 1])
            - a[..., 0, 1] * (a[..., 1, 0] * a[..., 2, 2] - a[..., 1, 2] * a[..., 2, 0])
            + a[..., 0, 2] * (a[..., 1, 0] * a[..., 2, 1] - a[..., 1, 1] * a[..., 2, 0])
        )

    def deviation(self, a: np.ndarray) -> np.ndarray:
        """
        Manifold deviation ||a^dagger a - 1||_F (+ |det a - 1| for SU(N)).

        Zero exactly on the manifold; non-finite entries give inf.
        """
        a = np.asarray(a)
        gram = np.matmul(self.adjoint(a), a) - np.eye(self.n, dtype=a.dtype)
        dev = self.backend.sqrt(np.sum(np.abs(gram) ** 2, axis=(-2, -1)))
        if self.special:
            dev = dev + np.abs(self.determinant(a) - 1)
        return np.where(np.isfinite(dev), dev, np.inf)

    # Manifold projection

    @abstractmethod
    def _project(self, a: np.ndarray) -> np.ndarray:
        """Map arbitrary matrices to nearby group elements."""
        pass

    def reproject(self, a: np.ndarray,
                  tolerance: Optional[float] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        Restore the manifold constraint after floating-point drift.

        Args:
            a: Batch of approximately group-valued matrices
            tolerance: Deviation accepted after projection (default: the
                tolerance of the array's precision)

        Returns:
            (projected, ok) where `ok` flags the elements that could be
            brought within tolerance. Failed elements are replaced by the
            identity; the caller decides how to report them.
        """
        a = np.asarray(a)
        if tolerance is None:
            tolerance = precision_of(a.dtype).tolerance

        with np.errstate(all="ignore"):
            projected = self._project(a)
            ok = self.deviation(projected) <= tolerance

        if not np.all(ok):
            projected = np.where(ok[..., None, None], projected,
                                 self.identity(ok.shape, dtype=projected.dtype))
        return projected, ok

    # Random elements and the exponential map

    def _complex_gaussian(self, rng: np.random.Generator, shape, dtype) -> np.ndarray:
        real = rng.standard_normal(shape)
        imag = rng.standard_normal(shape)
        return (real + 1j * imag).astype(dtype)

    def sample_haar(self, rng: np.random.Generator, shape: Tuple[int, ...] = (),
                    dtype=np.complex128) -> np.ndarray:
        """
        Haar-distributed elements.

        Projecting a complex Gaussian (Ginibre) matrix onto the group gives a
        distribution invariant under group multiplication.
        """
        shape = tuple(shape) + (self.n, self.n)
        while True:
            projected, ok = self.reproject(self._complex_gaussian(rng, shape, dtype))
            if np.all(ok):
                return projected
            # Degenerate draws have probability zero; redraw rather than bias
            logger.debug("Redrawing degenerate Haar sample")

    def project_algebra(self, a: np.ndarray) -> np.ndarray:
        """Traceless anti-Hermitian part of a batch of matrices."""
        a = np.asarray(a)
        anti = (a - self.adjoint(a)) / 2
        if self.special:
            tr = self.trace(anti) / self.n
            anti = anti - tr[..., None, None] * np.eye(self.n, dtype=a.dtype)
        return anti

    def random_algebra(self, rng: np.random.Generator, shape: Tuple[int, ...] = (),
                       scale: float = 1.0, dtype=np.complex128) -> np.ndarray:
        """Random algebra elements with a distribution symmetric under X -> -X."""
        shape = tuple(shape) + (self.n, self.n)
        return scale * self.project_algebra(self._complex_gaussian(rng, shape, dtype))

    @abstractmethod
    def exp(self, x: np.ndarray) -> np.ndarray:
        """Exponential map from the algebra to the group."""
        pass

    def __eq__(self, other) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(self.name)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class U1(GaugeGroup):
    """Compact U(1): unit-modulus complex numbers."""

    name = "U1"
    n = 1
    special = False

    def _project(self, a):
        z = a[..., 0, 0]
        return (z / np.abs(z))[..., None, None]

    def exp(self, x):
        theta = np.imag(np.asarray(x)[..., 0, 0])
        z = self.backend.cos(theta) + 1j * self.backend.sin(theta)
        return z.astype(np.asarray(x).dtype)[..., None, None]

    def angle(self, a: np.ndarray) -> np.ndarray:
        """Phase angle in (-pi, pi]."""
        z = np.asarray(a)[..., 0, 0]
        return self.backend.arctan2(np.imag(z), np.real(z))

    def from_angle(self, theta, dtype=np.complex128) -> np.ndarray:
        theta = np.asarray(theta)
        z = self.backend.cos(theta) + 1j * self.backend.sin(theta)
        return z.astype(dtype)[..., None, None]


class SU2(GaugeGroup):
    """SU(2) in the fundamental 2x2 representation."""

    name = "SU2"
    n = 2

    def _project(self, a):
        # Nearest matrix of the form [[alpha, beta], [-conj(beta), conj(alpha)]]
        alpha = (a[..., 0, 0] + np.conj(a[..., 1, 1])) / 2
        beta = (a[..., 0, 1] - np.conj(a[..., 1, 0])) / 2
        norm = self.backend.sqrt(np.abs(alpha) ** 2 + np.abs(beta) ** 2)
        alpha = alpha / norm
        beta = beta / norm
        out = np.empty(a.shape, dtype=a.dtype)
        out[..., 0, 0] = alpha
        out[..., 0, 1] = beta
        out[..., 1, 0] = -np.conj(beta)
        out[..., 1, 1] = np.conj(alpha)
        return out

    def exp(self, x):
        """
        Closed form exp(X) = cos(theta) 1 + sin(theta)/theta X for X = i theta n.sigma.
        """
        x = np.asarray(x)
        theta = self.backend.sqrt(np.sum(np.abs(x) ** 2, axis=(-2, -1)) / 2)
        safe = np.where(theta > 0, theta, 1)
        sinc = np.where(theta > 1e-8, self.backend.sin(safe) / safe, 1 - theta ** 2 / 6)
        cos = self.backend.cos(theta)
        eye = np.eye(2, dtype=x.dtype)
        return cos[..., None, None] * eye + sinc[..., None, None] * x


class SU3(GaugeGroup):
    """SU(3) in the fundamental 3x3 representation."""

    name = "SU3"
    n = 3

    def _project(self, a):
        # Gram-Schmidt on the first two rows; the third row completes the
        # matrix to unit determinant
        u = a[..., 0, :]
        v = a[..., 1, :]
        u = u / self.backend.sqrt(np.sum(np.abs(u) ** 2, axis=-1))[..., None]
        v = v - np.sum(np.conj(u) * v, axis=-1)[..., None] * u
        v = v / self.backend.sqrt(np.sum(np.abs(v) ** 2, axis=-1))[..., None]
        w = np.conj(_cross(u, v))
        return np.stack([u, v, w], axis=-2)

    @staticmethod
    def taylor_order(precision: Precision) -> int:
        """
        Smallest order whose truncation error 0.5^(k+1) / (k+1)! on the
        scaled argument (norm <= 0.5) falls below the precision's epsilon.
        """
        eps = precision.epsilon
        order, remainder = 1, 0.5 ** 2 / 2
        while remainder >= eps:
            order += 1
            remainder *= 0.5 / (order + 1)
        return order

    def exp(self, x):
        """Taylor series with scaling and squaring, truncated for the dtype of `x`."""
        x = np.asarray(x)
        norm = float(np.max(self.backend.sqrt(np.sum(np.abs(x) ** 2, axis=(-2, -1)))))
        squarings = max(0, int(np.ceil(np.log2(norm / 0.5)))) if norm > 0.5 else 0
        y = x / (2 ** squarings)

        eye = self.identity(x.shape[:-2], dtype=x.dtype)
        result = eye.copy()
        term = eye
        for k in range(1, self.taylor_order(precision_of(x.dtype)) + 1):
            term = np.matmul(term, y) / k
            result = result + term
        for _ in range(squarings):
            result = np.matmul(result, result)
        return result


def _cross(u: np.ndarray, v: np.ndarray) -> np.ndarray:
    return np.stack([
        u[..., 1] * v[..., 2] - u[..., 2] * v[..., 1],
        u[..., 2] * v[..., 0] - u[..., 0] * v[..., 2],
        u[..., 0] * v[..., 1] - u[..., 1] * v[..., 0],
    ], axis=-1)


GROUPS = {"U1": U1, "SU2": SU2, "SU3": SU3}


def get_group(name: Union[str, GaugeGroup],
              backend: Optional[NumericBackend] = None) -> GaugeGroup:
    """Look up a gauge group by name ('U1', 'SU2', 'SU3'; case-insensitive)."""
    if isinstance(name, GaugeGroup):
        return name
    key = str(name).upper().replace("(", "").replace(")", "")
    if key not in GROUPS:
        raise ValueError(f"Unknown gauge group '{name}', expected one of {list(GROUPS)}")
    return GROUPS[key](backend=backend)


def precision_of(dtype) -> Precision:
    """Precision matching a complex or real dtype."""
    dtype = np.dtype(dtype)
    for precision in Precision:
        if dtype in (precision.complex_dtype, precision.real_dtype):
            return precision
    raise ValueError(f"Unsupported dtype {dtype}")
