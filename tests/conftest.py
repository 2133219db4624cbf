"""
Test configuration and fixtures for the lattice gauge project.

Provides shared lattices, fields and tolerance settings, and registers the
custom markers used across the suite.
"""

import shutil
import sys
import tempfile
from pathlib import Path

import matplotlib
import numpy as np
import pytest

matplotlib.use("Agg")

# Set random seed for reproducibility
np.random.seed(42)

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from lattice_gauge.core.lattice import Lattice  # noqa: E402
from lattice_gauge.models.gauge_field import LatticeGaugeField  # noqa: E402


@pytest.fixture(scope="session")
def test_seed():
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def rng(test_seed):
    return np.random.default_rng(test_seed)


@pytest.fixture(scope="session")
def temp_dir():
    """Temporary directory for test outputs."""
    temp_path = tempfile.mkdtemp(prefix="lattice_gauge_test_")
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def torus_4x4():
    return Lattice.torus([4, 4])


@pytest.fixture
def torus_4d():
    return Lattice.torus([4, 4, 4, 4])


@pytest.fixture
def open_3x4():
    return Lattice.open([3, 4])


@pytest.fixture(params=["U1", "SU2", "SU3"])
def group_name(request):
    return request.param


@pytest.fixture
def hot_field(torus_4x4, group_name, test_seed):
    """Haar-random 4x4 field for every gauge group."""
    return LatticeGaugeField.random(torus_4x4, group_name, beta=2.0, rng=test_seed)


@pytest.fixture
def tolerance_config():
    """Standard tolerance configuration for numerical tests."""
    return {
        'rtol': 1e-10,
        'atol': 1e-12,
        'statistical_atol': 1e-3,
    }


def uniform_flux_u1(lattice: Lattice, k: int = 1, beta: float = 1.0) -> LatticeGaugeField:
    """
    2D U(1) field on an L x L torus with the same plaquette angle
    phi = 2 pi k / L^2 everywhere.

    U_1(x, y) = exp(i phi x); U_0(x, y) = 1 except on the last column,
    where U_0(L-1, y) = exp(-i phi L y) closes the flux around the torus.
    """
    size = lattice.extents[0]
    phi = 2 * np.pi * k / size ** 2
    links = {}
    for x, y in lattice.all_cells():
        links[((x, y), 1)] = np.exp(1j * phi * x)
        links[((x, y), 0)] = np.exp(-1j * phi * size * y) if x == size - 1 else 1.0
    return LatticeGaugeField.from_links(lattice, "U1", beta, links)


@pytest.fixture
def flux_field():
    return uniform_flux_u1(Lattice.torus([4, 4]))


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests for individual functions/methods"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests for module interactions"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds"
    )
    config.addinivalue_line(
        "markers", "statistical: Tests that verify statistical properties"
    )
    config.addinivalue_line(
        "markers", "numerical: Tests that verify numerical accuracy"
    )
    config.addinivalue_line(
        "markers", "edge_case: Tests for edge cases and error conditions"
    )
    config.addinivalue_line(
        "markers", "reproducibility: Tests for deterministic behavior"
    )


def pytest_runtest_setup(item):
    """Setup for each test item - ensure reproducible random state."""
    np.random.seed(42)


def pytest_collection_modifyitems(config, items):
    """Add markers based on test paths and names."""
    for item in items:
        if "unit" in Path(str(item.fspath)).parts:
            item.add_marker(pytest.mark.unit)
        if "integration" in Path(str(item.fspath)).parts:
            item.add_marker(pytest.mark.integration)
        if any(keyword in item.name.lower() for keyword in ['statistical', 'convergence']):
            item.add_marker(pytest.mark.statistical)
        if any(keyword in item.name.lower() for keyword in ['accuracy', 'precision', 'numerical']):
            item.add_marker(pytest.mark.numerical)
        if any(keyword in item.name.lower() for keyword in ['edge', 'invalid', 'degenerate']):
            item.add_marker(pytest.mark.edge_case)


@pytest.fixture
def flux_factory():
    """Builder for uniform-flux U(1) fields."""
    return uniform_flux_u1
