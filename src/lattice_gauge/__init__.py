"""
Lattice Gauge MCMC Package

Lattice gauge field simulation: U(1), SU(2) and SU(3) link variables,
Wilson-loop observables, Metropolis updates and gradient-flow scale setting.
"""

__version__ = "0.1.0"

from . import core
from . import models
from . import observables
from . import samplers
from . import diagnostics
from . import storage
from .core import Lattice, Precision, get_group
from .models import VACUUM, LatticeGaugeField

__all__ = ["core", "models", "observables", "samplers", "diagnostics", "storage",
           "Lattice", "Precision", "get_group", "LatticeGaugeField", "VACUUM"]
