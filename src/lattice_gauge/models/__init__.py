"""Gauge field aggregate and the source attachment layer."""

from .gauge_field import LatticeGaugeField
from .sources import VACUUM, CoupledSource, FieldHistory, FieldSnapshot, Vacuum, is_vacuum

__all__ = ["LatticeGaugeField", "VACUUM", "Vacuum", "CoupledSource",
           "FieldHistory", "FieldSnapshot", "is_vacuum"]
