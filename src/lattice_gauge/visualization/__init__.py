"""Plotting for simulation histories and flows."""

from .plots import PlottingTools

__all__ = ["PlottingTools"]
