"""
PlottingTools: figures for Monte Carlo runs and gradient flows.

Produces consistent figures for thermalization histories, autocorrelation,
measurement distributions and flow trajectories.
"""

import os
from typing import Dict, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from ..diagnostics.mcmc_diag import compute_autocorrelation


class PlottingTools:
    """
    Plotting tools for lattice gauge simulations.

    Ensures consistent style and reproducible output locations.
    """

    # Standard figure sizes (inches)
    SINGLE_COL_WIDTH = 3.5
    DOUBLE_COL_WIDTH = 7.0
    GOLDEN_RATIO = 1.618

    COLORBLIND_PALETTE = [
        '#377eb8', '#ff7f00', '#4daf4a', '#f781bf',
        '#a65628', '#984ea3', '#999999', '#e41a1c',
        '#dede00', '#377eb8'
    ]

    def __init__(self, style='publication', use_latex=False, dpi=300,
                 figure_dir='results/figures'):
        """
        Initialize plotting tools with consistent style.

        Args:
            style: Plotting style ('publication', 'presentation', 'draft')
            use_latex: Enable LaTeX rendering
            dpi: Resolution for raster outputs
            figure_dir: Directory for saved figures (created on first save)
        """
        self.style = style
        self.use_latex = use_latex
        self.dpi = dpi
        self.figure_dir = figure_dir

        self._setup_matplotlib_style()

    def _setup_matplotlib_style(self):
        """Configure matplotlib and seaborn."""
        plt.style.use('seaborn-v0_8-paper')
        sns.set_palette(self.COLORBLIND_PALETTE)

        if self.style == 'publication':
            font_size, tick_size = 11, 10
        elif self.style == 'presentation':
            font_size, tick_size = 14, 12
        else:  # draft
            font_size, tick_size = 12, 11

        plt.rcParams.update({
            'font.size': font_size,
            'axes.titlesize': font_size,
            'axes.labelsize': font_size,
            'xtick.labelsize': tick_size,
            'ytick.labelsize': tick_size,
            'legend.fontsize': tick_size,
            'text.usetex': self.use_latex,
            'figure.dpi': self.dpi,
            'savefig.dpi': self.dpi,
            'savefig.bbox': 'tight',
            'lines.linewidth': 1.5,
            'axes.grid': True,
            'grid.alpha': 0.3,
            'xtick.direction': 'in',
            'ytick.direction': 'in',
        })

    def get_figure_size(self, width='single', aspect_ratio=None) -> Tuple[float, float]:
        """
        Get consistent figure size.

        Args:
            width: 'single', 'double' or a width in inches
            aspect_ratio: Height/width ratio (default: 1/golden_ratio)
        """
        if width == 'single':
            w = self.SINGLE_COL_WIDTH
        elif width == 'double':
            w = self.DOUBLE_COL_WIDTH
        else:
            w = float(width)

        if aspect_ratio is None:
            aspect_ratio = 1.0 / self.GOLDEN_RATIO
        return (w, w * aspect_ratio)

    def set_axis_style(self, ax, xlabel=None, ylabel=None, title=None,
                       xlim=None, ylim=None, legend=True):
        """Apply consistent axis styling."""
        if xlabel:
            ax.set_xlabel(xlabel)
        if ylabel:
            ax.set_ylabel(ylabel)
        if title:
            ax.set_title(title)
        if xlim:
            ax.set_xlim(xlim)
        if ylim:
            ax.set_ylim(ylim)
        ax.grid(True, alpha=0.3, linewidth=0.5)
        if legend and ax.get_legend_handles_labels()[0]:
            ax.legend(loc='best', frameon=True, framealpha=0.8, edgecolor='black')

    # ========== Monte Carlo runs ==========

    def plot_thermalization(self, history: pd.DataFrame, column: str = 'plaquette',
                            exact: Optional[float] = None, n_therm: Optional[int] = None,
                            save_name=None, width='double'):
        """
        Observable history against sweep number.

        Args:
            history: Updater history with a 'sweep' column
            column: Observable to plot
            exact: Reference value drawn as a horizontal line
            n_therm: Sweep at which measurement started, marked if given
            save_name: Filename to save
            width: Figure width
        """
        fig, ax = plt.subplots(figsize=self.get_figure_size(width))
        ax.plot(history['sweep'], history[column], '-', linewidth=0.8, label=column)
        if exact is not None:
            ax.axhline(exact, color='black', linestyle='--', linewidth=1.0, label='exact')
        if n_therm is not None:
            ax.axvline(n_therm, color='red', linestyle=':', linewidth=1.0,
                       label='thermalization')
        self.set_axis_style(ax, xlabel='Sweep', ylabel=column, title=f'{column} history')

        if save_name:
            self.save_figure(fig, save_name)
        return fig, ax

    def plot_distribution(self, values: Sequence[float], exact: Optional[float] = None,
                          label: str = 'plaquette', save_name=None, width='single'):
        """Histogram with kernel density of a measurement series."""
        fig, ax = plt.subplots(figsize=self.get_figure_size(width))
        sns.histplot(np.asarray(values, dtype=float), kde=True, stat='density', ax=ax)
        if exact is not None:
            ax.axvline(exact, color='black', linestyle='--', label='exact')
        self.set_axis_style(ax, xlabel=label, ylabel='Density')

        if save_name:
            self.save_figure(fig, save_name)
        return fig, ax

    def plot_autocorrelation(self, chain, max_lag=None, confidence=True,
                             save_name=None, width='single'):
        """
        Plot autocorrelation function with confidence band.

        Args:
            chain: Time series data
            max_lag: Maximum lag to plot
            confidence: Show approximate 95% band for white noise
            save_name: Filename to save
            width: Figure width
        """
        chain = np.asarray(chain, dtype=float)
        if max_lag is None:
            max_lag = min(len(chain) // 4, 100)
        acf = compute_autocorrelation(chain, max_lag=max_lag)
        lags = np.arange(len(acf))

        fig, ax = plt.subplots(figsize=self.get_figure_size(width))
        ax.stem(lags[1:], acf[1:], linefmt='b-', markerfmt='bo', basefmt='k-', label='ACF')
        if confidence:
            se = 1.96 / np.sqrt(len(chain))
            ax.fill_between(lags[1:], -se, se, color='blue', alpha=0.2, label='95% CI')
        ax.axhline(y=0, color='black', linestyle='-', linewidth=0.5)

        self.set_axis_style(ax, xlabel='Lag', ylabel='ACF',
                            title='Autocorrelation Function', ylim=[-0.2, 1.1])
        if save_name:
            self.save_figure(fig, save_name)
        return fig, ax

    def plot_wilson_loops(self, loops: Dict[Tuple[int, int], float],
                          exact: Optional[Dict[Tuple[int, int], float]] = None,
                          save_name=None, width='single'):
        """Wilson loop averages against loop area on a log scale."""
        fig, ax = plt.subplots(figsize=self.get_figure_size(width))
        areas = [r * t for r, t in loops]
        ax.semilogy(areas, list(loops.values()), 'o', label='measured')
        if exact is not None:
            ax.semilogy([r * t for r, t in exact], list(exact.values()), 'k--', label='exact')
        self.set_axis_style(ax, xlabel='Area R x T', ylabel='<W(R, T)>',
                            title='Wilson loops')
        if save_name:
            self.save_figure(fig, save_name)
        return fig, ax

    # ========== Gradient flow ==========

    def plot_flow(self, trajectory, target: float = 0.3, t0: Optional[float] = None,
                  save_name=None, width='single'):
        """
        t^2 E(t) along a flow trajectory with the t0 reference value.

        Args:
            trajectory: FlowTrajectory
            target: Reference value for t0
            t0: Located t0, marked if given
        """
        fig, ax = plt.subplots(figsize=self.get_figure_size(width))
        ax.plot(trajectory.times, trajectory.t2e, '-', label=r't^2 E(t)')
        ax.axhline(target, color='black', linestyle='--', linewidth=0.8, label=f'{target}')
        if t0 is not None:
            ax.axvline(t0, color='red', linestyle=':', label=f't0 = {t0:.4f}')
        self.set_axis_style(ax, xlabel='Flow time t', ylabel=r't^2 E', title='Gradient flow')

        if save_name:
            self.save_figure(fig, save_name)
        return fig, ax

    def save_figure(self, fig, filename, formats=('pdf', 'png')):
        """
        Save figure in multiple formats.

        Args:
            fig: Figure object
            filename: Base filename (without extension)
            formats: Formats to save
        """
        os.makedirs(self.figure_dir, exist_ok=True)
        paths = []
        for fmt in formats:
            filepath = os.path.join(self.figure_dir, f'{filename}.{fmt}')
            fig.savefig(filepath, format=fmt, dpi=self.dpi, bbox_inches='tight',
                        pad_inches=0.1)
            paths.append(filepath)
        return paths
