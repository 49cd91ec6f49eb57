"""
Plotting Utilities for Soil Decomposition Model
==============================================

Reusable plotting functions for decomposition model results: time-depth
contour plots of pools and derived fields, final depth profiles, surface
time series and sweep comparisons. Provides standardized plot creation
with consistent styling.

Author: Python Implementation for Soil Organic Matter Isotope Research
"""

import numpy as np
import warnings
from matplotlib.figure import Figure
from typing import Dict, Any, List, Tuple
from pathlib import Path
from functools import wraps

from decomposition_model import SimulationOutput, SweepResult
from post_processing import derived_fields, final_profile, final_profiles


class PlotStyle:
    """Professional black and white plotting style constants."""

    BLACK = '#000000'
    LIGHT_GRAY = '#999999'
    ERROR_COLOR = '#000000'

    # Line styles for multiple series (all black/gray)
    LINE_STYLES = ['-', '--', '-.', ':']
    LINE_WIDTHS = [1.5, 1.5, 1.5, 1.5]
    MARKER_STYLES = ['o', 's', '^', 'D', 'v', '<', '>', 'p']
    MARKER_COLORS = ['white', 'white', 'white', 'white']
    MARKER_EDGE_COLORS = ['black', 'black', 'black', 'black']

    LINE_WIDTH = 1.5
    MARKER_SIZE = 4
    MARKER_EDGE_WIDTH = 1.0

    # Font sizes
    TITLE_SIZE = 14
    LABEL_SIZE = 12
    LEGEND_SIZE = 10

    # Figure settings
    DPI = 100
    FIGURE_SIZE = (10, 6)

    CONTOUR_COLORMAP = 'viridis'
    CONTOUR_LEVELS = 20

    @classmethod
    def get_line_style(cls, index: int) -> Dict[str, Any]:
        """Get line style for multiple series plots."""
        i = index % len(cls.LINE_STYLES)
        return {
            'color': cls.BLACK,
            'linestyle': cls.LINE_STYLES[i],
            'linewidth': cls.LINE_WIDTHS[i]
        }

    @classmethod
    def get_marker_style(cls, index: int) -> Dict[str, Any]:
        """Get hollow marker style for scatter plots."""
        i = index % len(cls.MARKER_STYLES)
        j = index % len(cls.MARKER_COLORS)
        return {
            'marker': cls.MARKER_STYLES[i],
            'markerfacecolor': cls.MARKER_COLORS[j],
            'markeredgecolor': cls.MARKER_EDGE_COLORS[j],
            'markersize': cls.MARKER_SIZE,
            'markeredgewidth': cls.MARKER_EDGE_WIDTH
        }


# Axis labels and titles per plotted quantity
QUANTITY_LABELS = {
    'C': ('Organic C', 'mass/cm³'),
    'N': ('Organic N', 'mass/cm³'),
    '13C': ('¹³C', 'mass/cm³'),
    '15N': ('¹⁵N', 'mass/cm³'),
    'CN': ('C/N', ''),
    'd13C': ('δ¹³C', '‰ VPDB'),
    'd15N': ('δ¹⁵N', '‰ air'),
}


# ================================
# Utility Functions
# ================================

def plot_error_handler(func):
    """Decorator for consistent error handling in plot methods."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            self.figure.clear()
            return func(self, *args, **kwargs)
        except (KeyError, ValueError, IndexError, TypeError) as e:
            self._show_error_plot(f"Error in {func.__name__}: {str(e)}")
            return False
    return wrapper

def quantity_label(quantity: str) -> str:
    """Axis label with units for a pool or derived field."""
    name, units = QUANTITY_LABELS.get(quantity, (quantity, ''))
    return f"{name} ({units})" if units else name

def validate_plot_data(results: Dict[str, Any], required_keys: List[str]) -> Tuple[bool, str]:
    """Validate that required data is present and non-empty."""
    if not all(key in results for key in required_keys):
        missing = [key for key in required_keys if key not in results]
        return False, f"Missing required data: {', '.join(missing)}"

    for key in required_keys:
        data = results[key]
        if isinstance(data, (list, np.ndarray)) and len(data) == 0:
            return False, f"No data available for {key}"

    return True, ""

def setup_depth_plot_styling(ax, xlabel: str, ylabel: str = "Depth (cm)", title: str = ""):
    """Apply consistent styling to depth profile plots."""
    ax.set_xlabel(xlabel, fontsize=PlotStyle.LABEL_SIZE)
    ax.set_ylabel(ylabel, fontsize=PlotStyle.LABEL_SIZE)
    if title:
        ax.set_title(title, fontsize=PlotStyle.TITLE_SIZE)
    ax.invert_yaxis()
    ax.grid(True, alpha=0.3, color=PlotStyle.LIGHT_GRAY)
    ax.spines['top'].set_visible(False)
    ax.spines['right'].set_visible(False)

def add_statistics_box(ax, stats_text: str, position: str = 'top'):
    """Add statistics text box to plot."""
    y_pos = 0.98 if position == 'top' else 0.02
    va = 'top' if position == 'top' else 'bottom'

    ax.text(0.02, y_pos, stats_text, transform=ax.transAxes,
           verticalalignment=va,
           bbox=dict(boxstyle='round', facecolor='white',
                    edgecolor='black', alpha=0.8))

def create_subplot_grid(num_plots: int):
    """Create optimal subplot grid for given number of plots."""
    if num_plots == 1:
        return (1, 1)
    elif num_plots == 2:
        return (1, 2)
    elif num_plots <= 4:
        return (2, 2) if num_plots > 3 else (1, 3)
    else:
        rows = int(np.ceil(np.sqrt(num_plots)))
        cols = int(np.ceil(num_plots / rows))
        return (rows, cols)

def _quiet_derived_fields(output: SimulationOutput) -> Dict[str, np.ndarray]:
    # Masked cells (e.g. the empty column at t = 0) are expected in plots
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        return derived_fields(output)


class DecompositionPlotter:
    """
    Professional black and white plotting for decomposition model results.

    Consolidates plot creation with consistent styling and error handling.
    Every create_* method draws on self.figure and returns True on success.
    """

    def __init__(self, figure: Figure = None):
        """
        Initialize plotter with optional figure.

        Args:
            figure: Matplotlib Figure object. If None, creates new figure.
        """
        if figure is None:
            self.figure = Figure(figsize=PlotStyle.FIGURE_SIZE, dpi=PlotStyle.DPI)
        else:
            self.figure = figure

        self.current_plot_type = None

    @plot_error_handler
    def create_evolution_contour(self, output: SimulationOutput, quantity: str) -> bool:
        """
        Create filled contour plot of one quantity over time and depth.

        Args:
            output: Simulation output
            quantity: Pool name or derived field ('CN', 'd13C', 'd15N')

        Returns:
            True if plot created successfully, False otherwise
        """
        is_valid, error_msg = validate_plot_data(output.to_dict(), ['times', 'depth_nodes'])
        if not is_valid:
            self._show_error_plot(error_msg)
            return False

        fields = _quiet_derived_fields(output)
        if quantity not in fields:
            self._show_error_plot(f"Unsupported quantity: {quantity}")
            return False

        data = fields[quantity]  # Shape: (n_times, n_depths)
        if np.ma.count(data) == 0:
            self._show_error_plot(f"No valid {quantity} data to contour")
            return False

        ax = self.figure.add_subplot(1, 1, 1)
        T, D = np.meshgrid(output.times, output.depths)
        contour = ax.contourf(T, D, np.ma.asarray(data).T, levels=PlotStyle.CONTOUR_LEVELS,
                              cmap=PlotStyle.CONTOUR_COLORMAP)

        ax.set_xlabel('Time (years)', fontsize=PlotStyle.LABEL_SIZE)
        ax.set_ylabel('Depth (cm)', fontsize=PlotStyle.LABEL_SIZE)
        name = QUANTITY_LABELS.get(quantity, (quantity, ''))[0]
        title = f'{name} Evolution in Soil Column'
        if output.parameters.label:
            title += f' ({output.parameters.label})'
        ax.set_title(title, fontsize=PlotStyle.TITLE_SIZE)
        ax.invert_yaxis()

        cbar = self.figure.colorbar(contour, ax=ax)
        cbar.set_label(quantity_label(quantity), fontsize=PlotStyle.LABEL_SIZE)

        final = np.ma.filled(np.ma.asarray(final_profile(data), dtype=float), np.nan)
        add_statistics_box(ax, f'Final surface: {final[0]:.3g} | '
                               f'Final bottom: {final[-1]:.3g}')

        self.figure.tight_layout(pad=2.5)
        self.current_plot_type = f"{quantity}_evolution_contour"
        return True

    @plot_error_handler
    def create_depth_profiles_plot(self, output: SimulationOutput) -> bool:
        """
        Create final depth profiles of C, N, C/N and (if tracked) delta values.

        Args:
            output: Simulation output

        Returns:
            True if plot created successfully, False otherwise
        """
        fields = _quiet_derived_fields(output)
        quantities = [q for q in ('C', 'N', 'CN', 'd13C', 'd15N') if q in fields]

        rows, cols = create_subplot_grid(len(quantities))
        for i, quantity in enumerate(quantities):
            ax = self.figure.add_subplot(rows, cols, i + 1)
            ax.plot(final_profile(fields[quantity]), output.depths,
                    color=PlotStyle.BLACK,
                    linewidth=PlotStyle.LINE_WIDTH,
                    linestyle='-',
                    **PlotStyle.get_marker_style(i))
            setup_depth_plot_styling(ax, quantity_label(quantity), "Depth (cm)")

        self.figure.suptitle(f'Final Depth Profiles (t = {output.times[-1]:g} years)',
                             fontsize=PlotStyle.TITLE_SIZE + 2, fontweight='bold')
        self.figure.tight_layout(pad=2.5)

        self.current_plot_type = "depth_profiles"
        return True

    @plot_error_handler
    def create_time_series_plot(self, output: SimulationOutput) -> bool:
        """
        Create time series of the surface cell.

        Args:
            output: Simulation output

        Returns:
            True if plot created successfully, False otherwise
        """
        fields = _quiet_derived_fields(output)
        quantities = [q for q in ('C', 'CN', 'd13C', 'd15N') if q in fields]

        for i, quantity in enumerate(quantities):
            ax = self.figure.add_subplot(len(quantities), 1, i + 1)
            ax.plot(output.times, fields[quantity][:, 0], **PlotStyle.get_line_style(i))
            ax.set_ylabel(quantity_label(quantity), fontsize=PlotStyle.LABEL_SIZE)
            ax.grid(True, alpha=0.3, color=PlotStyle.LIGHT_GRAY)

            if i == 0:
                ax.set_title('Surface Cell Evolution Over Time', fontsize=PlotStyle.TITLE_SIZE)
            if i == len(quantities) - 1:
                ax.set_xlabel('Time (years)', fontsize=PlotStyle.LABEL_SIZE)

        self.figure.tight_layout(pad=2.5)
        self.current_plot_type = "time_series"
        return True

    @plot_error_handler
    def create_multi_run_comparison_plot(self, results: List[SweepResult], quantity: str) -> bool:
        """
        Create comparison of final depth profiles across sweep members.

        Args:
            results: Output of run_parameter_sweep
            quantity: Pool name or derived field

        Returns:
            True if plot created successfully, False otherwise
        """
        profiles = final_profiles(results, quantity)
        if not profiles:
            self._show_error_plot(f"No successful runs to compare for {quantity}")
            return False

        depths = next(r.output.depths for r in results if r.success)
        ax = self.figure.add_subplot(111)

        for i, (label, profile) in enumerate(profiles.items()):
            line_style = PlotStyle.get_line_style(i)
            ax.plot(profile, depths, label=label, **line_style,
                    **PlotStyle.get_marker_style(i))

        name = QUANTITY_LABELS.get(quantity, (quantity, ''))[0]
        setup_depth_plot_styling(ax, quantity_label(quantity), "Depth (cm)",
                                 f'{name} Profile Comparison')
        ax.legend(frameon=True, fancybox=False, shadow=False,
                  framealpha=1.0, edgecolor='black', fontsize=PlotStyle.LEGEND_SIZE)

        n_failed = sum(not r.success for r in results)
        if n_failed:
            add_statistics_box(ax, f'{n_failed} run(s) failed and are not shown', position='bottom')

        self.figure.tight_layout(pad=2.5)
        self.current_plot_type = f"{quantity}_multi_run_comparison"
        return True

    def _show_error_plot(self, error_message: str):
        """
        Show error message on plot with professional styling.

        Args:
            error_message: Error message to display
        """
        self.figure.clear()
        ax = self.figure.add_subplot(111)
        ax.text(0.5, 0.5, f"Error: {error_message}",
               ha='center', va='center', fontsize=PlotStyle.LABEL_SIZE,
               color=PlotStyle.ERROR_COLOR, wrap=True,
               bbox=dict(boxstyle='round', facecolor='white',
                        edgecolor='black', alpha=0.8))
        ax.set_xlim(0, 1)
        ax.set_ylim(0, 1)
        ax.axis('off')
        self.current_plot_type = "error"

    def save_current_plot(self, filepath: Path, dpi: int = 300, format: str = 'png') -> None:
        """
        Save current plot to file.

        Args:
            filepath: Path to save file
            dpi: Resolution for saved image
            format: Image format ('png', 'pdf', 'svg', 'jpg')
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        self.figure.savefig(filepath, dpi=dpi, format=format,
                            bbox_inches='tight', facecolor='white')
