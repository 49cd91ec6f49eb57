"""
Boundary Flux Utilities
=======================

Surface input providers for the decomposition model: time-indexed,
piecewise-linear interpolants for the C, N, 13C and 15N litter fluxes,
plus loading of externally supplied input histories (e.g. the plant
d13C record of the Suess effect) from CSV or spreadsheet files.

Queries outside a series' time range are clamped to the end values.

Author: Python Implementation for Soil Organic Matter Isotope Research
"""

import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Optional, Union

from config_manager import ConfigurationError, InputParameters
from isotope_utils import R_AIR_N2, R_VPDB, delta_to_ratio


class BoundaryFlux:
    """
    Immutable time series of a surface flux with linear interpolation.

    Evaluating the flux outside the series' time range returns the
    nearest end value (boundary clamping, as ``numpy.interp``).
    """

    def __init__(self, times, values, name: str = ""):
        times = np.array(times, dtype=float, ndmin=1)
        values = np.array(values, dtype=float, ndmin=1)
        validate_series(times, values, name)

        times.flags.writeable = False
        values.flags.writeable = False
        self.times = times
        self.values = values
        self.name = name
        self._constant = float(values[0]) if np.all(values == values[0]) else None

    @classmethod
    def constant(cls, value: float, name: str = "") -> 'BoundaryFlux':
        """Flux that takes the same value at every time."""
        return cls([0.0], [value], name)

    def __call__(self, t: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        if self._constant is not None:
            if np.ndim(t) == 0:
                return self._constant
            return np.full(np.shape(t), self._constant)
        return np.interp(t, self.times, self.values)

    def __repr__(self) -> str:
        return (f"BoundaryFlux(name={self.name!r}, n_points={len(self.times)}, "
                f"t=[{self.times[0]:g}, {self.times[-1]:g}])")

    def __reduce__(self):
        return (BoundaryFlux, (self.times.copy(), self.values.copy(), self.name))

    @property
    def time_range(self):
        return float(self.times[0]), float(self.times[-1])


def validate_series(times: np.ndarray, values: np.ndarray, name: str = "") -> None:
    """Validate a (time, value) series: same length, sorted, no duplicate times."""
    label = f" '{name}'" if name else ""
    if times.ndim != 1 or values.ndim != 1:
        raise ConfigurationError(f"Flux series{label} must be one-dimensional")
    if len(times) == 0:
        raise ConfigurationError(f"Flux series{label} is empty")
    if len(times) != len(values):
        raise ConfigurationError(
            f"Flux series{label} length mismatch: {len(times)} times, {len(values)} values")
    if not (np.all(np.isfinite(times)) and np.all(np.isfinite(values))):
        raise ConfigurationError(f"Flux series{label} contains non-finite entries")
    steps = np.diff(times)
    if np.any(steps == 0):
        raise ConfigurationError(f"Flux series{label} has duplicate times")
    if np.any(steps < 0):
        raise ConfigurationError(f"Flux series{label} times must be sorted")


def tracer_flux(bulk_flux: BoundaryFlux, delta_flux: BoundaryFlux,
                standard: float, name: str = "") -> BoundaryFlux:
    """
    Build a tracer flux from a bulk flux and the delta value of the input.

    The tracer flux is bulk flux x isotope ratio, evaluated on the union of
    both series' time points.

    Args:
        bulk_flux: Bulk (C or N) input flux
        delta_flux: Delta value of the input (per mil) over time
        standard: Reference isotope ratio of the element

    Returns:
        Tracer (13C or 15N) input flux
    """
    times = np.union1d(bulk_flux.times, delta_flux.times)
    values = bulk_flux(times) * delta_to_ratio(delta_flux(times), standard)
    return BoundaryFlux(times, values, name)


def load_input_series(file_path: Union[str, Path], time_column: str, value_column: str,
                      start_time: Optional[float] = None, verbose: bool = True) -> BoundaryFlux:
    """
    Load a (time, value) input history from a CSV or Excel file.

    Args:
        file_path: Path to .csv, .xlsx or .xls file
        time_column: Column holding time (e.g. calendar year)
        value_column: Column holding the input value
        start_time: Time mapped to model t = 0 (default: first entry)
        verbose: Print a summary of the loaded series

    Returns:
        BoundaryFlux over model time

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigurationError: If columns are missing or times are duplicated
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Input series file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix == '.csv':
        data = pd.read_csv(file_path)
    elif suffix in ['.xlsx', '.xls']:
        data = pd.read_excel(file_path)
    else:
        raise ConfigurationError(f"Unsupported input series format: {suffix}")

    missing_columns = [col for col in (time_column, value_column) if col not in data.columns]
    if missing_columns:
        raise ConfigurationError(f"Missing required columns in {file_path.name}: {missing_columns}")

    data = data[[time_column, value_column]].dropna()
    if data[time_column].duplicated().any():
        duplicates = data.loc[data[time_column].duplicated(), time_column].tolist()
        raise ConfigurationError(f"Duplicate times in {file_path.name}: {duplicates}")
    data = data.sort_values(time_column).reset_index(drop=True)

    times = data[time_column].to_numpy(dtype=float)
    if start_time is None:
        start_time = times[0] if len(times) else 0.0
    series = BoundaryFlux(times - start_time, data[value_column].to_numpy(dtype=float),
                          name=value_column)

    if verbose:
        print(f"✓ Loaded {len(times)} points of '{value_column}' from {file_path.name}")
        print(f"  Time range: {times[0]:g} - {times[-1]:g} "
              f"(model t = {series.times[0]:g} - {series.times[-1]:g})")
    return series


def build_boundary_fluxes(inputs: InputParameters, base_dir: Optional[Path] = None,
                          verbose: bool = True) -> Dict[str, BoundaryFlux]:
    """
    Build the four surface flux providers from the input configuration.

    Args:
        inputs: Litter input settings
        base_dir: Directory relative history file paths are resolved against
        verbose: Print loading summaries

    Returns:
        Dictionary with keys 'C', 'N', '13C', '15N'
    """
    carbon = BoundaryFlux.constant(inputs.carbon_input, 'C')
    nitrogen = BoundaryFlux.constant(inputs.nitrogen_input, 'N')

    if inputs.d13C_history_file:
        history_path = Path(inputs.d13C_history_file)
        if not history_path.is_absolute() and base_dir is not None:
            history_path = Path(base_dir) / history_path
        d13C = load_input_series(history_path, inputs.history_time_column,
                                 inputs.history_value_column, inputs.history_start_year,
                                 verbose=verbose)
    else:
        d13C = BoundaryFlux.constant(inputs.d13C_input, 'd13C')
    d15N = BoundaryFlux.constant(inputs.d15N_input, 'd15N')

    return {
        'C': carbon,
        'N': nitrogen,
        '13C': tracer_flux(carbon, d13C, R_VPDB, '13C'),
        '15N': tracer_flux(nitrogen, d15N, R_AIR_N2, '15N'),
    }
