"""
Post-Processing of Model Output
===============================

Turns raw SimulationOutput state into the quantities shown in the paper
figures: per-pool [time, depth] arrays, C/N ratios, delta values and
final-timestep depth profiles.

Ratios are returned as numpy masked arrays. Cells whose denominator is
zero, negative or non-finite are masked, so "no material" stays
distinguishable from a zero ratio; matplotlib leaves masked cells blank.

Author: Python Implementation for Soil Organic Matter Isotope Research
"""

import numpy as np
import pandas as pd
import warnings
from typing import Dict, Any, List, Optional

from decomposition_model import SimulationOutput, SweepResult, advection_decay_rhs
from flux_utils import BoundaryFlux
from isotope_utils import ratio_to_delta, reference_standard


def split_pools(output: SimulationOutput) -> Dict[str, np.ndarray]:
    """Slice the state into one [time, depth] array per pool."""
    return {name: output.pool(name) for name in output.pools.names}


def safe_ratio(numerator: np.ndarray, denominator: np.ndarray,
               name: str = "ratio") -> np.ma.MaskedArray:
    """
    Elementwise numerator / denominator, masked where the denominator is not positive.

    Args:
        numerator: Dividend array
        denominator: Divisor array (same shape)
        name: Quantity name used in the warning message

    Returns:
        Masked array; masked entries carry NaN as data
    """
    numerator = np.asarray(numerator, dtype=float)
    denominator = np.asarray(denominator, dtype=float)

    degenerate = ~np.isfinite(denominator) | (denominator <= 0) | ~np.isfinite(numerator)
    with np.errstate(divide='ignore', invalid='ignore'):
        values = np.where(degenerate, np.nan, numerator / np.where(degenerate, 1.0, denominator))

    n_masked = int(np.count_nonzero(degenerate))
    if n_masked:
        warnings.warn(f"{name}: {n_masked} of {degenerate.size} cells have a zero or "
                      f"negative denominator and are masked", RuntimeWarning)

    return np.ma.masked_array(values, mask=degenerate, fill_value=np.nan)


def cn_ratio(output: SimulationOutput) -> np.ma.MaskedArray:
    """C/N ratio of every cell at every output time."""
    return safe_ratio(output.pool('C'), output.pool('N'), name="C/N")


def delta_values(output: SimulationOutput, element: str) -> np.ma.MaskedArray:
    """
    Delta value (per mil) of 'C' (d13C, VPDB) or 'N' (d15N, air N2).

    The isotope ratio is taken as tracer pool / bulk pool.
    """
    tracer = {'C': '13C', 'N': '15N'}.get(element)
    if tracer is None or tracer not in output.pools:
        raise KeyError(f"Output has no tracer pool for element '{element}'")

    ratio = safe_ratio(output.pool(tracer), output.pool(element), name=f"{tracer}/{element}")
    delta = ratio_to_delta(ratio, reference_standard(element))
    return np.ma.masked_array(delta.filled(np.nan), mask=np.ma.getmaskarray(ratio),
                              fill_value=np.nan)


def derived_fields(output: SimulationOutput) -> Dict[str, np.ndarray]:
    """
    Pools plus derived quantities, keyed by name.

    Keys: every pool name, 'CN', and 'd13C' / 'd15N' when isotopes are tracked.
    """
    fields = split_pools(output)
    fields['CN'] = cn_ratio(output)
    if '13C' in output.pools:
        fields['d13C'] = delta_values(output, 'C')
    if '15N' in output.pools:
        fields['d15N'] = delta_values(output, 'N')
    return fields


def final_profile(field: np.ndarray) -> np.ndarray:
    """Last-timestep depth profile of a [time, depth] field."""
    if np.ndim(field) < 2:
        return field
    return field[-1, :]


def final_profiles(results: List[SweepResult], quantity: str) -> Dict[str, np.ndarray]:
    """
    Final depth profile of one quantity for every successful sweep member.

    Args:
        results: Output of run_parameter_sweep
        quantity: Pool name or derived field name ('CN', 'd13C', 'd15N')

    Returns:
        Dictionary label -> profile, in sweep order
    """
    profiles = {}
    for i, result in enumerate(results):
        if not result.success:
            continue
        label = result.parameters.label or f"run {i + 1}"
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RuntimeWarning)
            fields = derived_fields(result.output)
        profiles[label] = final_profile(fields[quantity])
    return profiles


def steady_state_residual(output: SimulationOutput, fluxes: Dict[str, BoundaryFlux]) -> float:
    """
    Max-norm of dX/dt at the final output time relative to the largest concentration.

    Values near zero indicate the column has reached steady state.
    """
    state = output.final_state()
    derivative = advection_decay_rhs(output.times[-1], state, output.grid,
                                     output.parameters, fluxes, output.pools)
    scale = max(float(np.max(np.abs(state))), np.finfo(float).tiny)
    return float(np.max(np.abs(derivative)) / scale)


def results_to_dataframe(output: SimulationOutput) -> pd.DataFrame:
    """
    Long-format table with one row per (time, depth) pair.

    Columns: label, time, depth, one column per pool and derived field.
    Masked ratio cells are written as NaN.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        fields = derived_fields(output)

    n_times, n_cells = len(output.times), output.n_cells
    data = {
        'label': output.parameters.label,
        'time': np.repeat(output.times, n_cells),
        'depth': np.tile(output.depths, n_times),
    }
    for name, values in fields.items():
        data[name] = np.ma.filled(np.ma.asarray(values, dtype=float), np.nan).ravel()
    return pd.DataFrame(data)


def sweep_to_dataframe(results: List[SweepResult], final_only: bool = False) -> pd.DataFrame:
    """Concatenate results_to_dataframe over all successful sweep members."""
    frames = []
    for result in results:
        if not result.success:
            continue
        frame = results_to_dataframe(result.output)
        if final_only:
            frame = frame[frame['time'] == result.output.times[-1]]
        frames.append(frame)
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)


def summarize_output(output: SimulationOutput) -> Dict[str, Any]:
    """Surface and column summary of the final state, for console reports."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        fields = derived_fields(output)

    summary = {
        'label': output.parameters.label,
        'final_time': float(output.times[-1]),
        'surface_C': float(fields['C'][-1, 0]),
        'surface_N': float(fields['N'][-1, 0]),
        'surface_CN': _masked_to_float(fields['CN'][-1, 0]),
        'column_C': float(fields['C'][-1].sum() * output.grid.depth_step),
    }
    for key in ('d13C', 'd15N'):
        if key in fields:
            summary[f'surface_{key}'] = _masked_to_float(fields[key][-1, 0])
    return summary


def _masked_to_float(value: Any) -> Optional[float]:
    if value is np.ma.masked:
        return None
    return float(value)
