"""
Soil Organic Matter Decomposition Model with C/N Isotope Tracking
=================================================================

A numerical model of organic carbon and nitrogen in a soil column, with
simultaneous tracking of the stable-isotope tracers 13C and 15N.

This model simulates:
- Litter input of C, N, 13C and 15N at the soil surface
- Downward advective transport of organic matter
- First-order decomposition with a rate that decreases with depth
- Isotope fractionation of the decomposition loss

Numerical Implementation:
- Finite-volume column of equal-thickness cells, upwind advective fluxes
- Method of lines: the resulting ODE system is integrated with
  scipy.integrate.solve_ivp (BDF by default, analytic sparse Jacobian)
- Output at exactly the requested times
- Independent parameter sets integrated serially or in worker processes

State layout: pools are stacked in PoolSet order, each occupying a
contiguous block of n_cells entries of the state vector.

Author: Python Implementation for Soil Organic Matter Isotope Research
"""

import numpy as np
from typing import Optional, Dict, Any, List, Tuple, Sequence
import time
from pathlib import Path
import warnings
from dataclasses import dataclass, replace
from concurrent.futures import ProcessPoolExecutor
from scipy.integrate import solve_ivp, cumulative_trapezoid
from scipy import sparse

from config_manager import (
    ConfigurationError, GridParameters, KineticParameters, ModelConfiguration,
    load_config, validate_positive, validate_non_negative, validate_range,
)
from flux_utils import BoundaryFlux, build_boundary_fluxes
from isotope_utils import depth_decay_rate


class IntegrationFailure(RuntimeError):
    """The ODE integrator could not produce the requested output."""

    def __init__(self, message: str, label: str = "", time: Optional[float] = None):
        self.message = message
        self.label = label
        self.time = time
        where = f" at t={time:g}" if time is not None else ""
        run = f"[{label}] " if label else ""
        super().__init__(f"{run}Integration failed{where}: {message}")

    def __reduce__(self):
        return (IntegrationFailure, (self.message, self.label, self.time))


class _EvaluationBudgetExceeded(Exception):
    """Raised from inside the RHS when the evaluation budget is spent."""

    def __init__(self, time: float):
        super().__init__(time)
        self.time = time


# ================================
# Pools, grid and parameters
# ================================

@dataclass(frozen=True)
class Pool:
    """One tracked quantity: bulk element pool or its heavy-isotope tracer."""
    name: str
    element: str  # 'C' or 'N'
    tracer: bool = False


@dataclass(frozen=True)
class PoolSet:
    """Ordered set of pools making up the state vector."""
    name: str
    pools: Tuple[Pool, ...]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(pool.name for pool in self.pools)

    def __len__(self) -> int:
        return len(self.pools)

    def __iter__(self):
        return iter(self.pools)

    def __contains__(self, name: str) -> bool:
        return name in self.names

    def index(self, name: str) -> int:
        try:
            return self.names.index(name)
        except ValueError:
            raise KeyError(f"Pool '{name}' not in {self.name} pool set {self.names}")

    def slice(self, name: str, n_cells: int) -> slice:
        """Index range of a pool inside the flattened state vector."""
        start = self.index(name) * n_cells
        return slice(start, start + n_cells)


BULK_POOLS = PoolSet('bulk', (Pool('C', 'C'), Pool('N', 'N')))
ISOTOPE_POOLS = PoolSet('isotope', BULK_POOLS.pools + (Pool('13C', 'C', tracer=True),
                                                       Pool('15N', 'N', tracer=True)))


@dataclass(frozen=True)
class DepthGrid:
    """Column of n_cells equal-thickness cells starting at the surface."""
    n_cells: int
    depth_step: float

    def __post_init__(self):
        if not np.isfinite(self.n_cells) or int(self.n_cells) != self.n_cells or self.n_cells < 1:
            raise ConfigurationError(f"Number of cells must be a positive integer, got {self.n_cells}")
        object.__setattr__(self, "n_cells", int(self.n_cells))
        validate_positive(self.depth_step, "Depth step")

    @classmethod
    def from_config(cls, grid: GridParameters) -> 'DepthGrid':
        return cls(grid.n_cells, grid.depth_step)

    @property
    def depths(self) -> np.ndarray:
        """Depth of each cell (cm), 0 at the surface cell."""
        return np.arange(self.n_cells) * self.depth_step


@dataclass(frozen=True)
class ModelParameters:
    """
    One point of a parameter sweep.

    ``decay_rates`` optionally replaces the k0/z_half depth profile with a
    precomputed rate per cell.
    """
    advection_velocity: float
    k0: float
    z_half: float
    p_C: float
    p_N: float
    alpha_C: float = 1.0
    alpha_N: float = 1.0
    decay_rates: Optional[Tuple[float, ...]] = None
    label: str = ""

    def __post_init__(self):
        validate_non_negative(self.advection_velocity, "Advection velocity")
        validate_non_negative(self.k0, "Surface decay rate")
        validate_positive(self.z_half, "Half-attenuation depth")
        validate_range(self.p_C, 0.0, 1.0, "p_C")
        validate_range(self.p_N, 0.0, 1.0, "p_N")
        validate_positive(self.alpha_C, "alpha_C")
        validate_positive(self.alpha_N, "alpha_N")
        if self.decay_rates is not None:
            rates = tuple(float(k) for k in np.ravel(self.decay_rates))
            if any(k < 0 or not np.isfinite(k) for k in rates):
                raise ConfigurationError("Decay rates must be finite and non-negative")
            object.__setattr__(self, 'decay_rates', rates)

    @classmethod
    def from_config(cls, kinetics: KineticParameters, label: str = "") -> 'ModelParameters':
        return cls(
            advection_velocity=kinetics.advection_velocity,
            k0=kinetics.k0,
            z_half=kinetics.z_half,
            p_C=kinetics.p_C,
            p_N=kinetics.p_N,
            alpha_C=kinetics.alpha_C,
            alpha_N=kinetics.alpha_N,
            label=label,
        )

    def with_updates(self, **changes) -> 'ModelParameters':
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    def fraction(self, element: str) -> float:
        return {'C': self.p_C, 'N': self.p_N}[element]

    def alpha(self, element: str) -> float:
        return {'C': self.alpha_C, 'N': self.alpha_N}[element]

    def decay_rate_profile(self, grid: DepthGrid) -> np.ndarray:
        """
        Decomposition rate k(z) of every cell.

        Raises:
            ConfigurationError: If a precomputed rate vector does not match the grid
        """
        if self.decay_rates is not None:
            if len(self.decay_rates) != grid.n_cells:
                raise ConfigurationError(
                    f"Decay rate vector has {len(self.decay_rates)} entries, "
                    f"grid has {grid.n_cells} cells")
            return np.array(self.decay_rates)
        return depth_decay_rate(grid.depths, self.k0, self.z_half)


def pool_loss_rates(params: ModelParameters, grid: DepthGrid, pools: PoolSet) -> np.ndarray:
    """
    First-order loss rate k(z) * p * alpha for every pool and cell.

    Returns:
        Array of shape (n_pools, n_cells); alpha is 1 for bulk pools
    """
    k = params.decay_rate_profile(grid)
    rows = []
    for pool in pools:
        alpha = params.alpha(pool.element) if pool.tracer else 1.0
        rows.append(k * params.fraction(pool.element) * alpha)
    return np.vstack(rows)


# ================================
# Right-hand side
# ================================

def advection_decay_rhs(t: float, y: np.ndarray, grid: DepthGrid, params: ModelParameters,
                        fluxes: Dict[str, BoundaryFlux], pools: PoolSet,
                        loss_rates: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Time derivative of the flattened state vector.

    For every pool X the flux through the top face is the prescribed
    surface input F_X(t); the flux through the bottom face of cell i is
    v * X_i (upwind). Each cell then loses k(z_i) * p_X * alpha_X * X_i.

    Args:
        t: Time
        y: State vector of length n_pools * n_cells
        grid: Depth grid
        params: Kinetic parameters
        fluxes: Surface flux provider per pool name
        pools: Active pool set
        loss_rates: Precomputed output of pool_loss_rates (computed if None)

    Returns:
        dy/dt, same shape as y
    """
    if loss_rates is None:
        loss_rates = pool_loss_rates(params, grid, pools)

    X = np.reshape(y, (len(pools), grid.n_cells))
    face_flux = np.empty((len(pools), grid.n_cells + 1))
    face_flux[:, 0] = [fluxes[name](t) for name in pools.names]
    face_flux[:, 1:] = params.advection_velocity * X

    advection = -(face_flux[:, 1:] - face_flux[:, :-1]) / grid.depth_step
    decay = -loss_rates * X
    return (advection + decay).ravel()


def rhs_jacobian(grid: DepthGrid, params: ModelParameters, pools: PoolSet,
                 loss_rates: Optional[np.ndarray] = None) -> sparse.csc_matrix:
    """
    Constant Jacobian of advection_decay_rhs.

    The system is linear in the state, so the Jacobian is block diagonal
    with one lower-bidiagonal block per pool.
    """
    if loss_rates is None:
        loss_rates = pool_loss_rates(params, grid, pools)

    transfer = params.advection_velocity / grid.depth_step
    blocks = []
    for rates in loss_rates:
        if grid.n_cells == 1:
            blocks.append(sparse.diags([-transfer - rates], [0], shape=(1, 1)))
            continue
        blocks.append(sparse.diags(
            [-transfer - rates, np.full(grid.n_cells - 1, transfer)],
            [0, -1], shape=(grid.n_cells, grid.n_cells)))
    return sparse.block_diag(blocks, format='csc')


class _BudgetedRHS:
    """RHS wrapper that stops integration after a fixed number of evaluations."""

    def __init__(self, max_evaluations: int):
        self.max_evaluations = max_evaluations
        self.evaluations = 0

    def __call__(self, t, y, *args):
        self.evaluations += 1
        if self.evaluations > self.max_evaluations:
            raise _EvaluationBudgetExceeded(t)
        return advection_decay_rhs(t, y, *args)


# ================================
# Integrator driver
# ================================

@dataclass
class SimulationOutput:
    """
    Result of one integration.

    ``state`` has one row per requested output time; ``pool(name)``
    returns the [time, depth] array of a single pool.
    """
    times: np.ndarray
    depths: np.ndarray
    state: np.ndarray
    pools: PoolSet
    grid: DepthGrid
    parameters: ModelParameters
    rhs_evaluations: int = 0
    execution_time: float = 0.0

    @property
    def n_cells(self) -> int:
        return self.grid.n_cells

    def pool(self, name: str) -> np.ndarray:
        return self.state[:, self.pools.slice(name, self.grid.n_cells)]

    def final_state(self) -> np.ndarray:
        return self.state[-1]

    def to_dict(self) -> Dict[str, Any]:
        """Arrays keyed by name, in the shape the plotting helpers expect."""
        results = {
            'times': self.times,
            'depth_nodes': self.depths,
            'label': self.parameters.label,
        }
        for name in self.pools.names:
            results[name] = self.pool(name)
        return results


def _validate_output_times(output_times: np.ndarray, start_time: float) -> None:
    if output_times.size == 0:
        raise ConfigurationError("No output times requested")
    if not np.all(np.isfinite(output_times)):
        raise ConfigurationError("Output times must be finite")
    if np.any(np.diff(output_times) < 0):
        raise ConfigurationError("Output times must be non-decreasing")
    if output_times[0] < start_time:
        raise ConfigurationError(
            f"First output time {output_times[0]:g} precedes the start time {start_time:g}")


def integrate(grid: DepthGrid, params: ModelParameters, fluxes: Dict[str, BoundaryFlux],
              output_times: Sequence[float], pools: PoolSet = ISOTOPE_POOLS,
              initial_state: Optional[np.ndarray] = None, start_time: float = 0.0,
              method: str = 'BDF', rtol: float = 1e-6, atol: float = 1e-9,
              max_rhs_evaluations: int = 500000) -> SimulationOutput:
    """
    Integrate the column model and sample it at the requested times.

    Args:
        grid: Depth grid
        params: Kinetic parameters of this run
        fluxes: Surface flux provider per pool name
        output_times: Non-decreasing times; one output row per entry
        pools: Active pool set (BULK_POOLS or ISOTOPE_POOLS)
        initial_state: State at start_time (default: empty column)
        start_time: Time of the initial state
        method: scipy.integrate.solve_ivp method
        rtol: Relative error tolerance
        atol: Absolute error tolerance
        max_rhs_evaluations: Evaluation budget bounding step collapse

    Returns:
        SimulationOutput with exactly len(output_times) rows

    Raises:
        ConfigurationError: On invalid times, state size or missing fluxes
        IntegrationFailure: If the solver cannot reach the last output time
    """
    output_times = np.asarray(output_times, dtype=float).ravel()
    _validate_output_times(output_times, start_time)

    missing = [name for name in pools.names if name not in fluxes]
    if missing:
        raise ConfigurationError(f"No surface flux provided for pools: {missing}")

    n_state = len(pools) * grid.n_cells
    if initial_state is None:
        y0 = np.zeros(n_state)
    else:
        y0 = np.asarray(initial_state, dtype=float).ravel()
        if y0.size != n_state:
            raise ConfigurationError(
                f"Initial state has {y0.size} entries, expected {n_state} "
                f"({len(pools)} pools x {grid.n_cells} cells)")

    loss_rates = pool_loss_rates(params, grid, pools)
    eval_times, inverse = np.unique(output_times, return_inverse=True)
    inverse = np.ravel(inverse)
    t_end = eval_times[-1]

    started = time.time()
    if t_end == start_time:
        state = np.tile(y0, (len(output_times), 1))
        return SimulationOutput(output_times, grid.depths, state, pools, grid, params)

    options = {}
    if method in ('BDF', 'Radau'):
        options['jac'] = rhs_jacobian(grid, params, pools, loss_rates)
    elif method == 'LSODA':
        options['jac'] = rhs_jacobian(grid, params, pools, loss_rates).toarray()

    rhs = _BudgetedRHS(max_rhs_evaluations)
    try:
        solution = solve_ivp(
            rhs,
            (start_time, t_end),
            y0,
            method=method,
            t_eval=eval_times,
            args=(grid, params, fluxes, pools, loss_rates),
            rtol=rtol,
            atol=atol,
            **options
        )
    except _EvaluationBudgetExceeded as e:
        raise IntegrationFailure(
            f"exceeded {max_rhs_evaluations} right-hand-side evaluations",
            params.label, float(e.time)) from e
    except (RuntimeError, ArithmeticError, np.linalg.LinAlgError) as e:
        raise IntegrationFailure(f"solver error: {e}", params.label) from e

    if not solution.success:
        reached = float(solution.t[-1]) if solution.t.size else start_time
        raise IntegrationFailure(solution.message, params.label, reached)
    if solution.y.shape[1] != eval_times.size:
        raise IntegrationFailure(
            f"solver returned {solution.y.shape[1]} of {eval_times.size} output times",
            params.label)

    state = solution.y.T[inverse]
    if not np.all(np.isfinite(state)):
        bad_row = int(np.argmax(~np.all(np.isfinite(state), axis=1)))
        raise IntegrationFailure("non-finite concentrations", params.label,
                                 float(output_times[bad_row]))

    floor = -10 * atol
    if np.any(state < floor):
        warnings.warn(
            f"[{params.label}] negative concentrations down to {state.min():.3e} - "
            f"results may be invalid", RuntimeWarning)

    return SimulationOutput(output_times, grid.depths, state, pools, grid, params,
                            rhs_evaluations=rhs.evaluations,
                            execution_time=time.time() - started)


# ================================
# Parameter sweep
# ================================

@dataclass
class SweepResult:
    """Outcome of one sweep member: an output or the failure that stopped it."""
    parameters: ModelParameters
    output: Optional[SimulationOutput] = None
    error: Optional[IntegrationFailure] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.output is not None


def _run_sweep_member(parameters: ModelParameters, grid: DepthGrid,
                      fluxes: Dict[str, BoundaryFlux], output_times: np.ndarray,
                      pools: PoolSet, solver_options: Dict[str, Any]) -> SweepResult:
    try:
        output = integrate(grid, parameters, fluxes, output_times, pools, **solver_options)
    except IntegrationFailure as e:
        return SweepResult(parameters, error=e)
    return SweepResult(parameters, output=output)


def run_parameter_sweep(parameter_sets: Sequence[ModelParameters], grid: DepthGrid,
                        fluxes: Dict[str, BoundaryFlux], output_times: Sequence[float],
                        pools: PoolSet = ISOTOPE_POOLS, max_workers: int = 1,
                        verbose: bool = True, **solver_options) -> List[SweepResult]:
    """
    Integrate every parameter set independently.

    A failing member is recorded in its SweepResult and does not stop the
    remaining members.

    Args:
        parameter_sets: One ModelParameters per simulation
        grid: Depth grid shared by all runs
        fluxes: Surface flux providers shared by all runs
        output_times: Requested output times
        pools: Active pool set
        max_workers: Worker processes (1 runs serially in this process)
        verbose: Print one status line per member
        **solver_options: Passed to integrate (method, rtol, atol, ...)

    Returns:
        SweepResult list in the order of parameter_sets
    """
    output_times = np.asarray(output_times, dtype=float)
    total = len(parameter_sets)

    if max_workers > 1 and total > 1:
        with ProcessPoolExecutor(max_workers=min(max_workers, total)) as executor:
            futures = [executor.submit(_run_sweep_member, parameters, grid, fluxes,
                                       output_times, pools, solver_options)
                       for parameters in parameter_sets]
            results = [future.result() for future in futures]
    else:
        results = [_run_sweep_member(parameters, grid, fluxes, output_times, pools, solver_options)
                   for parameters in parameter_sets]

    if verbose:
        for i, result in enumerate(results, start=1):
            label = result.parameters.label or f"run {i}"
            if result.success:
                print(f"✓ [{i}/{total}] {label}: {result.output.rhs_evaluations} RHS evaluations, "
                      f"{result.output.execution_time:.1f} s")
            else:
                print(f"⚠ [{i}/{total}] {label}: {result.error}")

    return results


def build_parameter_sets(config: ModelConfiguration) -> List[ModelParameters]:
    """Expand the configured sweep into one ModelParameters per value."""
    sweep = config.sweep
    if sweep.parameter is None:
        return [ModelParameters.from_config(config.kinetics, label="baseline")]

    base = ModelParameters.from_config(config.kinetics)
    labels = sweep.labels or [f"{sweep.parameter}={value:g}" for value in sweep.values]
    return [base.with_updates(**{sweep.parameter: value}, label=label)
            for value, label in zip(sweep.values, labels)]


# ================================
# Mass accounting
# ================================

def calculate_column_mass(output: SimulationOutput, pool: str = 'C') -> np.ndarray:
    """Total mass of a pool in the column (per unit area) at every output time."""
    return output.pool(pool).sum(axis=1) * output.grid.depth_step


def mass_budget(output: SimulationOutput, fluxes: Dict[str, BoundaryFlux],
                pool: str = 'C') -> Dict[str, np.ndarray]:
    """
    Cumulative mass budget of one pool over the output times.

    Input, decay loss and bottom outflow are time-integrated with the
    trapezoidal rule, so the residual shrinks with finer output spacing.

    Returns:
        Dictionary of arrays: storage_change, input, decay_loss, outflow, residual
    """
    times = output.times
    X = output.pool(pool)
    dz = output.grid.depth_step
    loss_rates = pool_loss_rates(output.parameters, output.grid, output.pools)
    rates = loss_rates[output.pools.index(pool)]

    storage = calculate_column_mass(output, pool)
    influx = cumulative_trapezoid(fluxes[pool](times), times, initial=0.0)
    decay_loss = cumulative_trapezoid((rates * X).sum(axis=1) * dz, times, initial=0.0)
    outflow = cumulative_trapezoid(output.parameters.advection_velocity * X[:, -1],
                                   times, initial=0.0)
    storage_change = storage - storage[0]

    return {
        'storage_change': storage_change,
        'input': influx,
        'decay_loss': decay_loss,
        'outflow': outflow,
        'residual': storage_change - (influx - decay_loss - outflow),
    }


# ================================
# Model wrapper
# ================================

class SoilDecompositionModel:
    """
    Soil organic matter decomposition model with isotope tracking.

    Wraps the functional core (grid, parameter sets, fluxes, integrator)
    behind the configuration system:

    1. setup_model() builds the depth grid, surface fluxes, output times
       and the parameter sets of the configured sweep
    2. run_simulation() integrates one parameter set
    3. run_sweep() integrates every parameter set of the sweep

    Boundary Conditions:
    - Top: prescribed litter input flux of every pool
    - Bottom: free outflow (upwind flux v * X of the last cell)
    """

    def __init__(self, config: Optional[ModelConfiguration] = None,
                 base_dir: Optional[Path] = None) -> None:
        """
        Initialize the model.

        Args:
            config: Model configuration object. If None, loads default configuration.
            base_dir: Directory relative input file paths are resolved against

        Raises:
            ConfigurationError: If configuration validation fails
        """
        self.config = config or load_config()
        self.config.validate()
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

        self.grid = None
        self.pools = None
        self.fluxes = None
        self.output_times = None
        self.parameter_sets = []

        self.results = []
        self.metadata = {}

        self._is_setup = False

    @property
    def verbose(self) -> bool:
        return self.config.output.verbose

    @property
    def solver_options(self) -> Dict[str, Any]:
        numerical = self.config.numerical
        return {
            'start_time': numerical.start_time,
            'method': numerical.method,
            'rtol': numerical.rtol,
            'atol': numerical.atol,
            'max_rhs_evaluations': numerical.max_rhs_evaluations,
        }

    def setup_model(self) -> None:
        """Build grid, fluxes, output times and parameter sets from the configuration."""
        numerical = self.config.numerical

        self.grid = DepthGrid.from_config(self.config.grid)
        self.pools = ISOTOPE_POOLS if numerical.track_isotopes else BULK_POOLS
        self.fluxes = build_boundary_fluxes(self.config.inputs, self.base_dir, verbose=self.verbose)

        if numerical.output_times is not None:
            self.output_times = np.asarray(numerical.output_times, dtype=float)
        else:
            self.output_times = np.linspace(numerical.start_time,
                                            numerical.start_time + numerical.run_years,
                                            numerical.n_output_times)

        self.parameter_sets = build_parameter_sets(self.config)
        for parameters in self.parameter_sets:
            parameters.decay_rate_profile(self.grid)

        self.metadata = {
            'n_cells': self.grid.n_cells,
            'depth_step': self.grid.depth_step,
            'pools': list(self.pools.names),
            'n_output_times': len(self.output_times),
            'method': numerical.method,
            'sweep_parameter': self.config.sweep.parameter,
            'n_runs': len(self.parameter_sets),
        }
        self._is_setup = True

        if self.verbose:
            print(f"Soil Decomposition Model: {self.grid.n_cells} cells, {self.grid.depth_step} cm steps "
                  f"({self.config.grid.column_depth:g} cm column), "
                  f"{len(self.pools)} pools, {numerical.run_years:g} years, "
                  f"{len(self.parameter_sets)} parameter set(s)")

    def run_simulation(self, parameters: Optional[ModelParameters] = None) -> SimulationOutput:
        """
        Integrate a single parameter set (the first configured one by default).

        Raises:
            IntegrationFailure: If the solver fails
        """
        if not self._is_setup:
            self.setup_model()
        if parameters is None:
            parameters = self.parameter_sets[0]

        output = integrate(self.grid, parameters, self.fluxes, self.output_times,
                           self.pools, **self.solver_options)
        if self.verbose:
            print(f"Simulation completed in {output.execution_time:.1f} seconds")
        return output

    def run_sweep(self) -> List[SweepResult]:
        """Integrate every configured parameter set."""
        if not self._is_setup:
            self.setup_model()

        start_time = time.time()
        self.results = run_parameter_sweep(
            self.parameter_sets, self.grid, self.fluxes, self.output_times, self.pools,
            max_workers=self.config.numerical.max_workers, verbose=self.verbose,
            **self.solver_options)

        n_failed = sum(not result.success for result in self.results)
        self.metadata['execution_time'] = time.time() - start_time
        self.metadata['n_failed'] = n_failed
        if self.verbose:
            print(f"Sweep completed in {self.metadata['execution_time']:.1f} seconds "
                  f"({len(self.results) - n_failed} succeeded, {n_failed} failed)")
        return self.results

    def verify_mass_balance(self, output: SimulationOutput, pool: str = 'C',
                            tolerance: float = 1e-2) -> Dict[str, Any]:
        """
        Compare column storage with cumulative input, decay and outflow.

        Args:
            output: Result of run_simulation
            pool: Pool to check
            tolerance: Allowed |residual| relative to cumulative input

        Returns:
            Dictionary with 'mass_conserved', 'relative_error' and the final budget terms
        """
        budget = mass_budget(output, self.fluxes, pool)
        scale = max(abs(budget['input'][-1]), np.finfo(float).tiny)
        relative_error = float(abs(budget['residual'][-1]) / scale)
        summary = {
            'mass_conserved': relative_error <= tolerance,
            'relative_error': relative_error,
            'storage_change': float(budget['storage_change'][-1]),
            'input': float(budget['input'][-1]),
            'decay_loss': float(budget['decay_loss'][-1]),
            'outflow': float(budget['outflow'][-1]),
        }

        if self.verbose:
            print(f"\n=== MASS BALANCE SUMMARY ({pool}) ===")
            print(f"Cumulative input:    {summary['input']:.6e}")
            print(f"Decomposition loss:  {summary['decay_loss']:.6e}")
            print(f"Bottom outflow:      {summary['outflow']:.6e}")
            print(f"Storage change:      {summary['storage_change']:.6e}")
            print(f"Relative residual:   {relative_error:.2e}")
            print(f"===============================\n")

        return summary
