"""Shared fixtures for the decomposition model tests."""

import numpy as np
import pytest

from decomposition_model import DepthGrid, ModelParameters
from flux_utils import BoundaryFlux, tracer_flux
from isotope_utils import R_AIR_N2, R_VPDB


CARBON_INPUT = 100.0
NITROGEN_INPUT = 100.0 / 30.0
D13C_INPUT = -27.0
D15N_INPUT = 2.0


def constant_fluxes(carbon=CARBON_INPUT, nitrogen=NITROGEN_INPUT,
                    d13C=D13C_INPUT, d15N=D15N_INPUT):
    C = BoundaryFlux.constant(carbon, 'C')
    N = BoundaryFlux.constant(nitrogen, 'N')
    return {
        'C': C,
        'N': N,
        '13C': tracer_flux(C, BoundaryFlux.constant(d13C), R_VPDB, '13C'),
        '15N': tracer_flux(N, BoundaryFlux.constant(d15N), R_AIR_N2, '15N'),
    }


@pytest.fixture
def fluxes():
    return constant_fluxes()


@pytest.fixture
def zero_fluxes():
    return {name: BoundaryFlux.constant(0.0, name) for name in ('C', 'N', '13C', '15N')}


@pytest.fixture
def small_grid():
    return DepthGrid(n_cells=20, depth_step=1.0)


@pytest.fixture
def params():
    """Reference kinetics: v=0.5 cm/yr, k0=0.2/yr, z_half=20 cm."""
    return ModelParameters(advection_velocity=0.5, k0=0.2, z_half=20.0,
                           p_C=0.4, p_N=0.3, alpha_C=0.999, alpha_N=0.995,
                           label="reference")


@pytest.fixture
def tight_tolerances():
    return {'rtol': 1e-9, 'atol': 1e-12}


@pytest.fixture
def small_config_dict():
    """Configuration small enough to integrate in well under a second."""
    return {
        'grid': {'n_cells': 20, 'depth_step': 1.0},
        'kinetics': {'advection_velocity': 0.5, 'k0': 0.2, 'z_half': 20.0,
                     'p_C': 0.4, 'p_N': 0.3, 'alpha_C': 0.999, 'alpha_N': 0.995},
        'inputs': {'carbon_input': 100.0, 'input_cn_ratio': 30.0,
                   'd13C_input': -27.0, 'd15N_input': 0.0},
        'numerical': {'run_years': 50.0, 'n_output_times': 501},
        'sweep': {'parameter': 'k0', 'values': [0.1, 0.2]},
        'output': {'verbose': False, 'plot_dpi': 40},
    }


def analytic_steady_state(grid, params, flux, p):
    """Steady state of the upwind column, solved cell by cell from the surface."""
    k = params.decay_rate_profile(grid)
    dz = grid.depth_step
    v = params.advection_velocity
    X = np.zeros(grid.n_cells)
    inflow = flux
    for i in range(grid.n_cells):
        X[i] = inflow / (v + k[i] * p * dz)
        inflow = v * X[i]
    return X
