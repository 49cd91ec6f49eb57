"""
Isotope and Kinetics Utilities
=============================

Scalar kinetics functions and delta-notation conversions shared by the
boundary-flux providers, the decomposition model and post-processing.

All functions broadcast over numpy arrays.

Author: Python Implementation for Soil Organic Matter Isotope Research
"""

import numpy as np
from typing import Union

from config_manager import ConfigurationError

ArrayLike = Union[float, np.ndarray]

# Reference isotope ratios
R_VPDB = 0.0112372  # 13C/12C, Vienna Pee Dee Belemnite
R_AIR_N2 = 0.003676  # 15N/14N, atmospheric N2

REFERENCE_STANDARDS = {
    'C': R_VPDB,
    'N': R_AIR_N2,
}


def exponential_decay(X0: ArrayLike, k: ArrayLike, p: ArrayLike, t: ArrayLike) -> ArrayLike:
    """
    First-order loss of a pool: X(t) = X0 * exp(-p * k * t).

    Args:
        X0: Initial pool size
        k: Decomposition rate (1/time)
        p: Fraction of decomposed material lost from the pool (0-1)
        t: Elapsed time

    Returns:
        Remaining pool size
    """
    return X0 * np.exp(-p * k * t)


def depth_decay_rate(z: ArrayLike, k0: float, zh: float) -> ArrayLike:
    """
    Decomposition rate attenuated exponentially with depth.

    ``zh`` is the half-attenuation depth: the rate equals ``k0`` at the
    surface and ``k0 / 2`` at ``z = zh``, i.e. k(z) = k0 * exp(-z ln2 / zh).

    This is not the e-folding form k0 * exp(-z / zh): below the surface
    the two differ by a factor 2**(-z/zh) / exp(-z/zh), so a ``zh`` taken
    from an e-folding parameterisation must be multiplied by ln 2 first.

    Args:
        z: Depth (same length unit as zh)
        k0: Surface decomposition rate
        zh: Half-attenuation depth, must be positive

    Returns:
        Decomposition rate at depth z

    Raises:
        ConfigurationError: If zh is not positive
    """
    if zh <= 0:
        raise ConfigurationError(f"Half-attenuation depth must be positive, got {zh}")
    return k0 * np.exp(-np.log(2.0) * np.asarray(z, dtype=float) / zh)


def delta_to_ratio(delta: ArrayLike, standard: float) -> ArrayLike:
    """Convert a delta value (per mil) to an isotope ratio."""
    return (1000.0 + delta) * standard / 1000.0


def ratio_to_delta(ratio: ArrayLike, standard: float) -> ArrayLike:
    """Convert an isotope ratio to a delta value (per mil)."""
    return ((ratio - standard) / standard) * 1000.0


def reference_standard(element: str) -> float:
    """Reference ratio for 'C' (VPDB) or 'N' (air N2)."""
    try:
        return REFERENCE_STANDARDS[element]
    except KeyError:
        raise ConfigurationError(
            f"No isotope standard for element '{element}', expected one of {list(REFERENCE_STANDARDS)}")
