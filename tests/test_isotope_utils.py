"""Tests for kinetics functions and delta-notation conversions."""

import numpy as np
import pytest

from config_manager import ConfigurationError
from isotope_utils import (
    R_AIR_N2, R_VPDB, delta_to_ratio, depth_decay_rate, exponential_decay,
    ratio_to_delta, reference_standard,
)


class TestExponentialDecay:

    def test_equals_initial_value_at_time_zero(self):
        assert exponential_decay(5.0, 0.2, 0.4, 0.0) == 5.0

    @pytest.mark.parametrize("k,p", [(0.2, 0.4), (1.5, 1.0), (0.0, 0.5), (0.3, 0.0)])
    def test_monotone_non_increasing_in_time(self, k, p):
        t = np.linspace(0.0, 100.0, 201)
        X = exponential_decay(10.0, k, p, t)
        assert np.all(np.diff(X) <= 0)

    def test_known_value(self):
        assert exponential_decay(2.0, 0.5, 0.5, 4.0) == pytest.approx(2.0 * np.exp(-1.0))


class TestDepthDecayRate:

    def test_surface_rate_is_k0(self):
        assert depth_decay_rate(0.0, 0.2, 20.0) == pytest.approx(0.2)

    def test_rate_halves_at_half_depth(self):
        assert depth_decay_rate(20.0, 0.2, 20.0) == pytest.approx(0.1)
        assert depth_decay_rate(40.0, 0.2, 20.0) == pytest.approx(0.05)

    def test_equivalent_e_folding_length(self):
        z = np.linspace(0.0, 100.0, 11)
        e_folding = 20.0 / np.log(2.0)
        np.testing.assert_allclose(depth_decay_rate(z, 0.2, 20.0), 0.2 * np.exp(-z / e_folding))
        assert depth_decay_rate(20.0, 0.2, 20.0) != pytest.approx(0.2 * np.exp(-1.0))

    def test_monotonically_decreasing(self):
        k = depth_decay_rate(np.arange(100.0), 0.2, 20.0)
        assert np.all(np.diff(k) < 0)

    @pytest.mark.parametrize("zh", [0.0, -5.0])
    def test_non_positive_half_depth_rejected(self, zh):
        with pytest.raises(ConfigurationError):
            depth_decay_rate(1.0, 0.2, zh)


class TestDeltaConversions:

    @pytest.mark.parametrize("standard", [R_VPDB, R_AIR_N2])
    def test_round_trip(self, standard):
        deltas = np.linspace(-50.0, 50.0, 101)
        recovered = ratio_to_delta(delta_to_ratio(deltas, standard), standard)
        np.testing.assert_allclose(recovered, deltas, atol=1e-9)

    def test_zero_delta_is_the_standard(self):
        assert delta_to_ratio(0.0, R_VPDB) == pytest.approx(R_VPDB)
        assert ratio_to_delta(R_AIR_N2, R_AIR_N2) == pytest.approx(0.0)

    def test_known_ratio(self):
        assert delta_to_ratio(-27.0, R_VPDB) == pytest.approx(0.973 * 0.0112372)

    def test_reference_standard_lookup(self):
        assert reference_standard('C') == R_VPDB
        assert reference_standard('N') == R_AIR_N2
        with pytest.raises(ConfigurationError):
            reference_standard('O')
