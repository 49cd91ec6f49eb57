"""Tests for derived quantities, tabular export and output summaries."""

import warnings

import numpy as np
import pytest

from decomposition_model import (
    BULK_POOLS, ISOTOPE_POOLS, DepthGrid, IntegrationFailure, ModelParameters,
    SimulationOutput, SweepResult, integrate,
)
from isotope_utils import R_AIR_N2, R_VPDB, delta_to_ratio
from post_processing import (
    cn_ratio, delta_values, derived_fields, final_profile, final_profiles,
    results_to_dataframe, safe_ratio, split_pools, summarize_output, sweep_to_dataframe,
)


def hand_built_output(C, N, C13=None, N15=None, label="hand"):
    """SimulationOutput with given [time, depth] pool arrays."""
    C = np.atleast_2d(np.asarray(C, dtype=float))
    N = np.atleast_2d(np.asarray(N, dtype=float))
    n_times, n_cells = C.shape
    grid = DepthGrid(n_cells=n_cells, depth_step=2.0)
    params = ModelParameters(advection_velocity=0.5, k0=0.2, z_half=20.0,
                             p_C=0.4, p_N=0.3, label=label)
    if C13 is None:
        pools, blocks = BULK_POOLS, [C, N]
    else:
        pools = ISOTOPE_POOLS
        blocks = [C, N, np.atleast_2d(C13), np.atleast_2d(N15)]
    return SimulationOutput(np.arange(n_times, dtype=float), grid.depths,
                            np.hstack(blocks), pools, grid, params)


class TestSafeRatio:

    def test_regular_division(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            ratio = safe_ratio([6.0, 9.0], [2.0, 3.0])
        np.testing.assert_allclose(ratio, [3.0, 3.0])
        assert not np.ma.is_masked(ratio)

    def test_zero_denominator_masked_with_warning(self):
        with pytest.warns(RuntimeWarning, match="2 of 3"):
            ratio = safe_ratio([1.0, 0.0, 4.0], [0.0, 0.0, 2.0], name="C/N")
        np.testing.assert_array_equal(np.ma.getmaskarray(ratio), [True, True, False])
        assert ratio[2] == 2.0
        assert np.isnan(ratio.data[0])

    def test_negative_denominator_masked(self):
        with pytest.warns(RuntimeWarning):
            ratio = safe_ratio([1.0], [-1e-12])
        assert ratio.mask[0]


class TestDerivedQuantities:

    def test_split_pools(self):
        output = hand_built_output([[1.0, 2.0]], [[0.1, 0.2]])
        pools = split_pools(output)
        assert list(pools) == ['C', 'N']
        np.testing.assert_array_equal(pools['N'], [[0.1, 0.2]])

    def test_cn_ratio_masked_for_empty_column(self):
        output = hand_built_output([[0.0, 0.0], [30.0, 15.0]], [[0.0, 0.0], [1.0, 1.0]])
        with pytest.warns(RuntimeWarning, match="C/N"):
            ratio = cn_ratio(output)
        assert ratio.mask[0].all()
        np.testing.assert_allclose(ratio[1], [30.0, 15.0])

    def test_delta_values_recover_composition(self):
        C = np.array([[100.0, 50.0]])
        N = np.array([[4.0, 2.0]])
        C13 = C * delta_to_ratio(np.array([-27.0, -25.0]), R_VPDB)
        N15 = N * delta_to_ratio(np.array([1.0, 5.0]), R_AIR_N2)
        output = hand_built_output(C, N, C13, N15)

        np.testing.assert_allclose(delta_values(output, 'C')[0], [-27.0, -25.0], atol=1e-10)
        np.testing.assert_allclose(delta_values(output, 'N')[0], [1.0, 5.0], atol=1e-10)

    def test_delta_values_masked_where_bulk_is_empty(self):
        output = hand_built_output([[0.0, 10.0]], [[1.0, 1.0]], [[0.0, 0.11]], [[0.0036, 0.0036]])
        with pytest.warns(RuntimeWarning):
            d13C = delta_values(output, 'C')
        assert d13C.mask[0, 0]
        assert not d13C.mask[0, 1]

    def test_delta_values_need_tracer_pool(self):
        output = hand_built_output([[1.0]], [[1.0]])
        with pytest.raises(KeyError):
            delta_values(output, 'C')

    def test_derived_fields_keys(self):
        bulk = hand_built_output([[1.0]], [[1.0]])
        assert set(derived_fields(bulk)) == {'C', 'N', 'CN'}
        full = hand_built_output([[1.0]], [[1.0]], [[0.011]], [[0.0037]])
        assert set(derived_fields(full)) == {'C', 'N', '13C', '15N', 'CN', 'd13C', 'd15N'}

    def test_final_profile(self):
        field = np.arange(6.0).reshape(3, 2)
        np.testing.assert_array_equal(final_profile(field), [4.0, 5.0])
        np.testing.assert_array_equal(final_profile(np.array([1.0, 2.0])), [1.0, 2.0])


class TestSimulatedProfiles:

    def test_fractionation_enriches_with_depth(self, small_grid, fluxes):
        params = ModelParameters(advection_velocity=0.5, k0=0.2, z_half=20.0,
                                 p_C=0.4, p_N=0.3, alpha_C=0.99, alpha_N=0.99)
        output = integrate(small_grid, params, fluxes, [0.0, 300.0], ISOTOPE_POOLS,
                           rtol=1e-10, atol=1e-14)
        d13C = final_profile(delta_values(output, 'C'))

        # Light isotope is lost preferentially, so the residue gets heavier downward
        assert d13C[0] > -27.0
        assert np.all(np.diff(d13C) > 0)

    def test_no_fractionation_keeps_input_delta(self, fluxes):
        grid = DepthGrid(n_cells=30, depth_step=1.0)
        params = ModelParameters(advection_velocity=0.5, k0=0.2, z_half=20.0, p_C=0.4, p_N=0.3)
        output = integrate(grid, params, fluxes, [0.0, 200.0], ISOTOPE_POOLS,
                           rtol=1e-10, atol=1e-14)
        np.testing.assert_allclose(final_profile(delta_values(output, 'C')), -27.0, atol=1e-5)
        np.testing.assert_allclose(final_profile(delta_values(output, 'N')), 2.0, atol=1e-5)


class TestTabularExport:

    def test_results_to_dataframe_long_format(self):
        output = hand_built_output([[0.0, 0.0], [30.0, 20.0], [40.0, 25.0]],
                                   [[0.0, 0.0], [1.0, 1.0], [1.0, 1.0]], label="run A")
        frame = results_to_dataframe(output)

        assert len(frame) == 6
        assert list(frame.columns[:3]) == ['label', 'time', 'depth']
        assert {'C', 'N', 'CN'} <= set(frame.columns)
        assert (frame['label'] == "run A").all()
        np.testing.assert_array_equal(frame['depth'].iloc[:2], [0.0, 2.0])
        assert frame['CN'].iloc[:2].isna().all()
        assert frame['CN'].iloc[-1] == pytest.approx(25.0)

    def test_sweep_to_dataframe_skips_failures(self):
        good = hand_built_output([[1.0], [2.0]], [[1.0], [1.0]], label="good")
        failed = SweepResult(good.parameters.with_updates(label="bad"),
                             error=IntegrationFailure("diverged", "bad", 1.0))
        results = [SweepResult(good.parameters, output=good), failed]

        frame = sweep_to_dataframe(results)
        assert set(frame['label']) == {"good"}
        assert len(frame) == 2

        final = sweep_to_dataframe(results, final_only=True)
        assert len(final) == 1
        assert final['C'].iloc[0] == 2.0

    def test_empty_sweep_frame(self):
        assert sweep_to_dataframe([]).empty

    def test_final_profiles_by_label(self):
        first = hand_built_output([[0.0], [30.0]], [[0.0], [1.0]], label="a")
        second = hand_built_output([[0.0], [20.0]], [[0.0], [1.0]], label="b")
        results = [SweepResult(first.parameters, output=first),
                   SweepResult(second.parameters, output=second)]

        profiles = final_profiles(results, 'CN')
        assert list(profiles) == ["a", "b"]
        assert profiles["b"][0] == pytest.approx(20.0)


class TestSummarizeOutput:

    def test_surface_and_column_values(self):
        output = hand_built_output([[0.0, 0.0], [30.0, 10.0]], [[0.0, 0.0], [1.0, 0.5]])
        summary = summarize_output(output)
        assert summary['surface_C'] == 30.0
        assert summary['surface_CN'] == pytest.approx(30.0)
        assert summary['column_C'] == pytest.approx(80.0)
        assert 'surface_d13C' not in summary

    def test_masked_surface_ratio_reported_as_none(self):
        output = hand_built_output([[0.0]], [[0.0]], [[0.0]], [[0.0]])
        summary = summarize_output(output)
        assert summary['surface_CN'] is None
        assert summary['surface_d13C'] is None
