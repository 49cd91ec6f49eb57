"""Tests for boundary flux providers and input series loading."""

import pickle

import numpy as np
import pandas as pd
import pytest

from config_manager import ConfigurationError, InputParameters
from flux_utils import BoundaryFlux, build_boundary_fluxes, load_input_series, tracer_flux
from isotope_utils import R_VPDB, delta_to_ratio


class TestBoundaryFlux:

    def test_constant_flux(self):
        flux = BoundaryFlux.constant(100.0)
        assert flux(0.0) == 100.0
        assert flux(1e6) == 100.0
        np.testing.assert_array_equal(flux(np.array([0.0, 5.0])), [100.0, 100.0])

    def test_linear_interpolation(self):
        flux = BoundaryFlux([0.0, 10.0, 20.0], [0.0, 100.0, 50.0])
        assert flux(5.0) == pytest.approx(50.0)
        assert flux(15.0) == pytest.approx(75.0)

    def test_clamped_outside_range(self):
        flux = BoundaryFlux([0.0, 10.0], [1.0, 3.0])
        assert flux(-5.0) == 1.0
        assert flux(50.0) == 3.0

    def test_uneven_spacing(self):
        flux = BoundaryFlux([0.0, 1.0, 100.0], [0.0, 1.0, 100.0])
        assert flux(50.5) == pytest.approx(50.5)

    def test_duplicate_times_rejected(self):
        with pytest.raises(ConfigurationError, match="duplicate"):
            BoundaryFlux([0.0, 1.0, 1.0], [1.0, 2.0, 3.0])

    def test_unsorted_times_rejected(self):
        with pytest.raises(ConfigurationError, match="sorted"):
            BoundaryFlux([0.0, 2.0, 1.0], [1.0, 2.0, 3.0])

    def test_length_mismatch_rejected(self):
        with pytest.raises(ConfigurationError, match="mismatch"):
            BoundaryFlux([0.0, 1.0], [1.0])

    def test_empty_series_rejected(self):
        with pytest.raises(ConfigurationError):
            BoundaryFlux([], [])

    def test_series_is_read_only(self):
        flux = BoundaryFlux([0.0, 1.0], [1.0, 2.0])
        with pytest.raises(ValueError):
            flux.values[0] = 5.0

    def test_pickle_round_trip(self):
        flux = BoundaryFlux([0.0, 10.0], [1.0, 3.0], 'C')
        restored = pickle.loads(pickle.dumps(flux))
        assert restored(5.0) == pytest.approx(2.0)
        assert restored.name == 'C'


class TestTracerFlux:

    def test_constant_delta(self):
        bulk = BoundaryFlux.constant(100.0)
        tracer = tracer_flux(bulk, BoundaryFlux.constant(-27.0), R_VPDB)
        assert tracer(12.0) == pytest.approx(100.0 * delta_to_ratio(-27.0, R_VPDB))

    def test_time_varying_delta_uses_union_of_times(self):
        bulk = BoundaryFlux([0.0, 10.0], [100.0, 200.0])
        delta = BoundaryFlux([0.0, 5.0], [-25.0, -30.0])
        tracer = tracer_flux(bulk, delta, R_VPDB)
        np.testing.assert_array_equal(tracer.times, [0.0, 5.0, 10.0])
        assert tracer(5.0) == pytest.approx(150.0 * delta_to_ratio(-30.0, R_VPDB))


class TestLoadInputSeries:

    def test_csv_with_time_offset(self, tmp_path):
        path = tmp_path / "history.csv"
        pd.DataFrame({'year': [1950, 1850, 2000], 'd13C': [-25.8, -25.4, -27.1]}).to_csv(path, index=False)

        series = load_input_series(path, 'year', 'd13C', start_time=1800, verbose=False)

        np.testing.assert_array_equal(series.times, [50.0, 150.0, 200.0])
        assert series(100.0) == pytest.approx(-25.6)
        assert series(0.0) == pytest.approx(-25.4)

    def test_default_offset_is_first_time(self, tmp_path):
        path = tmp_path / "history.csv"
        pd.DataFrame({'year': [1850, 1900], 'd13C': [-25.4, -25.5]}).to_csv(path, index=False)
        series = load_input_series(path, 'year', 'd13C', verbose=False)
        assert series.time_range == (0.0, 50.0)

    def test_excel_file(self, tmp_path):
        pytest.importorskip("openpyxl")
        path = tmp_path / "history.xlsx"
        pd.DataFrame({'year': [0, 10], 'value': [1.0, 2.0]}).to_excel(path, index=False)
        series = load_input_series(path, 'year', 'value', verbose=False)
        assert series(5.0) == pytest.approx(1.5)

    def test_duplicate_times_rejected(self, tmp_path):
        path = tmp_path / "history.csv"
        pd.DataFrame({'year': [1850, 1850], 'd13C': [-25.4, -25.5]}).to_csv(path, index=False)
        with pytest.raises(ConfigurationError, match="Duplicate"):
            load_input_series(path, 'year', 'd13C', verbose=False)

    def test_missing_column_rejected(self, tmp_path):
        path = tmp_path / "history.csv"
        pd.DataFrame({'year': [1850], 'value': [-25.4]}).to_csv(path, index=False)
        with pytest.raises(ConfigurationError, match="Missing"):
            load_input_series(path, 'year', 'd13C', verbose=False)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_input_series(tmp_path / "absent.csv", 'year', 'd13C')


class TestBuildBoundaryFluxes:

    def test_constant_inputs(self):
        fluxes = build_boundary_fluxes(InputParameters(carbon_input=90.0, input_cn_ratio=30.0),
                                       verbose=False)
        assert set(fluxes) == {'C', 'N', '13C', '15N'}
        assert fluxes['N'](0.0) == pytest.approx(3.0)
        assert fluxes['13C'](0.0) == pytest.approx(90.0 * delta_to_ratio(-27.0, R_VPDB))

    def test_history_file_resolved_against_base_dir(self, tmp_path):
        pd.DataFrame({'year': [1000, 1100], 'd13C': [-20.0, -30.0]}).to_csv(
            tmp_path / "plant.csv", index=False)
        inputs = InputParameters(d13C_history_file="plant.csv", history_start_year=1000)

        fluxes = build_boundary_fluxes(inputs, base_dir=tmp_path, verbose=False)

        assert fluxes['13C'](50.0) == pytest.approx(100.0 * delta_to_ratio(-25.0, R_VPDB))
        assert fluxes['13C'](500.0) == pytest.approx(100.0 * delta_to_ratio(-30.0, R_VPDB))
