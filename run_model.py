#!/usr/bin/env python3
"""
Soil Decomposition Model Runner
===============================

Runs the configured parameter sweep and writes the paper figures and
CSV tables:

    python run_model.py --config default_config.yaml

Figures per run: C, C/N and delta-value contours over time and depth,
final depth profiles. Figures per sweep: final-profile comparisons.
"""

import argparse
import warnings
from pathlib import Path
from typing import List, Optional

from config_manager import ModelConfiguration, load_config
from decomposition_model import SoilDecompositionModel, SweepResult
from plotting_utils import DecompositionPlotter
from post_processing import summarize_output, sweep_to_dataframe


def save_tables(results: List[SweepResult], config: ModelConfiguration, output_dir: Path) -> None:
    """Write full and final-profile tables of every successful run."""
    prefix = config.output.filename_prefix
    full = sweep_to_dataframe(results)
    if full.empty:
        print("⚠ No successful runs - no tables written")
        return
    full.to_csv(output_dir / f"{prefix}_results.csv", index=False)
    sweep_to_dataframe(results, final_only=True).to_csv(
        output_dir / f"{prefix}_final_profiles.csv", index=False)
    print(f"✓ Tables saved to {output_dir}")


def save_figures(results: List[SweepResult], config: ModelConfiguration, output_dir: Path) -> None:
    """Write contour, profile and comparison figures."""
    out = config.output
    plotter = DecompositionPlotter()

    def save(name: str) -> None:
        plotter.save_current_plot(output_dir / f"{out.filename_prefix}_{name}.{out.plot_format}",
                                  dpi=out.plot_dpi, format=out.plot_format)

    for i, result in enumerate(results, start=1):
        if not result.success:
            continue
        tag = f"run{i:02d}"
        for quantity in ('C', 'CN', 'd13C', 'd15N'):
            if quantity in ('d13C', 'd15N') and not config.numerical.track_isotopes:
                continue
            if plotter.create_evolution_contour(result.output, quantity):
                save(f"{tag}_{quantity}_contour")
        if plotter.create_depth_profiles_plot(result.output):
            save(f"{tag}_profiles")

    if len(results) > 1:
        quantities = ['C', 'CN'] + (['d13C', 'd15N'] if config.numerical.track_isotopes else [])
        for quantity in quantities:
            if plotter.create_multi_run_comparison_plot(results, quantity):
                save(f"sweep_{quantity}_comparison")
    print(f"✓ Figures saved to {output_dir}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Soil organic matter decomposition with C/N isotope tracking")
    parser.add_argument('--config', type=Path, default=None,
                        help="YAML or JSON configuration file (default: built-in defaults)")
    parser.add_argument('--output-dir', type=Path, default=None,
                        help="Directory for figures and tables (overrides the configuration)")
    parser.add_argument('--no-plots', action='store_true', help="Skip figure generation")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    base_dir = args.config.parent if args.config is not None else Path.cwd()
    output_dir = args.output_dir or Path(config.output.output_directory)
    output_dir.mkdir(parents=True, exist_ok=True)

    model = SoilDecompositionModel(config, base_dir=base_dir)
    results = model.run_sweep()

    for result in results:
        if not result.success:
            continue
        model.verify_mass_balance(result.output, 'C')
        summary = summarize_output(result.output)
        print(f"{summary['label']}: surface C/N = {summary['surface_CN']}, "
              f"column C = {summary['column_C']:.1f}")

    if config.output.save_csv:
        save_tables(results, config, output_dir)
    if config.output.save_plots and not args.no_plots:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RuntimeWarning)
            save_figures(results, config, output_dir)

    return 0 if all(result.success for result in results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
