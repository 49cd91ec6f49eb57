"""
Configuration Management System
==============================

Centralized configuration management with validation and serialization
for the soil organic matter decomposition model.

This module combines configuration parameter definitions and management
functionality into a single system. Configurations are plain nested
dataclasses that round-trip through YAML or JSON files.

Author: Python Implementation for Soil Organic Matter Isotope Research
"""

import json
import yaml
import numpy as np
from pathlib import Path
from typing import Dict, Any, Optional, List, Union
from dataclasses import dataclass, field, asdict
import warnings
from contextlib import contextmanager


class ConfigurationError(ValueError):
    """Invalid model configuration detected before integration starts."""


# ================================
# Utility Functions
# ================================

def validate_range(value: float, min_val: float, max_val: float, name: str,
                  unit: str = "") -> None:
    """Shared validation for numeric ranges."""
    if not np.isfinite(value) or not min_val <= value <= max_val:
        unit_str = f" {unit}" if unit else ""
        raise ConfigurationError(f"{name} must be {min_val}-{max_val}{unit_str}, got {value}{unit_str}")

def validate_positive(value: float, name: str) -> None:
    """Shared validation for positive values."""
    if not np.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} must be finite and positive, got {value}")

def validate_non_negative(value: float, name: str) -> None:
    """Shared validation for non-negative values."""
    if not np.isfinite(value) or value < 0:
        raise ConfigurationError(f"{name} must be finite and non-negative, got {value}")

def load_config_file(file_path: Path) -> Dict[str, Any]:
    """Load configuration from JSON or YAML file."""
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    suffix = file_path.suffix.lower()
    with open(file_path, 'r') as f:
        if suffix == '.json':
            return json.load(f)
        elif suffix in ['.yaml', '.yml']:
            return yaml.safe_load(f) or {}
        else:
            raise ConfigurationError(f"Unsupported configuration file format: {suffix}")

def save_config_file(file_path: Path, config_dict: Dict[str, Any]) -> None:
    """Save configuration to JSON or YAML file."""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    suffix = file_path.suffix.lower()
    with open(file_path, 'w') as f:
        if suffix == '.json':
            json.dump(config_dict, f, indent=2, default=str)
        elif suffix in ['.yaml', '.yml']:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)
        else:
            raise ConfigurationError(f"Unsupported configuration file format: {suffix}")

@contextmanager
def config_error_handler(operation: str):
    """Context manager for consistent error handling."""
    try:
        yield
    except (OSError, yaml.YAMLError, json.JSONDecodeError, TypeError) as e:
        print(f"Failed to {operation}: {e}")
        raise ConfigurationError(f"Failed to {operation}: {e}") from e


# ================================
# Configuration Parameter Classes
# ================================

@dataclass
class GridParameters:
    """Vertical discretization of the soil column."""
    n_cells: int = 100
    depth_step: float = 1.0  # cm

    def __post_init__(self):
        """Validate grid parameters."""
        if not np.isfinite(self.n_cells) or int(self.n_cells) != self.n_cells or self.n_cells < 1:
            raise ConfigurationError(f"Number of cells must be a positive integer, got {self.n_cells}")
        self.n_cells = int(self.n_cells)
        validate_positive(self.depth_step, "Depth step")

    @property
    def column_depth(self) -> float:
        return self.n_cells * self.depth_step


@dataclass
class KineticParameters:
    """Transport and decomposition kinetics."""
    advection_velocity: float = 0.5  # cm/year
    k0: float = 0.2  # 1/year, decomposition rate at the surface
    z_half: float = 20.0  # cm, depth at which the rate is halved
    p_C: float = 0.4  # fraction of decomposed C not returned to the pool
    p_N: float = 0.3  # fraction of decomposed N not returned to the pool
    alpha_C: float = 0.999  # 13C/12C fractionation factor of C loss
    alpha_N: float = 0.995  # 15N/14N fractionation factor of N loss

    def __post_init__(self):
        """Validate kinetic parameters."""
        validate_non_negative(self.advection_velocity, "Advection velocity")
        validate_non_negative(self.k0, "Surface decay rate")
        validate_positive(self.z_half, "Half-attenuation depth")
        validate_range(self.p_C, 0.0, 1.0, "p_C")
        validate_range(self.p_N, 0.0, 1.0, "p_N")
        validate_positive(self.alpha_C, "alpha_C")
        validate_positive(self.alpha_N, "alpha_N")
        for name, alpha in (("alpha_C", self.alpha_C), ("alpha_N", self.alpha_N)):
            if not 0.9 <= alpha <= 1.1:
                warnings.warn(f"Unusual fractionation factor {name}: {alpha}")


@dataclass
class InputParameters:
    """Litter input at the soil surface."""
    carbon_input: float = 100.0  # mass C per area per year
    input_cn_ratio: float = 30.0  # C/N of litter input
    d13C_input: float = -27.0  # per mil VPDB
    d15N_input: float = 0.0  # per mil air N2

    # Optional time-varying plant d13C history (CSV or spreadsheet)
    d13C_history_file: Optional[str] = None
    history_time_column: str = "year"
    history_value_column: str = "d13C"
    history_start_year: Optional[float] = None  # year mapped to t = 0

    def __post_init__(self):
        """Validate input parameters."""
        validate_non_negative(self.carbon_input, "Carbon input")
        validate_positive(self.input_cn_ratio, "Input C/N ratio")
        if not -60 <= self.d13C_input <= 10:
            warnings.warn(f"Unusual d13C input: {self.d13C_input} per mil")
        if not -20 <= self.d15N_input <= 30:
            warnings.warn(f"Unusual d15N input: {self.d15N_input} per mil")

    @property
    def nitrogen_input(self) -> float:
        return self.carbon_input / self.input_cn_ratio


@dataclass
class NumericalParameters:
    """Numerical integration settings."""
    run_years: float = 1000.0
    start_time: float = 0.0
    n_output_times: int = 201
    output_times: Optional[List[float]] = None  # overrides the evenly spaced grid
    method: str = "BDF"  # any scipy.integrate.solve_ivp method
    rtol: float = 1e-6
    atol: float = 1e-9
    max_rhs_evaluations: int = 500000
    track_isotopes: bool = True
    max_workers: int = 1

    def __post_init__(self):
        """Validate numerical parameters."""
        validate_positive(self.run_years, "Run years")
        if self.n_output_times < 1:
            raise ConfigurationError(f"Number of output times must be at least 1, got {self.n_output_times}")
        valid_methods = ['RK45', 'RK23', 'DOP853', 'Radau', 'BDF', 'LSODA']
        if self.method not in valid_methods:
            raise ConfigurationError(f"Integration method must be one of {valid_methods}, got {self.method}")
        validate_positive(self.rtol, "Relative tolerance")
        validate_positive(self.atol, "Absolute tolerance")
        validate_positive(self.max_rhs_evaluations, "RHS evaluation budget")
        validate_positive(self.max_workers, "Worker count")
        if self.method in ['RK45', 'RK23', 'DOP853']:
            warnings.warn(f"Explicit method {self.method} may be slow for large decay rates")


@dataclass
class SweepParameters:
    """Parameter sweep definition: one simulation per value."""
    parameter: Optional[str] = None  # name of a KineticParameters field
    values: List[float] = field(default_factory=list)
    labels: Optional[List[str]] = None

    def __post_init__(self):
        """Validate sweep parameters."""
        if self.parameter is None:
            return
        valid = list(KineticParameters.__dataclass_fields__)
        if self.parameter not in valid:
            raise ConfigurationError(f"Sweep parameter must be one of {valid}, got {self.parameter}")
        if not self.values:
            raise ConfigurationError(f"Sweep over '{self.parameter}' has no values")
        if self.labels is not None and len(self.labels) != len(self.values):
            raise ConfigurationError(
                f"Sweep labels ({len(self.labels)}) must match values ({len(self.values)})")


@dataclass
class OutputParameters:
    """Output and visualization settings."""
    save_plots: bool = True
    save_csv: bool = True
    plot_dpi: int = 300
    plot_format: str = 'png'
    output_directory: str = 'output_results'
    filename_prefix: str = 'soil_decomp'
    verbose: bool = True

    def __post_init__(self):
        """Validate output parameters."""
        validate_positive(self.plot_dpi, "Plot DPI")
        if self.plot_format not in ['png', 'pdf', 'svg', 'jpg']:
            raise ConfigurationError(f"Unsupported plot format: {self.plot_format}")


@dataclass
class ModelConfiguration:
    """Complete model configuration."""
    grid: GridParameters = field(default_factory=GridParameters)
    kinetics: KineticParameters = field(default_factory=KineticParameters)
    inputs: InputParameters = field(default_factory=InputParameters)
    numerical: NumericalParameters = field(default_factory=NumericalParameters)
    sweep: SweepParameters = field(default_factory=SweepParameters)
    output: OutputParameters = field(default_factory=OutputParameters)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'ModelConfiguration':
        """Create configuration from dictionary."""
        try:
            return cls(
                grid=GridParameters(**config_dict.get('grid') or {}),
                kinetics=KineticParameters(**config_dict.get('kinetics') or {}),
                inputs=InputParameters(**config_dict.get('inputs') or {}),
                numerical=NumericalParameters(**config_dict.get('numerical') or {}),
                sweep=SweepParameters(**config_dict.get('sweep') or {}),
                output=OutputParameters(**config_dict.get('output') or {})
            )
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration entry: {e}") from e

    @classmethod
    def from_file(cls, file_path: Union[str, Path]) -> 'ModelConfiguration':
        """Load configuration from JSON or YAML file."""
        config_dict = load_config_file(file_path)
        return cls.from_dict(config_dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            'grid': asdict(self.grid),
            'kinetics': asdict(self.kinetics),
            'inputs': asdict(self.inputs),
            'numerical': asdict(self.numerical),
            'sweep': asdict(self.sweep),
            'output': asdict(self.output)
        }

    def to_file(self, file_path: Union[str, Path]) -> None:
        """Save configuration to JSON or YAML file."""
        save_config_file(file_path, self.to_dict())

    def validate(self) -> None:
        """Validate entire configuration for physical consistency."""
        if self.grid.n_cells < 10:
            warnings.warn("Very few depth cells - consider a smaller depth step or more cells")

        times = self.numerical.output_times
        if times is not None:
            if len(times) == 0:
                raise ConfigurationError("Explicit output times list is empty")
            if any(b < a for a, b in zip(times, times[1:])):
                raise ConfigurationError("Output times must be non-decreasing")
            if times[0] < self.numerical.start_time:
                raise ConfigurationError(
                    f"Output times start ({times[0]}) before the start time ({self.numerical.start_time})")


# =============================
# Configuration Factory Functions
# =============================

def create_default_config() -> ModelConfiguration:
    """Create default model configuration (100 cm column, 1000 year run)."""
    return ModelConfiguration()


def load_config(config_path: Union[str, Path, Dict[str, Any], None] = None) -> ModelConfiguration:
    """
    Load model configuration from various sources.

    Args:
        config_path: Path to YAML/JSON file, dictionary, or None for defaults

    Returns:
        ModelConfiguration object
    """
    if config_path is None:
        return create_default_config()

    if isinstance(config_path, dict):
        return ModelConfiguration.from_dict(config_path)

    return ModelConfiguration.from_file(config_path)


# ================================
# Configuration Management Classes
# ================================

class ConfigurationManager:
    """
    Centralized configuration management system.

    Handles loading, saving, validation and dotted-path updates
    of model configurations.
    """

    def __init__(self, default_config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            default_config_path: Path to default configuration file
        """
        self.default_config_path = default_config_path
        self.current_config = None
        self.unsaved_changes = False

        self.load_default_config()

    def load_default_config(self) -> ModelConfiguration:
        """Load default configuration (from the default path when one is set)."""
        self.current_config = load_config(self.default_config_path)
        self.unsaved_changes = False
        return self.current_config

    def load_config_from_file(self, file_path: Path) -> ModelConfiguration:
        """
        Load configuration from file.

        Args:
            file_path: Path to configuration file

        Returns:
            Loaded ModelConfiguration instance
        """
        with config_error_handler(f"load configuration from {file_path}"):
            config_dict = load_config_file(file_path)
        self.current_config = ModelConfiguration.from_dict(config_dict)
        self.unsaved_changes = False
        return self.current_config

    def save_config_to_file(self, file_path: Path,
                           config: Optional[ModelConfiguration] = None) -> None:
        """
        Save configuration to file.

        Args:
            file_path: Path to save configuration
            config: Configuration to save (uses current if None)
        """
        if config is None:
            config = self.current_config

        with config_error_handler(f"save configuration to {file_path}"):
            save_config_file(file_path, config.to_dict())
        self.unsaved_changes = False

    def validate_config(self, config: Optional[ModelConfiguration] = None) -> List[str]:
        """
        Validate configuration parameters.

        Args:
            config: Configuration to validate (uses current if None)

        Returns:
            List of validation error messages (empty if valid)
        """
        if config is None:
            config = self.current_config

        errors = []
        try:
            config.validate()
        except ConfigurationError as e:
            errors.append(str(e))

        return errors

    def update_config_parameter(self, parameter_path: str, value: Any) -> None:
        """
        Update a specific configuration parameter.

        The owning section is rebuilt so its ``__post_init__`` validation
        runs on the new value.

        Args:
            parameter_path: Dot-separated path to parameter (e.g. 'kinetics.k0')
            value: New parameter value

        Raises:
            ConfigurationError: If the path is unknown or the value is invalid
        """
        path_parts = parameter_path.split('.')
        if len(path_parts) != 2:
            raise ConfigurationError(f"Parameter path must be 'section.name', got '{parameter_path}'")

        section_name, attr_name = path_parts
        section = getattr(self.current_config, section_name, None)
        if section is None or attr_name not in section.__dataclass_fields__:
            raise ConfigurationError(f"Unknown configuration parameter: {parameter_path}")

        # Convert value to appropriate type if needed
        current_value = getattr(section, attr_name)
        if isinstance(value, str) and current_value is not None:
            if isinstance(current_value, bool):
                value = value.lower() in ('true', '1', 'yes', 'on')
            elif isinstance(current_value, float):
                value = float(value)
            elif isinstance(current_value, int):
                value = int(value)

        section_dict = asdict(section)
        section_dict[attr_name] = value
        setattr(self.current_config, section_name, type(section)(**section_dict))
        self.unsaved_changes = True

    def get_config_parameter(self, parameter_path: str) -> Any:
        """
        Get a specific configuration parameter value.

        Args:
            parameter_path: Dot-separated path to parameter

        Returns:
            Parameter value or None if not found
        """
        obj = self.current_config
        for part in parameter_path.split('.'):
            obj = getattr(obj, part, None)
            if obj is None:
                return None
        return obj

    def reset_to_defaults(self) -> ModelConfiguration:
        """Reset configuration to defaults."""
        self.current_config = load_config()
        self.unsaved_changes = False
        return self.current_config

    def has_unsaved_changes(self) -> bool:
        return self.unsaved_changes

    def create_config_copy(self) -> ModelConfiguration:
        """
        Create a deep copy of current configuration.

        Returns:
            Copy of current configuration
        """
        # Convert to dict and back to create deep copy
        return ModelConfiguration.from_dict(self.current_config.to_dict())
