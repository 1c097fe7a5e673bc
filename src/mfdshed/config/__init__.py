"""
Configuration management for mfdshed.

This module provides Pydantic-based configuration schemas for validating
and loading TOML job files.

Key exports:
- JobConfig: Root configuration of one delineation job
- ToolsConfig: External program names
- load_job(): Load and validate a job file
"""

from .defaults import (
    DEFAULT_CONTRIBUTION_THRESHOLD,
    DEFAULT_CONVERGENCE,
    DEFAULT_MINSLOPE,
    ENV_LOG_FILE,
    ENV_WORK_DIR,
)
from .schema import (
    DemConfig,
    ExtentConfig,
    JobConfig,
    ParametersConfig,
    PourPointConfig,
    SettingsConfig,
    ToolsConfig,
    load_job,
)

__all__ = [
    # Models
    "JobConfig",
    "PourPointConfig",
    "ExtentConfig",
    "ParametersConfig",
    "SettingsConfig",
    "DemConfig",
    "ToolsConfig",
    # Loaders
    "load_job",
    # Defaults
    "DEFAULT_CONVERGENCE",
    "DEFAULT_MINSLOPE",
    "DEFAULT_CONTRIBUTION_THRESHOLD",
    # Environment variables
    "ENV_WORK_DIR",
    "ENV_LOG_FILE",
]
