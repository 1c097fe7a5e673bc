"""
Pydantic models for mfdshed configuration.

This module defines the configuration schema using Pydantic v2. It validates
TOML job files and provides type-safe access to configuration values.

The configuration hierarchy:
- JobConfig (job.toml): one delineation job
  - PourPointConfig: outlet coordinates and CRS
  - ExtentConfig: bounding rectangle in the pour point CRS
  - ParametersConfig: SAGA convergence / minslope and the mask threshold
  - SettingsConfig: workspace and timeout behaviour
  - DemConfig: where elevation data comes from
  - ToolsConfig: names or paths of the external programs
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pyproj import CRS
from pyproj.exceptions import CRSError

from .defaults import (
    DEFAULT_CDED_BASE_URL,
    DEFAULT_CONTRIBUTION_THRESHOLD,
    DEFAULT_CONVERGENCE,
    DEFAULT_DEM_CACHE_DIR,
    DEFAULT_DEM_SOURCE,
    DEFAULT_FILL_HOLES_AREA,
    DEFAULT_GDAL_POLYGONIZE,
    DEFAULT_GDAL_TRANSLATE,
    DEFAULT_GDALBUILDVRT,
    DEFAULT_GDALWARP,
    DEFAULT_KEEP_WORKSPACE,
    DEFAULT_MINSLOPE,
    DEFAULT_SAGA_CMD,
    DEFAULT_TIMEOUT,
    ENV_DEM_CACHE,
    ENV_GDAL_POLYGONIZE,
    ENV_GDAL_TRANSLATE,
    ENV_GDALBUILDVRT,
    ENV_GDALWARP,
    ENV_SAGA_CMD,
    ENV_WORK_DIR,
)

logger = logging.getLogger(__name__)


class ToolsConfig(BaseModel):
    """
    Names (or full paths) of the external programs.

    Environment variables override the defaults but not values given
    explicitly in a configuration file.
    """

    gdalwarp: str = Field(default_factory=lambda: os.getenv(ENV_GDALWARP, DEFAULT_GDALWARP))
    gdal_translate: str = Field(default_factory=lambda: os.getenv(ENV_GDAL_TRANSLATE, DEFAULT_GDAL_TRANSLATE))
    gdalbuildvrt: str = Field(default_factory=lambda: os.getenv(ENV_GDALBUILDVRT, DEFAULT_GDALBUILDVRT))
    gdal_polygonize: str = Field(default_factory=lambda: os.getenv(ENV_GDAL_POLYGONIZE, DEFAULT_GDAL_POLYGONIZE))
    saga_cmd: str = Field(default_factory=lambda: os.getenv(ENV_SAGA_CMD, DEFAULT_SAGA_CMD))

    @field_validator("gdalwarp", "gdal_translate", "gdalbuildvrt", "gdal_polygonize", "saga_cmd")
    @classmethod
    def validate_program(cls, v: str) -> str:
        """Ensure program names are not empty."""
        if not v or not v.strip():
            raise ValueError("Program name cannot be empty")
        return v.strip()

    def required(self) -> list[str]:
        """Programs needed by the pipeline itself (gdalbuildvrt only for tiled DEMs)."""
        return [self.gdalwarp, self.saga_cmd, self.gdal_translate, self.gdal_polygonize]


class SettingsConfig(BaseModel):
    """Runtime behaviour shared by every stage of a run."""

    work_dir: str | None = Field(
        default_factory=lambda: os.getenv(ENV_WORK_DIR),
        description="Parent directory for per-run workspaces (default: system temp dir)",
    )
    keep_workspace: bool = Field(
        default=DEFAULT_KEEP_WORKSPACE, description="Keep intermediate files even when the run fails"
    )
    timeout: float | None = Field(
        default=DEFAULT_TIMEOUT, gt=0, description="Kill an external tool after N seconds (None = no limit)"
    )
    fill_holes_area: float | None = Field(
        default=DEFAULT_FILL_HOLES_AREA,
        ge=0,
        description="Close basin holes up to this area in CRS units (0 = all, None = none)",
    )


class DemConfig(BaseModel):
    """Source of elevation data."""

    source: Literal["cded", "local"] = Field(default=DEFAULT_DEM_SOURCE)
    path: str | None = Field(default=None, description="Local DEM raster (required when source = 'local')")
    base_url: str = Field(default=DEFAULT_CDED_BASE_URL, description="Root URL of the CDED tile archive")
    cache_dir: str = Field(default_factory=lambda: os.getenv(ENV_DEM_CACHE, DEFAULT_DEM_CACHE_DIR))

    @model_validator(mode="after")
    def validate_local_path(self) -> "DemConfig":
        """A local source needs a path."""
        if self.source == "local" and not self.path:
            raise ValueError("dem.path is required when dem.source = 'local'")
        return self


class PourPointConfig(BaseModel):
    """Outlet location in any CRS understood by PROJ."""

    x: float
    y: float
    crs: str = Field(..., description="CRS of the pour point, e.g. 'EPSG:3005'")

    @field_validator("crs")
    @classmethod
    def validate_crs(cls, v: str) -> str:
        """Ensure the CRS can be parsed."""
        try:
            CRS.from_user_input(v)
        except CRSError as e:
            raise ValueError(f"Invalid CRS '{v}': {e}") from e
        return v


class ExtentConfig(BaseModel):
    """Bounding rectangle of the area to process, in pour point CRS units."""

    xmin: float
    xmax: float
    ymin: float
    ymax: float

    @model_validator(mode="after")
    def validate_ordering(self) -> "ExtentConfig":
        """Ensure min < max on both axes."""
        if self.xmin >= self.xmax:
            raise ValueError(f"xmin ({self.xmin}) must be less than xmax ({self.xmax})")
        if self.ymin >= self.ymax:
            raise ValueError(f"ymin ({self.ymin}) must be less than ymax ({self.ymax})")
        return self


class ParametersConfig(BaseModel):
    """Tunable numeric parameters of the hydrology stages."""

    convergence: float = Field(default=DEFAULT_CONVERGENCE, gt=0, description="SAGA MFD convergence exponent")
    minslope: float = Field(default=DEFAULT_MINSLOPE, ge=0, description="Minimum slope enforced by the fill")
    threshold: float = Field(
        default=DEFAULT_CONTRIBUTION_THRESHOLD,
        gt=0,
        le=100,
        description="Minimum percent of flow reaching the pour point for a cell to be in the basin",
    )


class JobConfig(BaseModel):
    """A complete delineation job, as read from a TOML file."""

    pour_point: PourPointConfig
    extent: ExtentConfig
    parameters: ParametersConfig = Field(default_factory=ParametersConfig)
    settings: SettingsConfig = Field(default_factory=SettingsConfig)
    dem: DemConfig = Field(default_factory=DemConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    output: str | None = Field(default=None, description="Where to write the basin polygon")


def load_job(job_path: Path) -> JobConfig:
    """
    Load and validate a job configuration file.

    Relative paths (dem.path, output) are resolved against the directory of
    the job file.

    Args:
        job_path: Path to the job TOML file

    Returns:
        Validated JobConfig

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the TOML is malformed
        pydantic.ValidationError: If the configuration is invalid

    Example:
        >>> job = load_job(Path("job.toml"))
        >>> job.parameters.convergence
        1.1
    """
    if not job_path.exists():
        raise FileNotFoundError(f"Job file not found: {job_path}")

    logger.info(f"Loading job from: {job_path}")

    try:
        with job_path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in job file: {e}") from e

    job = JobConfig.model_validate(data)

    job_dir = job_path.parent
    if job.dem.path and not Path(job.dem.path).is_absolute():
        job.dem.path = str((job_dir / job.dem.path).resolve())
        logger.debug(f"Resolved DEM path: {job.dem.path}")

    if job.output and not Path(job.output).is_absolute():
        job.output = str((job_dir / job.output).resolve())
        logger.debug(f"Resolved output path: {job.output}")

    return job
