"""
Typed command builders for the GDAL and SAGA tools used by the pipeline.

Each builder returns a ToolCommand. The program names default to the usual
executables but can be replaced (e.g. a full path to saga_cmd) via
ToolsConfig.
"""

from collections.abc import Sequence
from pathlib import Path

from mfdshed.config.defaults import (
    DEFAULT_GDAL_POLYGONIZE,
    DEFAULT_GDAL_TRANSLATE,
    DEFAULT_GDALBUILDVRT,
    DEFAULT_GDALWARP,
    DEFAULT_SAGA_CMD,
)
from mfdshed.core.process import ToolCommand

# SAGA tool library/module identifiers
SAGA_IMPORT_LIBRARY = ("io_gdal", "0")  # Import Raster
SAGA_FILL_LIBRARY = ("ta_preprocessor", "4")  # Fill Sinks (Wang & Liu)
SAGA_UPSLOPE_LIBRARY = ("ta_hydrology", "4")  # Upslope Area

# Upslope Area routing methods: 0 = D8, 1 = D-infinity, 2 = MFD
SAGA_UPSLOPE_METHOD_MFD = 2

RESAMPLING_METHODS = ("near", "bilinear", "cubic", "cubicspline", "lanczos", "average")


def gdalwarp(
    src: Path,
    dst: Path,
    t_srs: str,
    resampling: str = "cubic",
    program: str = DEFAULT_GDALWARP,
) -> ToolCommand:
    """Warp a raster into the target CRS."""
    if resampling not in RESAMPLING_METHODS:
        raise ValueError(f"Unsupported resampling method '{resampling}'. Choose from {RESAMPLING_METHODS}")
    return ToolCommand.build(program, "-overwrite", "-t_srs", t_srs, "-r", resampling, src, dst)


def gdalbuildvrt(dst: Path, sources: Sequence[Path], program: str = DEFAULT_GDALBUILDVRT) -> ToolCommand:
    """Mosaic several rasters into one virtual raster."""
    if not sources:
        raise ValueError("gdalbuildvrt needs at least one source raster")
    return ToolCommand.build(program, "-overwrite", dst, *sources)


def saga_import_gdal(src: Path, grid: Path, program: str = DEFAULT_SAGA_CMD) -> ToolCommand:
    """Import a GDAL-readable raster as a SAGA grid (.sgrd/.sdat)."""
    return ToolCommand.build(program, *SAGA_IMPORT_LIBRARY, "-FILES", src, "-GRIDS", grid)


def saga_fill_sinks(
    elevation: Path,
    filled: Path,
    minslope: float,
    program: str = DEFAULT_SAGA_CMD,
) -> ToolCommand:
    """Fill depressions while enforcing a minimum slope between cells."""
    return ToolCommand.build(
        program,
        *SAGA_FILL_LIBRARY,
        "-ELEV",
        elevation,
        "-FILLED",
        filled,
        "-MINSLOPE",
        minslope,
    )


def saga_upslope_area(
    elevation: Path,
    area: Path,
    x: float,
    y: float,
    convergence: float,
    program: str = DEFAULT_SAGA_CMD,
) -> ToolCommand:
    """
    Trace MFD flow towards a single target cell.

    The AREA output holds, for every cell, the percentage of its flow that
    reaches the target.
    """
    return ToolCommand.build(
        program,
        *SAGA_UPSLOPE_LIBRARY,
        "-TARGET_PT_X",
        x,
        "-TARGET_PT_Y",
        y,
        "-ELEVATION",
        elevation,
        "-AREA",
        area,
        "-METHOD",
        SAGA_UPSLOPE_METHOD_MFD,
        "-CONVERGE",
        convergence,
    )


def gdal_translate(
    src: Path,
    dst: Path,
    output_format: str = "GTiff",
    program: str = DEFAULT_GDAL_TRANSLATE,
) -> ToolCommand:
    """Convert a raster to another format."""
    return ToolCommand.build(program, "-of", output_format, src, dst)


def gdal_polygonize(
    src: Path,
    dst: Path,
    layer: str,
    field: str,
    driver: str = "GPKG",
    program: str = DEFAULT_GDAL_POLYGONIZE,
) -> ToolCommand:
    """Turn connected regions of equal value in band 1 into polygons."""
    return ToolCommand.build(program, src, "-b", 1, "-f", driver, dst, layer, field)
