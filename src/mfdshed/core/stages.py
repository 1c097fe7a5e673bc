"""
External-tool stages of the delineation pipeline.

Each stage takes typed file handles plus the run workspace, invokes one
GDAL or SAGA program through a ToolRunner, and returns a typed handle to
what it produced. A stage succeeds only if the program exits with code 0
AND its output file exists; anything else raises the stage's error.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import rasterio
from rasterio.errors import RasterioIOError

from mfdshed.config.defaults import (
    AREA_TIFF_NAME,
    POLYGONS_FIELD,
    POLYGONS_LAYER,
    POLYGONS_NAME,
    SAGA_AREA_NAME,
    SAGA_DEM_NAME,
    SAGA_FILLED_NAME,
    WARPED_DEM_NAME,
)
from mfdshed.config.schema import ToolsConfig
from mfdshed.core import commands
from mfdshed.core.errors import (
    ConversionError,
    DelineationError,
    FillError,
    FlowAccumulationError,
    PolygonizeError,
    ReprojectionError,
)
from mfdshed.core.extent import PourPoint
from mfdshed.core.process import ToolCommand, ToolError, ToolRunner
from mfdshed.core.workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RasterFile:
    """A raster readable by GDAL."""

    path: Path


@dataclass(frozen=True)
class SagaGrid:
    """A SAGA grid: the .sgrd header plus its .sdat data file."""

    header: Path

    @property
    def data(self) -> Path:
        return self.header.with_suffix(".sdat")

    def exists(self) -> bool:
        return self.header.is_file() and self.data.is_file()


@dataclass(frozen=True)
class VectorFile:
    """A layer inside an OGR-readable vector file."""

    path: Path
    layer: str


def _run(
    command: ToolCommand,
    runner: ToolRunner,
    error_cls: type[DelineationError],
    description: str,
) -> None:
    """Run one command, translating every tool failure into the stage error."""
    logger.info(f"{description}: {command.program}")
    try:
        result = runner(command)
    except ToolError as e:
        raise error_cls(f"{description} failed: {e}") from e

    # Runners built with check=False report failure through the result only
    if not result.ok:
        raise error_cls(f"{description} failed with exit code {result.returncode}: {result.stderr.strip()}")


def reproject_dem(
    dem: RasterFile,
    pour_point: PourPoint,
    workspace: Workspace,
    runner: ToolRunner,
    tools: ToolsConfig,
    resampling: str = "cubic",
) -> RasterFile:
    """
    Warp the DEM into the pour point CRS with cubic resampling.

    Raises:
        ReprojectionError: If gdalwarp fails or writes nothing
    """
    output = workspace.path(WARPED_DEM_NAME)
    command = commands.gdalwarp(
        dem.path, output, t_srs=pour_point.crs.to_string(), resampling=resampling, program=tools.gdalwarp
    )
    _run(command, runner, ReprojectionError, "Reprojecting DEM")

    if not output.is_file():
        raise ReprojectionError(f"gdalwarp produced no output at {output}")

    logger.info(f"  Reprojected DEM: {output}")
    return RasterFile(output)


def import_grid(
    dem: RasterFile,
    workspace: Workspace,
    runner: ToolRunner,
    tools: ToolsConfig,
) -> SagaGrid:
    """
    Import the reprojected DEM into SAGA grid format.

    Raises:
        FillError: If the import fails, since it only exists to feed the fill
    """
    grid = SagaGrid(workspace.path(SAGA_DEM_NAME))
    command = commands.saga_import_gdal(dem.path, grid.header, program=tools.saga_cmd)
    _run(command, runner, FillError, "Importing DEM into SAGA")

    if not grid.exists():
        # io_gdal names single-band output after the band on some SAGA versions
        candidates = sorted(workspace.root.glob(f"{grid.header.stem}*.sgrd"))
        candidates = [SagaGrid(c) for c in candidates if SagaGrid(c).exists()]
        if len(candidates) != 1:
            raise FillError(f"SAGA import produced no grid at {grid.header}")
        grid = candidates[0]

    return grid


def fill_depressions(
    grid: SagaGrid,
    minslope: float,
    workspace: Workspace,
    runner: ToolRunner,
    tools: ToolsConfig,
) -> SagaGrid:
    """
    Fill sinks with the Wang & Liu method, enforcing a minimum slope.

    Raises:
        FillError: If SAGA fails or writes no filled grid
    """
    filled = SagaGrid(workspace.path(SAGA_FILLED_NAME))
    command = commands.saga_fill_sinks(grid.header, filled.header, minslope=minslope, program=tools.saga_cmd)
    _run(command, runner, FillError, "Filling depressions")

    if not filled.exists():
        raise FillError(f"SAGA fill produced no grid at {filled.header}")

    logger.info(f"  Filled DEM: {filled.header}")
    return filled


def ensure_point_on_grid(dem: RasterFile, pour_point: PourPoint) -> None:
    """
    Check that the pour point falls inside the raster footprint.

    Raises:
        FlowAccumulationError: If the point is outside or the raster is unreadable
    """
    try:
        with rasterio.open(dem.path) as src:
            left, bottom, right, top = src.bounds
    except RasterioIOError as e:
        raise FlowAccumulationError(f"Could not read grid bounds from {dem.path}: {e}") from e

    if not (left <= pour_point.x <= right and bottom <= pour_point.y <= top):
        raise FlowAccumulationError(
            f"Pour point ({pour_point.x}, {pour_point.y}) is outside the grid "
            f"({left}, {bottom}, {right}, {top})"
        )


def upslope_area(
    filled: SagaGrid,
    pour_point: PourPoint,
    convergence: float,
    workspace: Workspace,
    runner: ToolRunner,
    tools: ToolsConfig,
) -> SagaGrid:
    """
    Trace MFD flow from every cell towards the pour point.

    Raises:
        FlowAccumulationError: If SAGA fails or writes no area grid
    """
    area = SagaGrid(workspace.path(SAGA_AREA_NAME))
    command = commands.saga_upslope_area(
        filled.header,
        area.header,
        x=pour_point.x,
        y=pour_point.y,
        convergence=convergence,
        program=tools.saga_cmd,
    )
    _run(command, runner, FlowAccumulationError, "Tracing upslope area")

    if not area.exists():
        raise FlowAccumulationError(f"SAGA upslope area produced no grid at {area.header}")

    logger.info(f"  Upslope area: {area.header}")
    return area


def to_geotiff(
    area: SagaGrid,
    workspace: Workspace,
    runner: ToolRunner,
    tools: ToolsConfig,
) -> RasterFile:
    """
    Convert the SAGA accumulation grid to GeoTIFF.

    Raises:
        ConversionError: If gdal_translate fails or writes nothing
    """
    output = workspace.path(AREA_TIFF_NAME)
    command = commands.gdal_translate(area.data, output, program=tools.gdal_translate)
    _run(command, runner, ConversionError, "Converting upslope area to GeoTIFF")

    if not output.is_file():
        raise ConversionError(f"gdal_translate produced no output at {output}")

    return RasterFile(output)


def polygonize_mask(
    mask: RasterFile,
    workspace: Workspace,
    runner: ToolRunner,
    tools: ToolsConfig,
) -> VectorFile:
    """
    Polygonize the binary basin mask into a GeoPackage layer.

    Raises:
        PolygonizeError: If gdal_polygonize fails or writes nothing
    """
    output = workspace.path(POLYGONS_NAME)
    command = commands.gdal_polygonize(
        mask.path, output, layer=POLYGONS_LAYER, field=POLYGONS_FIELD, program=tools.gdal_polygonize
    )
    _run(command, runner, PolygonizeError, "Polygonizing basin mask")

    if not output.is_file():
        raise PolygonizeError(f"gdal_polygonize produced no output at {output}")

    return VectorFile(output, POLYGONS_LAYER)
