"""
Watershed delineation for a single pour point.

This module composes the pipeline stages:
1. Build the extent rectangle in the pour point CRS
2. Fetch DEM coverage for the extent
3. Warp the DEM into the pour point CRS (gdalwarp, cubic)
4. Import into SAGA and fill depressions (Wang & Liu, minimum slope)
5. Trace MFD upslope area towards the pour point (SAGA Upslope Area)
6. Convert the upslope area grid to GeoTIFF
7. Threshold it into a binary basin mask
8. Polygonize the mask (gdal_polygonize)
9. Union the polygons and re-assign the pour point CRS

The stages run strictly in sequence. Any failure aborts the run with the
stage's DelineationError and no partial result is returned.
"""

import contextlib
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import geopandas as gpd
from pydantic import BaseModel, Field
from pyproj import CRS
from shapely.geometry import MultiPolygon, Polygon

from mfdshed.config.defaults import (
    DEFAULT_CONTRIBUTION_THRESHOLD,
    DEFAULT_CONVERGENCE,
    DEFAULT_MINSLOPE,
    DEFAULT_RESAMPLING,
    MASK_NAME,
)
from mfdshed.config.schema import DemConfig, SettingsConfig, ToolsConfig
from mfdshed.core import stages
from mfdshed.core.errors import PolygonizeError
from mfdshed.core.extent import Extent, PourPoint, build_extent
from mfdshed.core.finalize import basin_area_km2, finalize_basin, read_polygons
from mfdshed.core.process import SubprocessRunner, ToolRunner
from mfdshed.core.threshold import write_mask
from mfdshed.core.workspace import Workspace

if TYPE_CHECKING:
    from mfdshed.dem.providers import DemProvider

logger = logging.getLogger(__name__)


class DelineationParameters(BaseModel):
    """Numeric parameters of one run, validated before any external work."""

    convergence: float = Field(default=DEFAULT_CONVERGENCE, gt=0)
    minslope: float = Field(default=DEFAULT_MINSLOPE, ge=0)
    threshold: float = Field(default=DEFAULT_CONTRIBUTION_THRESHOLD, gt=0, le=100)


@dataclass
class DelineatedBasin:
    """Result from delineating a single basin."""

    geometry: Polygon | MultiPolygon
    crs: CRS
    pour_point: PourPoint
    extent: Extent
    dem_path: Path  # reprojected DEM used for the computation
    area_km2: float
    parameters: DelineationParameters
    workspace: Workspace

    def to_geoseries(self) -> gpd.GeoSeries:
        return gpd.GeoSeries([self.geometry], crs=self.crs)

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        return gpd.GeoDataFrame(
            {
                "pour_x": [self.pour_point.x],
                "pour_y": [self.pour_point.y],
                "area_km2": [self.area_km2],
                "converge": [self.parameters.convergence],
                "minslope": [self.parameters.minslope],
                "threshold": [self.parameters.threshold],
                "dem_path": [str(self.dem_path)],
            },
            geometry=[self.geometry],
            crs=self.crs,
        )

    def cleanup(self) -> None:
        """Delete the run workspace, including the reprojected DEM."""
        self.workspace.cleanup()


def delineate_basin(
    pour_point: PourPoint,
    xmin: float,
    xmax: float,
    ymin: float,
    ymax: float,
    convergence: float = DEFAULT_CONVERGENCE,
    minslope: float = DEFAULT_MINSLOPE,
    *,
    threshold: float = DEFAULT_CONTRIBUTION_THRESHOLD,
    dem_provider: "DemProvider | None" = None,
    settings: SettingsConfig | None = None,
    tools: ToolsConfig | None = None,
    runner: ToolRunner | None = None,
    cancel_event: threading.Event | None = None,
    workspace: Workspace | None = None,
) -> DelineatedBasin:
    """
    Delineate the basin draining to a pour point.

    Args:
        pour_point: Outlet location; must lie exactly within the channel of interest
        xmin: Minimum X of the processing extent, in pour point CRS units
        xmax: Maximum X of the processing extent
        ymin: Minimum Y of the processing extent
        ymax: Maximum Y of the processing extent
        convergence: SAGA MFD convergence exponent (higher = more D8-like)
        minslope: Minimum slope enforced when filling depressions
        threshold: Minimum percent of flow reaching the pour point for a basin cell
        dem_provider: Elevation source (default: CDED tiles for British Columbia)
        settings: Workspace, timeout and hole-filling settings
        tools: External program names
        runner: Executes external commands (default: SubprocessRunner)
        cancel_event: Set from another thread to kill the running tool
        workspace: Use this workspace instead of creating one; it is not
            removed on failure

    Returns:
        DelineatedBasin with the basin geometry in the pour point CRS and the
        path to the reprojected DEM

    Raises:
        pydantic.ValidationError: If convergence, minslope or threshold is out of range
        DelineationError: If any stage fails (see mfdshed.core.errors)
    """
    params = DelineationParameters(convergence=convergence, minslope=minslope, threshold=threshold)
    settings = settings or SettingsConfig()
    tools = tools or ToolsConfig()
    runner = runner or SubprocessRunner(timeout=settings.timeout, cancel_event=cancel_event)

    extent = build_extent(xmin, xmax, ymin, ymax, pour_point.crs)
    if not extent.contains(pour_point):
        logger.warning(f"Pour point ({pour_point.x}, {pour_point.y}) lies outside the extent")

    if dem_provider is None:
        from mfdshed.dem.providers import provider_from_config

        dem_provider = provider_from_config(DemConfig(), tools=tools)

    if workspace is None:
        workspace = Workspace.create(
            parent=settings.work_dir,
            keep_on_error=settings.keep_workspace,
        )
        # Removes the workspace if any stage raises
        scope = workspace
    else:
        scope = contextlib.nullcontext(workspace)

    logger.info(f"Delineating basin for pour point ({pour_point.x}, {pour_point.y}) in {workspace.root}")

    with scope:
        dem = dem_provider.fetch(extent, workspace, runner)
        logger.info(f"  DEM: {dem.path}")

        warped = stages.reproject_dem(dem, pour_point, workspace, runner, tools, resampling=DEFAULT_RESAMPLING)
        stages.ensure_point_on_grid(warped, pour_point)

        grid = stages.import_grid(warped, workspace, runner, tools)
        filled = stages.fill_depressions(grid, params.minslope, workspace, runner, tools)

        area = stages.upslope_area(filled, pour_point, params.convergence, workspace, runner, tools)

        area_tif = stages.to_geotiff(area, workspace, runner, tools)

        mask, basin_cells = write_mask(area_tif, workspace.path(MASK_NAME), threshold=params.threshold)
        if basin_cells == 0:
            raise PolygonizeError(
                f"No cell reaches the {params.threshold:g} threshold; check that the pour point lies on the channel"
            )

        polygons_file = stages.polygonize_mask(mask, workspace, runner, tools)
        polygons = read_polygons(polygons_file)

        basin = finalize_basin(polygons, pour_point.crs, fill_holes_area=settings.fill_holes_area)

    geometry = basin.iloc[0]
    area_km2 = basin_area_km2(geometry, basin.crs)
    logger.info(f"  Final delineated area: {area_km2:.2f} km²")

    return DelineatedBasin(
        geometry=geometry,
        crs=basin.crs,
        pour_point=pour_point,
        extent=extent,
        dem_path=warped.path,
        area_km2=area_km2,
        parameters=params,
        workspace=workspace,
    )
