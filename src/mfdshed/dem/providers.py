"""
Elevation data providers.

A provider turns an extent into a handle to elevation coverage for it. The
pipeline does not inspect or modify that coverage: partial coverage and
missing tiles are the provider's concern. When there is no coverage at all a
provider raises DemUnavailableError.
"""

import logging
import zipfile
from pathlib import Path
from typing import Protocol

import httpx
import rasterio
from rasterio.errors import RasterioIOError
from shapely.geometry import box

from mfdshed.config.defaults import DEFAULT_CDED_BASE_URL, DEFAULT_DEM_CACHE_DIR
from mfdshed.config.schema import DemConfig, ToolsConfig
from mfdshed.core import commands
from mfdshed.core.errors import DemUnavailableError
from mfdshed.core.extent import Extent
from mfdshed.core.process import ToolError, ToolRunner
from mfdshed.core.stages import RasterFile
from mfdshed.core.workspace import Workspace
from mfdshed.dem.http_client import TileNotFoundError, download_file, extract_rasters
from mfdshed.dem.nts import NtsSheet, tiles_for_bbox

logger = logging.getLogger(__name__)

CDED_MOSAIC_NAME = "cded_dem.vrt"


class DemProvider(Protocol):
    """Source of elevation rasters for an extent."""

    def fetch(self, extent: Extent, workspace: Workspace, runner: ToolRunner) -> RasterFile: ...


class LocalDemProvider:
    """A single DEM raster already on disk."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def fetch(self, extent: Extent, workspace: Workspace, runner: ToolRunner) -> RasterFile:
        """
        Return the local raster if it overlaps the extent.

        Raises:
            DemUnavailableError: If the file is missing, unreadable or disjoint from the extent
        """
        if not self.path.is_file():
            raise DemUnavailableError(f"DEM file not found: {self.path}")

        try:
            with rasterio.open(self.path) as src:
                raster_bounds = src.bounds
                raster_crs = src.crs
        except RasterioIOError as e:
            raise DemUnavailableError(f"Could not open DEM {self.path}: {e}") from e

        if raster_crs is None:
            raise DemUnavailableError(f"DEM {self.path} has no CRS")

        extent_box = box(*extent.bounds_in(raster_crs.to_wkt()))
        if not extent_box.intersects(box(*raster_bounds)):
            raise DemUnavailableError(f"DEM {self.path} does not cover the requested extent")

        logger.info(f"Using local DEM: {self.path}")
        return RasterFile(self.path)


class CdedDemProvider:
    """
    Canadian Digital Elevation Data for British Columbia.

    Tiles intersecting the extent are downloaded (once, into cache_dir),
    unzipped and mosaicked into a VRT inside the run workspace.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_CDED_BASE_URL,
        cache_dir: Path | str = DEFAULT_DEM_CACHE_DIR,
        tools: ToolsConfig | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cache_dir = Path(cache_dir).expanduser()
        self.tools = tools or ToolsConfig()

    def tile_url(self, tile: NtsSheet) -> str:
        return f"{self.base_url}/{tile.directory}/{tile.tile_name}.dem.zip"

    def tiles_for(self, extent: Extent) -> list[NtsSheet]:
        min_lon, min_lat, max_lon, max_lat = extent.bounds_in("EPSG:4326")
        try:
            return tiles_for_bbox(min_lon, min_lat, max_lon, max_lat)
        except ValueError as e:
            raise DemUnavailableError(f"Extent is outside the CDED tile grid: {e}") from e

    def fetch_tile(self, tile: NtsSheet) -> list[Path]:
        """
        Download and unpack one tile.

        A cached archive that cannot be read is downloaded once more.

        Returns:
            Extracted .dem files, empty when the server has no such tile

        Raises:
            DemUnavailableError: If the downloaded archive is still corrupt
        """
        archive = self.cache_dir / tile.directory / f"{tile.tile_name}.dem.zip"
        try:
            download_file(self.tile_url(tile), archive)
        except TileNotFoundError:
            logger.warning(f"CDED tile {tile.tile_name} is not available, skipping")
            return []

        try:
            return extract_rasters(archive, self.cache_dir / tile.directory)
        except zipfile.BadZipFile:
            logger.warning(f"Cached CDED tile {archive} is corrupt, downloading it again")
            archive.unlink(missing_ok=True)

        try:
            download_file(self.tile_url(tile), archive, overwrite=True)
        except TileNotFoundError:
            logger.warning(f"CDED tile {tile.tile_name} is no longer available, skipping")
            return []

        try:
            return extract_rasters(archive, self.cache_dir / tile.directory)
        except zipfile.BadZipFile as e:
            archive.unlink(missing_ok=True)
            raise DemUnavailableError(f"CDED tile {tile.tile_name} is not a valid zip archive: {e}") from e

    def fetch(self, extent: Extent, workspace: Workspace, runner: ToolRunner) -> RasterFile:
        """
        Mosaic every available tile intersecting the extent.

        Raises:
            DemUnavailableError: If no tile is available or the mosaic fails
        """
        tiles = self.tiles_for(extent)
        logger.info(f"Fetching {len(tiles)} CDED tile(s)")

        sources: list[Path] = []
        for tile in tiles:
            try:
                sources.extend(self.fetch_tile(tile))
            except httpx.HTTPError as e:
                raise DemUnavailableError(f"Download of CDED tile {tile.tile_name} failed: {e}") from e

        if not sources:
            raise DemUnavailableError("No CDED coverage for the requested extent")

        mosaic = workspace.path(CDED_MOSAIC_NAME)
        command = commands.gdalbuildvrt(mosaic, sources, program=self.tools.gdalbuildvrt)
        try:
            result = runner(command)
        except ToolError as e:
            raise DemUnavailableError(f"Could not mosaic CDED tiles: {e}") from e

        if not result.ok:
            raise DemUnavailableError(f"gdalbuildvrt exited with code {result.returncode}: {result.stderr.strip()}")
        if not mosaic.is_file():
            raise DemUnavailableError(f"gdalbuildvrt produced no mosaic at {mosaic}")

        return RasterFile(mosaic)


def provider_from_config(config: DemConfig, tools: ToolsConfig | None = None) -> DemProvider:
    """Build the provider selected in the [dem] section of a job."""
    if config.source == "local":
        return LocalDemProvider(config.path)
    return CdedDemProvider(base_url=config.base_url, cache_dir=config.cache_dir, tools=tools)
