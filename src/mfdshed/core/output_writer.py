"""
Output writer for delineated basins.

Writes the basin polygon with its run attributes to GeoPackage, Shapefile
or GeoJSON.
"""

import logging
from enum import Enum
from pathlib import Path

from mfdshed.core.delineate import DelineatedBasin

logger = logging.getLogger(__name__)


class OutputFormat(str, Enum):
    """Supported vector formats and their OGR drivers."""

    GEOPACKAGE = "gpkg"
    SHAPEFILE = "shp"
    GEOJSON = "geojson"

    @property
    def driver(self) -> str:
        return {
            OutputFormat.GEOPACKAGE: "GPKG",
            OutputFormat.SHAPEFILE: "ESRI Shapefile",
            OutputFormat.GEOJSON: "GeoJSON",
        }[self]

    @classmethod
    def from_path(cls, path: Path) -> "OutputFormat":
        """
        Infer the format from a file suffix.

        Raises:
            ValueError: If the suffix is not one of .gpkg, .shp, .geojson/.json
        """
        suffix = path.suffix.lower().lstrip(".")
        if suffix == "json":
            suffix = "geojson"
        try:
            return cls(suffix)
        except ValueError:
            raise ValueError(
                f"Cannot infer output format from '{path.name}'. Use .gpkg, .shp or .geojson"
            ) from None


def write_basin(
    basin: DelineatedBasin,
    path: Path,
    output_format: OutputFormat | None = None,
    layer: str = "basin",
) -> Path:
    """
    Write a delineated basin as a single feature.

    Attributes:
        - pour_x, pour_y: float - Pour point coordinates
        - area_km2: float - Basin area in km²
        - converge: float - MFD convergence used
        - minslope: float - Fill minimum slope used
        - threshold: float - Contribution threshold used
        - dem_path: str - Reprojected DEM used for the computation

    Args:
        basin: Result of delineate_basin
        path: Output file
        output_format: Format to write (default: inferred from the suffix)
        layer: Layer name (GeoPackage only)

    Returns:
        Path to the written file
    """
    path = Path(path)
    output_format = output_format or OutputFormat.from_path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    gdf = basin.to_geodataframe()

    if output_format == OutputFormat.GEOPACKAGE:
        gdf.to_file(path, driver=output_format.driver, layer=layer)
    else:
        gdf.to_file(path, driver=output_format.driver)

    logger.info(f"Wrote basin to {path} ({output_format.driver})")
    return path
