"""
Basin polygon finalization.

gdal_polygonize emits one feature per connected run of basin cells, and the
GeoPackage round trip does not reliably carry the CRS. This module unions
those parts into one (possibly multi-part) geometry, optionally closes small
interior holes, and re-tags the result with the pour point CRS.
"""

import logging

import geopandas as gpd
import pyproj
import shapely.ops
from pyproj import CRS
from shapely.geometry import MultiPolygon, Polygon

from mfdshed.config.defaults import POLYGONS_FIELD
from mfdshed.core.errors import PolygonizeError
from mfdshed.core.stages import VectorFile

logger = logging.getLogger(__name__)


def read_polygons(vector: VectorFile) -> gpd.GeoDataFrame:
    """
    Read the polygonized basin layer.

    Raises:
        PolygonizeError: If the layer cannot be read or holds no features
    """
    try:
        gdf = gpd.read_file(vector.path, layer=vector.layer)
    except Exception as e:
        raise PolygonizeError(f"Could not read polygons from {vector.path}: {e}") from e

    if gdf.empty:
        raise PolygonizeError(f"No basin polygons in {vector.path} (layer '{vector.layer}')")

    logger.info(f"  Read {len(gdf)} polygon part(s)")
    return gdf


def close_holes(poly: Polygon | MultiPolygon, area_max: float) -> Polygon | MultiPolygon:
    """
    Close polygon holes by removing interior rings up to a size threshold.

    Args:
        poly: Input Shapely Polygon or MultiPolygon
        area_max: Fill holes whose area is less than or equal to this,
                  in CRS units. Set to 0 to fill ALL holes.

    Returns:
        Polygon or MultiPolygon with small holes filled
    """
    if isinstance(poly, Polygon):
        if area_max == 0:
            return Polygon(poly.exterior.coords) if poly.interiors else poly

        holes = [interior for interior in poly.interiors if Polygon(interior).area > area_max]
        return Polygon(poly.exterior.coords, holes=holes)

    elif isinstance(poly, MultiPolygon):
        return MultiPolygon([close_holes(part, area_max) for part in poly.geoms])
    else:
        raise ValueError(f"Unsupported geometry type: {type(poly)}")


def union_polygons(geoms: gpd.GeoSeries) -> Polygon | MultiPolygon:
    """Union all parts into one geometry; adjacent parts merge, disjoint ones stay separate."""
    merged = shapely.ops.unary_union(list(geoms))

    if merged.geom_type not in ("Polygon", "MultiPolygon"):
        # Collections can appear when parts touch only at a corner
        parts = [g for g in getattr(merged, "geoms", [merged]) if g.geom_type in ("Polygon", "MultiPolygon")]
        merged = shapely.ops.unary_union(parts)

    return merged


def finalize_basin(
    polygons: gpd.GeoDataFrame,
    crs: CRS | str,
    fill_holes_area: float | None = None,
) -> gpd.GeoSeries:
    """
    Dissolve polygon parts into one basin geometry tagged with the given CRS.

    Args:
        polygons: Polygonized mask; features whose DN is 0 are ignored
        crs: CRS to assign (the pour point CRS), whatever the input carried
        fill_holes_area: Close holes up to this area (0 = all, None = keep all)

    Returns:
        One-row GeoSeries with a Polygon or MultiPolygon

    Raises:
        PolygonizeError: If no basin polygon remains
    """
    if POLYGONS_FIELD in polygons.columns:
        polygons = polygons[polygons[POLYGONS_FIELD] != 0]

    if polygons.empty:
        raise PolygonizeError("No basin polygons to union")

    basin = union_polygons(polygons.geometry)

    if basin.is_empty:
        raise PolygonizeError("Union of basin polygons is empty")

    if fill_holes_area is not None:
        basin = close_holes(basin, area_max=fill_holes_area)

    logger.info(f"  Basin geometry: {basin.geom_type} with {_part_count(basin)} part(s)")

    # The CRS does not survive the trip through the external tools
    result = gpd.GeoSeries([basin])
    return result.set_crs(crs, allow_override=True)


def _part_count(geom: Polygon | MultiPolygon) -> int:
    return len(geom.geoms) if isinstance(geom, MultiPolygon) else 1


def basin_area_km2(geometry: Polygon | MultiPolygon, crs: CRS | str) -> float:
    """
    Area of the basin in km².

    Geographic CRSs use the geodesic area on the CRS ellipsoid; projected
    CRSs use the planar area scaled by the axis unit.
    """
    crs = CRS.from_user_input(crs)

    if crs.is_geographic:
        geod = crs.get_geod() or pyproj.Geod(ellps="WGS84")
        area, _perimeter = geod.geometry_area_perimeter(geometry)
        return abs(area) / 1e6

    unit_factor = crs.axis_info[0].unit_conversion_factor if crs.axis_info else 1.0
    return geometry.area * unit_factor**2 / 1e6
