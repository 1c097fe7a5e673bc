"""
Pour point and extent primitives.

The extent is the rectangle, in the pour point's CRS, inside which elevation
data is fetched and flow is traced. It must be large enough to contain the
whole watershed; a too-small extent silently truncates the basin.
"""

import logging
import math
from dataclasses import dataclass, field

import geopandas as gpd
from pyproj import CRS
from shapely.geometry import Point, Polygon

from mfdshed.core.errors import InvalidExtentError

logger = logging.getLogger(__name__)


def _as_crs(crs: CRS | str | int) -> CRS:
    return CRS.from_user_input(crs)


@dataclass(frozen=True)
class PourPoint:
    """
    Outlet location of the watershed.

    The point must lie exactly within the channel of interest. This is not
    checked; a point off the channel yields a tiny or empty basin.
    """

    x: float
    y: float
    crs: CRS = field(compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "crs", _as_crs(self.crs))
        if not (math.isfinite(self.x) and math.isfinite(self.y)):
            raise ValueError(f"Pour point coordinates must be finite, got ({self.x}, {self.y})")

    @classmethod
    def from_point(cls, point: Point, crs: CRS | str | int) -> "PourPoint":
        return cls(x=float(point.x), y=float(point.y), crs=crs)

    @classmethod
    def from_geoseries(cls, geoms: gpd.GeoSeries | gpd.GeoDataFrame) -> "PourPoint":
        """
        Build a pour point from a one-row GeoSeries or GeoDataFrame.

        Raises:
            ValueError: If there is not exactly one Point, or no CRS is set
        """
        series = geoms.geometry if isinstance(geoms, gpd.GeoDataFrame) else geoms

        if len(series) != 1:
            raise ValueError(f"Expected exactly one pour point, got {len(series)}")
        if series.crs is None:
            raise ValueError("Pour point has no CRS")

        point = series.iloc[0]
        if point.geom_type != "Point":
            raise ValueError(f"Pour point must be a Point, got {point.geom_type}")

        return cls.from_point(point, series.crs)

    @property
    def geometry(self) -> Point:
        return Point(self.x, self.y)

    def to_geoseries(self) -> gpd.GeoSeries:
        return gpd.GeoSeries([self.geometry], crs=self.crs)


@dataclass(frozen=True)
class Extent:
    """Axis-aligned rectangle (xmin, xmax, ymin, ymax) tagged with a CRS."""

    xmin: float
    xmax: float
    ymin: float
    ymax: float
    crs: CRS = field(compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "crs", _as_crs(self.crs))

        bounds = (self.xmin, self.xmax, self.ymin, self.ymax)
        if not all(math.isfinite(b) for b in bounds):
            raise InvalidExtentError(f"Extent bounds must be finite, got {bounds}")
        if self.xmin >= self.xmax:
            raise InvalidExtentError(f"xmin ({self.xmin}) must be less than xmax ({self.xmax})")
        if self.ymin >= self.ymax:
            raise InvalidExtentError(f"ymin ({self.ymin}) must be less than ymax ({self.ymax})")

    @property
    def polygon(self) -> Polygon:
        """Closed ring starting at the lower-left corner, counter-clockwise."""
        return Polygon(
            [
                (self.xmin, self.ymin),
                (self.xmax, self.ymin),
                (self.xmax, self.ymax),
                (self.xmin, self.ymax),
                (self.xmin, self.ymin),
            ]
        )

    def to_geoseries(self) -> gpd.GeoSeries:
        return gpd.GeoSeries([self.polygon], crs=self.crs)

    def contains(self, point: PourPoint) -> bool:
        return self.xmin <= point.x <= self.xmax and self.ymin <= point.y <= self.ymax

    def bounds_in(self, crs: CRS | str | int) -> tuple[float, float, float, float]:
        """
        Bounds of the rectangle after transforming it into another CRS.

        Returns:
            (minx, miny, maxx, maxy) in the target CRS
        """
        target = _as_crs(crs)
        if target == self.crs:
            return (self.xmin, self.ymin, self.xmax, self.ymax)

        # Densify the edges so curved projected edges are covered
        densified = self.polygon.segmentize(max(self.xmax - self.xmin, self.ymax - self.ymin) / 20)
        minx, miny, maxx, maxy = gpd.GeoSeries([densified], crs=self.crs).to_crs(target).total_bounds
        return (float(minx), float(miny), float(maxx), float(maxy))


def build_extent(
    xmin: float,
    xmax: float,
    ymin: float,
    ymax: float,
    crs: CRS | str | int,
) -> Extent:
    """
    Build the delineation extent rectangle.

    Args:
        xmin: Minimum X coordinate in map units
        xmax: Maximum X coordinate in map units
        ymin: Minimum Y coordinate in map units
        ymax: Maximum Y coordinate in map units
        crs: CRS of the bounds, normally the pour point CRS

    Returns:
        Validated Extent

    Raises:
        InvalidExtentError: If xmin >= xmax, ymin >= ymax or a bound is not finite
    """
    extent = Extent(xmin=float(xmin), xmax=float(xmax), ymin=float(ymin), ymax=float(ymax), crs=crs)
    logger.debug(f"Built extent {extent.xmin}, {extent.xmax}, {extent.ymin}, {extent.ymax} in {extent.crs.to_string()}")
    return extent
