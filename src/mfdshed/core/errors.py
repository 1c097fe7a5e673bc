"""
Exception taxonomy for basin delineation.

Every pipeline stage has exactly one error type. All of them derive from
DelineationError so callers can catch the whole family at once, and each
carries the name of the stage that failed.
"""


class DelineationError(Exception):
    """Raised when watershed delineation fails."""

    stage = "delineation"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class InvalidExtentError(DelineationError):
    """The extent bounds do not describe a non-empty rectangle."""

    stage = "extent"


class DemUnavailableError(DelineationError):
    """The DEM provider has no elevation coverage for the extent."""

    stage = "dem"


class ReprojectionError(DelineationError):
    """gdalwarp failed or produced no output raster."""

    stage = "reproject"


class FillError(DelineationError):
    """The SAGA import or sink-filling step failed."""

    stage = "fill"


class FlowAccumulationError(DelineationError):
    """The SAGA upslope area step failed or the target is off the grid."""

    stage = "flow_accumulation"


class ConversionError(DelineationError):
    """The accumulation grid could not be converted or read."""

    stage = "conversion"


class PolygonizeError(DelineationError):
    """gdal_polygonize failed or the basin mask produced no polygons."""

    stage = "polygonize"
