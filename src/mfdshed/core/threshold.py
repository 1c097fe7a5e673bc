"""
Reclassify the upslope area raster into a binary basin mask.

SAGA's Upslope Area output holds, per cell, the percentage of that cell's
flow that reaches the pour point. Cells at or above the contribution
threshold (50 % by default) belong to the basin.
"""

import logging
from pathlib import Path

import numpy as np
import rasterio
from rasterio.errors import RasterioIOError

from mfdshed.config.defaults import DEFAULT_CONTRIBUTION_THRESHOLD
from mfdshed.core.errors import ConversionError
from mfdshed.core.stages import RasterFile

logger = logging.getLogger(__name__)

MASK_TRUE = 1
MASK_NODATA = 0


def threshold_mask(
    values: np.ndarray,
    threshold: float = DEFAULT_CONTRIBUTION_THRESHOLD,
    nodata: float | None = None,
) -> np.ndarray:
    """
    Boolean mask of cells whose value is at least the threshold.

    NaN cells and cells equal to nodata are always False.

    Args:
        values: Accumulation values
        threshold: Minimum value for a cell to be in the basin
        nodata: Optional nodata value of the source raster

    Returns:
        Boolean array with the same shape as values

    Example:
        >>> threshold_mask(np.array([10, 49, 50, 51, 1000]), 50).tolist()
        [False, False, True, True, True]
    """
    values = np.asarray(values, dtype=np.float64)
    valid = ~np.isnan(values)
    if nodata is not None and not np.isnan(nodata):
        valid &= values != nodata

    # Compare only valid cells so NaN never triggers a warning
    mask = np.zeros(values.shape, dtype=bool)
    mask[valid] = values[valid] >= threshold
    return mask


def write_mask(
    accumulation: RasterFile,
    mask_path: Path,
    threshold: float = DEFAULT_CONTRIBUTION_THRESHOLD,
) -> tuple[RasterFile, int]:
    """
    Write the basin mask of an accumulation raster as a uint8 GeoTIFF.

    Basin cells are 1; every other cell is 0, which is also the nodata value
    so gdal_polygonize only emits basin polygons.

    Returns:
        Handle to the mask raster and the number of basin cells

    Raises:
        ConversionError: If the accumulation raster cannot be read
    """
    try:
        with rasterio.open(accumulation.path) as src:
            values = src.read(1)
            profile = src.profile.copy()
            nodata = src.nodata
    except RasterioIOError as e:
        raise ConversionError(f"Could not read accumulation raster {accumulation.path}: {e}") from e

    mask = threshold_mask(values, threshold=threshold, nodata=nodata)
    basin_cells = int(mask.sum())
    logger.info(f"  {basin_cells} of {mask.size} cells reach the {threshold:g} threshold")

    profile.update(driver="GTiff", dtype="uint8", count=1, nodata=MASK_NODATA, compress="deflate")
    with rasterio.open(mask_path, "w", **profile) as dst:
        dst.write(np.where(mask, MASK_TRUE, MASK_NODATA).astype(np.uint8), 1)

    return RasterFile(mask_path), basin_cells
