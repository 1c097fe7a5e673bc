"""
Default values and environment variables for mfdshed configuration.

This module centralizes all default values, environment variable names,
and tool names used throughout the package.
"""

# Delineation parameters
DEFAULT_CONVERGENCE = 1.1  # SAGA MFD convergence exponent
DEFAULT_MINSLOPE = 0.1  # SAGA fill minimum slope (degrees)
DEFAULT_CONTRIBUTION_THRESHOLD = 50.0  # percent of flow reaching the pour point
DEFAULT_RESAMPLING = "cubic"

# Runtime settings
DEFAULT_TIMEOUT = None  # seconds, None = wait forever
DEFAULT_KEEP_WORKSPACE = False
DEFAULT_FILL_HOLES_AREA = None  # None = keep all holes

# External programs
DEFAULT_GDALWARP = "gdalwarp"
DEFAULT_GDAL_TRANSLATE = "gdal_translate"
DEFAULT_GDALBUILDVRT = "gdalbuildvrt"
DEFAULT_GDAL_POLYGONIZE = "gdal_polygonize.py"
DEFAULT_SAGA_CMD = "saga_cmd"

# DEM source
DEFAULT_DEM_SOURCE = "cded"
DEFAULT_CDED_BASE_URL = "https://pub.data.gov.bc.ca/datasets/175624"
DEFAULT_DEM_CACHE_DIR = "~/.cache/mfdshed/cded"

# Environment variable names
ENV_WORK_DIR = "MFDSHED_WORK_DIR"
ENV_DEM_CACHE = "MFDSHED_DEM_CACHE"
ENV_LOG_FILE = "MFDSHED_LOG_FILE"
ENV_GDALWARP = "MFDSHED_GDALWARP"
ENV_GDAL_TRANSLATE = "MFDSHED_GDAL_TRANSLATE"
ENV_GDALBUILDVRT = "MFDSHED_GDALBUILDVRT"
ENV_GDAL_POLYGONIZE = "MFDSHED_GDAL_POLYGONIZE"
ENV_SAGA_CMD = "MFDSHED_SAGA_CMD"

# Artifact names inside a run workspace
WARPED_DEM_NAME = "dem_warp.tif"
SAGA_DEM_NAME = "dem.sgrd"
SAGA_FILLED_NAME = "dem_filled.sgrd"
SAGA_AREA_NAME = "upslope_area.sgrd"
AREA_TIFF_NAME = "upslope_area.tif"
MASK_NAME = "basin_binary.tif"
POLYGONS_NAME = "basin_ply.gpkg"
POLYGONS_LAYER = "basin"
POLYGONS_FIELD = "DN"
