"""
Elevation data acquisition.

This module provides the DEM providers used by the delineation pipeline:
- LocalDemProvider: a raster already on disk
- CdedDemProvider: CDED tiles for British Columbia, downloaded over HTTP
- NTS map sheet arithmetic used to select CDED tiles
"""

from .nts import NtsSheet, nts_mapsheet, tiles_for_bbox
from .providers import CdedDemProvider, DemProvider, LocalDemProvider, provider_from_config

__all__ = [
    "DemProvider",
    "LocalDemProvider",
    "CdedDemProvider",
    "provider_from_config",
    "NtsSheet",
    "nts_mapsheet",
    "tiles_for_bbox",
]
