"""
Core utilities for watershed delineation.

This module contains core functionality for:
- Pour point and extent primitives
- External tool execution and command building
- Per-run workspaces
- The GDAL/SAGA pipeline stages
- Thresholding and polygon finalization
- Orchestration of a full delineation and writing its output
"""

from .delineate import DelineatedBasin, DelineationParameters, delineate_basin
from .errors import (
    ConversionError,
    DelineationError,
    DemUnavailableError,
    FillError,
    FlowAccumulationError,
    InvalidExtentError,
    PolygonizeError,
    ReprojectionError,
)
from .extent import Extent, PourPoint, build_extent
from .finalize import basin_area_km2, close_holes, finalize_basin
from .output_writer import OutputFormat, write_basin
from .process import SubprocessRunner, ToolCommand, ToolError, ToolResult, run_tool
from .threshold import threshold_mask
from .workspace import Workspace

__all__ = [
    # Delineation
    "DelineatedBasin",
    "DelineationParameters",
    "delineate_basin",
    # Errors
    "DelineationError",
    "InvalidExtentError",
    "DemUnavailableError",
    "ReprojectionError",
    "FillError",
    "FlowAccumulationError",
    "ConversionError",
    "PolygonizeError",
    # Geometry
    "Extent",
    "PourPoint",
    "build_extent",
    "basin_area_km2",
    "close_holes",
    "finalize_basin",
    "threshold_mask",
    # Tools
    "SubprocessRunner",
    "ToolCommand",
    "ToolError",
    "ToolResult",
    "run_tool",
    # Workspace and output
    "Workspace",
    "OutputFormat",
    "write_basin",
]
