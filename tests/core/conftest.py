"""
Fixtures for core pipeline tests.
"""

from pathlib import Path

import pytest

from mfdshed.config.schema import ToolsConfig
from mfdshed.core.extent import PourPoint
from mfdshed.core.workspace import Workspace


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    """A fresh workspace under tmp_path."""
    return Workspace.create(parent=tmp_path / "runs")


@pytest.fixture
def tools() -> ToolsConfig:
    """Default program names, ignoring any MFDSHED_* overrides in the environment."""
    return ToolsConfig(
        gdalwarp="gdalwarp",
        gdal_translate="gdal_translate",
        gdalbuildvrt="gdalbuildvrt",
        gdal_polygonize="gdal_polygonize.py",
        saga_cmd="saga_cmd",
    )


@pytest.fixture
def pour_point(outlet_xy: tuple[float, float]) -> PourPoint:
    """Outlet of the synthetic valley in UTM zone 10N."""
    x, y = outlet_xy
    return PourPoint(x, y, "EPSG:32610")
