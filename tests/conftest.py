"""
Pytest configuration and shared fixtures for the test suite.

The external GDAL and SAGA programs are replaced by FakeToolchain, a
ToolRunner that writes plausible output files for each command it receives.
"""

import logging
import shutil
import sys
from collections.abc import Callable
from pathlib import Path

import geopandas as gpd
import numpy as np
import pytest
import rasterio
from rasterio.features import shapes
from rasterio.transform import from_origin
from shapely.geometry import shape

# Add src/ to the Python path so tests run without installing the package
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from mfdshed.core.process import ToolCommand, ToolResult  # noqa: E402

# Synthetic 10 x 10 grid of 30 m cells in UTM zone 10N
GRID_CRS = "EPSG:32610"
GRID_ORIGIN = (500000.0, 5460000.0)  # upper-left corner
GRID_CELL = 30.0
GRID_SIZE = 10


def cell_centre(row: int, col: int) -> tuple[float, float]:
    x0, y0 = GRID_ORIGIN
    return (x0 + (col + 0.5) * GRID_CELL, y0 - (row + 0.5) * GRID_CELL)


def channel_accumulation() -> np.ndarray:
    """
    Percent of flow reaching cell (5, 5).

    A 3-cell wide valley (columns 4-6, rows 0-5) drains fully to the outlet;
    column 3 sends only 40 % of its flow there.
    """
    area = np.zeros((GRID_SIZE, GRID_SIZE), dtype=np.float32)
    area[0:6, 4:7] = 100.0
    area[0:6, 3] = 40.0
    return area


def write_grid(path: Path, values: np.ndarray, crs: str | None = GRID_CRS, nodata: float | None = None) -> Path:
    """Write a single-band GeoTIFF on the synthetic grid."""
    profile = {
        "driver": "GTiff",
        "height": values.shape[0],
        "width": values.shape[1],
        "count": 1,
        "dtype": str(values.dtype),
        "crs": crs,
        "transform": from_origin(GRID_ORIGIN[0], GRID_ORIGIN[1], GRID_CELL, GRID_CELL),
        "nodata": nodata,
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(values, 1)
    return path


class FakeToolchain:
    """
    Stand-in for gdalwarp, saga_cmd, gdal_translate, gdalbuildvrt and gdal_polygonize.

    Args:
        accumulation: Upslope area values the fake SAGA run produces
        fail_on: Tool name that exits with code 1
        skip_output: Tool name that exits with code 0 but writes nothing
    """

    def __init__(
        self,
        accumulation: np.ndarray | None = None,
        fail_on: str | None = None,
        skip_output: str | None = None,
    ) -> None:
        self.accumulation = channel_accumulation() if accumulation is None else accumulation
        self.fail_on = fail_on
        self.skip_output = skip_output
        self.calls: list[ToolCommand] = []
        self.warped: Path | None = None

    @staticmethod
    def tool_name(command: ToolCommand) -> str:
        name = Path(command.program).name
        if name == "saga_cmd":
            return command.args[0]
        return name

    @property
    def names(self) -> list[str]:
        return [self.tool_name(c) for c in self.calls]

    def __call__(self, command: ToolCommand) -> ToolResult:
        self.calls.append(command)
        name = self.tool_name(command)

        if name == self.fail_on:
            return ToolResult(command, 1, "", f"{name}: simulated failure", 0.0)

        if name != self.skip_output:
            handler: Callable[[tuple[str, ...]], None] = {
                "gdalwarp": self._warp,
                "gdalbuildvrt": self._buildvrt,
                "io_gdal": self._saga_output("-GRIDS"),
                "ta_preprocessor": self._saga_output("-FILLED"),
                "ta_hydrology": self._saga_output("-AREA"),
                "gdal_translate": self._translate,
                "gdal_polygonize.py": self._polygonize,
            }[name]
            handler(command.args)

        return ToolResult(command, 0, "", "", 0.0)

    def _warp(self, args: tuple[str, ...]) -> None:
        src, dst = Path(args[-2]), Path(args[-1])
        shutil.copyfile(src, dst)
        self.warped = dst

    def _buildvrt(self, args: tuple[str, ...]) -> None:
        Path(args[1]).write_text("<VRTDataset/>")

    def _saga_output(self, flag: str) -> Callable[[tuple[str, ...]], None]:
        def write(args: tuple[str, ...]) -> None:
            header = Path(args[args.index(flag) + 1])
            header.write_text("NAME\t= fake\n")
            header.with_suffix(".sdat").write_bytes(b"\0")

        return write

    def _translate(self, args: tuple[str, ...]) -> None:
        write_grid(Path(args[-1]), self.accumulation)

    def _polygonize(self, args: tuple[str, ...]) -> None:
        src, dst, layer, field = Path(args[0]), Path(args[5]), args[6], args[7]
        with rasterio.open(src) as ds:
            data = ds.read(1)
            transform = ds.transform

        features = [
            (shape(geom), int(value)) for geom, value in shapes(data, mask=data == 1, transform=transform)
        ]
        gdf = gpd.GeoDataFrame(
            {field: [v for _, v in features]},
            geometry=[g for g, _ in features],
        )
        gdf.to_file(dst, layer=layer, driver="GPKG")


@pytest.fixture(autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.WARNING,  # Reduce noise during tests
        format="%(name)s - %(levelname)s - %(message)s",
    )


@pytest.fixture
def fake_tools() -> type[FakeToolchain]:
    """The FakeToolchain class, for tests that configure their own instance."""
    return FakeToolchain


@pytest.fixture
def dem_path(tmp_path: Path) -> Path:
    """A synthetic DEM on the 10 x 10 UTM grid, sloping down towards row 9."""
    rows = np.arange(GRID_SIZE, dtype=np.float32)[::-1, None]
    cols = np.abs(np.arange(GRID_SIZE, dtype=np.float32) - 5)[None, :]
    elevation = 100.0 + 5.0 * rows + 3.0 * cols
    return write_grid(tmp_path / "dem.tif", elevation.astype(np.float32))


@pytest.fixture
def outlet_xy() -> tuple[float, float]:
    """Centre of cell (5, 5), the outlet of the synthetic valley."""
    return cell_centre(5, 5)


@pytest.fixture
def grid_extent() -> tuple[float, float, float, float]:
    """(xmin, xmax, ymin, ymax) of the synthetic grid."""
    x0, y0 = GRID_ORIGIN
    size = GRID_SIZE * GRID_CELL
    return (x0, x0 + size, y0 - size, y0)


@pytest.fixture
def grid_writer() -> Callable[..., Path]:
    """Helper writing a GeoTIFF on the synthetic grid."""
    return write_grid
