"""
Tests for end-to-end watershed delineation.

The pipeline runs against FakeToolchain, which mimics each GDAL and SAGA
program on a synthetic 10 x 10 grid whose valley drains to cell (5, 5).
One test runs the real programs when they are installed.
"""

import shutil
import threading
from pathlib import Path

import numpy as np
import pytest
from pydantic import ValidationError
from pyproj import CRS
from shapely.geometry import Point

from mfdshed.config.schema import SettingsConfig, ToolsConfig
from mfdshed.core.delineate import DelineatedBasin, delineate_basin
from mfdshed.core.errors import (
    ConversionError,
    DelineationError,
    DemUnavailableError,
    FillError,
    FlowAccumulationError,
    InvalidExtentError,
    PolygonizeError,
    ReprojectionError,
)
from mfdshed.core.extent import PourPoint
from mfdshed.core.process import ToolCancelledError
from mfdshed.core.workspace import Workspace
from mfdshed.dem.providers import LocalDemProvider

PIPELINE = ["gdalwarp", "io_gdal", "ta_preprocessor", "ta_hydrology", "gdal_translate", "gdal_polygonize.py"]


@pytest.fixture
def runs_dir(tmp_path: Path) -> Path:
    return tmp_path / "runs"


@pytest.fixture
def settings(runs_dir: Path) -> SettingsConfig:
    return SettingsConfig(work_dir=str(runs_dir))


def run(
    pour_point: PourPoint,
    extent: tuple[float, float, float, float],
    dem_path: Path,
    runner,
    settings: SettingsConfig,
    tools: ToolsConfig,
    **kwargs,
) -> DelineatedBasin:
    xmin, xmax, ymin, ymax = extent
    return delineate_basin(
        pour_point,
        xmin,
        xmax,
        ymin,
        ymax,
        dem_provider=LocalDemProvider(dem_path),
        settings=settings,
        tools=tools,
        runner=runner,
        **kwargs,
    )


class TestDelineateBasin:
    """Tests for a successful delineate_basin() run."""

    def test_basin_geometry(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """The 3 x 6 cell valley becomes one polygon of 18 cells."""
        basin = run(pour_point, grid_extent, dem_path, fake_tools(), settings, tools)

        assert basin.geometry.geom_type == "Polygon"
        assert basin.area_km2 == pytest.approx(18 * 30 * 30 / 1e6)
        assert basin.geometry.covers(Point(pour_point.x, pour_point.y))

    def test_crs_is_pour_point_crs(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """The basin carries the pour point CRS even though the polygons had none."""
        basin = run(pour_point, grid_extent, dem_path, fake_tools(), settings, tools)

        assert basin.crs == CRS.from_epsg(32610)
        assert basin.to_geoseries().crs == CRS.from_epsg(32610)

    def test_stage_order(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """Tools run strictly in pipeline order, once each."""
        runner = fake_tools()

        run(pour_point, grid_extent, dem_path, runner, settings, tools)

        assert runner.names == PIPELINE

    def test_parameters_reach_saga(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """convergence and minslope are passed through unchanged."""
        runner = fake_tools()

        basin = run(pour_point, grid_extent, dem_path, runner, settings, tools, convergence=2.5, minslope=0.01)

        fill_argv = runner.calls[2].argv
        upslope_argv = runner.calls[3].argv
        assert fill_argv[fill_argv.index("-MINSLOPE") + 1] == "0.01"
        assert upslope_argv[upslope_argv.index("-CONVERGE") + 1] == "2.5"
        assert upslope_argv[upslope_argv.index("-METHOD") + 1] == "2"
        assert basin.parameters.convergence == 2.5

    def test_threshold_parameter(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """Lowering the threshold admits partially contributing cells."""
        basin = run(pour_point, grid_extent, dem_path, fake_tools(), settings, tools, threshold=30)

        assert basin.area_km2 == pytest.approx(24 * 30 * 30 / 1e6)

    def test_returns_reprojected_dem(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """The returned DEM is the warped raster, kept for reuse."""
        runner = fake_tools()

        basin = run(pour_point, grid_extent, dem_path, runner, settings, tools)

        assert basin.dem_path == runner.warped
        assert basin.dem_path.is_file()
        assert basin.dem_path.parent == basin.workspace.root

    def test_cleanup_removes_workspace(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """cleanup() removes the workspace including the DEM."""
        basin = run(pour_point, grid_extent, dem_path, fake_tools(), settings, tools)

        basin.cleanup()

        assert not basin.dem_path.exists()

    def test_disjoint_parts(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """Disjoint contributing areas are kept as a MultiPolygon."""
        area = np.zeros((10, 10), dtype=np.float32)
        area[0:6, 5] = 100.0
        area[0:2, 8:10] = 75.0

        basin = run(pour_point, grid_extent, dem_path, fake_tools(accumulation=area), settings, tools)

        assert basin.geometry.geom_type == "MultiPolygon"
        assert len(basin.geometry.geoms) == 2

    def test_runs_are_isolated(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """Two runs never share a workspace."""
        first = run(pour_point, grid_extent, dem_path, fake_tools(), settings, tools)
        second = run(pour_point, grid_extent, dem_path, fake_tools(), settings, tools)

        assert first.workspace.root != second.workspace.root
        assert first.dem_path.is_file()
        assert second.dem_path.is_file()

    def test_parallel_runs(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """Concurrent runs in threads all succeed with identical results."""
        results: list[DelineatedBasin] = []
        errors: list[Exception] = []

        def worker() -> None:
            try:
                results.append(run(pour_point, grid_extent, dem_path, fake_tools(), settings, tools))
            except Exception as e:  # collected and asserted below
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len({r.workspace.root for r in results}) == 3
        assert len({round(r.area_km2, 9) for r in results}) == 1

    def test_caller_workspace(
        self, pour_point, grid_extent, dem_path, tools, fake_tools, tmp_path: Path
    ) -> None:
        """A caller-supplied workspace is used as is."""
        workspace = Workspace.create(parent=tmp_path / "mine")

        basin = delineate_basin(
            pour_point,
            *grid_extent,
            dem_provider=LocalDemProvider(dem_path),
            tools=tools,
            runner=fake_tools(),
            workspace=workspace,
        )

        assert basin.workspace is workspace

    def test_geodataframe_attributes(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """The result carries its run attributes."""
        gdf = run(pour_point, grid_extent, dem_path, fake_tools(), settings, tools).to_geodataframe()

        assert len(gdf) == 1
        assert gdf.iloc[0]["converge"] == 1.1
        assert gdf.iloc[0]["minslope"] == 0.1
        assert gdf.iloc[0]["threshold"] == 50


class TestDelineateBasinFailures:
    """Every failure aborts the run with its stage error and no result."""

    @pytest.mark.parametrize(
        ("fail_on", "error"),
        [
            ("gdalwarp", ReprojectionError),
            ("io_gdal", FillError),
            ("ta_preprocessor", FillError),
            ("ta_hydrology", FlowAccumulationError),
            ("gdal_translate", ConversionError),
            ("gdal_polygonize.py", PolygonizeError),
        ],
    )
    def test_stage_failure(
        self, fail_on, error, pour_point, grid_extent, dem_path, settings, runs_dir, tools, fake_tools
    ) -> None:
        """A failing tool stops the pipeline at that stage and removes the workspace."""
        runner = fake_tools(fail_on=fail_on)

        with pytest.raises(error):
            run(pour_point, grid_extent, dem_path, runner, settings, tools)

        assert runner.names[-1] == fail_on
        assert list(runs_dir.iterdir()) == []

    def test_missing_output_aborts(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """Exit code 0 with no output file still aborts."""
        runner = fake_tools(skip_output="ta_preprocessor")

        with pytest.raises(FillError):
            run(pour_point, grid_extent, dem_path, runner, settings, tools)

        assert "ta_hydrology" not in runner.names

    def test_keep_workspace_on_error(
        self, pour_point, grid_extent, dem_path, runs_dir, tools, fake_tools
    ) -> None:
        """keep_workspace leaves the intermediate files for inspection."""
        settings = SettingsConfig(work_dir=str(runs_dir), keep_workspace=True)

        with pytest.raises(FlowAccumulationError):
            run(pour_point, grid_extent, dem_path, fake_tools(fail_on="ta_hydrology"), settings, tools)

        (kept,) = list(runs_dir.iterdir())
        assert (kept / "dem_filled.sgrd").is_file()

    def test_empty_mask(
        self, pour_point, grid_extent, dem_path, settings, tools, fake_tools
    ) -> None:
        """A pour point off the channel yields no basin cells and an error, not an empty result."""
        runner = fake_tools(accumulation=np.full((10, 10), 0.5, dtype=np.float32))

        with pytest.raises(PolygonizeError, match="threshold"):
            run(pour_point, grid_extent, dem_path, runner, settings, tools)

        assert "gdal_polygonize.py" not in runner.names

    def test_dem_unavailable(
        self, pour_point, grid_extent, settings, runs_dir, tools, fake_tools, tmp_path: Path
    ) -> None:
        """No DEM coverage fails before any tool runs and leaves nothing behind."""
        runner = fake_tools()

        with pytest.raises(DemUnavailableError):
            run(pour_point, grid_extent, tmp_path / "missing.tif", runner, settings, tools)

        assert runner.calls == []
        assert list(runs_dir.iterdir()) == []

    def test_invalid_extent(self, pour_point, dem_path, settings, tools, fake_tools) -> None:
        """An inverted extent is rejected before any work."""
        runner = fake_tools()

        with pytest.raises(InvalidExtentError):
            run(pour_point, (100.0, 100.0, 0.0, 50.0), dem_path, runner, settings, tools)

        assert runner.calls == []

    def test_pour_point_off_grid(self, grid_extent, dem_path, settings, tools, fake_tools) -> None:
        """A pour point beside the DEM fails at flow accumulation, before SAGA runs."""
        xmin, xmax, ymin, ymax = grid_extent
        outside = PourPoint(xmax + 100, ymax - 100, "EPSG:32610")
        runner = fake_tools()

        with pytest.raises(FlowAccumulationError, match="outside the grid"):
            run(outside, (xmin, xmax + 200, ymin, ymax), dem_path, runner, settings, tools)

        assert runner.names == ["gdalwarp"]

    def test_tool_not_executable(self, tmp_path: Path, pour_point, grid_extent, dem_path, settings, runs_dir) -> None:
        """A configured program that cannot be started fails its stage."""
        gdalwarp = tmp_path / "gdalwarp"
        gdalwarp.write_text("#!/bin/sh\nexit 0\n")
        gdalwarp.chmod(0o644)

        with pytest.raises(ReprojectionError, match="Cannot start"):
            delineate_basin(
                pour_point,
                *grid_extent,
                dem_provider=LocalDemProvider(dem_path),
                settings=settings,
                tools=ToolsConfig(gdalwarp=str(gdalwarp)),
            )

        assert list(runs_dir.iterdir()) == []

    @pytest.mark.parametrize(
        "kwargs",
        [{"convergence": 0}, {"minslope": -1}, {"threshold": 0}, {"threshold": 101}],
    )
    def test_invalid_parameters(self, kwargs, pour_point, grid_extent, dem_path, settings, tools, fake_tools) -> None:
        """Out-of-range parameters are rejected before any work."""
        runner = fake_tools()

        with pytest.raises(ValidationError):
            run(pour_point, grid_extent, dem_path, runner, settings, tools, **kwargs)

        assert runner.calls == []

    def test_cancelled_before_start(self, pour_point, grid_extent, dem_path, settings, runs_dir) -> None:
        """A pre-set cancel event stops the run at the first tool."""
        event = threading.Event()
        event.set()

        with pytest.raises(ReprojectionError) as exc_info:
            delineate_basin(
                pour_point,
                *grid_extent,
                dem_provider=LocalDemProvider(dem_path),
                settings=settings,
                cancel_event=event,
            )

        assert isinstance(exc_info.value.__cause__, ToolCancelledError)
        assert list(runs_dir.iterdir()) == []

    def test_errors_share_base_class(self) -> None:
        """Callers can catch every stage failure at once."""
        for error in (ReprojectionError, FillError, FlowAccumulationError, PolygonizeError, DemUnavailableError):
            assert issubclass(error, DelineationError)


TOOLS_AVAILABLE = all(shutil.which(p) for p in ("gdalwarp", "gdal_translate", "gdal_polygonize.py", "saga_cmd"))


@pytest.mark.tools
@pytest.mark.skipif(not TOOLS_AVAILABLE, reason="GDAL and SAGA command-line tools not installed")
class TestDelineateWithRealTools:
    """Runs the real GDAL and SAGA programs on a synthetic valley."""

    def test_valley(self, tmp_path: Path, grid_writer) -> None:
        """A V-shaped valley drains to its outlet cell."""
        rows = np.arange(10, dtype=np.float32)[::-1, None]
        cols = np.abs(np.arange(10, dtype=np.float32) - 5)[None, :]
        dem = grid_writer(tmp_path / "valley.tif", (100.0 + 2.0 * rows + 10.0 * cols).astype(np.float32))
        x, y = 500000.0 + 5.5 * 30, 5460000.0 - 8.5 * 30

        basin = delineate_basin(
            PourPoint(x, y, "EPSG:32610"),
            500000.0,
            500300.0,
            5459700.0,
            5460000.0,
            dem_provider=LocalDemProvider(dem),
            settings=SettingsConfig(work_dir=str(tmp_path / "runs")),
        )

        assert basin.area_km2 > 0
        assert basin.crs == CRS.from_epsg(32610)
