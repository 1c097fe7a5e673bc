"""
Main Typer CLI application for mfdshed.

This module provides the command-line interface with three subcommands:
- delineate: Delineate the basin upstream of one pour point
- check-tools: Verify that the GDAL and SAGA programs can be found
- tiles: List the CDED tiles covering an extent
"""

import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError

from mfdshed.cli.output import BasinSummary, OutputFormatter
from mfdshed.config import JobConfig, ToolsConfig, load_job
from mfdshed.core import DelineationError, PourPoint, build_extent, delineate_basin, write_basin
from mfdshed.core.process import check_tools
from mfdshed.dem import CdedDemProvider, provider_from_config
from mfdshed.logging_config import setup_logging

app = typer.Typer(
    name="mfdshed",
    help="Watershed delineation from a DEM using SAGA multiple-flow-direction tracing",
    no_args_is_help=True,
    add_completion=False,
)

logger = logging.getLogger(__name__)


def _resolve_output_format(output_format: str) -> str:
    if output_format not in ("text", "json"):
        raise typer.BadParameter(f"Invalid output format '{output_format}'. Must be 'text' or 'json'.")

    # Auto-detect format if output is being piped
    if output_format == "text" and not sys.stdout.isatty():
        logger.debug("Auto-detected non-TTY output, switching to JSON format")
        return "json"
    return output_format


def _job_from_options(options: dict[str, Any]) -> JobConfig:
    """Build a job from command-line options alone."""
    missing = [name for name in ("x", "y", "crs", "xmin", "xmax", "ymin", "ymax") if options[name] is None]
    if missing:
        raise typer.BadParameter(
            f"Missing {', '.join('--' + m for m in missing)} (or pass a job file)",
        )

    data: dict[str, Any] = {
        "pour_point": {"x": options["x"], "y": options["y"], "crs": options["crs"]},
        "extent": {k: options[k] for k in ("xmin", "xmax", "ymin", "ymax")},
    }
    return JobConfig.model_validate(data)


def _apply_overrides(job: JobConfig, options: dict[str, Any]) -> JobConfig:
    """Override job values with any command-line options that were given."""
    data = job.model_dump()

    for key in ("x", "y", "crs"):
        if options[key] is not None:
            data["pour_point"][key] = options[key]
    for key in ("xmin", "xmax", "ymin", "ymax"):
        if options[key] is not None:
            data["extent"][key] = options[key]
    for key in ("convergence", "minslope", "threshold"):
        if options[key] is not None:
            data["parameters"][key] = options[key]

    if options["dem"] is not None:
        data["dem"]["source"] = "local"
        data["dem"]["path"] = str(options["dem"])
    if options["output"] is not None:
        data["output"] = str(options["output"])
    if options["keep_workspace"]:
        data["settings"]["keep_workspace"] = True
    if options["timeout"] is not None:
        data["settings"]["timeout"] = options["timeout"]

    return JobConfig.model_validate(data)


@app.command("delineate")
def delineate_command(
    job_file: Annotated[
        Path | None,
        typer.Argument(
            help="Optional job file (TOML); command-line options override it",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    x: Annotated[float | None, typer.Option("--x", help="Pour point X coordinate")] = None,
    y: Annotated[float | None, typer.Option("--y", help="Pour point Y coordinate")] = None,
    crs: Annotated[str | None, typer.Option("--crs", help="Pour point CRS, e.g. EPSG:3005")] = None,
    xmin: Annotated[float | None, typer.Option("--xmin", help="Extent minimum X")] = None,
    xmax: Annotated[float | None, typer.Option("--xmax", help="Extent maximum X")] = None,
    ymin: Annotated[float | None, typer.Option("--ymin", help="Extent minimum Y")] = None,
    ymax: Annotated[float | None, typer.Option("--ymax", help="Extent maximum Y")] = None,
    convergence: Annotated[float | None, typer.Option("--convergence", help="MFD convergence (default 1.1)")] = None,
    minslope: Annotated[float | None, typer.Option("--minslope", help="Fill minimum slope (default 0.1)")] = None,
    threshold: Annotated[
        float | None, typer.Option("--threshold", help="Minimum percent of flow reaching the outlet (default 50)")
    ] = None,
    dem: Annotated[
        Path | None, typer.Option("--dem", help="Use a local DEM raster instead of downloading CDED tiles")
    ] = None,
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Write the basin to .gpkg, .shp or .geojson")
    ] = None,
    keep_workspace: Annotated[
        bool, typer.Option("--keep-workspace", help="Keep the reprojected DEM and SAGA grids after the run")
    ] = False,
    timeout: Annotated[
        float | None, typer.Option("--timeout", help="Kill an external tool after N seconds", min=0)
    ] = None,
    output_format: Annotated[str, typer.Option("--output-format", help="Output format: text or json")] = "text",
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Suppress progress output")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show detailed progress")] = False,
) -> None:
    """
    Delineate the basin draining to one pour point.

    \b
    JOB FILE FORMAT (job.toml):
        [pour_point]
        x = 1234567.0
        y = 567890.0
        crs = "EPSG:3005"

        [extent]
        xmin = 1230000.0
        xmax = 1240000.0
        ymin = 560000.0
        ymax = 570000.0

        [parameters]          # Optional
        convergence = 1.1
        minslope = 0.1

    \b
    EXAMPLES:
        mfdshed delineate job.toml
        mfdshed delineate job.toml -o basin.gpkg
        mfdshed delineate --x 1234567 --y 567890 --crs EPSG:3005 \\
            --xmin 1230000 --xmax 1240000 --ymin 560000 --ymax 570000
        mfdshed delineate job.toml --dem ./dem.tif --output-format json
    """
    setup_logging(verbose=verbose, quiet=quiet)
    output_format = _resolve_output_format(output_format)
    formatter = OutputFormatter(output_format=output_format, quiet=quiet, verbose=verbose)

    options = {
        "x": x,
        "y": y,
        "crs": crs,
        "xmin": xmin,
        "xmax": xmax,
        "ymin": ymin,
        "ymax": ymax,
        "convergence": convergence,
        "minslope": minslope,
        "threshold": threshold,
        "dem": dem,
        "output": output,
        "keep_workspace": keep_workspace,
        "timeout": timeout,
    }

    try:
        job = load_job(job_file) if job_file is not None else _job_from_options(options)
        job = _apply_overrides(job, options)
    except typer.BadParameter as e:
        formatter.print_error(str(e), hint="See 'mfdshed delineate --help'")
        raise typer.Exit(2) from None
    except (ValidationError, ValueError, FileNotFoundError) as e:
        formatter.print_error("Invalid job configuration", details=str(e))
        raise typer.Exit(2) from None

    pour_point = PourPoint(x=job.pour_point.x, y=job.pour_point.y, crs=job.pour_point.crs)
    provider = provider_from_config(job.dem, tools=job.tools)

    formatter.print_progress(f"Delineating basin at ({pour_point.x}, {pour_point.y})...", style="cyan")

    try:
        basin = delineate_basin(
            pour_point,
            job.extent.xmin,
            job.extent.xmax,
            job.extent.ymin,
            job.extent.ymax,
            convergence=job.parameters.convergence,
            minslope=job.parameters.minslope,
            threshold=job.parameters.threshold,
            dem_provider=provider,
            settings=job.settings,
            tools=job.tools,
        )
    except DelineationError as e:
        summary = BasinSummary(
            status="failure",
            pour_x=pour_point.x,
            pour_y=pour_point.y,
            crs=pour_point.crs.to_string(),
            error=e.message,
            stage=e.stage,
        )
        formatter.print_result(summary)
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        raise typer.Exit(130) from None

    output_path = None
    try:
        if job.output:
            try:
                output_path = str(write_basin(basin, Path(job.output)))
            except ValueError as e:
                formatter.print_error(str(e))
                raise typer.Exit(2) from None
    finally:
        if not job.settings.keep_workspace:
            basin.cleanup()

    summary = BasinSummary.from_basin(basin, output_path=output_path)
    if not job.settings.keep_workspace:
        # The reprojected DEM went with the workspace
        summary.dem_path = None
        summary.workspace = None
    formatter.print_result(summary)


@app.command("check-tools")
def check_tools_command(
    output_format: Annotated[str, typer.Option("--output-format", help="Output format: text or json")] = "text",
) -> None:
    """
    Check that the external GDAL and SAGA programs are on PATH.

    Program names can be overridden with MFDSHED_GDALWARP, MFDSHED_SAGA_CMD,
    MFDSHED_GDAL_TRANSLATE, MFDSHED_GDALBUILDVRT and MFDSHED_GDAL_POLYGONIZE.
    """
    output_format = _resolve_output_format(output_format)
    formatter = OutputFormatter(output_format=output_format)

    tools = ToolsConfig()
    resolved = check_tools([*tools.required(), tools.gdalbuildvrt])
    formatter.print_tools(resolved)

    if not all(resolved.values()):
        raise typer.Exit(1)


@app.command("tiles")
def tiles_command(
    xmin: Annotated[float, typer.Option("--xmin", help="Extent minimum X")],
    xmax: Annotated[float, typer.Option("--xmax", help="Extent maximum X")],
    ymin: Annotated[float, typer.Option("--ymin", help="Extent minimum Y")],
    ymax: Annotated[float, typer.Option("--ymax", help="Extent maximum Y")],
    crs: Annotated[str, typer.Option("--crs", help="CRS of the extent")] = "EPSG:4326",
    output_format: Annotated[str, typer.Option("--output-format", help="Output format: text or json")] = "text",
) -> None:
    """
    List the CDED tiles that cover an extent.

    \b
    EXAMPLES:
        mfdshed tiles --xmin -123.5 --xmax -123.0 --ymin 49.2 --ymax 49.5
    """
    output_format = _resolve_output_format(output_format)
    formatter = OutputFormatter(output_format=output_format)
    provider = CdedDemProvider()

    try:
        extent = build_extent(xmin, xmax, ymin, ymax, crs)
        tiles = provider.tiles_for(extent)
    except DelineationError as e:
        formatter.print_error(e.message)
        raise typer.Exit(2) from None

    formatter.print_tiles(tiles, [provider.tile_url(t) for t in tiles])


if __name__ == "__main__":
    app()
