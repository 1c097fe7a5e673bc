"""
Output formatting module for the mfdshed CLI.

This module handles formatted output for the CLI, supporting both:
- Human-readable text output with Rich formatting
- Machine-readable JSON output for automation

The output formatter adapts to the execution context (TTY vs pipe) and
provides consistent output for interactive use and for scripts.
"""

import json
import logging
import sys
from dataclasses import asdict, dataclass

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mfdshed.core.delineate import DelineatedBasin
from mfdshed.dem.nts import NtsSheet

logger = logging.getLogger(__name__)


@dataclass
class BasinSummary:
    """Serializable summary of one delineation."""

    status: str  # "success" or "failure"
    pour_x: float
    pour_y: float
    crs: str
    area_km2: float | None = None
    geometry_type: str | None = None
    parts: int | None = None
    dem_path: str | None = None
    output_path: str | None = None
    workspace: str | None = None
    error: str | None = None
    stage: str | None = None

    def __post_init__(self) -> None:
        """Validate summary fields."""
        valid_statuses = {"success", "failure"}
        if self.status not in valid_statuses:
            raise ValueError(f"status must be one of {valid_statuses}, got '{self.status}'")

    @classmethod
    def from_basin(cls, basin: DelineatedBasin, output_path: str | None = None) -> "BasinSummary":
        geometry = basin.geometry
        return cls(
            status="success",
            pour_x=basin.pour_point.x,
            pour_y=basin.pour_point.y,
            crs=basin.crs.to_string(),
            area_km2=round(basin.area_km2, 4),
            geometry_type=geometry.geom_type,
            parts=len(geometry.geoms) if geometry.geom_type == "MultiPolygon" else 1,
            dem_path=str(basin.dem_path),
            output_path=output_path,
            workspace=str(basin.workspace.root),
        )


class OutputFormatter:
    """Handles CLI output formatting for text and JSON modes."""

    def __init__(self, output_format: str = "text", quiet: bool = False, verbose: bool = False) -> None:
        """
        Initialize the output formatter.

        Args:
            output_format: Output format ("text" or "json")
            quiet: Suppress progress output
            verbose: Show detailed progress information

        Raises:
            ValueError: If output_format is not "text" or "json"
        """
        if output_format not in ("text", "json"):
            raise ValueError(f"output_format must be 'text' or 'json', got '{output_format}'")

        self.output_format = output_format
        self.quiet = quiet
        self.verbose = verbose
        self.console = Console(file=sys.stdout)

    def print_result(self, summary: BasinSummary) -> None:
        """Print a delineation summary in text or JSON format."""
        if self.output_format == "json":
            print(json.dumps(asdict(summary), indent=2))
            return

        self.console.print()
        if summary.status == "success":
            self.console.print("✓", "[bold green]Basin delineated[/bold green]")
            self.console.print(f"  Pour point: ({summary.pour_x}, {summary.pour_y}) [dim]{summary.crs}[/dim]")
            self.console.print(f"  Area: [bold]{summary.area_km2:.3f}[/bold] km²")
            self.console.print(f"  Geometry: {summary.geometry_type} ({summary.parts} part(s))")
            if summary.dem_path:
                self.console.print(f"  DEM: {summary.dem_path}")
            if summary.output_path:
                self.console.print(f"  → {summary.output_path}")
        else:
            self.console.print("✗", "[bold red]Delineation failed[/bold red]")
            self.console.print(f"  Stage: {summary.stage}")
            self.console.print(f"  Error: {summary.error}")
        self.console.print()

    def print_error(self, message: str, hint: str | None = None, details: str | None = None) -> None:
        """
        Print error with optional hint and details.

        Args:
            message: The main error message
            hint: Optional hint for fixing the error
            details: Optional detailed error information
        """
        if self.output_format == "json":
            error_obj = {"error": message}
            if hint:
                error_obj["hint"] = hint
            if details:
                error_obj["details"] = details
            print(json.dumps(error_obj, indent=2))
        else:
            self.console.print()
            self.console.print(f"[bold red]Error:[/bold red] {message}")

            if details:
                self.console.print(Panel(details, title="Details", border_style="red", expand=False))

            if hint:
                self.console.print()
                self.console.print(f"[bold cyan]Fix:[/bold cyan] {hint}")

            self.console.print()

        logger.error(f"Error: {message}")

    def print_progress(self, message: str, style: str = "") -> None:
        """Print progress message (only if not quiet and format is text)."""
        if self.quiet or self.output_format == "json":
            return

        if style:
            self.console.print(message, style=style)
        else:
            self.console.print(message)

    def print_tools(self, resolved: dict[str, str | None]) -> None:
        """Print which external programs were found on PATH."""
        if self.output_format == "json":
            print(json.dumps({"tools": resolved, "all_found": all(resolved.values())}, indent=2))
            return

        table = Table(title="External tools", show_header=True, header_style="bold magenta")
        table.add_column("Program", style="cyan")
        table.add_column("Status")
        table.add_column("Path", style="dim")

        for program, path in resolved.items():
            status = "[green]✓ found[/green]" if path else "[red]✗ missing[/red]"
            table.add_row(program, status, path or "")

        self.console.print(table)

    def print_tiles(self, tiles: list[NtsSheet], urls: list[str]) -> None:
        """Print the CDED tiles covering an extent."""
        if self.output_format == "json":
            output = [
                {"map_sheet": t.map_sheet, "tile": t.tile_name, "url": url} for t, url in zip(tiles, urls, strict=True)
            ]
            print(json.dumps({"tiles": output}, indent=2))
            return

        table = Table(title=f"{len(tiles)} CDED tile(s)", show_header=True, header_style="bold magenta")
        table.add_column("Map sheet", style="cyan")
        table.add_column("Tile", style="green")
        table.add_column("URL", style="dim")

        for tile, url in zip(tiles, urls, strict=True):
            table.add_row(tile.map_sheet, tile.tile_name, url)

        self.console.print(table)
