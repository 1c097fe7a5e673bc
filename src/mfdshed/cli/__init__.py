"""
Typer CLI for mfdshed.

This module exports the main Typer application that provides the command-line
interface for basin delineation.
"""

from .main import app

__all__ = ["app"]
