"""Command line utilities for ALDL Link."""

from aldl_link.cli.app import main, run_cli

__all__ = ["main", "run_cli"]
