"""Logging utilities for ALDL Link."""

from aldl_link.logging.config import JsonFormatter, setup_logging

__all__ = ["JsonFormatter", "setup_logging"]
