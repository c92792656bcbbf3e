"""Shared modules for kindplane.

This module provides functionality used across the bootstrap pipeline
and the CLI commands:
- Logging configuration
- Well-known paths
"""

from .logging import configure_logging, get_logger, level_for_verbosity
from .paths import (
    DEFAULT_CONFIG_FILE,
    KINDPLANE_DIR,
    SETTINGS_FILE,
    aws_credentials_path,
    kubeconfig_path,
)

__all__ = [
    # Paths
    "KINDPLANE_DIR",
    "SETTINGS_FILE",
    "DEFAULT_CONFIG_FILE",
    "kubeconfig_path",
    "aws_credentials_path",
    # Logging
    "configure_logging",
    "get_logger",
    "level_for_verbosity",
]
