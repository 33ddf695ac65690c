"""
crossmake CLI module.

This module provides the command-line interface for crossmake.
"""

from .main import CLI, main
from . import utils

__all__ = ["CLI", "main", "utils"]
