"""
Toolchain module for crossmake.

This module provides functionality for:
- Resolving toolchain identifiers to description files
- Parsing YAML and shell toolchain descriptions into environment bindings
"""

from crossmake.core.exceptions import (
    ToolchainError,
    ToolchainMalformedError,
    ToolchainNotFoundError,
)
from crossmake.toolchain.loader import ToolchainDescriptor, ToolchainLoader

__all__ = [
    "ToolchainDescriptor",
    "ToolchainLoader",
    "ToolchainError",
    "ToolchainMalformedError",
    "ToolchainNotFoundError",
]
