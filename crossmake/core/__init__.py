"""
Core functionality for crossmake.

This package contains the foundational modules that other components depend on.
"""

from .directory import get_global_dir, get_global_toolchain_dir
from .exceptions import (
    CrossMakeError,
    ConfigurationError,
    ProfileNotFoundError,
    ToolchainError,
    ToolchainNotFoundError,
    ToolchainMalformedError,
    MissingRequiredBindingError,
    DispatchError,
)

__all__ = [
    "get_global_dir",
    "get_global_toolchain_dir",
    "CrossMakeError",
    "ConfigurationError",
    "ProfileNotFoundError",
    "ToolchainError",
    "ToolchainNotFoundError",
    "ToolchainMalformedError",
    "MissingRequiredBindingError",
    "DispatchError",
]
