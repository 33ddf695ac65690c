"""
crossmake - cross-compilation build driver.

Resolves a toolchain description, composes the architecture, compiler
family, cross-compile prefix and job parameters for a make-compatible
build, and runs it with the caller's arguments appended.
"""

__version__ = "0.1.0"

from crossmake.compose import InvocationDescriptor, compose, forward_arguments
from crossmake.controller import (
    EXIT_CONFIG_ERROR,
    EXIT_LAUNCH_ERROR,
    FailFastController,
    RunState,
)
from crossmake.dispatch import FailureOrigin, InvocationResult, ProcessDispatcher
from crossmake.profiles import BuildProfile, get_profile
from crossmake.toolchain import ToolchainDescriptor, ToolchainLoader

__all__ = [
    "__version__",
    "BuildProfile",
    "get_profile",
    "ToolchainDescriptor",
    "ToolchainLoader",
    "InvocationDescriptor",
    "compose",
    "forward_arguments",
    "InvocationResult",
    "FailureOrigin",
    "ProcessDispatcher",
    "FailFastController",
    "RunState",
    "EXIT_CONFIG_ERROR",
    "EXIT_LAUNCH_ERROR",
]
