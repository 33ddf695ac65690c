"""
Build parameter composition.

Combines a loaded toolchain with a build profile and a job count into the
single InvocationDescriptor that fully determines the downstream call, and
appends the caller's arguments to it untouched.

Example:
    >>> invocation = compose(descriptor, get_profile("arm64"))
    >>> invocation = forward_arguments(invocation, ["clean"])
    >>> invocation.command()
    ['make', 'LLVM=1', 'ARCH=arm64', 'CROSS_COMPILE=aarch64-linux-gnu-', '-j32', 'clean']
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Tuple

from crossmake.core.exceptions import (
    ConfigurationError,
    MissingRequiredBindingError,
)
from crossmake.profiles import BuildProfile
from crossmake.toolchain.loader import ToolchainDescriptor

logger = logging.getLogger(__name__)

DEFAULT_JOBS = 32
DEFAULT_TOOL = "make"


@dataclass(frozen=True)
class InvocationDescriptor:
    """
    Everything needed to run the downstream build once.

    Attributes:
        tool: Build tool executable (make-compatible)
        arch: Architecture selector (ARCH=)
        compiler_flag: Compiler family selector (e.g. 'LLVM=1') or None
        cross_compile: Cross-compile prefix or None for native builds
        jobs: Parallelism count (-j)
        args: Forwarded caller arguments, in order
        env: Toolchain bindings applied to the child environment
        directory: Working directory for the build, None for the current one
    """

    tool: str
    arch: str
    compiler_flag: Optional[str]
    cross_compile: Optional[str]
    jobs: int
    args: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    directory: Optional[Path] = None

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    def build_parameters(self) -> List[str]:
        """Parameters in the order the build expects: compiler, arch, prefix, jobs."""
        params = []
        if self.compiler_flag:
            params.append(self.compiler_flag)
        params.append(f"ARCH={self.arch}")
        if self.cross_compile is not None:
            params.append(f"CROSS_COMPILE={self.cross_compile}")
        params.append(f"-j{self.jobs}")
        return params

    def command(self) -> List[str]:
        """Full argv for the build tool."""
        return [self.tool, *self.build_parameters(), *self.args]


def validate_jobs(jobs) -> int:
    """
    Validate a parallelism count.

    Raises:
        ConfigurationError: If jobs is not a positive integer
    """
    if isinstance(jobs, bool):
        raise ConfigurationError(f"Job count must be a positive integer, got {jobs!r}")
    if isinstance(jobs, str):
        try:
            jobs = int(jobs.strip())
        except ValueError:
            raise ConfigurationError(
                f"Job count must be a positive integer, got {jobs!r}"
            )
    if not isinstance(jobs, int) or jobs < 1:
        raise ConfigurationError(f"Job count must be a positive integer, got {jobs!r}")
    return jobs


def compose(
    descriptor: ToolchainDescriptor,
    profile: BuildProfile,
    jobs: Optional[int] = None,
    tool: str = DEFAULT_TOOL,
    directory: Optional[Path] = None,
) -> InvocationDescriptor:
    """
    Compose the invocation for a toolchain and profile.

    Args:
        descriptor: Loaded toolchain
        profile: Build profile providing the fixed selectors
        jobs: Explicit job count, overrides DEFAULT_JOBS
        tool: Build tool executable
        directory: Working directory for the build

    Returns:
        InvocationDescriptor with no forwarded arguments yet

    Raises:
        MissingRequiredBindingError: If the toolchain lacks a required binding
        ConfigurationError: If jobs is invalid
    """
    # A cross profile needs a non-empty prefix
    missing = [
        name
        for name in profile.required_bindings
        if name not in descriptor
        or (name == profile.prefix_binding and not descriptor.get(name))
    ]
    if missing:
        raise MissingRequiredBindingError(profile.name, missing, descriptor.identifier)

    job_count = validate_jobs(DEFAULT_JOBS if jobs is None else jobs)

    invocation = InvocationDescriptor(
        tool=tool,
        arch=profile.arch,
        compiler_flag=profile.compiler_flag,
        cross_compile=descriptor.get(profile.prefix_binding),
        jobs=job_count,
        env=descriptor.bindings,
        directory=directory,
    )
    logger.debug(f"Composed build parameters: {invocation.build_parameters()}")
    return invocation


def forward_arguments(
    invocation: InvocationDescriptor, args: Iterable[str]
) -> InvocationDescriptor:
    """Append caller arguments, in order and unaltered, to the invocation."""
    return replace(invocation, args=(*invocation.args, *args))
