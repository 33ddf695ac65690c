"""
Build profiles.

A build profile fixes the architecture selector and compiler family passed
to the downstream build and names the toolchain bindings it cannot work
without. The default profile, ``arm64``, reproduces::

    make LLVM=1 ARCH=arm64 CROSS_COMPILE=<prefix> -j32

Projects add or override profiles in ``crossmake.yaml``::

    profiles:
      mips:
        arch: mips
        compiler: gcc
        requires: [SYSROOT]
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from crossmake.core.exceptions import ConfigurationError, ProfileNotFoundError

logger = logging.getLogger(__name__)

COMPILER_FAMILIES = ("llvm", "gcc")
DEFAULT_PREFIX_BINDING = "CROSS_COMPILE"
DEFAULT_PROFILE = "arm64"


@dataclass(frozen=True)
class BuildProfile:
    """
    Fixed build parameters for one target architecture.

    Attributes:
        name: Profile name
        arch: Value passed as ARCH=
        compiler: Compiler family ('llvm' or 'gcc')
        requires: Toolchain bindings that must be present
        native: True if no cross-compile prefix is needed
        prefix_binding: Binding holding the cross-compile prefix
    """

    name: str
    arch: str
    compiler: str = "llvm"
    requires: Tuple[str, ...] = field(default_factory=tuple)
    native: bool = False
    prefix_binding: str = DEFAULT_PREFIX_BINDING

    @property
    def compiler_flag(self) -> Optional[str]:
        """Compiler family selector for the build, None for the default (gcc)."""
        return "LLVM=1" if self.compiler == "llvm" else None

    @property
    def required_bindings(self) -> Tuple[str, ...]:
        """All bindings the profile needs, prefix binding first."""
        required = [] if self.native else [self.prefix_binding]
        required.extend(name for name in self.requires if name not in required)
        return tuple(required)


BUILTIN_PROFILES: Dict[str, BuildProfile] = {
    "arm64": BuildProfile(name="arm64", arch="arm64", compiler="llvm"),
    "arm64-gcc": BuildProfile(name="arm64-gcc", arch="arm64", compiler="gcc"),
    "arm": BuildProfile(name="arm", arch="arm", compiler="llvm"),
    "riscv": BuildProfile(name="riscv", arch="riscv", compiler="llvm"),
    "x86_64": BuildProfile(name="x86_64", arch="x86_64", compiler="llvm", native=True),
}


def parse_profile(name: str, data: Any) -> BuildProfile:
    """
    Parse a profile definition from configuration.

    Args:
        name: Profile name
        data: Mapping with arch, compiler, requires, native, prefix_binding

    Returns:
        BuildProfile

    Raises:
        ConfigurationError: If the definition is invalid
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"Profile '{name}' must be a mapping")

    arch = data.get("arch")
    if not isinstance(arch, str) or not arch:
        raise ConfigurationError(f"Profile '{name}' missing required field: arch")

    compiler = data.get("compiler", "llvm")
    if compiler not in COMPILER_FAMILIES:
        raise ConfigurationError(
            f"Profile '{name}' has invalid compiler: {compiler} "
            f"(expected one of {list(COMPILER_FAMILIES)})"
        )

    requires = data.get("requires", [])
    if not isinstance(requires, list) or not all(
        isinstance(item, str) and item for item in requires
    ):
        raise ConfigurationError(f"Profile '{name}': requires must be a list of names")

    native = data.get("native", False)
    if not isinstance(native, bool):
        raise ConfigurationError(f"Profile '{name}': native must be true or false")

    prefix_binding = data.get("prefix_binding", DEFAULT_PREFIX_BINDING)
    if not isinstance(prefix_binding, str) or not prefix_binding:
        raise ConfigurationError(f"Profile '{name}': prefix_binding must be a name")

    return BuildProfile(
        name=name,
        arch=arch,
        compiler=compiler,
        requires=tuple(requires),
        native=native,
        prefix_binding=prefix_binding,
    )


def get_profile(
    name: str, custom: Optional[Mapping[str, BuildProfile]] = None
) -> BuildProfile:
    """
    Look up a profile, custom definitions first.

    Raises:
        ProfileNotFoundError: If the profile is not defined
    """
    profiles = dict(BUILTIN_PROFILES)
    if custom:
        profiles.update(custom)

    try:
        profile = profiles[name]
    except KeyError:
        raise ProfileNotFoundError(name, profiles.keys())

    logger.debug(f"Using build profile {profile}")
    return profile
