"""
Centralized exception hierarchy for crossmake.

Every failure the driver can report is one of these. Configuration errors
(anything raised before the build tool is started) end the run with the
configuration-error exit code; a DispatchError ends it with the
launch-error exit code.
"""

from typing import Iterable, List


# ============================================================================
# Base Exceptions
# ============================================================================


class CrossMakeError(Exception):
    """Base exception for all crossmake errors."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(CrossMakeError):
    """Raised when the driver cannot be configured (config file, profile, toolchain)."""

    pass


class ProfileNotFoundError(ConfigurationError):
    """Raised when a build profile name is not defined."""

    def __init__(self, profile_name: str, available: Iterable[str] = ()):
        self.profile_name = profile_name
        self.available = sorted(available)
        msg = f"Unknown build profile: {profile_name}"
        if self.available:
            msg += f" (available: {', '.join(self.available)})"
        super().__init__(msg)


# ============================================================================
# Toolchain-related Exceptions
# ============================================================================


class ToolchainError(ConfigurationError):
    """Base exception for toolchain description errors."""

    pass


class ToolchainNotFoundError(ToolchainError):
    """Raised when a toolchain identifier does not resolve to a description."""

    def __init__(self, identifier: str, searched: Iterable[str] = ()):
        self.identifier = identifier
        self.searched: List[str] = [str(p) for p in searched]
        msg = f"Toolchain not found: {identifier}"
        if self.searched:
            msg += f" (searched: {', '.join(self.searched)})"
        super().__init__(msg)


class ToolchainMalformedError(ToolchainError):
    """Raised when a toolchain description cannot be parsed into bindings."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Malformed toolchain description {source}: {reason}")


class MissingRequiredBindingError(ConfigurationError):
    """Raised when a toolchain lacks a binding the build profile requires."""

    def __init__(self, profile_name: str, missing: Iterable[str], toolchain: str = ""):
        self.profile_name = profile_name
        self.missing = list(missing)
        self.toolchain = toolchain
        source = f"Toolchain '{toolchain}'" if toolchain else "Toolchain"
        super().__init__(
            f"{source} does not define {', '.join(self.missing)} "
            f"required by profile '{profile_name}'"
        )


# ============================================================================
# Dispatch Exceptions
# ============================================================================


class DispatchError(CrossMakeError):
    """Raised when the downstream build tool cannot be started at all."""

    def __init__(self, tool: str, reason: str):
        self.tool = tool
        self.reason = reason
        super().__init__(f"Cannot start build tool '{tool}': {reason}")
