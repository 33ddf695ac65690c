"""
Directory locations for crossmake.

The global directory holds toolchain descriptions shared by every project:

    ~/.crossmake/
    └── toolchains/
        ├── arm64-llvm.yaml
        └── netztester2.sh
"""

import os
from pathlib import Path

from .exceptions import ConfigurationError


def get_global_dir() -> Path:
    """
    Get the platform-specific global crossmake directory.

    Returns:
        Path: The global directory path.
            - Windows: %USERPROFILE%\\.crossmake
            - Linux/macOS: ~/.crossmake/

    Raises:
        ConfigurationError: If USERPROFILE is not set on Windows
    """
    if os.name == "nt":  # Windows
        user_profile = os.environ.get("USERPROFILE")
        if not user_profile:
            raise ConfigurationError(
                "USERPROFILE environment variable is not set. "
                "Cannot determine global crossmake directory."
            )
        return Path(user_profile) / ".crossmake"
    else:  # Linux/macOS
        return Path.home() / ".crossmake"


def get_global_toolchain_dir() -> Path:
    """Directory searched last for toolchain descriptions."""
    return get_global_dir() / "toolchains"
