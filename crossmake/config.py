"""
Driver configuration.

Settings are layered, lowest precedence first:

1. Built-in defaults (toolchain ``arm64-llvm``, profile ``arm64``, 32 jobs, ``make``)
2. ``crossmake.yaml`` in the project directory, or the file named by
   ``CROSSMAKE_CONFIG``
3. ``CROSSMAKE_*`` environment variables

Example crossmake.yaml::

    toolchain: netztester2
    profile: arm64
    jobs: 16
    make: make
    directory: linux
    toolchain_paths:
      - ../enqt/tfds-master
    profiles:
      mips:
        arch: mips
        compiler: gcc

The command line is never consulted: every argument belongs to the build.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from crossmake.compose import DEFAULT_TOOL, validate_jobs
from crossmake.core.directory import get_global_toolchain_dir
from crossmake.core.exceptions import ConfigurationError
from crossmake.profiles import DEFAULT_PROFILE, BuildProfile, get_profile, parse_profile

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "crossmake.yaml"
DEFAULT_TOOLCHAIN = "arm64-llvm"
PROJECT_TOOLCHAIN_DIR = "toolchains"

ENV_CONFIG = "CROSSMAKE_CONFIG"
ENV_TOOLCHAIN = "CROSSMAKE_TOOLCHAIN"
ENV_PROFILE = "CROSSMAKE_PROFILE"
ENV_JOBS = "CROSSMAKE_JOBS"
ENV_MAKE = "CROSSMAKE_MAKE"
ENV_DIRECTORY = "CROSSMAKE_DIRECTORY"
ENV_TOOLCHAIN_PATH = "CROSSMAKE_TOOLCHAIN_PATH"
ENV_DRY_RUN = "CROSSMAKE_DRY_RUN"

_KNOWN_KEYS = {
    "toolchain",
    "profile",
    "jobs",
    "make",
    "directory",
    "toolchain_paths",
    "profiles",
}
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class DriverConfig:
    """Resolved driver configuration."""

    toolchain: str = DEFAULT_TOOLCHAIN
    profile: str = DEFAULT_PROFILE
    jobs: Optional[int] = None  # None: use the composer default
    make: str = DEFAULT_TOOL
    directory: Optional[Path] = None
    toolchain_paths: List[Path] = field(default_factory=list)
    profiles: Dict[str, BuildProfile] = field(default_factory=dict)
    dry_run: bool = False
    project_dir: Path = field(default_factory=Path.cwd)
    config_file: Optional[Path] = None

    def search_paths(self) -> List[Path]:
        """Toolchain search paths: configured, project toolchains/, global."""
        return [
            *self.toolchain_paths,
            self.project_dir / PROJECT_TOOLCHAIN_DIR,
            get_global_toolchain_dir(),
        ]

    def build_profile(self) -> BuildProfile:
        """Selected build profile (custom definitions take precedence)."""
        return get_profile(self.profile, self.profiles)


def load_config(
    project_dir: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None
) -> DriverConfig:
    """
    Load configuration from defaults, config file and environment.

    Args:
        project_dir: Project directory (default: cwd)
        environ: Environment to read overrides from (default: os.environ)

    Returns:
        DriverConfig

    Raises:
        ConfigurationError: If the config file or an override is invalid
    """
    project_dir = Path(project_dir).resolve() if project_dir else Path.cwd()
    environ = os.environ if environ is None else environ

    config = DriverConfig(project_dir=project_dir)

    explicit = environ.get(ENV_CONFIG)
    if explicit:
        config_file = _resolve(Path(explicit), project_dir)
        data = load_yaml_config(config_file, required=True)
    else:
        config_file = project_dir / CONFIG_FILE_NAME
        data = load_yaml_config(config_file, required=False)

    if data:
        config.config_file = config_file
        _apply_file(config, data, config_file.parent)

    _apply_environment(config, environ)

    logger.debug(f"Configuration: {config}")
    return config


def load_yaml_config(config_file: Path, required: bool = False) -> Dict[str, Any]:
    """
    Load and parse a YAML configuration file.

    Args:
        config_file: Path to YAML configuration file
        required: If True, raise error if file doesn't exist

    Returns:
        Configuration dictionary (empty dict if file doesn't exist and not required)

    Raises:
        ConfigurationError: If the file is required but missing, or invalid
    """
    if not config_file.exists():
        if required:
            raise ConfigurationError(f"Configuration file not found: {config_file}")
        logger.debug(f"Config file not found (optional): {config_file}")
        return {}

    logger.debug(f"Loading configuration from {config_file}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_file}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_file}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_file}: top level must be a mapping")
    return data


def _resolve(path: Path, base: Path) -> Path:
    path = path.expanduser()
    return path if path.is_absolute() else base / path


def _require_str(data: Dict[str, Any], key: str, source: Path) -> str:
    value = data[key]
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{source}: {key} must be a non-empty string")
    return value


def _apply_file(config: DriverConfig, data: Dict[str, Any], base: Path) -> None:
    source = config.config_file

    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        logger.warning(f"Ignoring unknown keys in {source}: {', '.join(unknown)}")

    if "toolchain" in data:
        config.toolchain = _require_str(data, "toolchain", source)
    if "profile" in data:
        config.profile = _require_str(data, "profile", source)
    if "make" in data:
        config.make = _require_str(data, "make", source)
    if "jobs" in data:
        config.jobs = validate_jobs(data["jobs"])
    if "directory" in data:
        config.directory = _resolve(Path(_require_str(data, "directory", source)), base)

    if "toolchain_paths" in data:
        paths = data["toolchain_paths"]
        if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
            raise ConfigurationError(f"{source}: toolchain_paths must be a list of paths")
        config.toolchain_paths = [_resolve(Path(p), base) for p in paths]

    if "profiles" in data:
        profiles = data["profiles"]
        if not isinstance(profiles, dict):
            raise ConfigurationError(f"{source}: profiles must be a mapping")
        config.profiles = {
            str(name): parse_profile(str(name), definition)
            for name, definition in profiles.items()
        }


def _apply_environment(config: DriverConfig, environ: Mapping[str, str]) -> None:
    if environ.get(ENV_TOOLCHAIN):
        config.toolchain = environ[ENV_TOOLCHAIN]
    if environ.get(ENV_PROFILE):
        config.profile = environ[ENV_PROFILE]
    if environ.get(ENV_MAKE):
        config.make = environ[ENV_MAKE]
    if environ.get(ENV_JOBS):
        try:
            config.jobs = validate_jobs(environ[ENV_JOBS])
        except ConfigurationError as e:
            raise ConfigurationError(f"{ENV_JOBS}: {e}")
    if environ.get(ENV_DIRECTORY):
        config.directory = _resolve(Path(environ[ENV_DIRECTORY]), config.project_dir)
    if environ.get(ENV_TOOLCHAIN_PATH):
        config.toolchain_paths.extend(
            _resolve(Path(entry), config.project_dir)
            for entry in environ[ENV_TOOLCHAIN_PATH].split(os.pathsep)
            if entry
        )
    config.dry_run = environ.get(ENV_DRY_RUN, "").strip().lower() in _TRUTHY
