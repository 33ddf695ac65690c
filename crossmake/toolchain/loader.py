"""
Toolchain description loading.

A toolchain description defines the environment a cross build needs:
compiler paths, sysroot, and the cross-compile prefix. Two formats are
understood:

- YAML profiles (``.yaml``/``.yml``) with an ``env`` mapping::

      name: arm64-llvm
      description: Buildroot aarch64 toolchain
      env:
        CROSS_COMPILE: aarch64-buildroot-linux-gnu-
        SYSROOT: /opt/buildroot/aarch64/sysroot
        PATH: /opt/buildroot/aarch64/bin:/usr/bin:/bin

  Values are taken exactly as written, so ``12.10`` or ``0x10`` reach the
  build unchanged.

- Shell scripts (``.sh`` or any other file), the traditional
  ``source toolchain.sh`` setup. The script is sourced by bash in a child
  process and every variable it exports or changes becomes a binding,
  including one exported with the value the caller already has.
  The driver's own environment is never touched.

Usage:
    loader = ToolchainLoader([Path("toolchains")])
    descriptor = loader.load("arm64-llvm")
    print(descriptor.bindings["CROSS_COMPILE"])
"""

import logging
import os
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence

import yaml

from crossmake.core.exceptions import ToolchainMalformedError, ToolchainNotFoundError

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")
SHELL_SUFFIXES = (".sh",)
SEARCH_SUFFIXES = YAML_SUFFIXES + SHELL_SUFFIXES

# Variables bash maintains itself; a difference in these is not a binding.
_SHELL_VOLATILE = frozenset({"_", "SHLVL", "PWD", "OLDPWD"})

_DUMP_EXPORTED = (
    'for __crossmake_var in $(compgen -e); do '
    'printf "%s=%s\\0" "$__crossmake_var" "${!__crossmake_var}"; '
    "done"
)
_BASELINE_SCRIPT = _DUMP_EXPORTED
_SOURCE_SCRIPT = 'set -e; . "$1" >&2; ' + _DUMP_EXPORTED
_REEXPORT_SCRIPT = '. "$1" >&2; ' + _DUMP_EXPORTED

# Left in place when checking which inherited variables the script sets itself
_REEXPORT_KEEP = _SHELL_VOLATILE | {"PATH"}

_BINDING_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")
_YAML_NULLS = frozenset({"", "~", "null", "Null", "NULL"})


class _SourceTextLoader(yaml.BaseLoader):
    """YAML loader that keeps every scalar as written, except plain nulls."""


def _construct_source_text(loader, node):
    value = loader.construct_scalar(node)
    if node.style is None and value in _YAML_NULLS:
        return None
    return value


_SourceTextLoader.add_constructor("tag:yaml.org,2002:str", _construct_source_text)


@dataclass(frozen=True)
class ToolchainDescriptor:
    """
    A loaded toolchain description.

    Attributes:
        identifier: Identifier the toolchain was requested by
        source: Path of the description file
        format: 'yaml' or 'shell'
        bindings: Read-only mapping of environment variable names to values
        description: Optional human readable description (YAML only)
    """

    identifier: str
    source: Path
    format: str
    bindings: Mapping[str, str] = field(default_factory=dict)
    description: Optional[str] = None

    def __post_init__(self):
        # Freeze the mapping so the descriptor cannot change after loading
        object.__setattr__(
            self, "bindings", MappingProxyType(dict(self.bindings))
        )

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get a binding value."""
        return self.bindings.get(name, default)

    def __contains__(self, name: object) -> bool:
        return name in self.bindings


class ToolchainLoader:
    """
    Resolve toolchain identifiers and parse their descriptions.

    An identifier is either a path to a description file or a logical name
    looked up as ``<name>.yaml``, ``<name>.yml`` or ``<name>.sh`` in each
    search path, in order.
    """

    def __init__(
        self,
        search_paths: Sequence[Path] = (),
        base_dir: Optional[Path] = None,
        shell: str = "bash",
    ):
        """
        Initialize loader.

        Args:
            search_paths: Directories searched for logical toolchain names
            base_dir: Directory relative paths are resolved against (default: cwd)
            shell: Shell used to source script descriptions
        """
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        self.search_paths = [self._absolute(Path(p)) for p in search_paths]
        self.shell = shell

    def _absolute(self, path: Path) -> Path:
        path = path.expanduser()
        if not path.is_absolute():
            path = self.base_dir / path
        return path

    def resolve(self, identifier: str) -> Path:
        """
        Resolve a toolchain identifier to a description file.

        Args:
            identifier: Path or logical toolchain name

        Returns:
            Path to the description file

        Raises:
            ToolchainNotFoundError: If nothing matches
        """
        if not identifier or not identifier.strip():
            raise ToolchainNotFoundError(identifier or "<empty>")

        direct = self._absolute(Path(identifier))
        if direct.is_file():
            return direct

        separators = [os.sep] + ([os.altsep] if os.altsep else [])
        is_path = any(sep in identifier for sep in separators) or direct.suffix in (
            SEARCH_SUFFIXES
        )
        if is_path:
            raise ToolchainNotFoundError(identifier, [direct])

        for directory in self.search_paths:
            for suffix in SEARCH_SUFFIXES:
                candidate = directory / f"{identifier}{suffix}"
                if candidate.is_file():
                    logger.debug(f"Resolved toolchain '{identifier}' to {candidate}")
                    return candidate

        raise ToolchainNotFoundError(identifier, self.search_paths or [direct])

    def load(self, identifier: str) -> ToolchainDescriptor:
        """
        Load a toolchain description.

        Args:
            identifier: Path or logical toolchain name

        Returns:
            Immutable ToolchainDescriptor

        Raises:
            ToolchainNotFoundError: If the identifier does not resolve
            ToolchainMalformedError: If the description cannot be parsed
        """
        path = self.resolve(identifier)

        if path.suffix.lower() in YAML_SUFFIXES:
            bindings, description = self._load_yaml(path)
            fmt = "yaml"
        else:
            bindings = self._load_shell(path)
            description = None
            fmt = "shell"

        logger.debug(
            f"Loaded {len(bindings)} binding(s) from {fmt} toolchain {path}"
        )
        return ToolchainDescriptor(
            identifier=identifier,
            source=path,
            format=fmt,
            bindings=bindings,
            description=description,
        )

    # ------------------------------------------------------------------
    # YAML profiles
    # ------------------------------------------------------------------

    def _load_yaml(self, path: Path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.load(f, Loader=_SourceTextLoader)
        except yaml.YAMLError as e:
            raise ToolchainMalformedError(str(path), f"invalid YAML: {e}")
        except (OSError, UnicodeDecodeError) as e:
            raise ToolchainMalformedError(str(path), f"cannot read file: {e}")

        if not isinstance(data, dict):
            raise ToolchainMalformedError(str(path), "top level must be a mapping")
        if "env" not in data:
            raise ToolchainMalformedError(str(path), "missing required field: env")

        env = data["env"]
        if env is None:
            env = {}
        if not isinstance(env, dict):
            raise ToolchainMalformedError(str(path), "env must be a mapping")

        bindings: Dict[str, str] = {}
        for name, value in env.items():
            _check_binding_name(path, name)
            bindings[name] = _scalar_to_str(path, name, value)

        description = data.get("description")
        if description is not None:
            description = str(description)
        return bindings, description

    # ------------------------------------------------------------------
    # Shell scripts
    # ------------------------------------------------------------------

    def _load_shell(self, path: Path) -> Dict[str, str]:
        shell = shutil.which(self.shell)
        if not shell:
            raise ToolchainMalformedError(
                str(path), f"'{self.shell}' is required to source shell toolchains"
            )

        baseline = self._run_shell(path, shell, _BASELINE_SCRIPT, os.environ)
        sourced = self._run_shell(path, shell, _SOURCE_SCRIPT, os.environ)

        changed = {
            name
            for name, value in sourced.items()
            if name not in _SHELL_VOLATILE and baseline.get(name) != value
        }

        # A variable exported with the value the caller already has looks
        # unchanged. Source again without those variables to see which ones
        # the script sets itself.
        inherited = set(sourced) - changed - _REEXPORT_KEEP
        if inherited:
            environ = {k: v for k, v in os.environ.items() if k not in inherited}
            reexported = self._run_shell(
                path, shell, _REEXPORT_SCRIPT, environ, check=False
            )
            changed.update(inherited & set(reexported))

        unset = sorted(set(baseline) - set(sourced) - _SHELL_VOLATILE)
        if unset:
            logger.debug(f"Toolchain script unsets {', '.join(unset)} (ignored)")

        return {name: value for name, value in sourced.items() if name in changed}

    def _run_shell(
        self,
        path: Path,
        shell: str,
        script: str,
        environ: Mapping[str, str],
        check: bool = True,
    ) -> Dict[str, str]:
        logger.debug(f"Sourcing toolchain script {path}")
        try:
            result = subprocess.run(
                [shell, "-c", script, "crossmake", str(path)],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                env=dict(environ),
                cwd=self.base_dir,
            )
        except OSError as e:
            raise ToolchainMalformedError(str(path), f"cannot run {shell}: {e}")

        if result.returncode != 0:
            stderr = os.fsdecode(result.stderr).strip()
            reason = f"script exited with status {result.returncode}"
            if stderr:
                reason += f": {stderr.splitlines()[-1]}"
            if check:
                raise ToolchainMalformedError(str(path), reason)
            logger.debug(f"Toolchain script {path}: {reason}")

        return _parse_env_dump(result.stdout)


def _check_binding_name(path: Path, name) -> None:
    if not isinstance(name, str) or not _BINDING_NAME.match(name):
        raise ToolchainMalformedError(
            str(path), f"invalid environment variable name: {name!r}"
        )


def _scalar_to_str(path: Path, name: str, value) -> str:
    if not isinstance(value, str):
        kind = "null" if value is None else type(value).__name__
        raise ToolchainMalformedError(
            str(path), f"value of {name} must be a scalar, got {kind}"
        )
    if "\0" in value:
        raise ToolchainMalformedError(str(path), f"value of {name} contains NUL")
    return value


def _parse_env_dump(output: bytes) -> Dict[str, str]:
    """Parse NUL separated NAME=VALUE records."""
    env: Dict[str, str] = {}
    for record in output.split(b"\0"):
        if not record:
            continue
        name, sep, value = record.partition(b"=")
        if not sep:
            continue
        env[os.fsdecode(name)] = os.fsdecode(value)
    return env
