"""
Pytest configuration and shared fixtures for crossmake tests.
"""

import os
import stat
from pathlib import Path
from typing import Callable, Dict, Optional

import pytest
import yaml

from crossmake.config import DriverConfig

ARM64_PREFIX = "aarch64-buildroot-linux-gnu-"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "posix: marks tests that need a POSIX shell and signals"
    )


def pytest_collection_modifyitems(config, items):
    """Skip POSIX-only tests on Windows."""
    if os.name != "nt":
        return
    skip_posix = pytest.mark.skip(reason="requires a POSIX platform")
    for item in items:
        if "posix" in item.keywords:
            item.add_marker(skip_posix)


@pytest.fixture(autouse=True)
def clean_crossmake_environment(monkeypatch):
    """Keep the developer's CROSSMAKE_* settings out of the tests."""
    for name in list(os.environ):
        if name.startswith("CROSSMAKE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_dir(tmp_path) -> Path:
    """Project directory with an empty toolchains/ directory."""
    project = tmp_path / "project"
    (project / "toolchains").mkdir(parents=True)
    return project


@pytest.fixture
def write_toolchain(project_dir) -> Callable[..., Path]:
    """
    Factory writing a YAML toolchain description into project toolchains/.

    Example:
        def test_x(write_toolchain):
            path = write_toolchain("arm64-llvm", {"CROSS_COMPILE": "aarch64-linux-gnu-"})
    """

    def _write(name: str, env: Optional[Dict[str, str]], **extra) -> Path:
        path = project_dir / "toolchains" / f"{name}.yaml"
        data = {"name": name, "env": env}
        data.update(extra)
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def arm64_llvm_toolchain(write_toolchain) -> Path:
    """The arm64-llvm toolchain used by most scenarios."""
    return write_toolchain(
        "arm64-llvm",
        {
            "CROSS_COMPILE": ARM64_PREFIX,
            "SYSROOT": "/opt/buildroot/aarch64/sysroot",
        },
        description="Buildroot aarch64 toolchain",
    )


@pytest.fixture
def fake_make(tmp_path) -> Callable[..., Path]:
    """
    Factory creating a make stand-in that records its invocation.

    The script writes its arguments (one per line) to ``<name>.args``, the
    value of CROSS_COMPILE to ``<name>.env`` and exits with ``exit_code``.
    """

    def _create(exit_code: int = 0, name: str = "make") -> Path:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        script = bin_dir / name
        record = bin_dir / f"{name}.args"
        env_record = bin_dir / f"{name}.env"
        script.write_text(
            "#!/bin/sh\n"
            f': > "{record}"\n'
            f'for arg in "$@"; do printf "%s\\n" "$arg" >> "{record}"; done\n'
            f'printf "%s" "$CROSS_COMPILE" > "{env_record}"\n'
            'echo "fake make running"\n'
            f"exit {exit_code}\n"
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _create


@pytest.fixture
def driver_config(project_dir) -> DriverConfig:
    """Default configuration rooted at the test project."""
    return DriverConfig(project_dir=project_dir)
