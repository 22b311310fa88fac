"""
Pytest configuration for the selfswap tests.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

# Contents of the live installation used by the transaction tests.
# Keys ending in "/" are empty directories.
LIVE_FILES: dict[str, str | None] = {
    "app.bin": "live-binary",
    "config.ini": "live-config",
    "launcher": "live-launcher",
    "lib/core.dll": "live-core",
    "lib/plugins/extra.dll": "live-extra",
    "cache/": None,
}

# Contents of the install path (the staged installation slot)
INSTALL_FILES: dict[str, str | None] = {
    "app.bin": "new-binary",
    "updater.exe": "updater",
    "lib/core.dll": "new-core",
    "logs/": None,
}


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


def write_tree(root: Path, files: dict[str, str | None]) -> None:
    """Create files (and empty directories for keys ending in '/') under root."""
    root.mkdir(parents=True, exist_ok=True)
    for relative, content in files.items():
        target = root / relative
        if relative.endswith("/"):
            target.mkdir(parents=True, exist_ok=True)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content or "")


def read_tree(root: Path) -> dict[str, str | None]:
    """Snapshot a tree in the same shape write_tree accepts."""
    snapshot: dict[str, str | None] = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root).as_posix()
        if path.is_dir() and not path.is_symlink():
            if not any(path.iterdir()):
                snapshot[f"{relative}/"] = None
        else:
            snapshot[relative] = path.read_text()
    return snapshot


@pytest.fixture(name="write_tree")
def write_tree_fixture() -> Callable[[Path, dict[str, str | None]], None]:
    """Expose write_tree to tests."""
    return write_tree


@pytest.fixture(name="read_tree")
def read_tree_fixture() -> Callable[[Path], dict[str, str | None]]:
    """Expose read_tree to tests."""
    return read_tree


@pytest.fixture
def layout(tmp_path: Path) -> SimpleNamespace:
    """
    Create an install path and a live installation side by side.

    Returns a namespace with install, live and backup paths plus the
    original contents of install and live.
    """
    app_dir = tmp_path / "app"
    install = app_dir / "new"
    live = app_dir / "live"
    write_tree(install, INSTALL_FILES)
    write_tree(live, LIVE_FILES)
    return SimpleNamespace(
        root=app_dir,
        install=install,
        live=live,
        backup=app_dir / "new_backup",
        install_files=dict(INSTALL_FILES),
        live_files=dict(LIVE_FILES),
    )


@pytest.fixture(autouse=True)
def _reset_selfswap_logger() -> Iterator[None]:
    """Leave the selfswap logger as a plain, propagating logger after each test."""
    yield
    logger = logging.getLogger("selfswap")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
