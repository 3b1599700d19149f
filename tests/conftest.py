"""Shared fixtures: isolated on-disk layout, fake Wine install, mocked process runner."""

import os
import stat
import sys
from unittest.mock import MagicMock

import pytest
from PySide6.QtCore import QCoreApplication

from winecellar.config import ConfigStore
from winecellar.logs import LOG_MANAGER
from winecellar.process import ProcessResult, ProcessRunner
from winecellar.storage import FileSystemManager
from winecellar.wine import WineService

# QCoreApplication instance needed for QObject / signals
_app = QCoreApplication.instance() or QCoreApplication(sys.argv)


def make_executable(path, content="#!/bin/sh\nexit 0\n"):
    """Write a small shell script and mark it executable."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def make_wine_root(root):
    """Lay out a fake Wine toolchain (bin/wine64, bin/wine, bin/wineserver)."""
    for name in ("wine64", "wine", "wineserver"):
        make_executable(root / "bin" / name)
    return root


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def quiet_logs():
    """Keep test output clean and make sure no file sink leaks between tests."""
    LOG_MANAGER.echo = False
    yield
    LOG_MANAGER.detach_log_dir()
    LOG_MANAGER.clear_logs()


@pytest.fixture
def file_system(tmp_path):
    fs = FileSystemManager(app_root=tmp_path / "root", logs_dir=tmp_path / "logs", homebrew_paths=[])
    fs.ensure_app_directories_exist()
    return fs


@pytest.fixture
def config(file_system):
    return ConfigStore(file_system.config_file)


@pytest.fixture
def wine_root(tmp_path):
    return make_wine_root(tmp_path / "wine-9.0")


@pytest.fixture
def fake_runner():
    """ProcessRunner double: every Wine call succeeds, ``--version`` reports wine-9.0."""
    runner = MagicMock(spec=ProcessRunner)
    runner.run.return_value = ProcessResult(exit_code=0, output="wine-9.0", error_output="", duration=0.01)
    runner.run_shell.return_value = ProcessResult(exit_code=0, output="", error_output="", duration=0.01)
    runner.run_wine.return_value = 0
    runner.run_streaming.return_value = 0
    runner.is_executable.side_effect = lambda p: os.path.isfile(p) and os.access(p, os.X_OK)
    runner.which.return_value = None
    return runner


@pytest.fixture
def wine_service(fake_runner, file_system, config, wine_root):
    service = WineService(fake_runner, file_system, config, common_paths=[wine_root])
    service.detect()
    return service
