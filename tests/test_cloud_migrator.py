import errno
import logging
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cloud_migrator.cloud_migrator import CloudMigrator, main, validate_roots
from cloud_migrator.config_manager import ConfigManager
from cloud_migrator.utils import TraversalError
from tests.mocks.mock_ui import RecordingUIManager


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def roots(tmp_path):
    src = tmp_path / "box"
    dst = tmp_path / "onedrive"
    (src / "a").mkdir(parents=True)
    (src / "b").mkdir()
    (src / "a" / "big.bin").write_bytes(b"B" * 4096)
    (src / "b" / "small.txt").write_bytes(b"small")
    return src, dst


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "conf" / "config.ini"
    path.parent.mkdir()
    path.write_text("[SETTINGS]\nparallel_jobs = 2\nretry_delay_seconds = 0\n")
    return path


def _argv(src, dst, config_path, *extra):
    return ["--source", str(src), "--target", str(dst), "--config", str(config_path), "--simple", *extra]


def test_main_migrates_tree(roots, config_path):
    src, dst = roots

    assert main(_argv(src, dst, config_path)) == 0

    assert (dst / "a" / "big.bin").read_bytes() == b"B" * 4096
    assert (dst / "b" / "small.txt").read_bytes() == b"small"
    assert list((config_path.parent / "logs").glob("cloud_migrator_*.log"))


def test_main_is_idempotent(roots, config_path):
    src, dst = roots
    assert main(_argv(src, dst, config_path)) == 0
    mtimes = {p: p.stat().st_mtime_ns for p in dst.rglob("*") if p.is_file()}

    assert main(_argv(src, dst, config_path)) == 0

    assert {p: p.stat().st_mtime_ns for p in dst.rglob("*") if p.is_file()} == mtimes


def test_main_dry_run_writes_nothing(roots, config_path):
    src, dst = roots

    assert main(_argv(src, dst, config_path, "--dry-run")) == 0

    assert not dst.exists()


def test_main_fails_when_source_is_missing(tmp_path, config_path):
    assert main(_argv(tmp_path / "nope", tmp_path / "dst", config_path)) == 1


def test_main_refuses_target_inside_source(roots, config_path):
    src, _ = roots
    assert main(_argv(src, src / "copy", config_path)) == 1
    assert not (src / "copy").exists()


def test_main_requires_source_and_target(config_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(config_path), "--simple"])
    assert excinfo.value.code == 2


def test_check_config(config_path):
    assert main(["--config", str(config_path), "--check-config", "--simple"]) == 0


def test_version(capsys, config_path):
    assert main(["--version", "--config", str(config_path)]) == 0
    assert "cloud-migrator" in capsys.readouterr().out


def test_validate_roots(tmp_path):
    assert validate_roots(tmp_path, tmp_path) is not None
    assert validate_roots(tmp_path, tmp_path / "inner") is not None
    assert validate_roots(tmp_path / "a", tmp_path / "b") is None


def test_run_contains_unreadable_subdirectory(tmp_path, config_path):
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    for i in range(9):
        path = src / f"dir{i % 3}" / f"file{i}.txt"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"x" * (i + 1))
    locked = src / "locked"
    locked.mkdir()
    (locked / "secret.txt").write_bytes(b"s")
    real_scandir = os.scandir

    def fake_scandir(path):
        if Path(path) == locked:
            raise PermissionError(errno.EACCES, "Permission denied", str(path))
        return real_scandir(path)

    ui = RecordingUIManager()
    mover = CloudMigrator(src, dst, ConfigManager(str(config_path)), ui)
    with patch("cloud_migrator.core_logic.catalog.os.scandir", side_effect=fake_scandir):
        report = mover.run()

    assert report.copied == 9
    assert report.failed == 0
    assert report.traversal_warnings == 1
    assert len(ui.named("traversal_error")) == 1
    assert not (dst / "locked" / "secret.txt").exists()
    assert ui.named("final_status")[0][1] == "All tasks finished."


def test_run_propagates_unreadable_root(tmp_path, config_path):
    mover = CloudMigrator(tmp_path / "missing", tmp_path / "dst", ConfigManager(str(config_path)), MagicMock())
    with pytest.raises(TraversalError):
        mover.run()
