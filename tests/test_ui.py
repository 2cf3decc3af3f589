import io
import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from cloud_migrator import ui
from cloud_migrator.models import Catalog, FileEntry, MigrationOutcome, MigrationReport, MigrationResult
from cloud_migrator.utils import ThrottledProgressUpdater, format_bytes


@pytest.fixture
def entry():
    return FileEntry.from_path(Path("/src/folder/stub.bin"), 0)


@pytest.fixture
def catalog(entry):
    return Catalog(files=[FileEntry.from_path(Path("/src/big.bin"), 2048), entry])


def test_simple_ui_logs_outcomes(caplog, entry, catalog):
    caplog.set_level(logging.INFO)
    manager = ui.SimpleUIManager()

    manager.on_traversal_complete(catalog)
    manager.on_file_outcome(entry, MigrationOutcome.COPIED)
    manager.on_file_outcome(entry, MigrationOutcome.FAILED, OSError("disk full"))

    assert "Found 2 files (1 stubs, 2.00 KiB)" in caplog.text
    assert "File 1/2: [COPIED] /src/folder/stub.bin" in caplog.text
    failed = [r for r in caplog.records if "FAILED" in r.getMessage()]
    assert failed and failed[0].levelno == logging.ERROR
    assert "disk full" in failed[0].getMessage()


def test_simple_ui_strips_markup(caplog):
    caplog.set_level(logging.INFO)
    ui.SimpleUIManager().log("[bold green]Done[/]")
    assert caplog.records[-1].getMessage() == "Done"


def test_simple_ui_final_stats(caplog):
    caplog.set_level(logging.INFO)
    report = MigrationReport()
    report.record(MigrationResult(FileEntry.from_path(Path("/a"), 3), Path("/t/a"), MigrationOutcome.COPIED, bytes_copied=3))
    report.record(MigrationResult(FileEntry.from_path(Path("/b"), 3), None, MigrationOutcome.FAILED, error=OSError("x")))

    ui.SimpleUIManager().display_stats(report)

    assert "Copied: 1 (3 B)" in caplog.text
    assert "Failed: 1" in caplog.text
    assert report.has_failures


def test_rich_ui_tracks_fetch_tasks(entry, catalog):
    console = Console(file=io.StringIO(), force_terminal=False, width=120)
    manager = ui.UIManagerV2(version="1.0.0", console=console)

    with manager:
        manager.on_traversal_complete(catalog)
        manager.on_fetch_start(entry)
        manager.on_fetch_progress(entry, 4096)
        task_id = manager._fetch_tasks[entry.path]
        assert manager.fetch_progress._tasks[task_id].completed == 4096
        manager.on_fetch_complete(entry, 4096)
        manager.on_file_outcome(entry, MigrationOutcome.COPIED)

    assert manager._fetch_tasks == {}
    overall = manager.main_progress._tasks[manager.overall_task]
    assert overall.total == 2
    assert overall.completed == 1
    assert manager._stats["copied"] == 1


def test_rich_ui_restores_console_handler():
    root = logging.getLogger()
    handler = logging.NullHandler()
    root.addHandler(handler)
    try:
        manager = ui.UIManagerV2(rich_handler=handler, console=Console(file=io.StringIO()))
        with manager:
            assert handler not in root.handlers
            assert manager._um_log_handler in root.handlers
        assert handler in root.handlers
        assert manager._um_log_handler not in root.handlers
    finally:
        root.removeHandler(handler)


def test_log_panel_renders_paths_with_brackets():
    manager = ui.UIManagerV2(console=Console(file=io.StringIO()))
    manager.log("Copied /src/[draft]/notes[1].txt")
    console = Console(file=io.StringIO(), width=100)

    with console.capture() as capture:
        for renderable in ui._LogPanel(manager).__rich_console__(console, None):
            console.print(renderable)

    assert "notes" in capture.get()


def test_smart_truncate_keeps_tail():
    text = "/very/long/path/" * 10 + "file.bin"
    short = ui.smart_truncate(text, 30)
    assert len(short) == 30
    assert short.endswith("file.bin")
    assert ui.smart_truncate("short", 30) == "short"


def test_throttled_progress_batches_updates(entry):
    observer = MagicMock()
    updater = ThrottledProgressUpdater(observer, entry, update_interval=3600)

    for _ in range(10):
        updater.update(100)
    observer.on_fetch_progress.assert_not_called()

    updater.flush()
    observer.on_fetch_progress.assert_called_once_with(entry, 1000)
    assert updater.total_bytes == 1000


def test_format_bytes():
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.50 KiB"
    assert format_bytes(10 * 1024 ** 2) == "10.00 MiB"


def test_rich_ui_counts_dry_run_separately(entry, catalog):
    manager = ui.UIManagerV2(console=Console(file=io.StringIO()))
    manager.on_traversal_complete(catalog)

    manager.on_file_outcome(entry, MigrationOutcome.DRY_RUN)
    manager.on_file_outcome(catalog.files[0], MigrationOutcome.COPIED)

    assert manager._stats["dry_run"] == 1
    assert manager._stats["copied"] == 1
    description = manager.main_progress._tasks[manager.overall_task].description
    assert "✓1" in description
    assert "would copy 1" in description


def test_simple_ui_reports_downloaded_stub_bytes(caplog, entry):
    caplog.set_level(logging.INFO)
    manager = ui.SimpleUIManager()
    manager.on_fetch_progress(entry, 1024)
    manager.on_fetch_progress(entry, 512)

    manager.display_stats(MigrationReport())

    assert "Stub data downloaded: 1.50 KiB" in caplog.text
