"""Observers that turn migration events into log lines or a live progress display.

The migration engine never renders anything itself. Every core entry point
receives an observer implementing `BaseUIManager` and calls its ``on_*``
methods as traversal, stub materialization and copying progress. Two
implementations are provided:

1.  `UIManagerV2`: A rich, interactive terminal UI powered by the `rich`
    library, with progress bars for the catalog, the overall migration and
    each stub being materialized, plus a scrolling log panel. This is the
    default UI.

2.  `SimpleUIManager`: A non-interactive observer that writes every event to
    the standard `logging` module. Suitable for `tmux`, `screen`, cron jobs or
    when output is redirected to a file.
"""
import abc
import logging
import re
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, Optional, TYPE_CHECKING

from rich.console import Console, Group, RenderResult
from rich.errors import MarkupError
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.text import Text

from .models import MigrationOutcome
from .utils import format_bytes

if TYPE_CHECKING:
    from .models import Catalog, FileEntry, MigrationReport


def smart_truncate(text: str, max_width: int, min_width: int = 20) -> str:
    """Shortens a path for display, keeping its tail which holds the file name."""
    max_width = max(max_width, min_width)
    if len(text) <= max_width:
        return text
    return "..." + text[-(max_width - 3):]


class BaseUIManager(abc.ABC):
    """Defines the observer interface the migration engine reports to.

    Any UI implementation (rich or simple) provides this set of methods so the
    core logic can be driven without knowing how, or whether, progress is
    displayed. All methods may be called concurrently from worker threads.
    """
    def __enter__(self):
        """Enters the context manager, preparing the UI for display."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exits the context manager, cleaning up UI resources."""
        pass

    @abc.abstractmethod
    def on_traversal_start(self, root: Path):
        pass

    @abc.abstractmethod
    def on_traversal_complete(self, catalog: "Catalog"):
        pass

    @abc.abstractmethod
    def on_traversal_error(self, path: Path, error: Exception):
        pass

    @abc.abstractmethod
    def on_directory_created(self, path: Path):
        pass

    @abc.abstractmethod
    def on_fetch_start(self, entry: "FileEntry"):
        pass

    @abc.abstractmethod
    def on_fetch_progress(self, entry: "FileEntry", bytes_read: int):
        """Receives the number of bytes streamed since the previous call."""
        pass

    @abc.abstractmethod
    def on_fetch_retry(self, entry: "FileEntry", attempt: int, error: Exception):
        pass

    @abc.abstractmethod
    def on_fetch_complete(self, entry: "FileEntry", total_bytes: int):
        pass

    @abc.abstractmethod
    def on_file_outcome(self, entry: "FileEntry", outcome: MigrationOutcome, error: Optional[Exception] = None):
        pass

    @abc.abstractmethod
    def log(self, message: str):
        pass

    @abc.abstractmethod
    def set_final_status(self, message: str):
        pass

    @abc.abstractmethod
    def display_stats(self, report: "MigrationReport") -> None:
        pass


class SimpleUIManager(BaseUIManager):
    """A non-interactive UI that logs progress to the console via `logging`.

    Progress byte counts are not logged individually, that would be far too
    noisy; only their totals are reported when a stub finishes downloading.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._stats: Dict[str, Any] = {
            "total_files": 0,
            "fetched_bytes": 0,
            "processed_files": 0,
        }
        logging.info("Using simple UI (standard logging).")

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Logs a final message upon exiting."""
        if exc_type:
            logging.error(f"An error occurred: {exc_val}")

    def on_traversal_start(self, root: Path):
        logging.info(f"Catalog: Scanning {root} ...")

    def on_traversal_complete(self, catalog: "Catalog"):
        self._stats["total_files"] = len(catalog.files)
        logging.info(
            f"Catalog: Found {len(catalog.files)} files ({catalog.stub_count} stubs, "
            f"{format_bytes(catalog.total_bytes)}) in {len(catalog.dirs)} directories."
        )

    def on_traversal_error(self, path: Path, error: Exception):
        logging.warning(f"Catalog: [SKIPPED] {path}: {error}")

    def on_directory_created(self, path: Path):
        logging.debug(f"Directory: [READY] {path}")

    def on_fetch_start(self, entry: "FileEntry"):
        logging.info(f"Fetch: [STARTED] {entry.path}")

    def on_fetch_progress(self, entry: "FileEntry", bytes_read: int):
        """Only accumulates the byte count; per-chunk logging would be too noisy."""
        with self._lock:
            self._stats["fetched_bytes"] += bytes_read

    def on_fetch_retry(self, entry: "FileEntry", attempt: int, error: Exception):
        logging.warning(f"Fetch: [LOCKED] {entry.path} (attempt {attempt}): {error}")

    def on_fetch_complete(self, entry: "FileEntry", total_bytes: int):
        logging.info(f"Fetch: [COMPLETED] {entry.path} ({format_bytes(total_bytes)})")

    def on_file_outcome(self, entry: "FileEntry", outcome: MigrationOutcome, error: Optional[Exception] = None):
        with self._lock:
            self._stats["processed_files"] += 1
            processed = self._stats["processed_files"]
        position = f"{processed}/{self._stats['total_files']}"
        if outcome is MigrationOutcome.FAILED:
            logging.error(f"File {position}: [FAILED] {entry.path}: {error}")
        elif outcome is MigrationOutcome.SKIPPED_ALREADY_PRESENT:
            logging.info(f"File {position}: [SKIPPED] {entry.path} (already present)")
        else:
            logging.info(f"File {position}: [{outcome.value.upper()}] {entry.path}")

    def log(self, message: str):
        """Logs a message, stripping any Rich markup."""
        message = re.sub(r"\[.*?\]", "", message)
        logging.info(message)

    def set_final_status(self, message: str):
        logging.info(f"Status: {message}")

    def display_stats(self, report: "MigrationReport") -> None:
        logging.info("--- Final Statistics ---")
        logging.info(f"Copied: {report.copied} ({format_bytes(report.bytes_copied)})")
        logging.info(f"Skipped (already present): {report.skipped}")
        if self._stats["fetched_bytes"]:
            logging.info(f"Stub data downloaded: {format_bytes(self._stats['fetched_bytes'])}")
        if report.dry_run:
            logging.info(f"Would copy (dry run): {report.dry_run}")
        logging.info(f"Failed: {report.failed}")
        logging.info(f"Traversal warnings: {report.traversal_warnings}")
        logging.info(f"Total Duration: {report.duration:.2f} seconds")


class UMLoggingHandler(logging.Handler):
    """Forwards log records into the live log panel of `UIManagerV2`."""
    def __init__(self, ui_manager: "UIManagerV2"):
        super().__init__()
        self.ui_manager = ui_manager

    def emit(self, record: logging.LogRecord):
        if "cloud_migrator.ui" in record.name:
            return
        self.ui_manager.log(record.getMessage())


class _LogPanel:
    """A renderable class for the Live Log."""
    def __init__(self, ui_manager: "UIManagerV2"):
        self.ui_manager = ui_manager

    def __rich_console__(self, console: Console, options: Any) -> RenderResult:
        with self.ui_manager._lock:
            lines = list(self.ui_manager._log_buffer)
        text = Text()
        for line in lines:
            try:
                text.append_text(Text.from_markup(line))
            except MarkupError:
                text.append(line)
            text.append("\n")
        yield Panel(text, title="[bold]📜 Live Log", border_style="dim")


class UIManagerV2(BaseUIManager):
    """A rich, interactive terminal UI powered by the `rich` library.

    Shows a catalog spinner while the source tree is scanned, an overall bar
    counting processed files, one transient download bar per stub being
    materialized, and a live log panel fed from the root logger.
    """

    def __init__(self, version: str = "", rich_handler: Optional[logging.Handler] = None, console: Optional[Console] = None, log_lines: int = 12):
        """Initializes the UIManagerV2.

        Args:
            version: The application version string, displayed in the title.
            rich_handler: A reference to the console RichHandler, which is
                removed during live display and restored afterwards.
            console: The console to render on; defaults to stderr.
            log_lines: How many recent log lines the log panel keeps.
        """
        self.version = version
        self.console = console or Console(stderr=True)
        self._rich_handler_ref = rich_handler
        self._lock = threading.RLock()
        self._log_buffer: Deque[str] = deque(maxlen=log_lines)
        self._fetch_tasks: Dict[Path, TaskID] = {}
        self._stats: Dict[str, Any] = {
            "copied": 0,
            "skipped": 0,
            "dry_run": 0,
            "failed": 0,
        }
        self._um_log_handler = UMLoggingHandler(self)
        self._live: Optional[Live] = None

        self.main_progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="bold green"),
            MofNCompleteColumn(),
            "•",
            TimeElapsedColumn(),
            "•",
            TimeRemainingColumn(),
            expand=True,
        )
        self.fetch_progress = Progress(
            TextColumn("[cyan]{task.description}", justify="left"),
            BarColumn(bar_width=None),
            DownloadColumn(binary_units=True),
            "•",
            TransferSpeedColumn(),
            expand=True,
        )
        self.catalog_task = self.main_progress.add_task("[cyan]📊 Catalog", total=None)
        self.overall_task = self.main_progress.add_task("[green]📦 Migration", total=None, visible=False)

    def _renderable(self) -> Group:
        title = f"[bold magenta]CLOUD MIGRATOR[/] [dim]v{self.version}[/]" if self.version else "[bold magenta]CLOUD MIGRATOR[/]"
        return Group(
            Panel(self.main_progress, title=title, border_style="dim"),
            Panel(self.fetch_progress, title="[bold cyan]⬇ Materializing stubs", border_style="dim"),
            _LogPanel(self),
        )

    def __enter__(self):
        root_logger = logging.getLogger()
        if self._rich_handler_ref:
            root_logger.removeHandler(self._rich_handler_ref)
        root_logger.addHandler(self._um_log_handler)
        self._live = Live(self._renderable(), console=self.console, refresh_per_second=10, redirect_stderr=False)
        self._live.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            try:
                self._live.stop()
            except Exception as e:
                logging.error(f"Error stopping live display: {e}")
        root_logger = logging.getLogger()
        root_logger.removeHandler(self._um_log_handler)
        if self._rich_handler_ref:
            root_logger.addHandler(self._rich_handler_ref)

    def on_traversal_start(self, root: Path):
        self.main_progress.update(self.catalog_task, description=f"[cyan]📊 Catalog: {smart_truncate(str(root), 40)}")

    def on_traversal_complete(self, catalog: "Catalog"):
        self.main_progress.update(self.catalog_task, total=1, completed=1, description="[cyan]📊 Catalog")
        self.main_progress.update(self.overall_task, total=len(catalog.files), visible=True)
        self.log(
            f"Found [bold]{len(catalog.files)}[/] files ({catalog.stub_count} stubs, "
            f"{format_bytes(catalog.total_bytes)}) in {len(catalog.dirs)} directories."
        )

    def on_traversal_error(self, path: Path, error: Exception):
        self.log(f"[yellow]Skipped unreadable directory[/] {path}: {error}")

    def on_directory_created(self, path: Path):
        pass

    def on_fetch_start(self, entry: "FileEntry"):
        with self._lock:
            task_id = self.fetch_progress.add_task(smart_truncate(entry.name, 30), total=None)
            self._fetch_tasks[entry.path] = task_id

    def on_fetch_progress(self, entry: "FileEntry", bytes_read: int):
        with self._lock:
            task_id = self._fetch_tasks.get(entry.path)
        if task_id is not None:
            self.fetch_progress.advance(task_id, bytes_read)

    def on_fetch_retry(self, entry: "FileEntry", attempt: int, error: Exception):
        self.log(f"[yellow]Locked, retrying[/] {entry.name} (attempt {attempt})")

    def on_fetch_complete(self, entry: "FileEntry", total_bytes: int):
        self._remove_fetch_task(entry)

    def _remove_fetch_task(self, entry: "FileEntry") -> None:
        with self._lock:
            task_id = self._fetch_tasks.pop(entry.path, None)
        if task_id is not None:
            self.fetch_progress.remove_task(task_id)

    def on_file_outcome(self, entry: "FileEntry", outcome: MigrationOutcome, error: Optional[Exception] = None):
        self._remove_fetch_task(entry)
        with self._lock:
            if outcome is MigrationOutcome.FAILED:
                self._stats["failed"] += 1
            elif outcome is MigrationOutcome.SKIPPED_ALREADY_PRESENT:
                self._stats["skipped"] += 1
            elif outcome is MigrationOutcome.DRY_RUN:
                self._stats["dry_run"] += 1
            else:
                self._stats["copied"] += 1
            stats = dict(self._stats)
        self.main_progress.update(
            self.overall_task,
            advance=1,
            description=(
                f"[green]📦 Migration[/] [dim]✓{stats['copied']} ↷{stats['skipped']} ✗{stats['failed']}"
                + (f" would copy {stats['dry_run']}" if stats['dry_run'] else "")
                + "[/]"
            ),
        )
        if outcome is MigrationOutcome.FAILED:
            self.log(f"[red]Failed[/] {entry.path}: {error}")

    def log(self, message: str):
        timestamp = time.strftime("%H:%M:%S")
        with self._lock:
            self._log_buffer.append(f"[dim]{timestamp}[/] {message}")

    def set_final_status(self, message: str):
        self.log(f"[bold]{message}[/]")

    def display_stats(self, report: "MigrationReport") -> None:
        self.console.print(
            Panel(
                f"Copied: [green]{report.copied}[/] ({format_bytes(report.bytes_copied)})\n"
                f"Skipped (already present): {report.skipped}\n"
                + (f"Would copy (dry run): {report.dry_run}\n" if report.dry_run else "")
                + f"Failed: [red]{report.failed}[/]\n"
                f"Traversal warnings: [yellow]{report.traversal_warnings}[/]\n"
                f"Duration: {report.duration:.2f}s",
                title="[bold]Final Statistics",
                border_style="dim",
            )
        )


__all__ = ["BaseUIManager", "SimpleUIManager", "UIManagerV2", "UMLoggingHandler"]
