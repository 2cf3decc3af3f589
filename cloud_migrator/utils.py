"""Provides utility helpers and the error taxonomy for the application.

This module contains common pieces used across the cloud_migrator package.

Classes:
    Defaults: Tunable defaults, overridable through ``CM_*`` environment variables.
    MigrationToolError: Base class for every error raised by the migration engine.
    ThrottledProgressUpdater: Batches high-frequency byte counts before they
        reach the UI observer.

Functions:
    format_bytes: Renders a byte count in human-readable binary units.
"""
import os
import time
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import FileEntry
    from .ui import BaseUIManager


class Defaults:
    PARALLEL_JOBS = int(os.getenv('CM_PARALLEL_JOBS', '4'))
    TRAVERSAL_WORKERS = int(os.getenv('CM_TRAVERSAL_WORKERS', '8'))
    MAX_FETCH_ATTEMPTS = int(os.getenv('CM_MAX_FETCH_ATTEMPTS', '5'))
    RETRY_DELAY_SECONDS = float(os.getenv('CM_RETRY_DELAY_SECONDS', '2'))
    CHUNK_SIZE = int(os.getenv('CM_CHUNK_SIZE', '8192'))
    PROGRESS_INTERVAL = float(os.getenv('CM_PROGRESS_INTERVAL', '0.5'))


class MigrationToolError(Exception):
    """Base class for errors raised by the migration engine."""
    pass


class TraversalError(MigrationToolError):
    """Raised when the source root cannot be cataloged at all.

    Unreadable subdirectories never raise this; they are reported as warnings
    and skipped. Only a root that is missing, not a directory, or cannot be
    listed is fatal to the run.
    """
    def __init__(self, path: Path, message: str):
        super().__init__(f"{message}: {path}")
        self.path = path


class FetchError(MigrationToolError):
    """Raised when a placeholder (stub) file could not be materialized."""
    def __init__(self, path: Path, message: str):
        super().__init__(f"{message}: {path}")
        self.path = path


class LockTimeoutError(FetchError):
    """The stub stayed locked or unavailable for the whole retry budget."""
    def __init__(self, path: Path, attempts: int):
        super().__init__(path, f"File lock timeout after {attempts} attempts")
        self.attempts = attempts


class FetchIOError(FetchError):
    """A non-transient I/O failure while opening or streaming a stub."""
    def __init__(self, path: Path, cause: OSError):
        super().__init__(path, f"I/O error while fetching ({cause})")
        self.cause = cause


class MigrationError(MigrationToolError):
    """Raised when a file could not be placed at its target location."""
    pass


class CopyFailedError(MigrationError):
    """Copying the source bytes to the target path failed."""
    def __init__(self, source: Path, target: Path, cause: OSError):
        super().__init__(f"Failed to copy {source} to {target}: {cause}")
        self.source = source
        self.target = target
        self.cause = cause


def format_bytes(num_bytes: float) -> str:
    """Formats a byte count using binary units (e.g. ``1.50 MiB``)."""
    value = float(num_bytes)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(value) < 1024 or unit == "TiB":
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} TiB"


class ThrottledProgressUpdater:
    """Delays updates to the UI to avoid lock contention on high-frequency loops."""
    def __init__(self, ui: "BaseUIManager", entry: "FileEntry", update_interval: Optional[float] = None):
        self.ui = ui
        self.entry = entry
        self.update_interval = Defaults.PROGRESS_INTERVAL if update_interval is None else update_interval
        self.last_update_time = time.monotonic()
        self.accumulated_bytes = 0
        self.total_bytes = 0

    def update(self, bytes_transferred: int) -> None:
        self.accumulated_bytes += bytes_transferred
        self.total_bytes += bytes_transferred

        now = time.monotonic()
        if now - self.last_update_time >= self.update_interval:
            self.flush()

    def flush(self) -> None:
        if self.accumulated_bytes > 0:
            self.ui.on_fetch_progress(self.entry, self.accumulated_bytes)
            self.accumulated_bytes = 0
            self.last_update_time = time.monotonic()
