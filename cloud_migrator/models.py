"""Data types shared by the catalog, resolver, replicator and migrator."""
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class FileEntry:
    """One regular file discovered under the source root."""
    path: Path
    size: int
    name: str

    @property
    def is_stub(self) -> bool:
        """A placeholder that reported zero length at discovery time."""
        return self.size == 0

    @classmethod
    def from_path(cls, path: Path, size: Optional[int]) -> "FileEntry":
        return cls(path=Path(path), size=size or 0, name=Path(path).name)


@dataclass(frozen=True)
class DirectoryPath:
    path: Path


@dataclass
class Catalog:
    """Result of traversing the source root.

    ``files`` is sorted largest first (ties by path) and ``dirs`` by path;
    neither contains the same path twice. ``errors`` lists the subtrees that
    were skipped because they could not be listed.
    """
    files: List[FileEntry] = field(default_factory=list)
    dirs: List[DirectoryPath] = field(default_factory=list)
    errors: List[Tuple[Path, Exception]] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(entry.size for entry in self.files)

    @property
    def stub_count(self) -> int:
        return sum(1 for entry in self.files if entry.is_stub)


class MigrationOutcome(Enum):
    COPIED = "copied"
    SKIPPED_ALREADY_PRESENT = "skipped_already_present"
    FAILED = "failed"
    DRY_RUN = "dry_run"


@dataclass
class MigrationResult:
    """Holds the result of migrating a single file."""
    entry: FileEntry
    target: Optional[Path]
    outcome: MigrationOutcome
    error: Optional[Exception] = None
    bytes_copied: int = 0


@dataclass
class MigrationReport:
    """Aggregated outcome of a whole run."""
    copied: int = 0
    skipped: int = 0
    failed: int = 0
    dry_run: int = 0
    bytes_copied: int = 0
    traversal_warnings: int = 0
    directory_failures: int = 0
    failures: List[MigrationResult] = field(default_factory=list)
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    def record(self, result: MigrationResult) -> None:
        if result.outcome is MigrationOutcome.COPIED:
            self.copied += 1
            self.bytes_copied += result.bytes_copied
        elif result.outcome is MigrationOutcome.SKIPPED_ALREADY_PRESENT:
            self.skipped += 1
        elif result.outcome is MigrationOutcome.DRY_RUN:
            self.dry_run += 1
        else:
            self.failed += 1
            self.failures.append(result)

    @property
    def total(self) -> int:
        return self.copied + self.skipped + self.failed + self.dry_run

    @property
    def has_failures(self) -> bool:
        return self.failed > 0 or self.directory_failures > 0

    @property
    def duration(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time
