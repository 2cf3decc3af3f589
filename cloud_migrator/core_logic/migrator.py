"""Idempotent, structure-preserving copy of cataloged files to the target root."""
import errno
import logging
import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, Optional

from ..models import FileEntry, MigrationOutcome, MigrationReport, MigrationResult
from ..ui import BaseUIManager, SimpleUIManager
from ..utils import CopyFailedError, Defaults, FetchError, MigrationError
from .directory_replicator import DirectoryReplicator
from .stub_resolver import StubResolver

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".cmpart"

# Errors from os.link on filesystems that have no hard links.
_NO_HARDLINK_ERRNOS = {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.EXDEV}


def _publish(tmp_target: Path, target: Path) -> None:
    """Gives ``tmp_target`` the name ``target`` unless something already has it."""
    try:
        os.link(tmp_target, target)
        return
    except FileExistsError:
        raise
    except OSError as e:
        if e.errno not in _NO_HARDLINK_ERRNOS:
            raise
    # Without hard links there is no exclusive rename; re-check and replace.
    if os.path.lexists(target):
        raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), str(target))
    os.replace(tmp_target, target)


def copy_file_atomic(source: Path, target: Path, chunk_size: int = Defaults.CHUNK_SIZE) -> int:
    """Copies ``source`` to ``target`` through a temporary sibling file.

    The bytes land in a uniquely named hidden file
    (``.<target name>.<random>.cmpart``) created exclusively next to
    ``target``, and are then linked into place. ``target`` therefore only ever
    exists with its complete content, and neither the temporary file nor the
    final link can overwrite a file that is already there. The temporary file
    is always removed.

    Returns:
        The number of bytes copied.

    Raises:
        FileExistsError: Something appeared at ``target`` during the copy. It
            is left untouched.
    """
    target = Path(target)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=PARTIAL_SUFFIX)
    tmp_target = Path(tmp_name)
    try:
        with os.fdopen(fd, 'wb') as dst, open(source, 'rb') as src:
            shutil.copyfileobj(src, dst, chunk_size)
        shutil.copystat(source, tmp_target)
        _publish(tmp_target, target)
    finally:
        try:
            tmp_target.unlink()
        except FileNotFoundError:
            pass
    return target.stat().st_size


class Migrator:
    """Moves every cataloged file to its mirrored location under the target root.

    For each file the stub is materialized first, then the target directory is
    ensured and the file copied unless something already exists at the target
    path. Presence alone is enough to skip a file; contents are never compared
    and existing files are never overwritten.
    """

    def __init__(
        self,
        source_root: Path,
        target_root: Path,
        observer: Optional[BaseUIManager] = None,
        resolver: Optional[StubResolver] = None,
        replicator: Optional[DirectoryReplicator] = None,
        dry_run: bool = False,
        chunk_size: Optional[int] = None,
    ):
        self.source_root = Path(source_root)
        self.target_root = Path(target_root)
        self.observer = observer or SimpleUIManager()
        self.resolver = resolver or StubResolver()
        self.replicator = replicator or DirectoryReplicator(source_root, target_root, self.observer, dry_run=dry_run)
        self.dry_run = dry_run
        self.chunk_size = chunk_size or Defaults.CHUNK_SIZE

    def migrate(self, entry: FileEntry) -> MigrationResult:
        """Migrates a single file.

        Raises:
            FetchError: The stub could not be materialized.
            CopyFailedError: The target directory or file could not be written.
        """
        target = self.replicator.target_path_for(entry.path)

        if self.dry_run:
            if os.path.lexists(target):
                return MigrationResult(entry, target, MigrationOutcome.SKIPPED_ALREADY_PRESENT)
            logger.info(f"[DRY RUN] Would copy {entry.path} to {target}")
            return MigrationResult(entry, target, MigrationOutcome.DRY_RUN)

        self.resolver.materialize(entry, self.observer)

        try:
            self.replicator.ensure(entry)
        except OSError as e:
            raise CopyFailedError(entry.path, target, e) from e

        if os.path.lexists(target):
            logger.debug(f"Already present, skipping: {target}")
            return MigrationResult(entry, target, MigrationOutcome.SKIPPED_ALREADY_PRESENT)

        logger.info(f"Copying file from {entry.path} to {target}")
        try:
            copied = copy_file_atomic(entry.path, target, self.chunk_size)
        except FileExistsError:
            logger.info(f"Target appeared while copying, leaving it in place: {target}")
            return MigrationResult(entry, target, MigrationOutcome.SKIPPED_ALREADY_PRESENT)
        except OSError as e:
            raise CopyFailedError(entry.path, target, e) from e
        logger.info(f"Successfully copied file: {entry.name}")
        return MigrationResult(entry, target, MigrationOutcome.COPIED, bytes_copied=copied)

    def _migrate_reporting(self, entry: FileEntry) -> MigrationResult:
        """Worker boundary: no per-file error escapes past this point."""
        try:
            result = self.migrate(entry)
        except (FetchError, MigrationError) as e:
            logger.error(f"Failed to migrate {entry.path}: {e}")
            result = MigrationResult(entry, None, MigrationOutcome.FAILED, error=e)
        except Exception as e:
            logger.error(f"Unexpected error while migrating {entry.path}: {e}", exc_info=True)
            result = MigrationResult(entry, None, MigrationOutcome.FAILED, error=e)
        self.observer.on_file_outcome(entry, result.outcome, result.error)
        return result

    def migrate_all(self, files: Iterable[FileEntry], max_workers: Optional[int] = None, report: Optional[MigrationReport] = None) -> MigrationReport:
        """Migrates ``files`` in parallel.

        Entries are submitted in the given order, so a catalog sorted largest
        first has its biggest files picked up first when there are more files
        than workers.
        """
        report = report or MigrationReport()
        files = list(files)
        logger.info(f"STATE: Migrating {len(files)} files to {self.target_root}...")
        with ThreadPoolExecutor(max_workers=max_workers or Defaults.PARALLEL_JOBS, thread_name_prefix='Migrate') as executor:
            futures = [executor.submit(self._migrate_reporting, entry) for entry in files]
            for future in as_completed(futures):
                report.record(future.result())
        return report
