"""Concurrent traversal of the source tree into a deduplicated, ordered catalog.

Each directory listing is an independent unit of work executed in a thread
pool. A listing returns its own files and subdirectories; the coordinating
thread submits the subdirectories as new units and is the only place where
results are merged, so no worker ever mutates shared state.
"""
import logging
import os
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..models import Catalog, DirectoryPath, FileEntry
from ..ui import BaseUIManager, SimpleUIManager
from ..utils import Defaults, TraversalError

logger = logging.getLogger(__name__)


@dataclass
class _Listing:
    files: List[FileEntry] = field(default_factory=list)
    subdirs: List[Path] = field(default_factory=list)


def _entry_size(entry: os.DirEntry) -> int:
    try:
        return entry.stat().st_size
    except OSError as e:
        logger.debug(f"Could not read size of {entry.path}, treating as 0: {e}")
        return 0


def _real_path(path: Path) -> str:
    try:
        return os.path.realpath(path)
    except OSError:
        return str(path)


def _list_directory(directory: Path, follow_symlinks: bool) -> _Listing:
    """Lists the immediate children of one directory.

    Classification relies on the filesystem status of each entry (symlinks
    are resolved), never on the name. Anything that is neither a regular
    file nor a directory is skipped with a warning.

    Raises:
        OSError: If the directory itself cannot be listed.
    """
    listing = _Listing()
    with os.scandir(directory) as it:
        for entry in it:
            path = Path(entry.path)
            try:
                if entry.is_dir():
                    if entry.is_symlink() and not follow_symlinks:
                        logger.info(f"Not following symlinked directory: {path}")
                        continue
                    listing.subdirs.append(path)
                elif entry.is_file():
                    listing.files.append(FileEntry.from_path(path, _entry_size(entry)))
                else:
                    logger.warning(f"Skipping {path}: not a regular file or directory")
            except OSError as e:
                logger.warning(f"Skipping {path}: could not determine its type ({e})")
    return listing


def merge_catalog(
    files: Iterable[FileEntry],
    dirs: Iterable[DirectoryPath],
    errors: Optional[List[Tuple[Path, Exception]]] = None,
) -> Catalog:
    """Deduplicates and orders the results gathered from all traversal branches.

    Files are deduplicated by absolute path (first entry in path order wins)
    and then ordered by descending size, ties broken by path. Directories are
    deduplicated and sorted by path.
    """
    unique_files: Dict[Path, FileEntry] = {}
    for entry in sorted(files, key=lambda e: e.path):
        unique_files.setdefault(entry.path, entry)
    ordered_files = sorted(unique_files.values(), key=lambda e: (-(e.size or 0), e.path))

    ordered_dirs = [DirectoryPath(path) for path in sorted({d.path for d in dirs})]
    return Catalog(files=ordered_files, dirs=ordered_dirs, errors=list(errors or []))


class CatalogBuilder:
    """Builds the file and directory catalog of a source root.

    Attributes:
        observer: Receives traversal start, completion and per-subtree errors.
        max_workers: Size of the listing thread pool.
        follow_symlinks: Whether symlinked directories are descended. Cycles
            (a directory resolving to one of its own ancestors) are never
            descended.
    """

    def __init__(self, observer: Optional[BaseUIManager] = None, max_workers: Optional[int] = None, follow_symlinks: bool = True):
        self.observer = observer or SimpleUIManager()
        self.max_workers = max_workers or Defaults.TRAVERSAL_WORKERS
        self.follow_symlinks = follow_symlinks

    def build(self, root: Path) -> Catalog:
        """Traverses ``root`` and returns its catalog.

        Raises:
            TraversalError: If ``root`` is not a directory or cannot be listed.
        """
        root = Path(root)
        if not root.is_dir():
            raise TraversalError(root, "Source root is not a directory")

        logger.info(f"STATE: Building catalog of {root}...")
        self.observer.on_traversal_start(root)

        files: List[FileEntry] = []
        dirs: List[DirectoryPath] = []
        errors: List[Tuple[Path, Exception]] = []

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='Catalog') as executor:
            pending: Dict[Future, Tuple[Path, FrozenSet[str]]] = {
                executor.submit(_list_directory, root, self.follow_symlinks): (root, frozenset([_real_path(root)]))
            }
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    directory, ancestors = pending.pop(future)
                    try:
                        listing = future.result()
                    except OSError as e:
                        if directory == root:
                            raise TraversalError(root, f"Cannot read source root ({e})") from e
                        logger.warning(f"Skipping unreadable directory {directory}: {e}")
                        errors.append((directory, e))
                        self.observer.on_traversal_error(directory, e)
                        continue

                    files.extend(listing.files)
                    for subdir in listing.subdirs:
                        real = _real_path(subdir)
                        if real in ancestors:
                            logger.warning(f"Skipping {subdir}: symlink cycle back to {real}")
                            continue
                        dirs.append(DirectoryPath(subdir))
                        future_listing = executor.submit(_list_directory, subdir, self.follow_symlinks)
                        pending[future_listing] = (subdir, ancestors | {real})

        catalog = merge_catalog(files, dirs, errors)
        logger.info(
            f"STATE: Catalog complete: {len(catalog.files)} files, {len(catalog.dirs)} directories, "
            f"{len(catalog.errors)} skipped subtrees."
        )
        self.observer.on_traversal_complete(catalog)
        return catalog


def build_catalog(root: Path, observer: Optional[BaseUIManager] = None, max_workers: Optional[int] = None, follow_symlinks: bool = True) -> Catalog:
    """Convenience wrapper around `CatalogBuilder.build`."""
    return CatalogBuilder(observer, max_workers=max_workers, follow_symlinks=follow_symlinks).build(root)
