"""Maps source paths onto the target root and creates the mirrored directories."""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, Optional, Union

from ..models import DirectoryPath, FileEntry
from ..ui import BaseUIManager, SimpleUIManager
from ..utils import Defaults

logger = logging.getLogger(__name__)


def relative_to_root(path: Path, source_root: Path) -> Path:
    """Returns ``path`` relative to ``source_root``.

    A path outside the source root is used as-is, minus its anchor, so that
    joining it onto a target root never escapes that root.
    """
    path = Path(path)
    try:
        return path.relative_to(source_root)
    except ValueError:
        if path.anchor:
            return Path(*path.parts[1:])
        return path


class DirectoryReplicator:
    """Recreates the source directory hierarchy under the target root.

    Every operation is idempotent: creating a directory that already exists,
    or that another worker creates at the same moment, is a success.
    """

    def __init__(self, source_root: Path, target_root: Path, observer: Optional[BaseUIManager] = None, dry_run: bool = False):
        self.source_root = Path(source_root)
        self.target_root = Path(target_root)
        self.observer = observer or SimpleUIManager()
        self.dry_run = dry_run

    def target_path_for(self, path: Path) -> Path:
        return self.target_root / relative_to_root(path, self.source_root)

    def target_dir_for(self, item: Union[FileEntry, DirectoryPath]) -> Path:
        """Files map to their parent's target directory, directories to themselves."""
        if isinstance(item, FileEntry):
            return self.target_path_for(item.path).parent
        return self.target_path_for(item.path)

    def ensure(self, item: Union[FileEntry, DirectoryPath]) -> Path:
        """Creates the target directory for ``item``, including missing ancestors.

        Raises:
            OSError: If the directory cannot be created (for example when a
                regular file already occupies its path).
        """
        target_dir = self.target_dir_for(item)
        if self.dry_run:
            logger.debug(f"[DRY RUN] Would create directory: {target_dir}")
            return target_dir
        if not target_dir.is_dir():
            target_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Created directory: {target_dir}")
            self.observer.on_directory_created(target_dir)
        return target_dir

    def replicate_all(self, dirs: Iterable[DirectoryPath], max_workers: Optional[int] = None) -> int:
        """Ensures every directory in ``dirs`` exists on the target side.

        Failures are logged and counted; they never stop the other directories.

        Returns:
            The number of directories that could not be created.
        """
        dirs = list(dirs)
        logger.info(f"STATE: Replicating {len(dirs)} directories under {self.target_root}...")
        failures = 0
        with ThreadPoolExecutor(max_workers=max_workers or Defaults.PARALLEL_JOBS, thread_name_prefix='Mkdir') as executor:
            futures = {executor.submit(self.ensure, directory): directory for directory in dirs}
            for future in as_completed(futures):
                directory = futures[future]
                try:
                    future.result()
                except OSError as e:
                    failures += 1
                    logger.error(f"Failed to create target directory for {directory.path}: {e}")
        return failures
