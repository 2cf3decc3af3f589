#!/usr/bin/env python3
# Cloud Migrator
#
# Copies a directory tree from one cloud-sync mount to another, forcing
# placeholder ("stub") files to download first and preserving the folder
# hierarchy. Re-running it only copies what is still missing.

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import argcomplete
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config_manager import ConfigManager, update_config
from .core_logic.catalog import CatalogBuilder
from .core_logic.directory_replicator import DirectoryReplicator
from .core_logic.migrator import Migrator
from .core_logic.stub_resolver import StubResolver
from .models import MigrationReport
from .system_manager import setup_logging
from .ui import BaseUIManager, SimpleUIManager, UIManagerV2
from .utils import TraversalError

DEFAULT_CONFIG_PATH = Path.home() / '.cloud_migrator' / 'config.ini'


def validate_roots(source: Path, target: Path) -> Optional[str]:
    """Returns an error message when the two roots cannot be migrated between."""
    source = source.resolve()
    target = target.resolve()
    if source == target:
        return "Source and target are the same directory."
    if source in target.parents:
        return "Target directory is inside the source directory."
    return None


class CloudMigrator:
    """Orchestrates one migration run: catalog, directories, then files.

    This class wires the configured components together and reports every
    event to the observer it is given.
    """
    def __init__(
        self,
        source_root: Path,
        target_root: Path,
        config_manager: ConfigManager,
        observer: BaseUIManager,
        dry_run: bool = False,
        parallel_jobs: Optional[int] = None,
    ):
        self.source_root = Path(source_root)
        self.target_root = Path(target_root)
        self.config_manager = config_manager
        self.observer = observer
        self.dry_run = dry_run
        self.parallel_jobs = parallel_jobs or config_manager.get_parallel_jobs()

    def _build_migrator(self) -> Migrator:
        chunk_size = self.config_manager.get_chunk_size()
        resolver = StubResolver(
            max_attempts=self.config_manager.get_max_fetch_attempts(),
            retry_delay=self.config_manager.get_retry_delay(),
            chunk_size=chunk_size,
        )
        replicator = DirectoryReplicator(self.source_root, self.target_root, self.observer, dry_run=self.dry_run)
        return Migrator(
            self.source_root,
            self.target_root,
            observer=self.observer,
            resolver=resolver,
            replicator=replicator,
            dry_run=self.dry_run,
            chunk_size=chunk_size,
        )

    def run(self) -> MigrationReport:
        """Runs the migration.

        Raises:
            TraversalError: If the source root cannot be read. This is the only
                error that aborts the run; every other failure is confined to
                the file or directory it happened on.
        """
        catalog = CatalogBuilder(
            self.observer,
            max_workers=self.config_manager.get_traversal_workers(),
            follow_symlinks=self.config_manager.get_follow_symlinks(),
        ).build(self.source_root)

        report = MigrationReport(traversal_warnings=len(catalog.errors))
        migrator = self._build_migrator()

        # Every target directory exists before the first file is copied.
        report.directory_failures = migrator.replicator.replicate_all(catalog.dirs, self.parallel_jobs)

        migrator.migrate_all(catalog.files, self.parallel_jobs, report)
        report.end_time = time.time()

        summary = (
            f"Processing complete. Copied {report.copied}, skipped {report.skipped}, "
            f"failed {report.failed} of {len(catalog.files)} file(s)."
        )
        logging.info(summary)
        self.observer.set_final_status("Finished with failures." if report.has_failures else "All tasks finished.")
        return report


def main(argv: Optional[list] = None) -> int:
    """The main entry point for the application.

    Parses arguments, sets up logging and configuration, runs the migration
    under the selected UI and maps the outcome to an exit status.

    Returns:
        0 once every discovered file has been attempted (even if some failed),
        1 if the source root cannot be read or the setup is invalid.
    """
    parser = argparse.ArgumentParser(
        description="Migrate a directory tree between cloud-sync mounts, materializing placeholder files first.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument('-s', '--source', type=Path, help='The source directory (e.g. the Box folder).')
    parser.add_argument('-t', '--target', type=Path, help='The target directory (e.g. the OneDrive folder).')
    parser.add_argument('--config', default=str(DEFAULT_CONFIG_PATH), help='Path to the configuration file.')
    parser.add_argument('--parallel-jobs', type=int, default=None, metavar='N', help='Number of files to process in parallel (overrides the config).')
    parser.add_argument('--dry-run', action='store_true', help='Catalog and report what would be copied without writing anything.')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging.')
    parser.add_argument('--simple', action='store_true', help='Use a simple, non-interactive UI. Recommended for `screen`, `tmux` or cron.')
    parser.add_argument('--check-config', action='store_true', help='Validate the configuration file and exit.')
    parser.add_argument('--version', action='store_true', help="Show program's version and config file path, then exit.")
    argcomplete.autocomplete(parser)
    args = parser.parse_args(argv)

    if args.version:
        print(f"cloud-migrator {__version__}")
        print(f"Configuration file: {args.config}")
        return 0

    if not args.check_config and (args.source is None or args.target is None):
        parser.error("the following arguments are required: -s/--source, -t/--target")
    if args.parallel_jobs is not None and args.parallel_jobs < 1:
        parser.error("--parallel-jobs must be at least 1")

    template_path = Path(__file__).resolve().parent / 'config.ini.template'
    update_config(args.config, str(template_path))
    config_manager = ConfigManager(args.config)

    log_dir = Path(args.config).resolve().parent / config_manager.get_log_dir()
    log_file = setup_logging(log_dir, args.dry_run, args.debug)

    logger = logging.getLogger()
    log_level = logging.DEBUG if args.debug else logging.INFO
    rich_handler: Optional[logging.Handler] = None

    if args.simple:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
        stream_handler.setLevel(log_level)
        logger.addHandler(stream_handler)
    else:
        rich_handler = RichHandler(level=log_level, show_path=False, rich_tracebacks=True, markup=False, console=Console(stderr=True))
        rich_handler.setFormatter(logging.Formatter('%(message)s'))
        logger.addHandler(rich_handler)

    logging.info(f"Using configuration file: {args.config} (log file: {log_file})")
    if args.check_config:
        logging.info("CONFIG: Configuration file appears to be valid.")
        return 0

    problem = validate_roots(args.source, args.target)
    if problem:
        logging.error(f"FATAL: {problem} (source: {args.source}, target: {args.target})")
        return 1

    logging.info(f"Copying from {args.source} to {args.target}")
    ui: BaseUIManager = SimpleUIManager() if args.simple else UIManagerV2(version=__version__, rich_handler=rich_handler)
    mover = CloudMigrator(args.source, args.target, config_manager, ui, dry_run=args.dry_run, parallel_jobs=args.parallel_jobs)

    try:
        with ui:
            report = mover.run()
        ui.display_stats(report)
    except TraversalError as e:
        logging.error(f"Failed to read source directory: {e}")
        return 1
    except KeyboardInterrupt:
        logging.warning("Process interrupted by user. Shutting down.")
        return 1
    except Exception as e:
        logging.error(f"An unexpected error occurred in main: {e}", exc_info=True)
        return 1
    finally:
        logging.info("--- Cloud Migrator finished ---")

    if report.has_failures:
        logging.warning(f"{report.failed} file(s) could not be migrated; see {log_file} for details.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
