"""Process-level helpers: logging setup for the command-line entry point."""
import logging
import time
from pathlib import Path


def setup_logging(log_dir: Path, dry_run: bool, debug: bool) -> Path:
    """Configures the root logger for file-based logging.

    Sets up a file handler that logs messages to a timestamped file in
    ``log_dir``. Console logging (RichHandler or StreamHandler) is configured
    separately in `main`.

    Args:
        log_dir: Directory receiving the log files; created if missing.
        dry_run: If True, adds a warning to the log.
        debug: If True, sets the logging level to DEBUG, otherwise INFO.

    Returns:
        The path of the log file.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = time.strftime("%Y-%m-%d_%H-%M-%S")
    log_file_path = log_dir / f"cloud_migrator_{timestamp}.log"

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    if logger.hasHandlers():
        logger.handlers.clear()

    file_handler = logging.FileHandler(log_file_path, mode='w', encoding='utf-8')
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - [%(threadName)s] %(message)s'))
    logger.addHandler(file_handler)

    logging.info("--- Cloud Migrator started (logging to file) ---")
    if dry_run:
        logging.warning("!!! DRY RUN MODE ENABLED. NO CHANGES WILL BE MADE. !!!")
    return log_file_path
