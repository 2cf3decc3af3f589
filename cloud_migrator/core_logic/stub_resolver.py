"""Materializes cloud-sync placeholder ("stub") files before they are copied.

A stub reports a length of zero until an application opens it, at which
point the sync client starts downloading the real content and may keep the
file locked while doing so. `StubResolver` opens such files and streams them
to the end, retrying a bounded number of times while the file is locked.

The retry loop is a small state machine::

    IDLE -> OPENING -> STREAMING -> SUCCEEDED
               |  ^
               v  |
            RETRY_WAIT
               |
    OPENING -> FAILED   (retries exhausted, or a non-transient error)

Only failures at open time are retried. A read error in the middle of the
stream fails the fetch immediately.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from ..models import FileEntry
from ..ui import BaseUIManager
from ..utils import Defaults, FetchIOError, LockTimeoutError, ThrottledProgressUpdater

logger = logging.getLogger(__name__)


class FetchState(Enum):
    IDLE = "idle"
    OPENING = "opening"
    STREAMING = "streaming"
    SUCCEEDED = "succeeded"
    RETRY_WAIT = "retry_wait"
    FAILED = "failed"


@dataclass
class FetchAttempt:
    """Tracks the progress of a single materialization."""
    entry: FileEntry
    state: FetchState = FetchState.IDLE
    attempts: int = 0
    bytes_read: int = 0
    history: List[FetchState] = field(default_factory=list)

    def transition(self, state: FetchState) -> None:
        self.state = state
        self.history.append(state)


def is_transient_open_error(error: OSError) -> bool:
    """Whether an open failure means "locked or not yet available".

    The sync client signals a file still being downloaded as permission
    denied or would-block.
    """
    return isinstance(error, (PermissionError, BlockingIOError))


class StubResolver:
    """Forces the download of stub files with a bounded retry protocol.

    Attributes:
        max_attempts: Number of open attempts before giving up on a locked file.
        retry_delay: Fixed delay, in seconds, between open attempts.
        chunk_size: Size of each read while streaming.
        sleep: Callable used to wait between attempts.
        opener: Callable used to open files for reading.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        chunk_size: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
        opener: Callable[..., Any] = open,
        progress_interval: Optional[float] = None,
    ):
        self.max_attempts = max_attempts or Defaults.MAX_FETCH_ATTEMPTS
        self.retry_delay = Defaults.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.chunk_size = chunk_size or Defaults.CHUNK_SIZE
        self.sleep = sleep
        self.opener = opener
        self.progress_interval = progress_interval

    def materialize(self, entry: FileEntry, observer: BaseUIManager) -> FetchAttempt:
        """Makes sure the content of ``entry`` is available locally.

        Files that reported a non-zero size are not stubs and are left alone.
        For a stub the streamed bytes are discarded; they only drive the sync
        client and the progress display.

        Args:
            entry: The file to materialize.
            observer: Receives fetch start, progress, retry and completion events.

        Returns:
            The `FetchAttempt` describing how the fetch went.

        Raises:
            LockTimeoutError: The file stayed locked for all attempts.
            FetchIOError: Opening or reading failed for any other reason.
        """
        attempt = FetchAttempt(entry=entry)
        if not entry.is_stub:
            attempt.transition(FetchState.SUCCEEDED)
            return attempt

        logger.info(f"Fetching stub file: {entry.path}")
        observer.on_fetch_start(entry)

        while True:
            attempt.transition(FetchState.OPENING)
            attempt.attempts += 1
            try:
                handle = self.opener(entry.path, 'rb')
            except OSError as e:
                if not is_transient_open_error(e):
                    attempt.transition(FetchState.FAILED)
                    logger.error(f"Error opening {entry.path}: {e}")
                    raise FetchIOError(entry.path, e) from e
                if attempt.attempts >= self.max_attempts:
                    attempt.transition(FetchState.FAILED)
                    logger.error(f"Failed to fetch {entry.path} after {attempt.attempts} attempts")
                    raise LockTimeoutError(entry.path, attempt.attempts) from e
                attempt.transition(FetchState.RETRY_WAIT)
                logger.warning(
                    f"File locked, retrying in {self.retry_delay}s... "
                    f"(attempt {attempt.attempts}/{self.max_attempts}): {entry.path}"
                )
                observer.on_fetch_retry(entry, attempt.attempts, e)
                self.sleep(self.retry_delay)
                continue

            attempt.transition(FetchState.STREAMING)
            self._stream(handle, attempt, observer)
            attempt.transition(FetchState.SUCCEEDED)
            logger.info(f"Download complete: {entry.path} ({attempt.bytes_read} bytes)")
            observer.on_fetch_complete(entry, attempt.bytes_read)
            return attempt

    def _stream(self, handle: Any, attempt: FetchAttempt, observer: BaseUIManager) -> None:
        # TODO: a lock reappearing mid-read fails the file outright; route it
        # through RETRY_WAIT if sync clients turn out to do that.
        progress = ThrottledProgressUpdater(observer, attempt.entry, self.progress_interval)
        try:
            with handle:
                while True:
                    chunk = handle.read(self.chunk_size)
                    if not chunk:
                        break
                    attempt.bytes_read += len(chunk)
                    progress.update(len(chunk))
        except OSError as e:
            attempt.transition(FetchState.FAILED)
            logger.error(f"Error reading {attempt.entry.path} after {attempt.bytes_read} bytes: {e}")
            raise FetchIOError(attempt.entry.path, e) from e
        finally:
            progress.flush()
