"""Per-check log files."""

import time
from datetime import datetime
from pathlib import Path

from buildbouncer.core.errors import LogDirectoryError, LogFileError
from buildbouncer.core.log import logger
from buildbouncer.git.repo import find_repo_root, resolve_git_dir

CONFIG_DIR_NAME = ".buildbouncer"

REMOVE_ATTEMPTS = 8
REMOVE_DELAY = 0.015


def resolve_default_log_dir(repo_root: Path) -> Path:
    """Where check logs go when no directory is configured.

    Inside the git directory of the repository holding the project, so
    logs never show up as untracked files. The project may sit in a
    subdirectory of that repository. Outside any repository, logs go
    under the project's config directory.
    """
    git_root = find_repo_root(repo_root) or Path(repo_root)
    git_dir = resolve_git_dir(git_root)
    if git_dir is not None:
        return git_dir / "build-bouncer" / "logs"
    return Path(repo_root) / CONFIG_DIR_NAME / "logs"


def sanitize(name: str) -> str:
    """Make a check name safe for use in a file name.

    ASCII letters, digits, ``-``, ``_`` and ``.`` are kept; anything else
    becomes ``_``. A blank name becomes ``check``.
    """
    trimmed = name.strip()
    if not trimmed:
        return "check"
    return "".join(
        ch if (ch.isascii() and ch.isalnum()) or ch in "-_." else "_"
        for ch in trimmed
    )


def log_file_name(index: int, name: str, now: datetime | None = None) -> str:
    """``YYYYMMDD_HHMMSS_<index>_<name>.log`` with a two-digit index."""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"{stamp}_{index:02d}_{sanitize(name)}.log"


def remove_with_retries(
    path: Path,
    attempts: int = REMOVE_ATTEMPTS,
    delay: float = REMOVE_DELAY,
) -> None:
    """Delete path, retrying briefly while something else holds it.

    A missing file counts as removed.

    Raises:
        OSError: The last removal error once attempts run out
    """
    for attempt in range(attempts):
        try:
            path.unlink()
            return
        except FileNotFoundError:
            return
        except OSError:
            if attempt == attempts - 1:
                raise
            time.sleep(delay)


class CheckLog:
    """Full, unbounded output of one check run, written to disk.

    Opened before the process starts; kept when the check fails and
    removed when it passes.
    """

    def __init__(self, log_dir: Path, index: int, name: str):
        """Create the log directory and open a fresh log file.

        Args:
            log_dir: Directory to write into, created if needed
            index: Zero-based position of the check in the config
            name: Check name, sanitized into the file name

        Raises:
            LogDirectoryError: The directory cannot be created
            LogFileError: The file cannot be opened
        """
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LogDirectoryError(
                f"cannot create log directory {log_dir}: {e}"
            ) from e

        self.path = log_dir / log_file_name(index, name)
        try:
            self._file = open(self.path, "wb")  # noqa: SIM115
        except OSError as e:
            raise LogFileError(f"cannot open log file {self.path}: {e}") from e

        logger.trace("Opened check log", path=str(self.path))

    def write(self, chunk: bytes) -> None:
        self._file.write(chunk)

    def close(self) -> None:
        """Flush and close the file; safe to call twice."""
        if not self._file.closed:
            self._file.close()

    def discard(self) -> None:
        """Close and delete the log.

        Raises:
            LogFileError: The file could not be removed
        """
        self.close()
        try:
            remove_with_retries(self.path)
        except OSError as e:
            raise LogFileError(
                f"cannot remove log file {self.path}: {e}"
            ) from e
        logger.trace("Removed check log", path=str(self.path))

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
        return False
