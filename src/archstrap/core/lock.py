"""Advisory run lock so only one bootstrap mutates the system at a time."""

import fcntl
import os
from pathlib import Path
from typing import IO

from archstrap.core.exceptions import AlreadyRunningError
from archstrap.core.logging import get_logger

logger = get_logger(__name__)


def default_lock_path() -> Path:
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return Path(runtime_dir) / "archstrap.lock"
    return Path("/tmp") / f"archstrap-{os.getuid()}.lock"


class RunLock:
    """Exclusive, non-blocking ``flock`` held for the duration of a run.

    Usable as a context manager::

        with RunLock(path):
            engine.run(...)
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else default_lock_path()
        self._fh: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        """Take the lock or fail fast.

        Raises:
            AlreadyRunningError: another process holds the lock
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+")
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            fh.seek(0)
            owner = fh.read().strip() or "unknown"
            fh.close()
            raise AlreadyRunningError(
                f"another archstrap run holds {self.path} ({owner})",
                lock_path=str(self.path),
            )

        fh.seek(0)
        fh.truncate()
        fh.write(f"pid={os.getpid()}\n")
        fh.flush()
        self._fh = fh
        logger.debug("Acquired run lock %s", self.path)

    def release(self) -> None:
        if self._fh is None:
            return
        try:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None
        logger.debug("Released run lock %s", self.path)

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
