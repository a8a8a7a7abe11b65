"""Subprocess execution shared by all capability adapters."""

import os
import shlex
import signal
import subprocess
import time
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, Sequence

from archstrap.core.exceptions import AdapterError, StepTimeoutError
from archstrap.core.logging import get_logger

logger = get_logger(__name__)

# seconds a stopped command gets to exit after SIGTERM before SIGKILL
TERMINATE_GRACE = 5.0


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def _children_by_parent() -> dict[int, list[int]]:
    children: dict[int, list[int]] = {}
    for stat in Path("/proc").glob("[0-9]*/stat"):
        try:
            # "pid (comm) state ppid ..."; comm may itself contain ")"
            ppid = int(stat.read_text().rsplit(")", 1)[1].split()[1])
        except (OSError, IndexError, ValueError):
            # the process exited while we were reading
            continue
        children.setdefault(ppid, []).append(int(stat.parent.name))
    return children


def descendants(pid: int) -> list[int]:
    """All processes below ``pid``, from a single scan of ``/proc``."""
    children = _children_by_parent()
    found: list[int] = []
    pending = [pid]
    while pending:
        kids = children.get(pending.pop(), [])
        found.extend(kids)
        pending.extend(kids)
    return found


def send_signal(pids: Sequence[int], sig: signal.Signals) -> None:
    """Signal every pid we are allowed to; gone and foreign processes are ignored."""
    for pid in pids:
        with suppress(ProcessLookupError, PermissionError):
            os.kill(pid, sig)


class CommandRunner:
    """Run external commands with logging, sudo and step deadlines.

    A step deadline (see ``deadline``) caps the time left for every command
    started inside it; commands outside a deadline use ``default_timeout``.

    A command that times out or is interrupted is stopped together with
    everything it started: SIGTERM first (sudo relays it to the command it
    runs as root), SIGKILL after ``terminate_grace`` seconds. Commands stay in
    our session so sudo can still prompt on the terminal.
    """

    def __init__(
        self,
        default_timeout: float | None = 600,
        sudo_command: str = "sudo",
        terminate_grace: float = TERMINATE_GRACE,
    ):
        self.default_timeout = default_timeout
        self.sudo_command = sudo_command
        self.terminate_grace = terminate_grace
        self._deadline: float | None = None
        self._deadline_seconds: float | None = None

    @contextmanager
    def deadline(self, seconds: float | None) -> Iterator[None]:
        """Limit the total runtime of the commands issued inside the block."""
        previous = (self._deadline, self._deadline_seconds)
        if seconds is not None:
            self._deadline = time.monotonic() + seconds
            self._deadline_seconds = seconds
        try:
            yield
        finally:
            self._deadline, self._deadline_seconds = previous

    def _timeout_for(self, argv: list[str], timeout: float | None) -> float | None:
        if self._deadline is None:
            return timeout if timeout is not None else self.default_timeout

        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise StepTimeoutError(
                f"step time limit of {self._deadline_seconds:g}s exhausted before: {format_argv(argv)}",
                timeout_seconds=self._deadline_seconds,
                command=argv,
            )
        if timeout is not None:
            return min(timeout, remaining)
        return remaining

    def run(
        self,
        argv: Sequence[str],
        *,
        sudo: bool = False,
        check: bool = True,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            argv: command and arguments
            sudo: prefix the command with the configured sudo command
            check: raise AdapterError on a non-zero exit status
            input_text: text passed on stdin
            env: extra environment variables
            cwd: working directory
            timeout: per-command timeout in seconds

        Returns:
            CommandResult

        Raises:
            AdapterError: the command is missing or failed (with check=True)
            StepTimeoutError: the command ran out of time
        """
        argv_list = list(argv)
        if sudo:
            argv_list = [self.sudo_command, *argv_list]

        effective_timeout = self._timeout_for(argv_list, timeout)
        logger.info("$ %s", format_argv(argv_list))

        try:
            proc = subprocess.Popen(
                argv_list,
                stdin=subprocess.PIPE if input_text is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=cwd,
                env=dict(os.environ, **(env or {})),
            )
        except FileNotFoundError:
            raise AdapterError(
                f"command not found: {argv_list[0]}",
                command=argv_list,
            )
        except PermissionError as e:
            raise AdapterError(
                f"permission denied running {argv_list[0]}: {e}",
                command=argv_list,
            )

        try:
            stdout, stderr = proc.communicate(input_text, timeout=effective_timeout)
        except subprocess.TimeoutExpired:
            self._stop(proc, argv_list)
            raise StepTimeoutError(
                f"command timed out after {effective_timeout:g}s: {format_argv(argv_list)}",
                timeout_seconds=effective_timeout,
                command=argv_list,
            )
        except KeyboardInterrupt:
            # SIGTERM/SIGHUP sent to us never reached the command
            self._stop(proc, argv_list)
            raise

        if stdout:
            logger.debug("stdout: %s", stdout.strip())
        if stderr:
            logger.debug("stderr: %s", stderr.strip())

        result = CommandResult(
            argv=argv_list,
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
        )

        if check and not result.ok:
            stderr = result.stderr.strip()
            message = f"command failed ({result.returncode}): {format_argv(argv_list)}"
            if stderr:
                message = f"{message}: {stderr.splitlines()[-1]}"
            raise AdapterError(
                message,
                command=argv_list,
                returncode=result.returncode,
                stderr=result.stderr,
            )

        return result

    def _stop(self, proc: subprocess.Popen, argv: list[str]) -> None:
        """Terminate ``proc`` and its descendants, escalating to SIGKILL."""
        tree = [proc.pid, *descendants(proc.pid)]
        logger.warning("Stopping %s (pids %s)", format_argv(argv), ", ".join(map(str, tree)))
        send_signal(tree, signal.SIGTERM)
        try:
            # returns once every process holding the output pipes has exited
            proc.communicate(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            logger.warning("%s ignored SIGTERM, killing it", format_argv(argv))
        send_signal([*tree, *descendants(proc.pid)], signal.SIGKILL)
        proc.wait()

    def succeeds(self, argv: Sequence[str], **kwargs) -> bool:
        """Return True if the command exits with status 0.

        A command that cannot be started counts as a failure, not an error.
        """
        try:
            return self.run(argv, check=False, **kwargs).ok
        except StepTimeoutError:
            raise
        except AdapterError:
            return False
