"""Idempotent text-file edits."""

import os
import re
from pathlib import Path
from typing import Callable

from archstrap.core.command import CommandRunner
from archstrap.core.exceptions import AdapterError
from archstrap.core.logging import get_logger

logger = get_logger(__name__)

Replacement = str | Callable[[re.Match], str]


class FileEditor:
    """Query-before-mutate edits of configuration files.

    Every method returns True when the file was changed and False when the
    desired content was already there. Files the current user cannot write
    (``/etc/pacman.conf``, ``/etc/default/grub``) are written through
    ``sudo tee``.
    """

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def exists(self, path: str | Path) -> bool:
        return Path(path).expanduser().is_file()

    def read(self, path: str | Path) -> str:
        p = Path(path).expanduser()
        try:
            return p.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except OSError as e:
            raise AdapterError(f"cannot read {p}: {e}")

    def contains(self, path: str | Path, pattern: str) -> bool:
        """True if the regex ``pattern`` matches anywhere (multiline mode)."""
        return re.search(pattern, self.read(path), re.MULTILINE) is not None

    def write(self, path: str | Path, content: str) -> None:
        p = Path(path).expanduser()
        if self._writable(p):
            try:
                p.parent.mkdir(parents=True, exist_ok=True)
                p.write_text(content, encoding="utf-8")
                return
            except PermissionError:
                pass
        logger.debug("Writing %s with elevated privileges", p)
        self.runner.run(["tee", str(p)], sudo=True, input_text=content)

    def ensure_line_in_file(
        self,
        path: str | Path,
        line: str,
        marker: str | None = None,
    ) -> bool:
        """Append ``line`` unless it, or ``marker``, is already present."""
        content = self.read(path)
        if any(existing.strip() == line.strip() for existing in content.splitlines()):
            return False
        if marker is not None and marker in content:
            return False

        self.write(path, _append(content, line + "\n"))
        logger.info("Appended line to %s", path)
        return True

    def ensure_block_in_file(self, path: str | Path, block: str, marker: str) -> bool:
        """Append ``block`` preceded by a blank line, unless ``marker`` is present.

        ``marker`` is usually the first (comment) line of the block.
        """
        content = self.read(path)
        if marker in content:
            return False

        text = block if block.endswith("\n") else block + "\n"
        self.write(path, _append(content, "\n" + text))
        logger.info("Appended block %r to %s", marker, path)
        return True

    def ensure_pattern_replaced(
        self,
        path: str | Path,
        pattern: str,
        replacement: Replacement,
        unless: str | None = None,
        count: int = 0,
    ) -> bool:
        """Apply a regex substitution (multiline mode) to a file.

        No-op when ``unless`` already matches or ``pattern`` matches nothing.

        Raises:
            AdapterError: the file does not exist
        """
        if not self.exists(path):
            raise AdapterError(f"file not found: {path}")

        content = self.read(path)
        if unless is not None and re.search(unless, content, re.MULTILINE):
            return False

        updated, replaced = re.subn(pattern, replacement, content, count=count, flags=re.MULTILINE)
        if replaced == 0 or updated == content:
            return False

        self.write(path, updated)
        logger.info("Replaced %d occurrence(s) of %r in %s", replaced, pattern, path)
        return True

    @staticmethod
    def _writable(p: Path) -> bool:
        if p.exists():
            return os.access(p, os.W_OK)
        parent = p.parent
        while not parent.exists() and parent != parent.parent:
            parent = parent.parent
        return os.access(parent, os.W_OK)


def _append(content: str, text: str) -> str:
    if content and not content.endswith("\n"):
        content += "\n"
    return content + text
