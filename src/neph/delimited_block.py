"""Read and replace the neph-managed block of a configuration file.

A managed block is the run of lines between two marker lines::

    #-----BEGIN NEPH-----
    ...managed lines...
    #-----END NEPH-----

Everything outside the markers belongs to whoever else edits the file and is
kept exactly as it is.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, Union

from neph.errors import FileMissing, FilesystemError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Undecodable bytes survive a read and write unchanged
ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"


def _ensure_newline(text: str) -> str:
    if text and not text.endswith(("\n", "\r")):
        return text + "\n"
    return text


class DelimitedBlockStore:
    """Reads and atomically rewrites the managed block of text files."""

    BACKUP_SUFFIX = ".bak"

    def __init__(self, product: str = "NEPH"):
        """Initialize the store.

        Args:
            product: Token placed inside the BEGIN/END markers.
        """
        if not product:
            raise ValueError("product token is required")
        self.product = product

    @property
    def begin_marker(self) -> str:
        return f"#-----BEGIN {self.product}-----"

    @property
    def end_marker(self) -> str:
        return f"#-----END {self.product}-----"

    def backup_path(self, path: PathLike) -> Path:
        """Get the path of the single backup kept for a file."""
        path = Path(path)
        return path.with_name(path.name + self.BACKUP_SUFFIX)

    def read(self, path: PathLike) -> str:
        """Get the text of a file's managed block.

        Args:
            path: The configuration file.

        Returns:
            The block's lines, each ending with a newline, or an empty string
            when the file has no managed block.

        Raises:
            FileMissing: If the file does not exist.
            FilesystemError: If the file cannot be read.
        """
        block_lines = []
        inside = False
        for line in self._read_lines(path):
            if not inside:
                if line.startswith(self.begin_marker):
                    inside = True
                continue
            if line.startswith(self.end_marker):
                break
            block_lines.append(_ensure_newline(line))
        return "".join(block_lines)

    def replace(self, path: PathLike, block_text: str) -> None:
        """Replace a file's managed block, or append one if it has none.

        The new content is written to a sibling temporary file first. Then
        the previous backup is removed, the original becomes ``<path>.bak``
        and the temporary file takes the original's place.

        Args:
            path: The configuration file.
            block_text: New content for the block.

        Raises:
            FileMissing: If the file does not exist.
            FilesystemError: If any write or rename fails. Nothing is rolled
                back.
        """
        path = Path(path)
        lines = self._read_lines(path)
        content = "".join(self._patched_lines(lines, block_text))

        tmp_path = self._write_temporary(path, content)
        backup = self.backup_path(path)

        if backup.exists():
            try:
                backup.unlink()
            except OSError as e:
                self._discard(tmp_path)
                raise FilesystemError(f"unable to remove previous backup {backup}: {e}") from e

        try:
            os.rename(path, backup)
        except OSError as e:
            raise FilesystemError(f"unable to save {path} to {backup}: {e}") from e
        logger.debug("Saved %s to %s", path, backup)

        try:
            os.rename(tmp_path, path)
        except OSError as e:
            raise FilesystemError(f"unable to save {tmp_path} to {path}: {e}") from e
        logger.info("Replaced %s block in %s", self.product, path)

    def _patched_lines(self, lines: list[str], block_text: str) -> Iterable[str]:
        block = [
            self.begin_marker + "\n",
            _ensure_newline(block_text),
            self.end_marker + "\n",
        ]

        index = 0
        while index < len(lines) and not lines[index].startswith(self.begin_marker):
            yield lines[index]
            index += 1

        if index == len(lines):
            # No managed block yet: append one, starting on a fresh line
            if lines and lines[-1] != _ensure_newline(lines[-1]):
                yield "\n"
            yield from block
            return

        yield from block

        # Skip the old block; a BEGIN without END runs to the end of the file
        index += 1
        while index < len(lines) and not lines[index].startswith(self.end_marker):
            index += 1
        yield from lines[index + 1:]

    def _read_lines(self, path: PathLike) -> list[str]:
        path = Path(path)
        if not path.exists():
            raise FileMissing(f"no such file {path}")
        try:
            with open(path, "r", encoding=ENCODING, errors=ENCODING_ERRORS, newline="") as f:
                return list(f)
        except OSError as e:
            raise FilesystemError(f"can't open file {path}: {e}") from e

    def _write_temporary(self, path: Path, content: str) -> Path:
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
            )
        except OSError as e:
            raise FilesystemError(f"can't create temporary file next to {path}: {e}") from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding=ENCODING, errors=ENCODING_ERRORS, newline="") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            shutil.copymode(path, tmp_path)
        except OSError as e:
            self._discard(tmp_path)
            raise FilesystemError(f"can't write temporary file {tmp_path}: {e}") from e

        logger.debug("Wrote new content of %s to %s", path, tmp_path)
        return tmp_path

    @staticmethod
    def _discard(tmp_path: Path) -> None:
        try:
            tmp_path.unlink()
        except OSError:
            logger.warning("Unable to remove temporary file %s", tmp_path)
