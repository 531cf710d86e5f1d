"""Gzip tar archive helpers for collected configuration."""

from __future__ import annotations

import io
import os
import tarfile
import tempfile
import time
from pathlib import Path
from types import TracebackType

from wrtbackup.core.errors import CollectionError

ENTRY_MODE = 0o644


def create_temp_archive(directory: Path) -> Path:
    """Create an empty, exclusively owned temporary archive file in ``directory``."""

    directory.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=".incoming-", suffix=".tar.gz", dir=directory)
    os.close(fd)
    return Path(name)


class ArchiveWriter:
    """Write named in-memory entries into a ``.tar.gz`` file.

    Use as a context manager: the archive is finalized when the block exits
    normally. If the block raises, or finalization fails, the partial file is
    deleted so it can never be mistaken for a complete archive.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.entries: list[str] = []
        self.finalized = False
        self._handle = None
        self._tar: tarfile.TarFile | None = None

    def __enter__(self) -> "ArchiveWriter":
        try:
            self._handle = self.path.open("wb")
            self._tar = tarfile.open(fileobj=self._handle, mode="w:gz")
        except OSError as exc:
            self._discard()
            raise CollectionError(f"Unable to open archive for writing: {self.path}") from exc
        return self

    def add_entry(self, name: str, data: bytes, mtime: float | None = None) -> None:
        if self._tar is None:
            raise CollectionError("Archive is not open")

        info = tarfile.TarInfo(name=name)
        info.size = len(data)
        info.mode = ENTRY_MODE
        info.mtime = int(mtime if mtime is not None else time.time())
        info.type = tarfile.REGTYPE
        try:
            self._tar.addfile(info, io.BytesIO(data))
        except (OSError, tarfile.TarError) as exc:
            raise CollectionError(f"Unable to add entry '{name}' to archive") from exc
        self.entries.append(name)

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self._discard()
            return

        if self._tar is None or self._handle is None:
            raise CollectionError("Archive is not open")
        try:
            self._tar.close()
            self._handle.flush()
            os.fsync(self._handle.fileno())
            self._handle.close()
        except (OSError, tarfile.TarError) as exc:
            self._discard()
            raise CollectionError(f"Unable to finalize archive: {self.path}") from exc
        self.finalized = True

    def _discard(self) -> None:
        for closer in (self._tar, self._handle):
            if closer is None:
                continue
            try:
                closer.close()
            except (OSError, tarfile.TarError):
                pass
        self._tar = None
        self._handle = None
        self.path.unlink(missing_ok=True)
