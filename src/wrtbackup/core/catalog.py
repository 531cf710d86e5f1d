"""Per-device backup catalog stored as ``metadata.json`` beside the archives.

Layout::

    <backup_root>/
      <device_name>/
        metadata.json
        20260101_120000_full_backup.tar.gz
        ...

The catalog is the only record of which backups exist; the directory is never
scanned. Every mutation is a locked read-modify-write that rewrites the whole
document through a rename.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

from wrtbackup.core.errors import BackupNotFoundError, CatalogError
from wrtbackup.core.models import BackupMethod, BackupRecord
from wrtbackup.core.storage import exclusive_lock, move_file_atomic, write_json_atomic

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"
ID_FORMAT = "%Y%m%d_%H%M%S"


def backup_filename(backup_id: str) -> str:
    """Archive filename for a backup id."""

    return f"{backup_id}_full_backup.tar.gz"


class BackupCatalog:
    """Ordered collection of backup records for one device."""

    def __init__(
        self,
        backup_root: Path,
        device_name: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.device_name = device_name
        self.directory = Path(backup_root) / device_name
        self.metadata_path = self.directory / METADATA_FILENAME
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._log_extra = {"device": device_name}

    def archive_path(self, record: BackupRecord) -> Path:
        return self.directory / record.filename

    def load(self) -> list[BackupRecord]:
        """Read the catalog. A missing metadata file is an empty catalog."""

        if not self.metadata_path.exists():
            return []

        try:
            raw = json.loads(self.metadata_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise CatalogError(f"Failed to read backup metadata: {self.metadata_path}") from exc
        except json.JSONDecodeError as exc:
            raise CatalogError(f"Failed to parse backup metadata: {self.metadata_path}") from exc

        entries = raw.get("backups") if isinstance(raw, dict) else None
        if not isinstance(entries, list):
            raise CatalogError(f"Backup metadata has no 'backups' list: {self.metadata_path}")

        try:
            return [BackupRecord.from_dict(entry) for entry in entries]
        except (KeyError, TypeError, ValueError) as exc:
            raise CatalogError(f"Malformed backup record in {self.metadata_path}") from exc

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        stack = contextlib.ExitStack()
        try:
            stack.enter_context(exclusive_lock(self.directory))
        except OSError as exc:
            raise CatalogError(f"Unable to lock backup directory: {self.directory}") from exc
        with stack:
            yield

    def _save(self, records: list[BackupRecord]) -> None:
        try:
            write_json_atomic(self.metadata_path, {"backups": [record.to_dict() for record in records]})
        except (OSError, TypeError, ValueError) as exc:
            raise CatalogError(f"Failed to write backup metadata: {self.metadata_path}") from exc

    def list(self) -> list[BackupRecord]:
        """Return all records in creation order."""

        return self.load()

    def get(self, backup_id: str) -> BackupRecord:
        for record in self.load():
            if record.id == backup_id:
                return record
        raise BackupNotFoundError(self.device_name, backup_id)

    def _unique_id(self, base_id: str, records: list[BackupRecord]) -> str:
        taken = {record.id for record in records}
        candidate = base_id
        suffix = 0
        while candidate in taken or (self.directory / backup_filename(candidate)).exists():
            suffix += 1
            candidate = f"{base_id}_{suffix}"
        if suffix:
            logger.info("backup id collision base=%s assigned=%s", base_id, candidate, extra=self._log_extra)
        return candidate

    def add(
        self,
        temp_archive: Path,
        description: str | None,
        method: BackupMethod,
    ) -> BackupRecord:
        """Take ownership of ``temp_archive`` and catalogue it.

        The archive is moved into the device directory before the record is
        appended and persisted.
        """

        temp_archive = Path(temp_archive)
        try:
            size = temp_archive.stat().st_size
        except OSError as exc:
            raise CatalogError(f"Backup archive not readable: {temp_archive}") from exc

        with self._locked():
            records = self.load()
            created_at = self._clock()
            backup_id = self._unique_id(created_at.strftime(ID_FORMAT), records)
            record = BackupRecord(
                id=backup_id,
                filename=backup_filename(backup_id),
                created_at=created_at,
                device_name=self.device_name,
                description=description,
                backup_method=method,
                size=size,
            )

            destination = self.archive_path(record)
            try:
                move_file_atomic(temp_archive, destination)
            except OSError as exc:
                raise CatalogError(f"Failed to store backup archive: {destination}") from exc

            records.append(record)
            try:
                self._save(records)
            except CatalogError:
                destination.unlink(missing_ok=True)
                raise

        logger.info(
            "backup catalogued id=%s file=%s size=%d method=%s",
            record.id,
            record.filename,
            record.size,
            record.backup_method,
            extra=self._log_extra,
        )
        return record

    def remove(self, backup_id: str) -> BackupRecord:
        """Delete the archive and its catalog entry together.

        The archive is first renamed aside, then the catalog is persisted
        without the record, and only then is the renamed file deleted. If the
        archive cannot be moved, or the catalog cannot be written, both are
        left as they were.
        """

        with self._locked():
            records = self.load()
            record = next((entry for entry in records if entry.id == backup_id), None)
            if record is None:
                raise BackupNotFoundError(self.device_name, backup_id)

            path = self.archive_path(record)
            staged: Path | None = self.directory / f".{record.filename}.deleting"
            try:
                os.replace(path, staged)
            except FileNotFoundError:
                logger.warning("backup file already missing path=%s", path, extra=self._log_extra)
                staged = None
            except OSError as exc:
                raise CatalogError(f"Failed to remove backup file: {path}") from exc

            try:
                self._save([entry for entry in records if entry.id != backup_id])
            except CatalogError:
                if staged is not None:
                    os.replace(staged, path)
                raise

            if staged is not None:
                try:
                    staged.unlink()
                except OSError as exc:
                    logger.warning(
                        "staged backup file not deleted path=%s reason=\"%s\"", staged, exc, extra=self._log_extra
                    )

        logger.info("backup removed id=%s", backup_id, extra=self._log_extra)
        return record
