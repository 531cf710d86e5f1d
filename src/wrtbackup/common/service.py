"""User-level backup operations composed from sessions, collectors and the catalog."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

from wrtbackup.common.archive import create_temp_archive
from wrtbackup.common.methods import BackupMethodHandler, get_method_handler
from wrtbackup.core.catalog import BackupCatalog
from wrtbackup.core.config import Settings, get_device
from wrtbackup.core.errors import (
    ActivationError,
    AuthError,
    BackupNotFoundError,
    CatalogError,
    CollectionError,
    DeviceNotFoundError,
    OperationError,
    RestoreError,
    WrtBackupError,
)
from wrtbackup.core.models import BackupRecord, CollectionReport, Device, RestoreOutcome

HandlerFactory = Callable[[str, Settings], BackupMethodHandler]

# Most specific first: ActivationError is a RestoreError, BackupNotFoundError a CatalogError.
_ERROR_KINDS: tuple[tuple[type[Exception], str], ...] = (
    (BackupNotFoundError, "not_found"),
    (ActivationError, "activation"),
    (AuthError, "auth"),
    (CollectionError, "collection"),
    (RestoreError, "restore"),
    (CatalogError, "catalog"),
)


def classify_error(exc: Exception) -> str:
    for error_type, kind in _ERROR_KINDS:
        if isinstance(exc, error_type):
            return kind
    return "error"


@dataclass(slots=True)
class CreatedBackup:
    """Record of a new backup and how its sections were gathered."""

    record: BackupRecord
    report: CollectionReport


class BackupService:
    """Entry point for create, restore, list, show and remove."""

    def __init__(
        self,
        devices: list[Device],
        backup_root: Path,
        settings: Settings | None = None,
        handler_factory: HandlerFactory | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.devices = devices
        self.backup_root = Path(backup_root)
        self.settings = settings or Settings()
        self.handler_factory = handler_factory or get_method_handler
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    @contextlib.contextmanager
    def _operation(self, action: str, device_name: str) -> Iterator[None]:
        try:
            yield
        except BackupNotFoundError as exc:
            raise OperationError("not_found", str(exc)) from exc
        except WrtBackupError as exc:
            if isinstance(exc, OperationError):
                raise
            raise OperationError(
                classify_error(exc), f"{action} failed for device '{device_name}': {exc}"
            ) from exc

    def _device(self, name: str) -> Device:
        try:
            return get_device(self.devices, name)
        except DeviceNotFoundError as exc:
            raise OperationError("device", str(exc)) from exc

    def _handler(self, method: str) -> BackupMethodHandler:
        try:
            return self.handler_factory(method, self.settings)
        except ValueError as exc:
            raise OperationError("method", str(exc)) from exc

    def catalog(self, name: str) -> BackupCatalog:
        return BackupCatalog(self.backup_root, name, clock=self.clock)

    def create(self, name: str, description: str | None = None, method: str | None = None) -> CreatedBackup:
        device = self._device(name)
        handler = self._handler(method or device.method)
        catalog = self.catalog(device.name)
        log_extra = {"device": device.name}

        self.logger.info("start backup host=%s method=%s", device.host, handler.method, extra=log_extra)
        with self._operation("backup", device.name):
            try:
                temp_archive = create_temp_archive(catalog.directory)
            except OSError as exc:
                raise CatalogError(f"Unable to create temporary archive in {catalog.directory}") from exc

            try:
                session = handler.authenticate(device, self.logger)
                report = handler.collect(device, session, temp_archive, self.logger)
                record = catalog.add(temp_archive, description, handler.method)
            finally:
                # no-op once the catalog has moved the archive into place
                temp_archive.unlink(missing_ok=True)

        for section in report.skipped:
            self.logger.warning("backup incomplete section=%s skipped", section, extra=log_extra)
        self.logger.info("backup completed id=%s size=%d", record.id, record.size, extra=log_extra)
        return CreatedBackup(record=record, report=report)

    def restore(self, name: str, backup_id: str, method: str | None = None) -> RestoreOutcome:
        """Push a catalogued archive back to the device.

        The method defaults to the one the backup was taken with, since the
        two device APIs produce different archive layouts.
        """

        device = self._device(name)
        catalog = self.catalog(device.name)
        log_extra = {"device": device.name}

        with self._operation("restore", device.name):
            record = catalog.get(backup_id)
            handler = self._handler(method or record.backup_method)
            path = catalog.archive_path(record)
            try:
                archive = path.read_bytes()
            except OSError as exc:
                raise RestoreError(f"Backup file for '{backup_id}' is not readable: {path}") from exc

            self.logger.info(
                "start restore id=%s method=%s bytes=%d", record.id, handler.method, len(archive), extra=log_extra
            )
            outcome = handler.restore(device, archive, self.logger)

        self.logger.info("restore completed id=%s", record.id, extra=log_extra)
        return outcome

    def list(self, name: str) -> list[BackupRecord]:
        device = self._device(name)
        with self._operation("list", device.name):
            return self.catalog(device.name).list()

    def show(self, name: str, backup_id: str) -> BackupRecord:
        device = self._device(name)
        with self._operation("show", device.name):
            return self.catalog(device.name).get(backup_id)

    def remove(self, name: str, backup_id: str) -> BackupRecord:
        device = self._device(name)
        with self._operation("remove", device.name):
            return self.catalog(device.name).remove(backup_id)
