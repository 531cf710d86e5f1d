"""Backup and restore through the LuCI web-admin interface."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import requests

from wrtbackup.core.config import Settings
from wrtbackup.core.errors import ActivationError, AuthError, CollectionError, RestoreError
from wrtbackup.core.models import CollectionReport, Device, RestoreOutcome, SessionHandle
from wrtbackup.luci.client import LuciClient, LuciClientError


def write_blob(destination: Path, content: bytes) -> None:
    """Write ``content`` verbatim; a failed write leaves no file behind."""

    try:
        with destination.open("wb") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
    except OSError as exc:
        destination.unlink(missing_ok=True)
        raise CollectionError(f"Unable to write archive: {destination}") from exc


class LuciHandler:
    """Protocol B: cookie session, device-generated archive, multipart restore."""

    method = "luci"

    def __init__(self, settings: Settings | None = None, http: requests.Session | None = None) -> None:
        self.settings = settings or Settings()
        self.http = http or requests.Session()

    def _client(self, device: Device) -> LuciClient:
        return LuciClient(host=device.host, timeout=self.settings.http_timeout, http=self.http)

    def authenticate(self, device: Device, logger: logging.Logger) -> SessionHandle:
        log_extra = {"device": device.name}
        try:
            token = self._client(device).login(device.username, device.password)
        except LuciClientError as exc:
            logger.error("luci login failed host=%s reason=\"%s\"", device.host, exc, extra=log_extra)
            raise AuthError(f"LuCI login to {device.host} failed: {exc}") from exc
        logger.info("luci login ok host=%s", device.host, extra=log_extra)
        return SessionHandle(method="luci", token=token)

    def collect(
        self, device: Device, session: SessionHandle, destination: Path, logger: logging.Logger
    ) -> CollectionReport:
        log_extra = {"device": device.name}
        try:
            content = self._client(device).fetch_backup(session.token)
        except LuciClientError as exc:
            logger.error("luci backup download failed reason=\"%s\"", exc, extra=log_extra)
            raise CollectionError(f"LuCI backup from {device.host} failed: {exc}") from exc

        write_blob(destination, content)
        logger.info("archive downloaded bytes=%d", len(content), extra=log_extra)
        return CollectionReport()

    def restore(self, device: Device, archive: bytes, logger: logging.Logger) -> RestoreOutcome:
        log_extra = {"device": device.name}
        session = self.authenticate(device, logger)
        client = self._client(device)

        try:
            client.upload_restore(session.token, archive)
        except LuciClientError as exc:
            logger.error("luci restore upload failed reason=\"%s\"", exc, extra=log_extra)
            raise RestoreError(f"LuCI restore upload to {device.host} failed: {exc}") from exc
        logger.info("luci restore accepted bytes=%d", len(archive), extra=log_extra)

        try:
            client.reboot(session.token)
        except LuciClientError as exc:
            logger.error("reboot after restore failed reason=\"%s\"", exc, extra=log_extra)
            raise ActivationError(
                f"Configuration restored on {device.host} but reboot failed: {exc}"
            ) from exc

        logger.info("reboot requested", extra=log_extra)
        return RestoreOutcome(method="luci", bytes_sent=len(archive), rebooted=True)
