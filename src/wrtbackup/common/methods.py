"""Selection of the backup method implementation by tag."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from wrtbackup.core.config import Settings
from wrtbackup.core.models import CollectionReport, Device, RestoreOutcome, SessionHandle
from wrtbackup.luci.backup import LuciHandler
from wrtbackup.ubus.backup import UbusHandler


class BackupMethodHandler(Protocol):
    """Operations every device API must provide."""

    method: str

    def authenticate(self, device: Device, logger: logging.Logger) -> SessionHandle: ...

    def collect(
        self, device: Device, session: SessionHandle, destination: Path, logger: logging.Logger
    ) -> CollectionReport: ...

    def restore(self, device: Device, archive: bytes, logger: logging.Logger) -> RestoreOutcome: ...


HANDLER_MAP: dict[str, type] = {
    "ubus": UbusHandler,
    "luci": LuciHandler,
}


def get_method_handler(method: str, settings: Settings | None = None) -> BackupMethodHandler:
    handler_class = HANDLER_MAP.get(method)
    if handler_class is None:
        raise ValueError(f"Unknown backup method '{method}'. Allowed values: {', '.join(HANDLER_MAP)}.")
    return handler_class(settings)
