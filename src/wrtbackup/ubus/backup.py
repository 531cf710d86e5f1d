"""Backup and restore over ubus, with configuration read through an SSH shell."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

import requests

from wrtbackup.common.archive import ArchiveWriter
from wrtbackup.core.config import Settings
from wrtbackup.core.errors import AuthError, CollectionError, RestoreError
from wrtbackup.core.models import CollectionReport, Device, RestoreOutcome, SessionHandle
from wrtbackup.ubus.client import UbusClient, UbusClientError
from wrtbackup.ubus.shell import ShellClient, ShellClientError

CONFIG_SECTIONS: tuple[str, ...] = (
    "network",
    "wireless",
    "firewall",
    "dhcp",
    "system",
    "dropbear",
    "uhttpd",
)
IDENTITY_FILE = "/etc/board.json"
IDENTITY_ENTRY = "etc/board.json"

ShellFactory = Callable[..., ShellClient]


def section_entry_name(section: str) -> str:
    return f"etc/config/{section}"


def collect_sections(
    shell: Any,
    writer: ArchiveWriter,
    logger: logging.Logger,
    log_extra: dict[str, Any],
    sections: tuple[str, ...] = CONFIG_SECTIONS,
) -> CollectionReport:
    """Export each UCI section in order and append it to ``writer``.

    A section whose command fails or prints nothing is skipped. The device
    identity file is appended last when it can be read.
    """

    report = CollectionReport()
    for section in sections:
        command = f"uci export {section}"
        result = shell.run(command)
        if not result.ok:
            reason = result.stderr.strip() or f"exit_status={result.exit_status}"
            logger.warning("section skipped section=%s reason=\"%s\"", section, reason, extra=log_extra)
            report.skipped.append(section)
            continue

        writer.add_entry(section_entry_name(section), result.stdout)
        report.collected.append(section)
        logger.debug("section collected section=%s bytes=%d", section, len(result.stdout), extra=log_extra)

    identity = shell.run(f"cat {IDENTITY_FILE}")
    if identity.ok:
        writer.add_entry(IDENTITY_ENTRY, identity.stdout)
        report.identity_included = True
    else:
        logger.debug("identity file unavailable path=%s", IDENTITY_FILE, extra=log_extra)

    return report


class UbusHandler:
    """Protocol A: ubus JSON-RPC session, SSH collection, RPC restore."""

    method = "ubus"

    def __init__(
        self,
        settings: Settings | None = None,
        http: requests.Session | None = None,
        shell_factory: ShellFactory | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.http = http or requests.Session()
        self.shell_factory = shell_factory or ShellClient

    def _client(self, device: Device) -> UbusClient:
        return UbusClient(host=device.host, timeout=self.settings.http_timeout, http=self.http)

    def authenticate(self, device: Device, logger: logging.Logger) -> SessionHandle:
        log_extra = {"device": device.name}
        try:
            token = self._client(device).login(device.username, device.password, logger, log_extra)
        except UbusClientError as exc:
            logger.error("ubus login failed host=%s reason=\"%s\"", device.host, exc, extra=log_extra)
            raise AuthError(f"ubus login to {device.host} failed: {exc}") from exc
        logger.info("ubus login ok host=%s", device.host, extra=log_extra)
        return SessionHandle(method="ubus", token=token)

    def collect(
        self, device: Device, session: SessionHandle, destination: Path, logger: logging.Logger
    ) -> CollectionReport:
        log_extra = {"device": device.name}
        try:
            shell = self.shell_factory(
                host=device.host,
                username=device.username,
                password=device.password,
                port=device.ssh_port,
                timeout=self.settings.ssh_timeout,
                logger=logger,
                log_extra=log_extra,
            )
            with shell, ArchiveWriter(destination) as writer:
                report = collect_sections(shell, writer, logger, log_extra)
        except ShellClientError as exc:
            logger.error("shell collection failed host=%s reason=\"%s\"", device.host, exc, extra=log_extra)
            raise CollectionError(f"SSH collection from {device.host} failed: {exc}") from exc

        logger.info(
            "archive written sections=%d skipped=%d identity=%s",
            len(report.collected),
            len(report.skipped),
            report.identity_included,
            extra=log_extra,
        )
        return report

    def restore(self, device: Device, archive: bytes, logger: logging.Logger) -> RestoreOutcome:
        log_extra = {"device": device.name}
        session = self.authenticate(device, logger)
        try:
            self._client(device).restore(session.token, archive, logger, log_extra)
        except UbusClientError as exc:
            logger.error("ubus restore failed reason=\"%s\"", exc, extra=log_extra)
            raise RestoreError(f"ubus restore on {device.host} failed: {exc}") from exc

        logger.info("ubus restore accepted bytes=%d; device reboots itself", len(archive), extra=log_extra)
        return RestoreOutcome(method="ubus", bytes_sent=len(archive), rebooted=True)
