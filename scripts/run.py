#!/usr/bin/env python3
"""Entry point for WrtConfigBackup."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure src/ is on sys.path for local imports when running as a script
ROOT_DIR = Path(__file__).resolve().parent.parent
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from wrtbackup.common.service import BackupService  # noqa: E402
from wrtbackup.core.config import (  # noqa: E402
    DEFAULT_CONFIG,
    DevicesConfigError,
    add_device,
    get_device,
    load_devices,
    load_settings,
)
from wrtbackup.core.errors import ActivationError, DeviceNotFoundError, OperationError  # noqa: E402
from wrtbackup.core.logging import setup_logging  # noqa: E402
from wrtbackup.core.models import BACKUP_METHODS, BackupRecord, Device  # noqa: E402
from wrtbackup.core.storage import load_local_config, resolve_backup_dir  # noqa: E402
from wrtbackup.ubus.client import UbusClient  # noqa: E402
from wrtbackup.ubus.status import StatusError, format_status, get_status, reboot_device  # noqa: E402

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_NOT_ACTIVATED = 3


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""

    parser = argparse.ArgumentParser(
        description="OpenWrt configuration backup and restore over ubus or LuCI.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=ROOT_DIR / DEFAULT_CONFIG.devices,
        help="Path to the devices inventory file (YAML)",
    )
    parser.add_argument(
        "--backup-dir",
        type=Path,
        default=None,
        help="Directory where backups are stored. Overrides config/local.yml.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging. Overrides config/local.yml logging.level.",
    )

    commands = parser.add_subparsers(dest="command", title="commands")

    add_parser = commands.add_parser("add", help="Register a device")
    add_parser.add_argument("name", help="Name of the device")
    add_parser.add_argument("--host", required=True, help="IP address or hostname of the device")
    add_parser.add_argument("--user", required=True, help="Username for authentication")
    add_parser.add_argument("--password", required=True, help="Password for authentication")
    add_parser.add_argument("--method", choices=BACKUP_METHODS, default="ubus", help="Default backup method")
    add_parser.add_argument("--ssh-port", type=int, default=22, help="SSH port used by the ubus method")

    commands.add_parser("list", help="List registered devices")

    status_parser = commands.add_parser("status", help="Show device status")
    status_parser.add_argument("name", help="Name of the device")
    status_parser.add_argument("--raw", action="store_true", help="Show raw values (bytes, seconds)")
    status_parser.add_argument("--json", action="store_true", help="Output in JSON format")

    reboot_parser = commands.add_parser("reboot", help="Reboot a device")
    reboot_parser.add_argument("name", help="Name of the device")

    backup_parser = commands.add_parser("backup", help="Manage configuration backups")
    backup_commands = backup_parser.add_subparsers(dest="backup_command", title="backup commands")

    create_parser = backup_commands.add_parser("create", help="Create a new backup")
    create_parser.add_argument("name", help="Name of the device")
    create_parser.add_argument("--description", default=None, help="Optional description for the backup")
    create_parser.add_argument("--method", choices=BACKUP_METHODS, default=None, help="Override the device method")

    list_parser = backup_commands.add_parser("list", help="List backups of a device")
    list_parser.add_argument("name", help="Name of the device")

    show_parser = backup_commands.add_parser("show", help="Show details of a backup")
    show_parser.add_argument("name", help="Name of the device")
    show_parser.add_argument("backup_id", help="ID of the backup")

    restore_parser = backup_commands.add_parser("restore", help="Restore a backup onto the device")
    restore_parser.add_argument("name", help="Name of the device")
    restore_parser.add_argument("backup_id", help="ID of the backup")
    restore_parser.add_argument(
        "--method", choices=BACKUP_METHODS, default=None, help="Override the method the backup was taken with"
    )

    remove_parser = backup_commands.add_parser("remove", help="Remove a backup")
    remove_parser.add_argument("name", help="Name of the device")
    remove_parser.add_argument("backup_id", help="ID of the backup")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the CLI."""

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None or (args.command == "backup" and args.backup_command is None):
        parser.print_help()
        return EXIT_USAGE

    local_config = load_local_config(ROOT_DIR / DEFAULT_CONFIG.local)
    logger = setup_logging(local_config, cli_level=logging.DEBUG if args.debug else None)
    config_path = Path(args.config)

    if args.command == "add":
        return _add_device(args, config_path, logger)

    try:
        devices = load_devices(config_path, logger)
    except (OSError, DevicesConfigError) as exc:
        logger.error("Failed to load devices configuration: %s", exc)
        return EXIT_FAILED

    settings = load_settings(local_config)

    if args.command == "list":
        return _list_devices(devices)
    if args.command in ("status", "reboot"):
        return _run_ubus_command(args, devices, settings.http_timeout, logger)

    try:
        backup_dir = resolve_backup_dir(args.backup_dir, local_config, logger)
    except OSError as exc:
        logger.error("%s", exc)
        return EXIT_FAILED

    service = BackupService(devices, backup_dir, settings, logger=logger)
    return _run_backup_command(args, service, logger)


def _add_device(args: argparse.Namespace, config_path: Path, logger: logging.Logger) -> int:
    device = Device(
        name=args.name,
        host=args.host,
        username=args.user,
        password=args.password,
        method=args.method,
        ssh_port=args.ssh_port,
    )
    try:
        add_device(config_path, device, logger)
    except (OSError, DevicesConfigError) as exc:
        logger.error("Failed to register device: %s", exc, extra={"device": args.name})
        return EXIT_FAILED
    print(f"Device '{device.name}' added successfully")
    return EXIT_OK


def _list_devices(devices: list[Device]) -> int:
    if not devices:
        print("No devices registered. Use 'add' to register a device.")
        return EXIT_OK

    print("Registered OpenWrt devices:")
    print("---------------------------")
    for device in devices:
        print(f"{device.name} ({device.host}) method={device.method}")
    return EXIT_OK


def _run_ubus_command(
    args: argparse.Namespace, devices: list[Device], timeout: float, logger: logging.Logger
) -> int:
    try:
        device = get_device(devices, args.name)
    except DeviceNotFoundError as exc:
        logger.error("%s", exc, extra={"device": args.name})
        return EXIT_FAILED

    client = UbusClient(host=device.host, timeout=timeout)
    try:
        if args.command == "reboot":
            reboot_device(device, client, logger)
            print(f"Rebooting device '{device.name}'...")
            return EXIT_OK

        status = get_status(device, client, logger)
    except StatusError as exc:
        logger.error("%s", exc, extra={"device": device.name})
        return EXIT_FAILED

    if args.json:
        print(json.dumps(status.to_dict(), indent=2))
    else:
        print(format_status(status, raw=args.raw))
    return EXIT_OK


def _format_record(record: BackupRecord) -> str:
    lines = [
        f"ID: {record.id}",
        f"Created: {record.created_at.strftime('%Y-%m-%d %H:%M:%S %z')}",
        f"Device: {record.device_name}",
        f"Type: {record.backup_type}",
        f"Method: {record.backup_method}",
        f"Size: {record.size} bytes",
        f"File: {record.filename}",
    ]
    if record.description:
        lines.append(f"Description: {record.description}")
    return "\n".join(lines)


def _run_backup_command(args: argparse.Namespace, service: BackupService, logger: logging.Logger) -> int:
    log_extra = {"device": args.name}
    try:
        if args.backup_command == "create":
            created = service.create(args.name, args.description, args.method)
            print(f"Backup created: {created.record.id}")
            if created.report.skipped:
                print(f"Skipped sections: {', '.join(created.report.skipped)}")
        elif args.backup_command == "list":
            records = service.list(args.name)
            if not records:
                print(f"No backups found for device '{args.name}'")
            for record in records:
                description = f"  {record.description}" if record.description else ""
                print(f"{record.id}  {record.backup_method:<4}  {record.size:>10} bytes{description}")
        elif args.backup_command == "show":
            print(_format_record(service.show(args.name, args.backup_id)))
        elif args.backup_command == "restore":
            service.restore(args.name, args.backup_id, args.method)
            print(f"Backup '{args.backup_id}' restored; device '{args.name}' is rebooting")
        elif args.backup_command == "remove":
            service.remove(args.name, args.backup_id)
            print(f"Backup '{args.backup_id}' removed")
    except OperationError as exc:
        logger.error("%s", exc, extra=log_extra)
        if isinstance(exc.__cause__, ActivationError):
            return EXIT_NOT_ACTIVATED
        return EXIT_FAILED

    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
