"""Storage helpers: backup directory resolution, atomic writes and locking."""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Iterator, Mapping

import yaml

PROJECT_ROOT = Path(__file__).resolve().parents[3]
FALLBACK_BACKUP_DIR = Path("~/.wrtbackup/backups").expanduser()
DEFAULT_LOCAL_CONFIG = PROJECT_ROOT / "config" / "local.yml"
LOCK_FILENAME = ".lock"


def ensure_directory(path: Path) -> Path:
    """Ensure the target directory exists and return it."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def _fsync_directory(path: Path) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def write_json_atomic(path: Path, data: Any) -> None:
    """Write ``data`` as pretty-printed JSON, replacing ``path`` in one rename."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        with tmp.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    _fsync_directory(path.parent)


def move_file_atomic(source: Path, destination: Path) -> None:
    """Move ``source`` to ``destination`` so that it appears complete or not at all.

    A plain rename is used when both paths share a filesystem. Otherwise the
    file is copied to a hidden name beside the destination, synced, renamed
    into place, and the source is removed.
    """

    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.replace(source, destination)
    except OSError as exc:
        if exc.errno != getattr(os, "EXDEV", 18):
            raise
        staging = destination.with_name(f".{destination.name}.part")
        try:
            with source.open("rb") as src, staging.open("wb") as dst:
                shutil.copyfileobj(src, dst)
                dst.flush()
                os.fsync(dst.fileno())
            os.replace(staging, destination)
        except BaseException:
            staging.unlink(missing_ok=True)
            raise
        source.unlink(missing_ok=True)
    _fsync_directory(destination.parent)


@contextlib.contextmanager
def exclusive_lock(directory: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock on ``directory`` for the duration of the block."""

    ensure_directory(directory)
    with (directory / LOCK_FILENAME).open("a") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def load_local_config(
    config_path: str | Path | None = None, logger: logging.Logger | None = None
) -> Mapping[str, Any] | None:
    """Read ``local.yml``; a missing or unreadable file yields ``None``.

    Relative paths are taken from the project root. Runs before logging is
    configured, so ``logger`` is optional.
    """

    path = Path(config_path) if config_path else DEFAULT_LOCAL_CONFIG
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    if not path.exists():
        return None

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        if logger:
            logger.warning("unable to read local config file=%s reason=\"%s\"", path, exc)
        return None
    return data if isinstance(data, Mapping) else None


def _configured_backup_dir(local_cfg: Mapping[str, Any] | None) -> Path | None:
    section = local_cfg.get("backup") if isinstance(local_cfg, Mapping) else None
    value = section.get("directory") if isinstance(section, Mapping) else None
    if not value:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else PROJECT_ROOT / path


def _check_writable(path: Path) -> None:
    ensure_directory(path)
    probe = path / ".write-test"
    probe.write_text("probe", encoding="utf-8")
    probe.unlink()


def resolve_backup_dir(
    cli_backup_dir: str | Path | None, local_cfg: Mapping[str, Any] | None, logger: logging.Logger
) -> Path:
    """Pick the first writable backup root: ``--backup-dir``, then ``local.yml``, then the fallback."""

    candidates: list[tuple[str, Path]] = []
    if cli_backup_dir:
        candidates.append(("cli", Path(cli_backup_dir).expanduser()))
    configured = _configured_backup_dir(local_cfg)
    if configured:
        candidates.append(("local_yml", configured))
    candidates.append(("fallback", FALLBACK_BACKUP_DIR))

    for source, candidate in candidates:
        try:
            _check_writable(candidate)
        except OSError as exc:
            logger.warning('backup_dir source=%s path=%s unusable reason="%s"', source, candidate, exc)
            continue
        logger.debug("backup_dir source=%s path=%s", source, candidate)
        return candidate

    raise OSError(f"No writable backup directory; last tried {FALLBACK_BACKUP_DIR}")
