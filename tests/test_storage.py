import errno
import json
import logging
import os
import sys
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from wrtbackup.core import storage
from wrtbackup.core.storage import load_local_config, move_file_atomic, resolve_backup_dir, write_json_atomic

LOGGER = logging.getLogger("storage.test")


class BackupDirTests(unittest.TestCase):
    def test_cli_directory_wins(self) -> None:
        with TemporaryDirectory() as tmpdir:
            cli_dir = Path(tmpdir) / "cli"
            local_dir = Path(tmpdir) / "local"
            resolved = resolve_backup_dir(cli_dir, {"backup": {"directory": str(local_dir)}}, LOGGER)

            self.assertEqual(cli_dir, resolved)
            self.assertTrue(cli_dir.is_dir())
            self.assertEqual([], list(cli_dir.iterdir()))

    def test_local_config_then_fallback(self) -> None:
        with TemporaryDirectory() as tmpdir:
            local_dir = Path(tmpdir) / "local"
            fallback = Path(tmpdir) / "fallback"
            self.assertEqual(local_dir, resolve_backup_dir(None, {"backup": {"directory": str(local_dir)}}, LOGGER))

            with mock.patch.object(storage, "FALLBACK_BACKUP_DIR", fallback):
                self.assertEqual(fallback, resolve_backup_dir(None, {"backup": {}}, LOGGER))

    def test_unwritable_candidate_is_skipped(self) -> None:
        with TemporaryDirectory() as tmpdir:
            blocker = Path(tmpdir) / "file"
            blocker.write_text("not a directory", encoding="utf-8")
            fallback = Path(tmpdir) / "fallback"

            with mock.patch.object(storage, "FALLBACK_BACKUP_DIR", fallback):
                with self.assertLogs(LOGGER, level="WARNING"):
                    resolved = resolve_backup_dir(blocker / "sub", None, LOGGER)

        self.assertEqual(fallback, resolved)


class LocalConfigTests(unittest.TestCase):
    def test_missing_and_invalid_files(self) -> None:
        with TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "local.yml"
            self.assertIsNone(load_local_config(path))

            path.write_text("- just\n- a list\n", encoding="utf-8")
            self.assertIsNone(load_local_config(path))

            path.write_text("http:\n  timeout: 3\n", encoding="utf-8")
            self.assertEqual({"http": {"timeout": 3}}, load_local_config(path))


class AtomicWriteTests(unittest.TestCase):
    def test_json_is_replaced_without_leftovers(self) -> None:
        with TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "metadata.json"
            write_json_atomic(path, {"backups": [1]})
            write_json_atomic(path, {"backups": [1, 2]})

            self.assertEqual({"backups": [1, 2]}, json.loads(path.read_text(encoding="utf-8")))
            self.assertEqual(["metadata.json"], sorted(p.name for p in Path(tmpdir).iterdir()))

    def test_move_across_filesystems_copies_then_removes_source(self) -> None:
        real_replace = os.replace
        calls = []

        def replace(src, dst):
            calls.append((src, dst))
            if len(calls) == 1:
                raise OSError(errno.EXDEV, "Invalid cross-device link")
            return real_replace(src, dst)

        with TemporaryDirectory() as tmpdir:
            source = Path(tmpdir) / "incoming.tar.gz"
            source.write_bytes(b"archive-bytes")
            destination = Path(tmpdir) / "router1" / "20260101_000000_full_backup.tar.gz"

            with mock.patch.object(storage.os, "replace", side_effect=replace):
                move_file_atomic(source, destination)

            self.assertEqual(b"archive-bytes", destination.read_bytes())
            self.assertFalse(source.exists())
            self.assertEqual(2, len(calls))

    def test_other_move_errors_propagate(self) -> None:
        with TemporaryDirectory() as tmpdir:
            with self.assertRaises(FileNotFoundError):
                move_file_atomic(Path(tmpdir) / "missing", Path(tmpdir) / "dest")


if __name__ == "__main__":
    unittest.main()
