import json
import multiprocessing
import sys
import threading
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from wrtbackup.core.catalog import BackupCatalog, backup_filename
from wrtbackup.core.errors import BackupNotFoundError, CatalogError


class SteppingClock:
    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


START = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class BackupCatalogTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.catalog = BackupCatalog(self.root, "router1", clock=SteppingClock(START))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _temp_archive(self, content: bytes = b"archive-bytes") -> Path:
        self.catalog.directory.mkdir(parents=True, exist_ok=True)
        path = self.catalog.directory / f".incoming-{len(list(self.catalog.directory.iterdir()))}.tar.gz"
        path.write_bytes(content)
        return path

    def test_load_without_metadata_is_empty(self) -> None:
        self.assertEqual([], self.catalog.load())

    def test_add_then_get_returns_same_record(self) -> None:
        temp = self._temp_archive(b"x" * 42)
        record = self.catalog.add(temp, "before upgrade", "ubus")

        fetched = self.catalog.get(record.id)
        self.assertEqual(record.id, fetched.id)
        self.assertEqual(record.filename, fetched.filename)
        self.assertEqual(42, fetched.size)
        self.assertEqual("20260102_030405", record.id)
        self.assertEqual(backup_filename("20260102_030405"), record.filename)
        self.assertEqual("before upgrade", fetched.description)
        self.assertEqual("ubus", fetched.backup_method)
        self.assertFalse(temp.exists())
        self.assertTrue(self.catalog.archive_path(record).exists())

    def test_list_preserves_creation_order(self) -> None:
        ids = [self.catalog.add(self._temp_archive(), None, "luci").id for _ in range(3)]
        self.assertEqual(ids, [record.id for record in self.catalog.list()])

    def test_metadata_is_human_readable_json(self) -> None:
        record = self.catalog.add(self._temp_archive(), None, "luci")
        data = json.loads((self.root / "router1" / "metadata.json").read_text(encoding="utf-8"))
        self.assertEqual(record.id, data["backups"][0]["id"])
        self.assertEqual("full", data["backups"][0]["backup_type"])
        self.assertEqual("router1", data["backups"][0]["device_name"])

    def test_same_second_ids_get_suffix(self) -> None:
        catalog = BackupCatalog(self.root, "router1", clock=lambda: START)
        first = catalog.add(self._temp_archive(b"one"), None, "ubus")
        second = catalog.add(self._temp_archive(b"two"), None, "ubus")

        self.assertEqual("20260102_030405", first.id)
        self.assertEqual("20260102_030405_1", second.id)
        self.assertEqual(b"one", catalog.archive_path(first).read_bytes())
        self.assertEqual(b"two", catalog.archive_path(second).read_bytes())

    def test_remove_deletes_file_and_entry(self) -> None:
        record = self.catalog.add(self._temp_archive(), None, "ubus")
        path = self.catalog.archive_path(record)

        self.catalog.remove(record.id)

        self.assertFalse(path.exists())
        with self.assertRaises(BackupNotFoundError):
            self.catalog.get(record.id)

    def test_failed_file_delete_leaves_catalog_unchanged(self) -> None:
        record = self.catalog.add(self._temp_archive(), None, "ubus")
        before = self.catalog.metadata_path.read_bytes()

        with mock.patch("wrtbackup.core.catalog.os.replace", side_effect=PermissionError("read-only")):
            with self.assertRaises(CatalogError):
                self.catalog.remove(record.id)

        self.assertEqual(before, self.catalog.metadata_path.read_bytes())
        self.assertEqual(record, self.catalog.get(record.id))
        self.assertTrue(self.catalog.archive_path(record).exists())

    def test_remove_with_missing_file_still_drops_entry(self) -> None:
        record = self.catalog.add(self._temp_archive(), None, "ubus")
        self.catalog.archive_path(record).unlink()

        self.catalog.remove(record.id)

        self.assertEqual([], self.catalog.list())

    def test_unknown_id_names_device_and_id(self) -> None:
        with self.assertRaises(BackupNotFoundError) as ctx:
            self.catalog.get("20990101_000000")
        self.assertIn("router1", str(ctx.exception))
        self.assertIn("20990101_000000", str(ctx.exception))

    def test_malformed_metadata_raises_catalog_error(self) -> None:
        self.catalog.directory.mkdir(parents=True)
        self.catalog.metadata_path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(CatalogError):
            self.catalog.list()

    def test_failed_persist_after_move_discards_archive(self) -> None:
        temp = self._temp_archive()
        with mock.patch("wrtbackup.core.catalog.write_json_atomic", side_effect=OSError("disk full")):
            with self.assertRaises(CatalogError):
                self.catalog.add(temp, None, "ubus")

        self.assertEqual([], self.catalog.list())
        self.assertFalse((self.catalog.directory / backup_filename("20260102_030405")).exists())

    def test_failed_persist_on_remove_keeps_record_and_archive(self) -> None:
        record = self.catalog.add(self._temp_archive(b"keep-me"), None, "ubus")
        before = self.catalog.metadata_path.read_bytes()

        with mock.patch("wrtbackup.core.catalog.write_json_atomic", side_effect=OSError("disk full")):
            with self.assertRaises(CatalogError):
                self.catalog.remove(record.id)

        self.assertEqual(before, self.catalog.metadata_path.read_bytes())
        self.assertEqual(record, self.catalog.get(record.id))
        self.assertEqual(b"keep-me", self.catalog.archive_path(record).read_bytes())
        self.assertEqual(
            [".lock", record.filename, "metadata.json"],
            sorted(path.name for path in self.catalog.directory.iterdir()),
        )

    def test_remove_leaves_no_staged_file(self) -> None:
        record = self.catalog.add(self._temp_archive(), None, "ubus")
        self.catalog.remove(record.id)
        self.assertEqual(
            [".lock", "metadata.json"], sorted(path.name for path in self.catalog.directory.iterdir())
        )


def _fixed_clock() -> datetime:
    return START


def _add_from_worker(root: str, index: int) -> None:
    catalog = BackupCatalog(Path(root), "router1", clock=_fixed_clock)
    temp = catalog.directory / f".incoming-worker-{index}.tar.gz"
    temp.write_bytes(f"worker-{index}".encode("ascii"))
    catalog.add(temp, f"worker {index}", "ubus")


class ConcurrentAddTests(unittest.TestCase):
    WORKERS = 12

    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "router1").mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _assert_all_recorded(self) -> None:
        catalog = BackupCatalog(self.root, "router1")
        records = catalog.list()
        ids = [record.id for record in records]

        self.assertEqual(self.WORKERS, len(records))
        self.assertEqual(self.WORKERS, len(set(ids)))
        self.assertIn("20260102_030405", ids)
        for record in records:
            index = record.description.split()[-1]
            self.assertEqual(f"worker-{index}".encode("ascii"), catalog.archive_path(record).read_bytes())

    def test_threads_adding_in_the_same_second(self) -> None:
        errors: list[Exception] = []

        def worker(index: int) -> None:
            try:
                _add_from_worker(str(self.root), index)
            except Exception as exc:  # checked on the main thread
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(index,)) for index in range(self.WORKERS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual([], errors)
        self._assert_all_recorded()

    def test_processes_adding_in_the_same_second(self) -> None:
        context = multiprocessing.get_context("fork")
        processes = [
            context.Process(target=_add_from_worker, args=(str(self.root), index)) for index in range(self.WORKERS)
        ]
        for process in processes:
            process.start()
        for process in processes:
            process.join(timeout=30)

        self.assertEqual([0] * self.WORKERS, [process.exitcode for process in processes])
        self._assert_all_recorded()


if __name__ == "__main__":
    unittest.main()
