import logging
import sys
import unittest
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from fakes import FakeHttp, FakeResponse, ubus_ok
from wrtbackup.core.models import Device
from wrtbackup.ubus.client import UbusClient
from wrtbackup.ubus.status import StatusError, format_status, format_uptime, get_status, parse_status, reboot_device

LOGGER = logging.getLogger("status.test")
DEVICE = Device(name="router1", host="10.0.0.1", username="root", password="secret")
BOARD = {"model": "GL.iNet GL-MT300N-V2", "hostname": "OpenWrt"}
INFO = {"uptime": 93784, "load": [32768, 16384, 0], "memory": {"total": 134217728, "free": 67108864}}


class StatusTests(unittest.TestCase):
    def test_parse_scales_load_and_defaults_missing_fields(self) -> None:
        status = parse_status("router1", BOARD, INFO)
        self.assertEqual([0.5, 0.25, 0.0], status.load)
        self.assertEqual(93784, status.uptime)

        empty = parse_status("router1", {}, {})
        self.assertEqual("Unknown", empty.model)
        self.assertEqual([], empty.load)

    def test_format_uptime(self) -> None:
        self.assertEqual("1d 2h 3m", format_uptime(93784))
        self.assertEqual("2h 0m", format_uptime(7200))
        self.assertEqual("5m", format_uptime(300))

    def test_format_human_and_raw(self) -> None:
        status = parse_status("router1", BOARD, INFO)

        human = format_status(status)
        self.assertIn("Uptime: 1d 2h 3m", human)
        self.assertIn("Load: 0.50", human)
        self.assertIn("Total: 128.0 MB", human)

        raw = format_status(status, raw=True)
        self.assertIn("Uptime: 93784 seconds", raw)
        self.assertIn("Free: 67108864 B", raw)

    def test_get_status_queries_board_and_info(self) -> None:
        http = FakeHttp(ubus_ok({"ubus_rpc_session": "abc"}), ubus_ok(BOARD), ubus_ok(INFO))
        status = get_status(DEVICE, UbusClient(host=DEVICE.host, http=http), LOGGER)

        self.assertEqual("OpenWrt", status.hostname)
        self.assertEqual(["system", "board"], http.calls[1]["json"]["params"][1:3])
        self.assertEqual(["system", "info"], http.calls[2]["json"]["params"][1:3])

    def test_reboot_failure_is_status_error(self) -> None:
        http = FakeHttp(ubus_ok({"ubus_rpc_session": "abc"}), FakeResponse(status_code=500))
        with self.assertRaises(StatusError):
            reboot_device(DEVICE, UbusClient(host=DEVICE.host, http=http), LOGGER)


if __name__ == "__main__":
    unittest.main()
