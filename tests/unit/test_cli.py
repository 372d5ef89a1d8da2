import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "apps" / "cli"))
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "link"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))

from perfnotify_app.cli import build_parser


class CliTests(unittest.TestCase):
    def test_run_command(self):
        args = build_parser().parse_args(["run"])
        self.assertEqual(args.command, "run")
        self.assertIsNone(args.port)
        self.assertEqual(args.protocol_version, "1.0")

    def test_run_with_port_and_config(self):
        args = build_parser().parse_args(["--config", "cfg.json", "run", "--port", "COM5"])
        self.assertEqual(args.config, "cfg.json")
        self.assertEqual(args.port, "COM5")

    def test_run_export_on_exit(self):
        args = build_parser().parse_args(["run", "--export-on-exit", "--out-dir", "/tmp/bundles"])
        self.assertTrue(args.export_on_exit)
        self.assertEqual(args.out_dir, "/tmp/bundles")
        self.assertFalse(build_parser().parse_args(["run"]).export_on_exit)

    def test_list_ports_command(self):
        args = build_parser().parse_args(["list-ports"])
        self.assertEqual(args.command, "list-ports")

    def test_doctor_export(self):
        args = build_parser().parse_args(["doctor", "--export", "--out-dir", "/tmp/x"])
        self.assertTrue(args.export)
        self.assertEqual(args.out_dir, "/tmp/x")

    def test_send_once_command(self):
        args = build_parser().parse_args(["send-once", "--port", "/dev/ttyUSB0"])
        self.assertEqual(args.command, "send-once")
        self.assertEqual(args.port, "/dev/ttyUSB0")


if __name__ == "__main__":
    unittest.main()
