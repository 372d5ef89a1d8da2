import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "link"))

from perfnotify_telemetry.models import CPU_NAME_MAX, GPU_NAME_MAX, truncate

try:
    from perfnotify_telemetry.provider import TelemetryProvider
except Exception:  # pragma: no cover
    TelemetryProvider = None


class TruncateTests(unittest.TestCase):
    def test_truncate(self):
        self.assertEqual(truncate(None, 5), "")
        self.assertEqual(truncate("  abc  ", 5), "abc")
        self.assertEqual(len(truncate("x" * 100, CPU_NAME_MAX)), 35)
        self.assertEqual(len(truncate("x" * 100, GPU_NAME_MAX)), 40)


class TelemetryProviderTests(unittest.TestCase):
    def test_collect_returns_record(self):
        if TelemetryProvider is None:
            self.skipTest("psutil not installed")
        provider = TelemetryProvider()
        record = provider.collect()
        self.assertGreater(record.ts, 0)
        self.assertTrue(0 <= record.cpu.usage <= 100)
        self.assertLessEqual(len(record.cpu.name), CPU_NAME_MAX)
        self.assertLessEqual(len(record.gpu.name), GPU_NAME_MAX)
        self.assertGreater(record.mem.total, 0.0)
        self.assertTrue(0 <= record.mem.usage <= 100)

    def test_record_encodes(self):
        if TelemetryProvider is None:
            self.skipTest("psutil not installed")
        from perfnotify_link.codec import decode_record, encode_record

        record = TelemetryProvider(cpu_usage_scale=1.6).collect()
        self.assertEqual(decode_record(encode_record(record)), record)


if __name__ == "__main__":
    unittest.main()
