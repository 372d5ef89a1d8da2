import json
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "link"))

from perfnotify_link.codec import (
    LineFramer,
    decode_record,
    encode_handshake,
    encode_record,
    parse_inbound,
)
from perfnotify_link.errors import MalformedInboundError
from perfnotify_link.models import MessageKind
from perfnotify_telemetry.models import CpuInfo, GpuInfo, MemoryInfo, TelemetryRecord


def sample_record(**overrides) -> TelemetryRecord:
    values = dict(
        ts=1755143472,
        cpu=CpuInfo(usage=37, temp=61, fan=1450, name="AMD Ryzen 7 5800X 8-Core Processor"),
        gpu=GpuInfo(usage=12, temp=48, name="NVIDIA GeForce RTX 3070", mem_used=1843, mem_total=8192),
        mem=MemoryInfo(usage=54, used=17.21, total=31.91, avail=14.7),
    )
    values.update(overrides)
    return TelemetryRecord(**values)


class EncodeTests(unittest.TestCase):
    def test_wire_shape(self):
        frame = encode_record(sample_record())
        self.assertTrue(frame.startswith(b'{"ts":1755143472,'))
        self.assertTrue(frame.endswith(b"\n"))
        self.assertEqual(frame.count(b"\n"), 1)

        obj = json.loads(frame)
        self.assertEqual(list(obj), ["ts", "cpu", "gpu", "mem"])
        self.assertEqual(list(obj["cpu"]), ["usage", "temp", "fan", "name"])
        self.assertEqual(list(obj["gpu"]), ["usage", "temp", "name", "mem_used", "mem_total"])
        self.assertEqual(list(obj["mem"]), ["usage", "used", "total", "avail"])
        self.assertIsInstance(obj["mem"]["used"], float)

    def test_round_trip(self):
        record = sample_record()
        self.assertEqual(decode_record(encode_record(record)), record)

    def test_zero_sentinels_round_trip(self):
        record = TelemetryRecord(ts=0)
        decoded = decode_record(encode_record(record))
        self.assertEqual(decoded, record)
        self.assertEqual(decoded.gpu.temp, 0)

    def test_names_are_truncated(self):
        record = sample_record(cpu=CpuInfo(name="x" * 50), gpu=GpuInfo(name="y" * 50))
        obj = json.loads(encode_record(record))
        self.assertEqual(len(obj["cpu"]["name"]), 35)
        self.assertEqual(len(obj["gpu"]["name"]), 40)

    def test_embedded_newline_in_name_stays_single_line(self):
        frame = encode_record(sample_record(cpu=CpuInfo(name="bad\nname")))
        self.assertEqual(frame.count(b"\n"), 1)

    def test_handshake_frame(self):
        frame = encode_handshake("SystemPerformanceNotifier", "1.0")
        self.assertEqual(frame, b'{"type":"handshake","service":"SystemPerformanceNotifier","version":"1.0"}\n')

    def test_decode_rejects_garbage(self):
        with self.assertRaises(MalformedInboundError):
            decode_record("not json")
        with self.assertRaises(MalformedInboundError):
            decode_record('{"cpu":{}}')


class ParseInboundTests(unittest.TestCase):
    def test_debug_message(self):
        msg = parse_inbound('{"type":"debug","level":"warn","message":"low heap","timestamp":"12:00:01"}')
        self.assertEqual(msg.kind, MessageKind.DEBUG)
        self.assertEqual(msg.severity, "WARN")
        self.assertEqual(msg.text, "low heap")
        self.assertEqual(msg.timestamp, "12:00:01")

    def test_debug_defaults_to_info(self):
        msg = parse_inbound('{"type":"debug","message":"boot"}')
        self.assertEqual(msg.severity, "INFO")
        self.assertIsNone(msg.timestamp)

    def test_status_and_error(self):
        self.assertEqual(parse_inbound('{"type":"status","message":"ready"}').kind, MessageKind.STATUS)
        err = parse_inbound('{"type":"ERROR","message":"parse failed"}')
        self.assertEqual(err.kind, MessageKind.ERROR)
        self.assertEqual(err.text, "parse failed")

    def test_handshake_ack(self):
        self.assertEqual(parse_inbound('{"type":"handshake-ack"}').kind, MessageKind.HANDSHAKE_ACK)

    def test_unknown_type_is_unstructured_with_payload(self):
        msg = parse_inbound('{"type":"weird","x":1}')
        self.assertEqual(msg.kind, MessageKind.UNSTRUCTURED)
        self.assertEqual(msg.payload, {"type": "weird", "x": 1})

    def test_invalid_json_never_raises(self):
        msg = parse_inbound("{not json}")
        self.assertEqual(msg.kind, MessageKind.UNSTRUCTURED)
        self.assertIsNone(msg.payload)

    def test_plain_text(self):
        msg = parse_inbound("ets Jun  8 2016 00:22:57")
        self.assertEqual(msg.kind, MessageKind.UNSTRUCTURED)
        self.assertEqual(msg.text, "ets Jun  8 2016 00:22:57")

    def test_json_array_is_unstructured(self):
        self.assertEqual(parse_inbound("[1,2]").kind, MessageKind.UNSTRUCTURED)


class LineFramerTests(unittest.TestCase):
    def test_split_mid_object(self):
        framer = LineFramer()
        self.assertEqual(framer.feed(b'{"type":"sta'), [])
        self.assertEqual(framer.feed(b'tus","message":"ok"}\n{"type"'), ['{"type":"status","message":"ok"}'])
        self.assertEqual(framer.pending, b'{"type"')
        self.assertEqual(framer.feed(b':"error","message":"x"}\r\n'), ['{"type":"error","message":"x"}'])
        self.assertEqual(framer.pending, b"")

    def test_every_chunking_yields_each_line_once(self):
        stream = b'boot ok\r\n{"type":"debug","message":"a"}\n\n{"type":"status","message":"b"}\npartial'
        expected = ["boot ok", '{"type":"debug","message":"a"}', '{"type":"status","message":"b"}']
        for size in (1, 2, 3, 7, 16, len(stream)):
            framer = LineFramer()
            lines = []
            for offset in range(0, len(stream), size):
                lines.extend(framer.feed(stream[offset : offset + size]))
            self.assertEqual(lines, expected, f"chunk size {size}")
            self.assertEqual(framer.pending, b"partial")

    def test_multibyte_split_across_reads(self):
        framer = LineFramer()
        data = "temp 45°C\n".encode("utf-8")
        cut = data.index(b"\xc2") + 1
        self.assertEqual(framer.feed(data[:cut]), [])
        self.assertEqual(framer.feed(data[cut:]), ["temp 45°C"])

    def test_oversized_partial_is_dropped(self):
        framer = LineFramer(max_pending=8)
        self.assertEqual(framer.feed(b"0123456789abcdef"), [])
        self.assertEqual(framer.pending, b"")
        self.assertEqual(framer.feed(b"ok\n"), ["ok"])


if __name__ == "__main__":
    unittest.main()
