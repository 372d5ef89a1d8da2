import errno
import os
import sys
import tempfile
import types
import unittest
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "link"))

from perfnotify_link import transport
from perfnotify_link.errors import OpenFailedError, PortBusyError, PortUnavailableError, WriteFailedError
from perfnotify_link.models import SerialDevice, SerialEndpoint


class FakeSerialException(IOError):
    pass


class FakeSerialTimeoutException(FakeSerialException):
    pass


def make_serial_module(open_error: BaseException | None = None):
    opened: list = []

    class FakeSerial:
        def __init__(self) -> None:
            self.is_open = False
            self.dtr = True
            self.rts = True
            self.line_history: list[tuple[bool, bool]] = []
            self.written = b""

        def open(self) -> None:
            self.line_history.append((self.dtr, self.rts))
            if open_error is not None:
                raise open_error
            self.is_open = True
            opened.append(self)

        def close(self) -> None:
            self.is_open = False

        def write(self, payload: bytes) -> int:
            self.written += payload
            return len(payload)

    module = types.SimpleNamespace(
        Serial=FakeSerial,
        SerialException=FakeSerialException,
        SerialTimeoutException=FakeSerialTimeoutException,
    )
    return module, opened


class SerialTransportTests(unittest.TestCase):
    def setUp(self) -> None:
        devices = [SerialDevice("COM5", "USB-SERIAL CH340 (COM5)")]
        patcher = patch.object(transport, "list_serial_devices", lambda: devices)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_open_holds_control_lines_low(self):
        module, opened = make_serial_module()
        with patch.object(transport, "serial", module):
            link = transport.SerialTransport()
            link.open(SerialEndpoint("COM5"))
            self.assertTrue(link.is_open)
            self.assertEqual(opened[0].line_history, [(False, False)])
            self.assertEqual(link.write(b"{}\n"), 3)
            link.close()
            self.assertFalse(link.is_open)
            self.assertFalse(opened[0].dtr)
            self.assertFalse(opened[0].rts)

    def test_unknown_port_is_unavailable(self):
        module, _ = make_serial_module()
        with patch.object(transport, "serial", module):
            with self.assertRaises(PortUnavailableError):
                transport.SerialTransport().open(SerialEndpoint("COM9"))

    def test_enumeration_failure_still_opens(self):
        def broken_enumeration():
            raise OSError("sysfs enumeration failed")

        module, opened = make_serial_module()
        with patch.object(transport, "serial", module), patch.object(transport, "list_serial_devices", broken_enumeration):
            link = transport.SerialTransport()
            link.open(SerialEndpoint("COM5"))
        self.assertTrue(link.is_open)
        self.assertEqual(len(opened), 1)

    @unittest.skipUnless(os.name == "posix", "device paths are POSIX only")
    def test_existing_unlisted_path_is_opened(self):
        module, opened = make_serial_module()
        with tempfile.NamedTemporaryFile(prefix="usb-1a86_USB_Serial-if00-port0") as node:
            with patch.object(transport, "serial", module):
                link = transport.SerialTransport()
                link.open(SerialEndpoint(node.name))
        self.assertTrue(link.is_open)
        self.assertEqual(opened[0].port, node.name)

    def test_access_denied_is_busy(self):
        module, _ = make_serial_module(FakeSerialException("could not open port 'COM5': PermissionError(13, 'Access is denied.')"))
        with patch.object(transport, "serial", module):
            with self.assertRaises(PortBusyError) as ctx:
                transport.SerialTransport().open(SerialEndpoint("COM5"))
        self.assertEqual(ctx.exception.port, "COM5")
        self.assertIn("in use by another application", str(ctx.exception))

    def test_other_open_error(self):
        module, _ = make_serial_module(FakeSerialException("device reports readiness but returned no data"))
        with patch.object(transport, "serial", module):
            with self.assertRaises(OpenFailedError):
                transport.SerialTransport().open(SerialEndpoint("COM5"))

    def test_write_when_closed(self):
        with self.assertRaises(WriteFailedError):
            transport.SerialTransport().write(b"x")

    def test_busy_classification(self):
        self.assertTrue(transport._is_busy(OSError(errno.EBUSY, "Device or resource busy")))
        self.assertTrue(transport._is_busy(OSError("[Errno 11] Could not exclusively lock port /dev/ttyUSB0")))
        self.assertFalse(transport._is_busy(OSError(errno.ENOENT, "No such file or directory")))


if __name__ == "__main__":
    unittest.main()
