"""Serial transport over pyserial with reset-safe settings for ESP32-class boards."""

from __future__ import annotations

import errno
import logging
import os
from pathlib import Path
from typing import Any

from .errors import (
    OpenFailedError,
    OpenTimeoutError,
    PortBusyError,
    PortUnavailableError,
    ReadFailedError,
    WriteFailedError,
)
from .models import SerialDevice, SerialEndpoint

try:
    import serial  # type: ignore
    from serial.tools import list_ports  # type: ignore
except Exception:  # pragma: no cover
    serial = None
    list_ports = None


_log = logging.getLogger("perfnotify.link")

_BUSY_ERRNOS = {errno.EBUSY, errno.EACCES, errno.EPERM}
_BUSY_MARKERS = ("access is denied", "permissionerror", "resource busy", "exclusively lock", "in use")


def list_serial_devices() -> list[SerialDevice]:
    if list_ports is None:
        return []
    return [
        SerialDevice(
            device=item.device,
            description=item.description or "",
            hwid=item.hwid or "",
            vid=item.vid,
            pid=item.pid,
        )
        for item in list_ports.comports()
    ]


def _is_busy(exc: BaseException) -> bool:
    if getattr(exc, "errno", None) in _BUSY_ERRNOS:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _BUSY_MARKERS)


def _port_present(port: str) -> bool:
    try:
        names = {d.device for d in list_serial_devices()}
    except Exception as exc:
        _log.debug("serial port enumeration failed, opening %s anyway: %s", port, exc)
        return True
    if not names or port in names:
        return True
    # by-id and by-path symlinks are never enumerated under their own name.
    return os.name == "posix" and Path(port).exists()


class SerialTransport:
    """Thin wrapper over pyserial.

    DTR and RTS are de-asserted before the OS-level open: toggling either line
    resets most ESP32 dev boards through their auto-program circuit.
    """

    def __init__(self) -> None:
        self._serial: Any | None = None
        self.endpoint: SerialEndpoint | None = None

    @property
    def is_open(self) -> bool:
        return bool(self._serial is not None and self._serial.is_open)

    def open(self, endpoint: SerialEndpoint) -> None:
        if serial is None:
            raise RuntimeError("pyserial is required")
        if self.is_open:
            return

        if not _port_present(endpoint.port):
            raise PortUnavailableError(f"Port {endpoint.port} not available", port=endpoint.port)

        handle = serial.Serial()
        handle.port = endpoint.port
        handle.baudrate = endpoint.baud_rate
        handle.bytesize = endpoint.bytesize
        handle.parity = endpoint.parity
        handle.stopbits = endpoint.stopbits
        handle.timeout = endpoint.read_timeout_s
        handle.write_timeout = endpoint.write_timeout_s
        handle.xonxoff = False
        handle.rtscts = False
        handle.dsrdtr = False
        handle.dtr = False
        handle.rts = False
        if os.name == "posix":
            handle.exclusive = True

        try:
            handle.open()
        except serial.SerialTimeoutException as exc:
            raise OpenTimeoutError(f"Timed out opening {endpoint.port}: {exc}", port=endpoint.port) from exc
        except (serial.SerialException, OSError) as exc:
            if _is_busy(exc):
                raise PortBusyError(endpoint.port, str(exc)) from exc
            if getattr(exc, "errno", None) == errno.ENOENT:
                raise PortUnavailableError(f"Port {endpoint.port} not available", port=endpoint.port) from exc
            raise OpenFailedError(f"Failed to open {endpoint.port}: {exc}", port=endpoint.port) from exc

        self._serial = handle
        self.endpoint = endpoint

    def set_control_lines(self, dtr: bool = False, rts: bool = False) -> None:
        if self._serial is not None:
            self._serial.dtr = dtr
            self._serial.rts = rts

    def close(self) -> None:
        """Close without pulsing DTR/RTS. Never raises."""
        handle, self._serial = self._serial, None
        if handle is None:
            return
        try:
            if handle.is_open:
                handle.dtr = False
                handle.rts = False
            handle.close()
        except Exception as exc:
            _log.debug("error closing serial port: %s", exc)

    @property
    def in_waiting(self) -> int:
        if not self.is_open:
            raise ReadFailedError("Serial port is not open")
        try:
            return int(self._serial.in_waiting)
        except (serial.SerialException, OSError) as exc:
            raise ReadFailedError(str(exc)) from exc

    def read(self, max_len: int) -> bytes:
        if not self.is_open:
            raise ReadFailedError("Serial port is not open")
        try:
            return bytes(self._serial.read(max_len))
        except (serial.SerialException, OSError) as exc:
            raise ReadFailedError(str(exc)) from exc

    def write(self, payload: bytes) -> int:
        if not self.is_open:
            raise WriteFailedError("Serial port is not open")
        try:
            return int(self._serial.write(payload))
        except (serial.SerialException, OSError) as exc:
            raise WriteFailedError(str(exc)) from exc

    def flush(self) -> None:
        if not self.is_open:
            return
        try:
            self._serial.flush()
        except (serial.SerialException, OSError) as exc:
            raise WriteFailedError(str(exc)) from exc
