"""Find the display board among enumerated USB-serial ports."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Callable, Iterable

from .models import CandidatePort, SerialDevice
from .transport import list_serial_devices


_log = logging.getLogger("perfnotify.link")

# CH340, CP210x, FTDI, Prolific
KNOWN_VENDOR_IDS = ("1A86", "10C4", "0403", "067B")
NAME_KEYWORDS = ("ch340", "cp210", "esp32")


def default_fallback_ports(platform: str | None = None) -> list[str]:
    platform = platform or sys.platform
    if platform.startswith("win"):
        return [f"COM{n}" for n in range(3, 9)]
    if platform == "darwin":
        return ["/dev/cu.usbserial", "/dev/cu.SLAB_USBtoUART", "/dev/cu.wchusbserial"]
    return ["/dev/ttyUSB0", "/dev/ttyUSB1", "/dev/ttyACM0", "/dev/ttyACM1"]


class DeviceDiscovery:
    """Match enumerated ports against known bridge chip signatures.

    ``enumerator`` returns the current :class:`SerialDevice` list (pyserial's
    ``list_ports`` by default). ``port_exists`` answers whether a conventional
    port name is present; it checks presence only, never opens the port.
    """

    def __init__(
        self,
        vendor_id: str = "1A86",
        product_id: str = "7523",
        enumerator: Callable[[], Iterable[SerialDevice]] | None = None,
        port_exists: Callable[[str], bool] | None = None,
        fallback_ports: list[str] | None = None,
    ) -> None:
        self.vendor_id = (vendor_id or "").strip().upper()
        self.product_id = (product_id or "").strip().upper()
        self._enumerator = enumerator or list_serial_devices
        self._port_exists = port_exists
        self.fallback_ports = list(fallback_ports) if fallback_ports is not None else default_fallback_ports()

    def _vendor_ids(self) -> tuple[str, ...]:
        if self.vendor_id and self.vendor_id not in KNOWN_VENDOR_IDS:
            return (self.vendor_id,) + KNOWN_VENDOR_IDS
        return KNOWN_VENDOR_IDS

    def matches(self, device: SerialDevice) -> bool:
        hwid = (device.hwid or "").upper()
        vendor_ids = self._vendor_ids()
        if any(vid in hwid for vid in vendor_ids):
            return True
        if device.vid is not None and f"{device.vid:04X}" in vendor_ids:
            return True
        description = (device.description or "").lower()
        return any(keyword in description for keyword in NAME_KEYWORDS)

    def _enumerate(self) -> list[SerialDevice]:
        try:
            return list(self._enumerator())
        except Exception as exc:
            _log.warning("serial port enumeration failed: %s", exc)
            return []

    def is_exact(self, device: SerialDevice) -> bool:
        if not (self.vendor_id and self.product_id):
            return False
        if device.vid is not None and device.pid is not None:
            return f"{device.vid:04X}" == self.vendor_id and f"{device.pid:04X}" == self.product_id
        return f"{self.vendor_id}:{self.product_id}" in (device.hwid or "").upper()

    def candidates(self) -> list[CandidatePort]:
        devices = self._enumerate()
        # Exact VID:PID hits sort first, then chipset matches, then the rest.
        ranked = sorted(devices, key=lambda d: (not self.is_exact(d), not self.matches(d)))
        return [
            CandidatePort(port=d.device, description=d.description or "", matched=self.matches(d))
            for d in ranked
        ]

    def _exists(self, port: str, enumerated: set[str]) -> bool:
        if self._port_exists is not None:
            try:
                return bool(self._port_exists(port))
            except Exception as exc:
                _log.debug("existence probe for %s failed: %s", port, exc)
                return False
        if port in enumerated:
            return True
        return os.name == "posix" and Path(port).exists()

    def discover(self, candidates: list[CandidatePort] | None = None) -> CandidatePort | None:
        """Pick the board port; ``candidates`` reuses an earlier enumeration."""
        _log.info("auto-detecting display board on USB serial ports")
        found = self.candidates() if candidates is None else candidates
        for candidate in found:
            if candidate.matched:
                _log.info("found potential board on %s: %s", candidate.port, candidate.description)
                return candidate

        enumerated = {c.port for c in found}
        for port in self.fallback_ports:
            if self._exists(port, enumerated):
                _log.info("no known bridge chip found, trying conventional port %s", port)
                return CandidatePort(port=port, description="", matched=False)

        _log.info("no candidate serial port found")
        return None

    def find_port(self) -> str | None:
        candidate = self.discover()
        return candidate.port if candidate else None
