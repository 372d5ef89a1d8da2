"""Newline-delimited JSON framing for telemetry frames and device messages."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from perfnotify_telemetry.models import (
    CPU_NAME_MAX,
    GPU_NAME_MAX,
    CpuInfo,
    GpuInfo,
    MemoryInfo,
    TelemetryRecord,
    truncate,
)

from .errors import MalformedInboundError
from .models import InboundMessage, MessageKind


_log = logging.getLogger("perfnotify.link")
_device_log = logging.getLogger("perfnotify.device")

_LINE_SPLIT = re.compile(rb"[\r\n]")

_KINDS = {
    "handshake-ack": MessageKind.HANDSHAKE_ACK,
    "debug": MessageKind.DEBUG,
    "status": MessageKind.STATUS,
    "error": MessageKind.ERROR,
}

_DEVICE_LEVELS = {
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "DEBUG": logging.DEBUG,
    "TRACE": logging.DEBUG,
}


def _dumps(obj: dict[str, Any]) -> bytes:
    # Frames stay 7-bit: non-ASCII names go out as \u escapes.
    return (json.dumps(obj, separators=(",", ":"), ensure_ascii=True) + "\n").encode("utf-8")


def record_to_dict(record: TelemetryRecord) -> dict[str, Any]:
    return {
        "ts": int(record.ts),
        "cpu": {
            "usage": int(record.cpu.usage),
            "temp": int(record.cpu.temp),
            "fan": int(record.cpu.fan),
            "name": truncate(record.cpu.name, CPU_NAME_MAX),
        },
        "gpu": {
            "usage": int(record.gpu.usage),
            "temp": int(record.gpu.temp),
            "name": truncate(record.gpu.name, GPU_NAME_MAX),
            "mem_used": int(record.gpu.mem_used),
            "mem_total": int(record.gpu.mem_total),
        },
        "mem": {
            "usage": int(record.mem.usage),
            "used": float(record.mem.used),
            "total": float(record.mem.total),
            "avail": float(record.mem.avail),
        },
    }


def encode_record(record: TelemetryRecord) -> bytes:
    return _dumps(record_to_dict(record))


def decode_record(line: str | bytes) -> TelemetryRecord:
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    try:
        obj = json.loads(line)
        cpu = obj.get("cpu", {})
        gpu = obj.get("gpu", {})
        mem = obj.get("mem", {})
        return TelemetryRecord(
            ts=int(obj["ts"]),
            cpu=CpuInfo(
                usage=int(cpu.get("usage", 0)),
                temp=int(cpu.get("temp", 0)),
                fan=int(cpu.get("fan", 0)),
                name=str(cpu.get("name", "")),
            ),
            gpu=GpuInfo(
                usage=int(gpu.get("usage", 0)),
                temp=int(gpu.get("temp", 0)),
                name=str(gpu.get("name", "")),
                mem_used=int(gpu.get("mem_used", 0)),
                mem_total=int(gpu.get("mem_total", 0)),
            ),
            mem=MemoryInfo(
                usage=int(mem.get("usage", 0)),
                used=float(mem.get("used", 0.0)),
                total=float(mem.get("total", 0.0)),
                avail=float(mem.get("avail", 0.0)),
            ),
        )
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise MalformedInboundError(f"not a telemetry frame: {exc}") from exc


def encode_handshake(service: str, version: str) -> bytes:
    return _dumps({"type": "handshake", "service": service, "version": version})


def _opt_str(obj: dict[str, Any], key: str) -> str | None:
    value = obj.get(key)
    return None if value is None else str(value)


def parse_inbound(line: str) -> InboundMessage:
    """Classify one device line. Never raises."""
    text = line.strip()
    if not (text.startswith("{") and text.endswith("}")):
        return InboundMessage(kind=MessageKind.UNSTRUCTURED, raw=line, text=text)

    try:
        obj = json.loads(text)
    except ValueError as exc:
        _log.debug("malformed device JSON %r: %s", text, exc)
        return InboundMessage(kind=MessageKind.UNSTRUCTURED, raw=line, text=text)
    if not isinstance(obj, dict):
        return InboundMessage(kind=MessageKind.UNSTRUCTURED, raw=line, text=text)

    kind = _KINDS.get(str(obj.get("type", "")).lower())
    if kind is None:
        return InboundMessage(kind=MessageKind.UNSTRUCTURED, raw=line, text=text, payload=obj)

    if kind is MessageKind.DEBUG:
        return InboundMessage(
            kind=kind,
            raw=line,
            text=_opt_str(obj, "message") or "",
            severity=(_opt_str(obj, "level") or "INFO").upper(),
            timestamp=_opt_str(obj, "timestamp") or None,
            payload=obj,
        )
    return InboundMessage(
        kind=kind,
        raw=line,
        text=_opt_str(obj, "message") or "",
        severity="ERROR" if kind is MessageKind.ERROR else None,
        payload=obj,
    )


def log_inbound(message: InboundMessage) -> None:
    """Default message callback: mirror device output into the host log."""
    if message.kind is MessageKind.DEBUG:
        level = _DEVICE_LEVELS.get(message.severity or "INFO", logging.INFO)
        stamp = f" [{message.timestamp}]" if message.timestamp else ""
        _device_log.log(level, "[device %s]%s %s", message.severity, stamp, message.text)
    elif message.kind is MessageKind.STATUS:
        _device_log.info("[device STATUS] %s", message.text)
    elif message.kind is MessageKind.ERROR:
        _device_log.error("[device ERROR] %s", message.text)
    elif message.kind is MessageKind.HANDSHAKE_ACK:
        _device_log.info("[device] handshake acknowledged %s", message.text)
    elif message.payload is not None:
        _device_log.info("[device JSON] %s", message.text)
    else:
        _device_log.info("[device] %s", message.text)


class LineFramer:
    """Accumulates raw bytes and yields complete lines.

    The partial tail is kept as bytes so a UTF-8 sequence split across two
    reads decodes correctly once the line completes.
    """

    def __init__(self, max_pending: int = 64 * 1024) -> None:
        self.max_pending = max_pending
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        if not chunk:
            return []
        self._buffer.extend(chunk)
        parts = _LINE_SPLIT.split(bytes(self._buffer))
        self._buffer = bytearray(parts.pop())

        if len(self._buffer) > self.max_pending:
            _log.warning("dropping %d bytes of unterminated device output", len(self._buffer))
            self._buffer.clear()

        lines: list[str] = []
        for part in parts:
            text = part.decode("utf-8", errors="replace").strip()
            if text:
                lines.append(text)
        return lines

    def reset(self) -> None:
        self._buffer.clear()
