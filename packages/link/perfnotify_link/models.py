"""Typed models for the serial link and its session state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


AUTO_PORT = "AUTO"


class ConnectionState(str, Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    CLOSING = "Closing"


class MessageKind(str, Enum):
    HANDSHAKE_ACK = "handshake-ack"
    DEBUG = "debug"
    STATUS = "status"
    ERROR = "error"
    UNSTRUCTURED = "unstructured"


@dataclass(frozen=True)
class SerialEndpoint:
    port: str
    baud_rate: int = 115200
    bytesize: int = 8
    parity: str = "N"
    stopbits: int = 1
    read_timeout_s: float = 1.0
    write_timeout_s: float = 1.0


@dataclass(frozen=True)
class LinkSettings:
    port: str = AUTO_PORT
    baud_rate: int = 115200
    auto_detect: bool = True
    vendor_id: str = "1A86"
    product_id: str = "7523"
    reconnect_interval_ms: int = 5000
    stabilization_delay_ms: int = 1000

    @property
    def is_auto(self) -> bool:
        return self.port.strip().upper() == AUTO_PORT


@dataclass(frozen=True)
class SerialDevice:
    device: str
    description: str = ""
    hwid: str = ""
    vid: int | None = None
    pid: int | None = None


@dataclass(frozen=True)
class CandidatePort:
    port: str
    description: str
    matched: bool


@dataclass(frozen=True)
class InboundMessage:
    kind: MessageKind
    raw: str
    text: str = ""
    severity: str | None = None
    timestamp: str | None = None
    payload: dict[str, Any] | None = None


@dataclass
class LinkStatus:
    state: ConnectionState = ConnectionState.DISCONNECTED
    port: str | None = None
    connected: bool = False
    last_error: str | None = None
    frames_sent: int = 0
    bytes_sent: int = 0
    connects: int = 0
    reader_restarts: int = 0
    handshake_acked: bool = False
