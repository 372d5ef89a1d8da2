"""Serial link to the telemetry display: framing, discovery, and session management."""

from .codec import LineFramer, decode_record, encode_handshake, encode_record, log_inbound, parse_inbound
from .discovery import DeviceDiscovery
from .errors import (
    LinkError,
    MalformedInboundError,
    OpenFailedError,
    OpenTimeoutError,
    PortBusyError,
    PortUnavailableError,
    ReadFailedError,
    WriteFailedError,
)
from .models import (
    AUTO_PORT,
    CandidatePort,
    ConnectionState,
    InboundMessage,
    LinkSettings,
    LinkStatus,
    MessageKind,
    SerialDevice,
    SerialEndpoint,
)
from .session import TransportSession
from .transport import SerialTransport, list_serial_devices

__all__ = [
    "AUTO_PORT",
    "CandidatePort",
    "ConnectionState",
    "DeviceDiscovery",
    "InboundMessage",
    "LineFramer",
    "LinkError",
    "LinkSettings",
    "LinkStatus",
    "MalformedInboundError",
    "MessageKind",
    "OpenFailedError",
    "OpenTimeoutError",
    "PortBusyError",
    "PortUnavailableError",
    "ReadFailedError",
    "SerialDevice",
    "SerialEndpoint",
    "SerialTransport",
    "TransportSession",
    "WriteFailedError",
    "decode_record",
    "encode_handshake",
    "encode_record",
    "list_serial_devices",
    "log_inbound",
    "parse_inbound",
]
