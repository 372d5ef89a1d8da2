"""Error taxonomy for the serial link."""

from __future__ import annotations


class LinkError(Exception):
    """Base class for every serial link failure."""

    def __init__(self, message: str, port: str | None = None) -> None:
        super().__init__(message)
        self.port = port


class PortUnavailableError(LinkError):
    """The port is not currently enumerated by the OS."""


class PortBusyError(LinkError):
    """Another process holds the port. Needs user action, not a retry."""

    def __init__(self, port: str, detail: str = "") -> None:
        message = (
            f"Serial port {port} is in use by another application. "
            "Close the other program (serial monitor, IDE, flasher) and the link will reconnect."
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, port=port)


class OpenFailedError(LinkError):
    pass


class OpenTimeoutError(OpenFailedError):
    pass


class WriteFailedError(LinkError):
    pass


class ReadFailedError(LinkError):
    pass


class MalformedInboundError(LinkError):
    pass
