"""Serial session with a background reader, periodic health checks, and reconnects.

One :class:`TransportSession` owns one logical link to the display board.
Three actors share the handle: the reader thread, the health-check thread and
whoever calls :meth:`TransportSession.send`. Opening, closing and reader
restarts go through ``_transition``; status fields sit behind ``_lock``;
frame writes hold ``_write_lock`` so the handshake and telemetry never
interleave.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable

from perfnotify_telemetry.models import TelemetryRecord

from .codec import LineFramer, encode_handshake, encode_record, log_inbound, parse_inbound
from .discovery import DeviceDiscovery
from .errors import LinkError, OpenFailedError, PortBusyError
from .models import ConnectionState, InboundMessage, LinkSettings, LinkStatus, MessageKind, SerialEndpoint
from .transport import SerialTransport


_log = logging.getLogger("perfnotify.link")

SERVICE_NAME = "SystemPerformanceNotifier"
PROTOCOL_VERSION = "1.0"

OPEN_ATTEMPTS = 3
OPEN_BACKOFF_S = 0.1
POST_OPEN_SETTLE_S = 0.05
JOIN_TIMEOUT_S = 2.0
READ_IDLE_S = 0.05
READ_ERROR_PAUSE_S = 1.0
MAX_READ_ERRORS = 5
MAX_EVENTS = 1000


class TransportSession:
    def __init__(
        self,
        discovery: DeviceDiscovery | None = None,
        transport_factory: Callable[[], Any] = SerialTransport,
        on_message: Callable[[InboundMessage], None] | None = None,
        service_name: str = SERVICE_NAME,
        version: str = PROTOCOL_VERSION,
    ) -> None:
        self.service_name = service_name
        self.version = version
        self._discovery = discovery
        self._transport_factory = transport_factory
        self._on_message = on_message or log_inbound

        self._settings = LinkSettings()
        self._target_port: str | None = None
        self._endpoint: SerialEndpoint | None = None
        self._handle: Any | None = None
        self._reader: threading.Thread | None = None
        self._reader_stop: threading.Event | None = None
        self._health: threading.Thread | None = None

        self._shutdown = threading.Event()
        self._transition = threading.RLock()
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._status = LinkStatus()
        self._events: list[dict[str, Any]] = []
        self._skip_warned = False
        self._disposed = False

    # -- introspection -----------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._status.state

    @property
    def port(self) -> str | None:
        with self._lock:
            return self._status.port

    @property
    def target_port(self) -> str | None:
        with self._lock:
            return self._target_port

    @property
    def endpoint(self) -> SerialEndpoint | None:
        with self._lock:
            return self._endpoint

    @property
    def is_connected(self) -> bool:
        with self._lock:
            handle = self._handle
            connected = self._status.state is ConnectionState.CONNECTED
        return connected and handle is not None and handle.is_open

    @property
    def reader_alive(self) -> bool:
        reader = self._reader
        return reader is not None and reader.is_alive()

    @property
    def status(self) -> LinkStatus:
        with self._lock:
            return replace(self._status)

    def recent_events(self, limit: int = 200) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._events[-limit:])

    def _log_event(self, event: str, **fields: Any) -> None:
        row = {
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "state": self._status.state.value,
        }
        row.update(fields)
        self._events.append(row)
        if len(self._events) > MAX_EVENTS:
            self._events = self._events[-MAX_EVENTS:]

    def _set_state(self, state: ConnectionState, **fields: Any) -> None:
        with self._lock:
            self._status.state = state
            self._status.connected = state is ConnectionState.CONNECTED
            for key, value in fields.items():
                setattr(self._status, key, value)
            self._log_event("state", to=state.value)

    # -- lifecycle ---------------------------------------------------------

    def configure(self, settings: LinkSettings) -> None:
        """Validate and store settings without connecting."""
        if settings.baud_rate <= 0:
            raise ValueError(f"baud_rate must be positive, got {settings.baud_rate}")
        if settings.reconnect_interval_ms <= 0:
            raise ValueError(f"reconnect_interval_ms must be positive, got {settings.reconnect_interval_ms}")
        if settings.stabilization_delay_ms < 0:
            raise ValueError("stabilization_delay_ms must not be negative")
        if self._disposed:
            raise RuntimeError("session has been disposed")

        self._settings = settings
        if self._discovery is None:
            self._discovery = DeviceDiscovery(vendor_id=settings.vendor_id, product_id=settings.product_id)

    def initialize(self, settings: LinkSettings) -> None:
        """Resolve a port, try one connect, and arm the health check.

        Returns without raising when the board is absent or busy; the health
        check keeps retrying every ``reconnect_interval_ms``.
        """
        self.configure(settings)

        if settings.is_auto:
            port = self._discovery.find_port() if settings.auto_detect else None
        else:
            port = settings.port.strip()

        with self._lock:
            self._target_port = port

        try:
            if port:
                self.connect(port)
            else:
                _log.warning("no serial port resolved; will keep looking", extra={"event": "no_port"})
        except PortBusyError as exc:
            _log.warning("%s Continuing in monitoring-only mode.", exc, extra={"event": "port_busy"})
        except LinkError as exc:
            _log.error("failed to connect to %s: %s", port, exc, extra={"event": "connect_failed"})
        except Exception:
            _log.exception("unexpected error connecting to %s", port, extra={"event": "connect_failed"})
        finally:
            self._start_health_loop()

    def dispose(self) -> None:
        """Stop both workers and close the port. Never raises."""
        if self._disposed:
            return
        self._disposed = True
        self._shutdown.set()

        with self._transition:
            self._stop_reader_locked()
            handle, self._handle = self._handle, None
            if handle is not None:
                try:
                    handle.set_control_lines(dtr=False, rts=False)
                except Exception as exc:
                    _log.debug("could not hold DTR/RTS low during close: %s", exc)
                try:
                    handle.close()
                except Exception as exc:
                    _log.debug("error closing serial port: %s", exc)
            self._set_state(ConnectionState.DISCONNECTED, port=None)

        health = self._health
        if health is not None and health is not threading.current_thread():
            health.join(JOIN_TIMEOUT_S)
        self._health = None
        _log.info("serial session closed", extra={"event": "session_closed"})

    close = dispose

    def __enter__(self) -> "TransportSession":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.dispose()

    # -- connect -----------------------------------------------------------

    def connect(self, port: str) -> None:
        """Open ``port``, start the reader, wait for the board, send the handshake.

        Raises the last :class:`LinkError` when every open attempt fails.
        """
        with self._transition:
            if self._shutdown.is_set():
                raise LinkError("session is shut down", port=port)
            with self._lock:
                handle = self._handle
                same = self._status.state is ConnectionState.CONNECTED and self._status.port == port
            if same and handle is not None and handle.is_open:
                _log.debug("already connected to %s, skipping reconnection", port)
                return
            if handle is not None:
                self._close_handle_locked(reason=f"switching to {port}")

            with self._lock:
                self._target_port = port
            self._set_state(ConnectionState.CONNECTING, port=port, handshake_acked=False)
            endpoint = SerialEndpoint(port=port, baud_rate=self._settings.baud_rate)
            try:
                handle = self._open_with_retry(endpoint)
            except BaseException as exc:
                self._set_state(ConnectionState.DISCONNECTED, port=None, last_error=str(exc) or type(exc).__name__)
                raise

            with self._lock:
                self._handle = handle
                self._endpoint = endpoint
            try:
                self._start_reader_locked(handle)
                if self._shutdown.wait(self._settings.stabilization_delay_ms / 1000):
                    raise LinkError("session shut down while connecting", port=port)
                self._send_handshake(handle)
            except BaseException as exc:
                self._close_handle_locked(reason=f"connect aborted: {exc}")
                raise

            self._skip_warned = False
            self._set_state(ConnectionState.CONNECTED, port=port, last_error=None)
            with self._lock:
                self._status.connects += 1
        _log.info(
            "connected to %s at %d baud",
            port,
            endpoint.baud_rate,
            extra={"event": "connected"},
        )

    def _open_with_retry(self, endpoint: SerialEndpoint) -> Any:
        for attempt in range(1, OPEN_ATTEMPTS + 1):
            handle = self._transport_factory()
            try:
                handle.open(endpoint)
            except PortBusyError:
                handle.close()
                raise
            except LinkError as exc:
                handle.close()
                if attempt == OPEN_ATTEMPTS:
                    raise
                _log.debug("open attempt %d on %s failed: %s; retrying", attempt, endpoint.port, exc)
                self._shutdown.wait(OPEN_BACKOFF_S * attempt)
                continue
            except BaseException:
                handle.close()
                raise

            self._shutdown.wait(POST_OPEN_SETTLE_S)
            try:
                handle.set_control_lines(dtr=False, rts=False)
            except Exception as exc:
                _log.debug("could not explicitly clear DTR/RTS: %s", exc)
            _log.debug("opened %s on attempt %d", endpoint.port, attempt)
            return handle
        raise OpenFailedError(f"Failed to open {endpoint.port}", port=endpoint.port)

    def _send_handshake(self, handle: Any) -> None:
        frame = encode_handshake(self.service_name, self.version)
        try:
            with self._write_lock:
                handle.write(frame)
                handle.flush()
        except LinkError as exc:
            _log.warning("failed to send handshake: %s", exc)
            return
        with self._lock:
            self._log_event("handshake_sent")
        _log.debug("sent handshake")

    def _close_handle_locked(self, reason: str) -> None:
        self._set_state(ConnectionState.CLOSING)
        self._stop_reader_locked()
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is not None:
            try:
                handle.close()
            except Exception as exc:
                _log.debug("error closing serial port: %s", exc)
        self._set_state(ConnectionState.DISCONNECTED, port=None)
        with self._lock:
            self._log_event("disconnected", reason=reason)

    def _drop(self, handle: Any, reason: str) -> None:
        with self._transition:
            if self._handle is not handle:
                return
            self._close_handle_locked(reason=reason)
            with self._lock:
                self._status.last_error = reason

    # -- send --------------------------------------------------------------

    def send(self, record: TelemetryRecord) -> bool:
        """Write one telemetry frame. Returns False when nothing was sent."""
        with self._lock:
            handle = self._handle if self._status.state is ConnectionState.CONNECTED else None
        if handle is None or not handle.is_open:
            if not self._skip_warned:
                self._skip_warned = True
                _log.warning("serial port not connected, skipping transmission")
            else:
                _log.debug("serial port not connected, skipping transmission")
            return False

        frame = encode_record(record)
        try:
            with self._write_lock:
                handle.write(frame)
                handle.flush()
        except LinkError as exc:
            _log.error("failed to send telemetry: %s", exc, extra={"event": "write_failed"})
            self._drop(handle, f"write failed: {exc}")
            return False

        with self._lock:
            self._status.frames_sent += 1
            self._status.bytes_sent += len(frame)
        _log.debug("sent %d bytes: %s", len(frame), frame[:-1].decode("utf-8"))
        return True

    # -- reader ------------------------------------------------------------

    def _start_reader_locked(self, handle: Any) -> None:
        stop = threading.Event()
        reader = threading.Thread(
            target=self._read_loop,
            args=(handle, stop),
            name="perfnotify-reader",
            daemon=True,
        )
        self._reader, self._reader_stop = reader, stop
        reader.start()

    def _stop_reader_locked(self) -> None:
        reader, stop = self._reader, self._reader_stop
        self._reader, self._reader_stop = None, None
        if stop is not None:
            stop.set()
        if reader is not None and reader is not threading.current_thread():
            reader.join(JOIN_TIMEOUT_S)
            if reader.is_alive():
                _log.warning("read loop did not exit within %.1fs", JOIN_TIMEOUT_S)

    def _read_loop(self, handle: Any, stop: threading.Event) -> None:
        framer = LineFramer()
        errors = 0
        while not stop.is_set() and not self._shutdown.is_set() and handle.is_open:
            try:
                pending = handle.in_waiting
                if pending > 0:
                    for line in framer.feed(handle.read(pending)):
                        self._dispatch(line)
                errors = 0
            except (LinkError, OSError) as exc:
                errors += 1
                _log.error("error reading from serial port: %s", exc)
                if errors >= MAX_READ_ERRORS:
                    _log.warning("read loop stopping after %d consecutive errors", errors)
                    break
                stop.wait(READ_ERROR_PAUSE_S)
                continue
            stop.wait(READ_IDLE_S)
        _log.debug("read loop exited")

    def _dispatch(self, line: str) -> None:
        message = parse_inbound(line)
        if message.kind is MessageKind.HANDSHAKE_ACK:
            with self._lock:
                self._status.handshake_acked = True
                self._log_event("handshake_ack")
        try:
            self._on_message(message)
        except Exception:
            _log.exception("message handler failed for %r", line)

    # -- health check ------------------------------------------------------

    def _start_health_loop(self) -> None:
        if self._health is not None and self._health.is_alive():
            return
        self._health = threading.Thread(target=self._health_loop, name="perfnotify-health", daemon=True)
        self._health.start()

    def _health_loop(self) -> None:
        interval = self._settings.reconnect_interval_ms / 1000
        while not self._shutdown.wait(interval):
            try:
                self.check_health()
            except Exception:
                _log.exception("health check failed")

    def check_health(self) -> None:
        """Run one health tick: revive the reader, or reconnect, or rediscover."""
        if self._shutdown.is_set():
            return
        with self._lock:
            handle = self._handle
            state = self._status.state
            target = self._target_port

        if state is ConnectionState.CONNECTED and handle is not None:
            if handle.is_open:
                if not self.reader_alive:
                    self._restart_reader(handle)
                return
            _log.warning("serial handle closed unexpectedly", extra={"event": "handle_lost"})
            self._drop(handle, "handle closed")
        elif state is not ConnectionState.DISCONNECTED:
            return

        if not target:
            if self._settings.auto_detect and self._discovery is not None:
                found = self._discovery.find_port()
                if found:
                    with self._lock:
                        self._target_port = found
                    _log.info("detected board on %s", found)
            return

        try:
            _log.info("attempting to reconnect to %s", target)
            self.connect(target)
        except PortBusyError as exc:
            _log.warning("%s", exc)
        except LinkError as exc:
            _log.debug("reconnection attempt failed: %s", exc)
            if self._settings.auto_detect and self._discovery is not None:
                found = self._discovery.find_port()
                if found and found != target:
                    with self._lock:
                        self._target_port = found
                    _log.info("detected board on different port: %s", found)

    def _restart_reader(self, handle: Any) -> None:
        with self._transition:
            if self._handle is not handle or self.reader_alive:
                return
            _log.debug("restarting serial read loop")
            self._start_reader_locked(handle)
            with self._lock:
                self._status.reader_restarts += 1
                self._log_event("reader_restarted")
