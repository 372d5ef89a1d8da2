"""CLI entrypoints for the notifier service, port listing, diagnostics, and one-shot sends."""

from __future__ import annotations

import argparse
import json
import signal
import threading
from dataclasses import asdict
from importlib import metadata
from pathlib import Path

from perfnotify_core import DiagnosticsExporter, MonitorWorker, build_doctor_payload, load_config
from perfnotify_core.logging_setup import configure_logging, get_logger, install_crash_hooks
from perfnotify_link import DeviceDiscovery, LinkError, TransportSession
from perfnotify_link.session import MAX_EVENTS


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _installed_version() -> str:
    try:
        return metadata.version("perfnotify")
    except Exception:
        return "0.1.0"


def _load(args: argparse.Namespace):
    return load_config(Path(args.config).expanduser() if args.config else None)


def _build_provider(cfg):
    from perfnotify_telemetry.provider import TelemetryProvider

    return TelemetryProvider(cpu_usage_scale=cfg.monitor.cpu_usage_scale)


def _export_bundle(cfg, events: list[dict], out_dir: str | None, payload: dict | None = None) -> Path:
    exporter = DiagnosticsExporter()
    output = Path(out_dir).expanduser().resolve() if out_dir else None
    return exporter.bundle(
        cfg=cfg,
        doctor_payload=payload if payload is not None else build_doctor_payload(cfg),
        recent_link_events=events,
        output_dir=output,
    )


def cmd_run(args: argparse.Namespace) -> int:
    cfg = _load(args)
    if args.port:
        cfg.serial.port = args.port
    logger = get_logger()
    install_crash_hooks()

    stop = threading.Event()

    def _request_stop(signum, _frame) -> None:
        logger.info("received signal %s, stopping", signum)
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    provider = _build_provider(cfg)
    session = TransportSession(version=args.protocol_version)
    session.initialize(cfg.serial.to_link_settings())
    if session.is_connected:
        logger.info("notifier started", extra={"event": "service_started"})
    else:
        logger.info("notifier started in monitoring-only mode", extra={"event": "service_degraded"})

    worker = MonitorWorker(provider, session, interval_ms=cfg.monitor.transmission_interval_ms)
    worker.start()
    try:
        while not stop.wait(0.5):
            pass
    finally:
        worker.stop()
        session.dispose()
        if args.export_on_exit:
            bundle = _export_bundle(cfg, session.recent_events(limit=MAX_EVENTS), args.out_dir)
            logger.info("diagnostics bundle written to %s", bundle, extra={"event": "diagnostics_exported"})
        logger.info("notifier stopped", extra={"event": "service_stopped"})
    return 0


def cmd_list_ports(args: argparse.Namespace) -> int:
    cfg = _load(args)
    discovery = DeviceDiscovery(vendor_id=cfg.serial.vendor_id, product_id=cfg.serial.product_id)
    _print_json([asdict(c) for c in discovery.candidates()])
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    cfg = _load(args)
    payload = build_doctor_payload(cfg)

    if args.export:
        # A standalone doctor run has no live session, so no link events.
        bundle = _export_bundle(cfg, [], args.out_dir, payload=payload)
        payload["diagnostics_bundle"] = str(bundle)

    _print_json(payload)
    return 0


def cmd_send_once(args: argparse.Namespace) -> int:
    cfg = _load(args)
    discovery = DeviceDiscovery(vendor_id=cfg.serial.vendor_id, product_id=cfg.serial.product_id)
    port = args.port or (discovery.find_port() if cfg.serial.port == "AUTO" else cfg.serial.port)
    if not port:
        _print_json({"success": False, "error": "no serial port found"})
        return 2

    provider = _build_provider(cfg)
    settings = cfg.serial.to_link_settings()
    session = TransportSession(discovery=discovery)
    session.configure(settings)
    try:
        session.connect(port)
        record = provider.collect()
        sent = session.send(record)
        status = session.status
    except LinkError as exc:
        _print_json({"success": False, "port": port, "error": str(exc), "kind": type(exc).__name__})
        return 1
    finally:
        session.dispose()

    _print_json(
        {
            "success": sent,
            "port": port,
            "record": asdict(record),
            "bytes_sent": status.bytes_sent,
        }
    )
    return 0 if sent else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="perfnotify", description="Host telemetry to serial display notifier")
    parser.add_argument("--config", default=None, help="Path to config.json (defaults to the per-user location)")
    parser.add_argument("--version", action="version", version=_installed_version())
    sub = parser.add_subparsers(dest="command", required=True)

    run_cmd = sub.add_parser("run", help="Stream telemetry until interrupted")
    run_cmd.add_argument("--port", default=None, help="Serial port override (or AUTO)")
    run_cmd.add_argument("--protocol-version", default="1.0", help="Version string sent in the handshake")
    run_cmd.add_argument("--export-on-exit", action="store_true", help="Write a diagnostics bundle with link events on shutdown")
    run_cmd.add_argument("--out-dir", default=None, help="Optional output directory for the exit bundle")
    run_cmd.set_defaults(func=cmd_run)

    list_cmd = sub.add_parser("list-ports", help="List serial ports and chipset matches")
    list_cmd.set_defaults(func=cmd_list_ports)

    doctor_cmd = sub.add_parser("doctor", help="Print diagnostics and detected ports")
    doctor_cmd.add_argument("--export", action="store_true", help="Export offline diagnostics bundle")
    doctor_cmd.add_argument("--out-dir", default=None, help="Optional output directory for diagnostics bundle")
    doctor_cmd.set_defaults(func=cmd_doctor)

    once_cmd = sub.add_parser("send-once", help="Connect, send a single telemetry frame, disconnect")
    once_cmd.add_argument("--port", default=None, help="Optional explicit serial port override")
    once_cmd.set_defaults(func=cmd_send_once)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    cfg = _load(args)
    configure_logging(
        level=cfg.logging.level,
        keep_files=cfg.logging.keep_log_files,
        console=(cfg.logging.console and args.command == "run"),
    )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
