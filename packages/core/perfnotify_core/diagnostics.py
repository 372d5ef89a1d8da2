"""Diagnostics export helpers for local support bundles."""

from __future__ import annotations

import json
import platform
import re
import tempfile
import zipfile
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from perfnotify_link import AUTO_PORT, DeviceDiscovery

from .config import AppConfig, config_path
from .logging_setup import log_dir


_SECRET_RE = re.compile(r"(token|secret|password|apikey|api_key|auth)", re.IGNORECASE)


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    return str(value)


def redact(value: Any) -> Any:
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if _SECRET_RE.search(k):
                out[k] = "***REDACTED***"
            else:
                out[k] = redact(v)
        return out
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def build_doctor_payload(cfg: AppConfig, discovery: DeviceDiscovery | None = None) -> dict[str, Any]:
    discovery = discovery or DeviceDiscovery(vendor_id=cfg.serial.vendor_id, product_id=cfg.serial.product_id)
    candidates = discovery.candidates()
    resolved_port: str | None = cfg.serial.port
    if cfg.serial.port == AUTO_PORT:
        resolved = discovery.discover(candidates) if cfg.serial.auto_detect else None
        resolved_port = resolved.port if resolved else None
    return {
        "ts_utc": datetime.now(timezone.utc).isoformat(),
        "platform": platform.platform(),
        "python": platform.python_version(),
        "config": redact(asdict(cfg)),
        "ports": [asdict(c) for c in candidates],
        "resolved_port": resolved_port,
    }


class DiagnosticsExporter:
    def __init__(self, app_name: str = "SystemPerformanceNotifier") -> None:
        self.app_name = app_name

    def bundle(
        self,
        cfg: AppConfig,
        doctor_payload: dict[str, Any],
        recent_link_events: list[dict[str, Any]] | None = None,
        output_dir: Path | None = None,
    ) -> Path:
        output_base = output_dir or Path(tempfile.gettempdir())
        output_base.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        zip_path = output_base / f"perfnotify-diagnostics-{stamp}.zip"
        logs = log_dir()

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            manifest = {
                "app": self.app_name,
                "created_utc": datetime.now(timezone.utc).isoformat(),
                "host": platform.platform(),
                "python": platform.python_version(),
                "config_path": str(config_path()),
                "log_dir": str(logs),
            }
            zf.writestr("manifest.json", json.dumps(manifest, indent=2, sort_keys=True))
            zf.writestr("doctor.json", json.dumps(redact(doctor_payload), indent=2, sort_keys=True, default=_jsonable))
            zf.writestr("config.redacted.json", json.dumps(redact(asdict(cfg)), indent=2, sort_keys=True))
            zf.writestr(
                "link_events.json",
                json.dumps(redact(recent_link_events or []), indent=2, sort_keys=True, default=_jsonable),
            )

            # fault.log is matched by the glob as well.
            for item in sorted(logs.glob("*.log*")):
                zf.write(item, arcname=f"logs/{item.name}")

        return zip_path
