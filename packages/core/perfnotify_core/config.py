"""Persistent service settings schema and load/save helpers."""

from __future__ import annotations

import json
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from perfnotify_link.models import AUTO_PORT, LinkSettings


CONFIG_VERSION = 2

# v1 files are the host-config shape: section -> PascalCase key.
_LEGACY_SERIAL_KEYS = {
    "SerialPort": "port",
    "BaudRate": "baud_rate",
    "AutoDetectESP32": "auto_detect",
    "ESP32VendorId": "vendor_id",
    "ESP32ProductId": "product_id",
    "ReconnectInterval": "reconnect_interval_ms",
    "ConnectionStabilizationDelay": "stabilization_delay_ms",
}
_LEGACY_MONITOR_KEYS = {
    "TransmissionInterval": "transmission_interval_ms",
}


@dataclass
class SerialConfig:
    port: str = AUTO_PORT
    baud_rate: int = 115200
    auto_detect: bool = True
    vendor_id: str = "1A86"
    product_id: str = "7523"
    reconnect_interval_ms: int = 5000
    stabilization_delay_ms: int = 1000

    def to_link_settings(self) -> LinkSettings:
        return LinkSettings(
            port=self.port,
            baud_rate=self.baud_rate,
            auto_detect=self.auto_detect,
            vendor_id=self.vendor_id,
            product_id=self.product_id,
            reconnect_interval_ms=self.reconnect_interval_ms,
            stabilization_delay_ms=self.stabilization_delay_ms,
        )


@dataclass
class MonitorConfig:
    transmission_interval_ms: int = 1000
    cpu_usage_scale: float = 1.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    keep_log_files: int = 7
    console: bool = True


@dataclass
class AppConfig:
    config_version: int = CONFIG_VERSION
    serial: SerialConfig = field(default_factory=SerialConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def config_root() -> Path:
    system = platform.system()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "SystemPerformanceNotifier"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "SystemPerformanceNotifier"
    return Path.home() / ".config" / "perfnotify"


def config_path() -> Path:
    return config_root() / "config.json"


def _merge(dataclass_type, raw: dict[str, Any]):
    defaults = dataclass_type()  # type: ignore[misc]
    for k, v in (raw or {}).items():
        if hasattr(defaults, k):
            setattr(defaults, k, v)
    return defaults


def _rename(section: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    return {mapping[k]: v for k, v in (section or {}).items() if k in mapping}


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _migrate(raw: dict[str, Any]) -> dict[str, Any]:
    version = _as_int(raw.get("config_version", 1), 1)
    data = dict(raw)

    if version < 2:
        # v2 replaces the PascalCase host sections with snake_case dataclass sections.
        serial = _rename(data.pop("SystemPerformanceNotifier", {}), _LEGACY_SERIAL_KEYS)
        monitor = _rename(data.pop("SystemMonitor", {}), _LEGACY_MONITOR_KEYS)
        serial.update(data.get("serial", {}) or {})
        monitor.update(data.get("monitor", {}) or {})
        data["serial"] = serial
        data["monitor"] = monitor
        data.setdefault("logging", {})
        data["config_version"] = 2

    return data


def _normalize_serial(cfg: AppConfig) -> None:
    port = str(cfg.serial.port or "").strip()
    cfg.serial.port = AUTO_PORT if not port or port.upper() == AUTO_PORT else port
    baud = _as_int(cfg.serial.baud_rate, 0)
    cfg.serial.baud_rate = baud if baud > 0 else 115200
    cfg.serial.auto_detect = bool(cfg.serial.auto_detect)
    cfg.serial.vendor_id = str(cfg.serial.vendor_id or "").strip().upper()
    cfg.serial.product_id = str(cfg.serial.product_id or "").strip().upper()
    cfg.serial.reconnect_interval_ms = max(250, min(600_000, _as_int(cfg.serial.reconnect_interval_ms, 5000)))
    cfg.serial.stabilization_delay_ms = max(0, min(30_000, _as_int(cfg.serial.stabilization_delay_ms, 1000)))


def _normalize_monitor(cfg: AppConfig) -> None:
    cfg.monitor.transmission_interval_ms = max(100, min(60_000, _as_int(cfg.monitor.transmission_interval_ms, 1000)))
    cfg.monitor.cpu_usage_scale = max(0.1, min(10.0, _as_float(cfg.monitor.cpu_usage_scale, 1.0)))


def _normalize_logging(cfg: AppConfig) -> None:
    level = str(cfg.logging.level or "INFO").upper()
    cfg.logging.level = level if level in ("DEBUG", "INFO", "WARNING", "ERROR") else "INFO"
    cfg.logging.keep_log_files = max(2, _as_int(cfg.logging.keep_log_files, 7))


def load_config(path: Path | None = None) -> AppConfig:
    path = path or config_path()
    if not path.exists():
        return AppConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()

    data = _migrate(raw)
    cfg = AppConfig(
        config_version=_as_int(data.get("config_version"), CONFIG_VERSION),
        serial=_merge(SerialConfig, data.get("serial", {})),
        monitor=_merge(MonitorConfig, data.get("monitor", {})),
        logging=_merge(LoggingConfig, data.get("logging", {})),
    )

    _normalize_serial(cfg)
    _normalize_monitor(cfg)
    _normalize_logging(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    cfg.config_version = CONFIG_VERSION
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True), encoding="utf-8")
    return path
