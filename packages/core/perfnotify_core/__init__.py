"""Core service pieces: settings, logging, the monitor worker, and diagnostics."""

from .config import AppConfig, LoggingConfig, MonitorConfig, SerialConfig, load_config, save_config
from .diagnostics import DiagnosticsExporter, build_doctor_payload
from .worker import MonitorWorker, WorkerStats

__all__ = [
    "AppConfig",
    "DiagnosticsExporter",
    "LoggingConfig",
    "MonitorConfig",
    "MonitorWorker",
    "SerialConfig",
    "WorkerStats",
    "build_doctor_payload",
    "load_config",
    "save_config",
]
