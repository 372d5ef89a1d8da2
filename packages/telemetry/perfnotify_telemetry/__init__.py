"""Host telemetry records and the default collector."""

from .models import CpuInfo, GpuInfo, MemoryInfo, TelemetryRecord, TelemetrySource
try:  # pragma: no cover - optional at import time for minimal test environments
    from .provider import TelemetryProvider
except Exception:  # pragma: no cover
    TelemetryProvider = None  # type: ignore[assignment]

__all__ = [
    "CpuInfo",
    "GpuInfo",
    "MemoryInfo",
    "TelemetryRecord",
    "TelemetrySource",
]

if TelemetryProvider is not None:
    __all__.append("TelemetryProvider")
