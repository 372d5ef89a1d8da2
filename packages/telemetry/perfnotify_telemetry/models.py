"""Typed telemetry records sent to the display.

Numeric fields are best effort: zero means "unknown/unavailable", not an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


CPU_NAME_MAX = 35
GPU_NAME_MAX = 40


@dataclass(frozen=True)
class CpuInfo:
    usage: int = 0
    temp: int = 0
    fan: int = 0
    name: str = ""


@dataclass(frozen=True)
class GpuInfo:
    usage: int = 0
    temp: int = 0
    name: str = ""
    mem_used: int = 0
    mem_total: int = 0


@dataclass(frozen=True)
class MemoryInfo:
    usage: int = 0
    used: float = 0.0
    total: float = 0.0
    avail: float = 0.0


@dataclass(frozen=True)
class TelemetryRecord:
    ts: int
    cpu: CpuInfo = field(default_factory=CpuInfo)
    gpu: GpuInfo = field(default_factory=GpuInfo)
    mem: MemoryInfo = field(default_factory=MemoryInfo)


class TelemetrySource(Protocol):
    def collect(self) -> TelemetryRecord: ...


def truncate(value: str | None, limit: int) -> str:
    text = (value or "").strip()
    return text if len(text) <= limit else text[:limit]
