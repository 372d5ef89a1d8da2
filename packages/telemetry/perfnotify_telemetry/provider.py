"""Cross-platform telemetry provider with graceful GPU fallbacks."""

from __future__ import annotations

import logging
import platform
import time
from pathlib import Path

import psutil

from .models import CPU_NAME_MAX, GPU_NAME_MAX, CpuInfo, GpuInfo, MemoryInfo, TelemetryRecord, truncate


_log = logging.getLogger("perfnotify.telemetry")

_GB = 1024**3
_MB = 1024**2


class _GpuAdapter:
    def poll(self) -> GpuInfo:
        return GpuInfo()


class _NvmlGpuAdapter(_GpuAdapter):
    def __init__(self) -> None:
        import pynvml  # type: ignore

        self._nvml = pynvml
        pynvml.nvmlInit()

    def poll(self) -> GpuInfo:
        nvml = self._nvml
        if nvml.nvmlDeviceGetCount() < 1:
            return GpuInfo()

        h = nvml.nvmlDeviceGetHandleByIndex(0)
        name = nvml.nvmlDeviceGetName(h)
        if isinstance(name, bytes):
            name = name.decode("utf-8", errors="replace")
        util = nvml.nvmlDeviceGetUtilizationRates(h)
        temp = nvml.nvmlDeviceGetTemperature(h, nvml.NVML_TEMPERATURE_GPU)
        mem = nvml.nvmlDeviceGetMemoryInfo(h)
        return GpuInfo(
            usage=int(round(util.gpu)),
            temp=int(round(temp)),
            name=truncate(name, GPU_NAME_MAX),
            mem_used=int(round(mem.used / _MB)),
            mem_total=int(round(mem.total / _MB)),
        )


def _build_gpu_adapter() -> _GpuAdapter:
    try:
        return _NvmlGpuAdapter()
    except Exception as exc:
        _log.info("NVML unavailable, GPU fields will report 0: %s", exc)
        return _GpuAdapter()


def _cpu_temp_c() -> int:
    try:
        temps = psutil.sensors_temperatures()
    except Exception:
        return 0
    if not temps:
        return 0

    for name in ("coretemp", "k10temp", "zenpower", "cpu_thermal", "acpitz"):
        entries = temps.get(name)
        if entries and entries[0].current is not None:
            return int(round(entries[0].current))

    for _name, entries in temps.items():
        if entries and entries[0].current is not None:
            return int(round(entries[0].current))
    return 0


def _cpu_fan_rpm() -> int:
    # sensors_fans is only provided on Linux and some BSDs.
    sensors_fans = getattr(psutil, "sensors_fans", None)
    if sensors_fans is None:
        return 0
    try:
        fans = sensors_fans()
    except Exception:
        return 0
    for entries in (fans or {}).values():
        for entry in entries:
            if entry.current:
                return int(entry.current)
    return 0


def _cpu_name() -> str:
    cpuinfo = Path("/proc/cpuinfo")
    if cpuinfo.exists():
        try:
            for line in cpuinfo.read_text(encoding="utf-8", errors="replace").splitlines():
                if line.lower().startswith("model name"):
                    return line.split(":", 1)[1].strip()
        except OSError:
            pass
    return platform.processor() or platform.machine()


class TelemetryProvider:
    """Single polling provider producing wire-ready records.

    ``cpu_usage_scale`` multiplies the raw CPU percentage before clamping to
    0..100. Some hosts report far lower utilization through performance
    counters than the task manager shows; the factor is a local tweak, not
    part of the record contract.
    """

    def __init__(self, cpu_usage_scale: float = 1.0) -> None:
        self.cpu_usage_scale = cpu_usage_scale
        self._gpu = _build_gpu_adapter()
        self._cpu_name = truncate(_cpu_name(), CPU_NAME_MAX)
        # Prime the counter so the first collect() returns a real delta.
        psutil.cpu_percent(interval=None)

    def collect(self) -> TelemetryRecord:
        raw_cpu = float(psutil.cpu_percent(interval=None))
        cpu = CpuInfo(
            usage=int(round(max(0.0, min(100.0, raw_cpu * self.cpu_usage_scale)))),
            temp=_cpu_temp_c(),
            fan=_cpu_fan_rpm(),
            name=self._cpu_name,
        )

        vm = psutil.virtual_memory()
        used_gb = round(vm.used / _GB, 2)
        total_gb = round(vm.total / _GB, 2)
        memory = MemoryInfo(
            usage=int(round(used_gb / total_gb * 100)) if total_gb > 0 else 0,
            used=used_gb,
            total=total_gb,
            avail=round(vm.available / _GB, 2),
        )

        try:
            gpu = self._gpu.poll()
        except Exception as exc:
            _log.warning("GPU poll failed: %s", exc)
            gpu = GpuInfo()

        return TelemetryRecord(ts=int(time.time()), cpu=cpu, gpu=gpu, mem=memory)
