"""Machine fingerprint capture via psutil."""

from __future__ import annotations

import logging
import platform
import shutil
from functools import lru_cache
from pathlib import Path
from typing import Any

import psutil

from wrench.models.timing import PcFingerprint

logger = logging.getLogger("wrench.fingerprint")

_GB = 1024 ** 3
_GPU_TOOLS = ("nvidia-smi", "rocm-smi", "amd-smi")


def _detect_ssd() -> bool:
    """True if any block device reports non-rotational. Assumes SSD when unknown."""
    rotational = list(Path("/sys/block").glob("*/queue/rotational"))
    if not rotational:
        return True
    for path in rotational:
        if path.parent.parent.name.startswith(("loop", "ram", "zram")):
            continue
        try:
            if path.read_text().strip() == "0":
                return True
        except OSError:
            continue
    return False


def _detect_discrete_gpu() -> bool:
    return any(shutil.which(tool) for tool in _GPU_TOOLS)


def _frequency_ghz() -> float:
    try:
        freq = psutil.cpu_freq()
    except (NotImplementedError, OSError, FileNotFoundError):
        logger.debug("CPU frequency unavailable")
        return PcFingerprint().frequency_ghz
    if freq is None:
        return PcFingerprint().frequency_ghz
    mhz = freq.max or freq.current
    return round(mhz / 1000.0, 3) if mhz else PcFingerprint().frequency_ghz


@lru_cache(maxsize=1)
def _static_specs() -> tuple[int, int, float, float, bool, bool]:
    """Specs that do not change while the process runs."""
    physical = psutil.cpu_count(logical=False) or 1
    logical = psutil.cpu_count(logical=True) or physical
    total_gb = round(psutil.virtual_memory().total / _GB, 2)
    return physical, logical, _frequency_ghz(), total_gb, _detect_ssd(), _detect_discrete_gpu()


def _on_ac_power() -> bool:
    try:
        battery = psutil.sensors_battery()
    except (AttributeError, NotImplementedError, OSError):
        return True
    # Desktops have no battery; an unknown plug state counts as mains
    if battery is None or battery.power_plugged is None:
        return True
    return bool(battery.power_plugged)


def capture_fingerprint(cpu_interval: float = 0.1) -> PcFingerprint:
    """Snapshot of this machine's hardware and current load."""
    physical, logical, ghz, total_gb, ssd, gpu = _static_specs()
    return PcFingerprint(
        physical_cores=physical,
        logical_cores=logical,
        frequency_ghz=ghz,
        total_ram_gb=total_gb,
        available_ram_gb=round(psutil.virtual_memory().available / _GB, 2),
        disk_is_ssd=ssd,
        has_discrete_gpu=gpu,
        on_ac_power=_on_ac_power(),
        cpu_load_percent=psutil.cpu_percent(interval=cpu_interval),
    )


def machine_context(fingerprint: PcFingerprint | None = None) -> dict[str, Any]:
    """Host description stored alongside a report."""
    fp = fingerprint or capture_fingerprint()
    return {
        "hostname": platform.node(),
        "platform": platform.platform(),
        "python": platform.python_version(),
        "fingerprint": fp.to_dict(),
    }
