"""Hardware-based sizing of the InnoDB buffer pool."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .config import DEFAULT_BUFFER_POOL_INSTANCES, DEFAULT_BUFFER_POOL_SIZE, DesiredConfiguration

LOGGER = logging.getLogger(__name__)

MIN_BUFFER_POOL_MB = 128
OS_RESERVED_MB = 1024
SMALL_HOST_RAM_MB = 4 * 1024
SMALL_HOST_RATIO = 0.60
LARGE_HOST_RATIO = 0.75
MAX_BUFFER_POOL_INSTANCES = 64

_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?)B?\s*$", re.IGNORECASE)
_SIZE_FACTORS_MB = {"": 1 / (1024 * 1024), "K": 1 / 1024, "M": 1, "G": 1024, "T": 1024 * 1024}


class TuningError(RuntimeError):
    """Raised when hardware facts or sizes cannot be interpreted."""


@dataclass(frozen=True, slots=True)
class HardwareInfo:
    """CPU and memory facts used for sizing."""

    cpu_cores: int
    total_ram_mb: int

    @property
    def total_ram_gb(self) -> float:
        """Return total RAM in GiB."""
        return self.total_ram_mb / 1024


@dataclass(slots=True)
class TuningResult:
    """Values applied (or kept) by :func:`auto_tune`."""

    buffer_pool_size: str
    buffer_pool_instances: int
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def detect_hardware(meminfo: Path = Path("/proc/meminfo")) -> HardwareInfo:
    """Return CPU core count and total RAM for the running host."""
    cores = os.cpu_count() or 1
    ram_mb = _read_meminfo_mb(meminfo)
    if ram_mb is None:
        try:
            ram_mb = os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES") // (1024 * 1024)
        except (ValueError, OSError, AttributeError) as exc:
            raise TuningError(f"Unable to determine total memory: {exc}") from exc
    return HardwareInfo(cpu_cores=cores, total_ram_mb=int(ram_mb))


def _read_meminfo_mb(path: Path) -> int | None:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return None
    for line in text.splitlines():
        if line.startswith("MemTotal:"):
            parts = line.split()
            if len(parts) >= 2 and parts[1].isdigit():
                return int(parts[1]) // 1024
    return None


def parse_memory_size(text: str) -> int:
    """Return *text* (``512M``, ``2G``, ``1048576K``) in MiB."""
    match = _SIZE_PATTERN.match(str(text))
    if not match:
        raise TuningError(f"Invalid memory size: {text!r}")
    number = float(match.group(1))
    suffix = match.group(2).upper()
    return int(number * _SIZE_FACTORS_MB[suffix])


def format_memory_size(size_mb: int) -> str:
    """Return ``NG`` for sizes of at least 1 GiB, else ``NM``."""
    if size_mb >= 1024:
        return f"{size_mb // 1024}G"
    return f"{size_mb}M"


def compute_buffer_pool_mb(total_ram_mb: int) -> int:
    """Return the recommended buffer pool size in MiB for *total_ram_mb*."""
    ratio = SMALL_HOST_RATIO if total_ram_mb < SMALL_HOST_RAM_MB else LARGE_HOST_RATIO
    size_mb = int(total_ram_mb * ratio)
    ceiling = total_ram_mb - OS_RESERVED_MB
    if ceiling > MIN_BUFFER_POOL_MB and size_mb > ceiling:
        size_mb = ceiling
    return max(size_mb, MIN_BUFFER_POOL_MB)


def compute_buffer_pool_size(total_ram_mb: int) -> str:
    """Return the recommended ``innodb_buffer_pool_size`` value."""
    return format_memory_size(compute_buffer_pool_mb(total_ram_mb))


def compute_buffer_pool_instances(buffer_pool_size: str, cpu_cores: int) -> int:
    """Return ``min(cores, whole GiB of pool)`` clamped to ``[1, 64]``."""
    pool_gb = parse_memory_size(buffer_pool_size) // 1024
    instances = min(max(cpu_cores, 1), max(1, pool_gb))
    return max(1, min(instances, MAX_BUFFER_POOL_INSTANCES))


def auto_tune(desired: DesiredConfiguration, hardware: HardwareInfo) -> TuningResult:
    """Apply recommended buffer pool settings to *desired* in place.

    A field is left alone when the operator supplied it explicitly or when it
    already differs from the stock placeholder default.
    """
    result = TuningResult(
        buffer_pool_size=desired.buffer_pool_size,
        buffer_pool_instances=desired.buffer_pool_instances,
    )

    if _is_overridden(desired, "buffer_pool_size", DEFAULT_BUFFER_POOL_SIZE):
        result.skipped.append("buffer_pool_size")
    else:
        desired.buffer_pool_size = compute_buffer_pool_size(hardware.total_ram_mb)
        result.applied.append("buffer_pool_size")

    if _is_overridden(desired, "buffer_pool_instances", DEFAULT_BUFFER_POOL_INSTANCES):
        result.skipped.append("buffer_pool_instances")
    else:
        desired.buffer_pool_instances = compute_buffer_pool_instances(
            desired.buffer_pool_size, hardware.cpu_cores
        )
        result.applied.append("buffer_pool_instances")

    result.buffer_pool_size = desired.buffer_pool_size
    result.buffer_pool_instances = desired.buffer_pool_instances
    LOGGER.info(
        "Auto-tune for %s cores / %s MiB: pool=%s instances=%s (kept: %s)",
        hardware.cpu_cores,
        hardware.total_ram_mb,
        desired.buffer_pool_size,
        desired.buffer_pool_instances,
        ", ".join(result.skipped) or "none",
    )
    return result


def _is_overridden(desired: DesiredConfiguration, name: str, sentinel: object) -> bool:
    if desired.is_explicit(name):
        return True
    value = getattr(desired, name)
    if isinstance(sentinel, str):
        return str(value).strip().upper() != sentinel.upper()
    return value != sentinel


__all__ = [
    "HardwareInfo",
    "TuningError",
    "TuningResult",
    "auto_tune",
    "compute_buffer_pool_instances",
    "compute_buffer_pool_mb",
    "compute_buffer_pool_size",
    "detect_hardware",
    "format_memory_size",
    "parse_memory_size",
]
