"""System metrics snapshot — the flat context condition triggers evaluate against."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any

import psutil
from loguru import logger

_START = time.time()


def collect_metrics(disk_path: str = "/") -> dict[str, Any]:
    """Collect one flat metric-name → value snapshot.

    Keys: cpu_percent, cpu_cores, ram_percent, ram_used_mb, ram_total_mb,
    disk_percent, disk_used_gb, disk_total_gb, battery_percent,
    battery_charging, process_count, hour, minute, day_of_week,
    uptime_minutes. Unavailable sources yield None.
    """
    now = datetime.now()
    mem = psutil.virtual_memory()
    ctx: dict[str, Any] = {
        "cpu_percent": psutil.cpu_percent(interval=0.1),
        "cpu_cores": psutil.cpu_count() or 1,
        "ram_percent": mem.percent,
        "ram_used_mb": round(mem.used / 1024**2),
        "ram_total_mb": round(mem.total / 1024**2),
        "disk_percent": None,
        "disk_used_gb": None,
        "disk_total_gb": None,
        "battery_percent": None,
        "battery_charging": None,
        "process_count": len(psutil.pids()),
        "hour": now.hour,
        "minute": now.minute,
        "day_of_week": (now.weekday() + 1) % 7,
        "uptime_minutes": round((time.time() - _START) / 60),
    }

    try:
        disk = psutil.disk_usage(disk_path)
        ctx["disk_percent"] = disk.percent
        ctx["disk_used_gb"] = round(disk.used / 1024**3, 1)
        ctx["disk_total_gb"] = round(disk.total / 1024**3, 1)
    except OSError as e:
        logger.warning(f"Disk metrics unavailable for {disk_path}: {e}")

    battery = psutil.sensors_battery() if hasattr(psutil, "sensors_battery") else None
    if battery is not None:
        ctx["battery_percent"] = battery.percent
        ctx["battery_charging"] = battery.power_plugged

    return ctx
