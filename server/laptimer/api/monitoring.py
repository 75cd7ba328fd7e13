"""Health check and monitoring endpoints."""

from __future__ import annotations

import shutil
from pathlib import Path

from fastapi import APIRouter

router = APIRouter(prefix="/api/v1")

VERSION = "0.1.0"


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from laptimer.main import get_config, get_stats, get_tracker

    config = get_config()
    snapshot = get_stats().snapshot()

    storage_writable = True
    disk_free_gb = -1.0
    if config.storage.backend == "file":
        storage_path = Path(config.storage.base_dir)
        try:
            disk = shutil.disk_usage(storage_path if storage_path.exists() else ".")
            disk_free_gb = round(disk.free / (1024 ** 3), 1)
        except OSError:
            storage_writable = False

    return {
        "status": "ok",
        "version": VERSION,
        "uptime_seconds": snapshot["uptime_seconds"],
        "tracking_active": get_tracker().active,
        "storage_backend": config.storage.backend,
        "storage_writable": storage_writable,
        "disk_free_gb": disk_free_gb,
        "storage_errors": snapshot["storage_errors"],
    }


@router.get("/stats")
async def stats() -> dict:
    """Position feed, lap, and storage counters since startup."""
    from laptimer.main import get_stats

    return get_stats().snapshot()


@router.get("/config")
async def get_client_config() -> dict:
    """Tracking parameters for the mobile host.

    The host uses ``min_interval_ms`` as its location watch interval and
    ``required_accuracy_m`` for the pre-session GPS wait.
    """
    from laptimer.main import get_config

    tracking = get_config().tracking
    return {
        "min_interval_ms": tracking.min_interval_ms,
        "accuracy_wait_interval_ms": tracking.accuracy_wait_interval_ms,
        "proximity_threshold_m": tracking.proximity_threshold_m,
        "rearm_distance_m": tracking.rearm_distance_m,
        "rearm_cooldown_ms": tracking.rearm_cooldown_ms,
        "required_accuracy_m": tracking.required_accuracy_m,
    }
