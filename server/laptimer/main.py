"""Lap timer server — main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, storage, and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from laptimer.api.monitoring import VERSION
from laptimer.api.monitoring import router as monitoring_router
from laptimer.api.sessions import router as sessions_router
from laptimer.api.tracking import router as tracking_router
from laptimer.config import AppConfig, load_config
from laptimer.core.sessions import SessionRepository
from laptimer.core.stats import TrackerStats
from laptimer.core.tracker import TrackingService
from laptimer.storage.file_storage import FileKeyValueStore
from laptimer.storage.memory_storage import InMemoryKeyValueStore

log = structlog.get_logger()

# Module-level singletons (set during startup)
_tracker: TrackingService | None = None
_repository: SessionRepository | None = None
_stats: TrackerStats | None = None
_config: AppConfig | None = None


def get_tracker() -> TrackingService:
    assert _tracker is not None, "Server not initialized"
    return _tracker


def get_repository() -> SessionRepository:
    assert _repository is not None, "Server not initialized"
    return _repository


def get_stats() -> TrackerStats:
    assert _stats is not None, "Server not initialized"
    return _stats


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


def build_store(config: AppConfig):
    """Pick the KeyValueStore adapter named by the storage config."""
    if config.storage.backend == "memory":
        return InMemoryKeyValueStore()
    if config.storage.backend == "file":
        return FileKeyValueStore(base_dir=config.storage.base_dir)
    raise ValueError(f"unknown storage backend: {config.storage.backend!r}")


def init_components(config: AppConfig, store=None) -> None:
    """Create the singletons. Tests call this directly with their own store."""
    global _tracker, _repository, _stats, _config

    _config = config
    _stats = TrackerStats()
    _repository = SessionRepository(store if store is not None else build_store(config))
    _tracker = TrackingService(repository=_repository, stats=_stats, config=config.tracking)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    config = load_config()
    _setup_logging(config)

    log.info("server_starting",
             env=config.server.env,
             storage_backend=config.storage.backend,
             storage_dir=config.storage.base_dir)

    init_components(config)

    log.info("server_started",
             host=config.server.host,
             port=config.server.port,
             proximity_threshold_m=config.tracking.proximity_threshold_m)

    yield

    # Shutdown: a session still running is saved rather than lost.
    if _tracker is not None and _tracker.active:
        log.warning("stopping_active_session_on_shutdown")
        await _tracker.stop()
    log.info("server_stopped")


app = FastAPI(
    title="Lap Timer",
    description="GPS lap timing server",
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(tracking_router)
app.include_router(sessions_router)
app.include_router(monitoring_router)
