"""
Assemblage des composants de l'agent (client, surveillance, réglages, file, planificateur)
et dépendances FastAPI pour y accéder depuis les routers.
"""

from dataclasses import dataclass

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import Request

from attendance_sync.config import Settings
from attendance_sync.scheduler import ApschedulerTaskScheduler, SystemClock, create_background_scheduler
from attendance_sync.services.connection_monitor import ConnectionMonitor
from attendance_sync.services.offline_queue import OfflineAttendanceQueue
from attendance_sync.services.scan_client import ScanApiClient
from attendance_sync.services.sync_settings import SyncSettings


@dataclass
class Runtime:
    background: BackgroundScheduler
    clock: SystemClock
    client: ScanApiClient
    monitor: ConnectionMonitor
    sync_settings: SyncSettings
    queue: OfflineAttendanceQueue


def build_runtime(config: Settings) -> Runtime:
    """Construit un graphe de composants neuf (un par cycle de vie de l'application)."""
    background = create_background_scheduler()
    clock = SystemClock()
    client = ScanApiClient(
        base_url=config.API_BASE_URL,
        scan_endpoint=config.SCAN_ENDPOINT,
        health_endpoint=config.HEALTH_ENDPOINT,
        timeout=config.REQUEST_TIMEOUT_SECONDS,
    )
    monitor = ConnectionMonitor(client, clock, history_size=config.CONNECTION_HISTORY_SIZE)
    sync_settings = SyncSettings(config)
    queue = OfflineAttendanceQueue(
        client=client,
        monitor=monitor,
        sync_settings=sync_settings,
        scheduler=ApschedulerTaskScheduler(background),
        clock=clock,
        config=config,
    )
    return Runtime(
        background=background,
        clock=clock,
        client=client,
        monitor=monitor,
        sync_settings=sync_settings,
        queue=queue,
    )


def get_queue(request: Request) -> OfflineAttendanceQueue:
    """Dépendance FastAPI — file offline de l'application."""
    return request.app.state.runtime.queue


def get_monitor(request: Request) -> ConnectionMonitor:
    """Dépendance FastAPI — surveillance de connexion de l'application."""
    return request.app.state.runtime.monitor
