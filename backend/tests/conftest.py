"""
Configuration partagée pour tous les tests.
Base locale en mémoire, horloge et planificateur factices : aucun appel réseau réel,
aucun minuteur réel. Les routers reçoivent une file construite sur ces faux collaborateurs.
"""

import json
import os
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient

from attendance_sync.config import Settings
from attendance_sync.main import app
from attendance_sync.runtime import get_monitor, get_queue
from attendance_sync.schemas.offline_queue import AttendanceCapture
from attendance_sync.services.connection_monitor import ConnectionMonitor
from attendance_sync.services.offline_queue import OfflineAttendanceQueue
from attendance_sync.services.sync_settings import SyncSettings

NOW = datetime(2026, 3, 15, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Horloge pilotée par le test : advance() fait avancer now() et monotonic()."""

    def __init__(self, now=NOW):
        self.current = now
        self.elapsed = 0.0
        self.sleeps = []

    def now(self):
        return self.current

    def monotonic(self):
        return self.elapsed

    def sleep(self, seconds):
        self.sleeps.append(seconds)

    def advance(self, seconds):
        self.current += timedelta(seconds=seconds)
        self.elapsed += seconds


class ManualScheduler:
    """Rappels différés enregistrés sans être exécutés ; le test les déclenche à la main."""

    def __init__(self):
        self.calls = []
        self._next_handle = 0

    def call_later(self, delay, func, *args):
        self._next_handle += 1
        self.calls.append((self._next_handle, delay, func, args))
        return self._next_handle

    def cancel(self, handle):
        self.calls = [c for c in self.calls if c[0] != handle]

    def delays_for(self, func):
        return [c[1] for c in self.calls if c[2] == func]

    def run_first(self, func):
        """Exécute (et retire) le premier rappel planifié pour func."""
        call = next(c for c in self.calls if c[2] == func)
        self.calls.remove(call)
        _, _, func, args = call
        return func(*args)


def make_qr(student_uuid=None, student_id="ELV-001") -> str:
    return json.dumps({"uuid": str(student_uuid or uuid.uuid4()), "student_id": student_id})


def make_capture(captured_at=None, session_id="session-1", qr_payload=None, student_uuid=None, **qr) -> AttendanceCapture:
    return AttendanceCapture(
        qr_payload=qr_payload or make_qr(**qr),
        session_id=session_id,
        captured_at=captured_at or NOW - timedelta(minutes=5),
        student_uuid=student_uuid,
    )


@pytest.fixture
def config():
    return Settings(AUTO_SYNC_ENABLED=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def api_client():
    """Faux ScanApiClient : submit_scan réussit par défaut, sonde à 50 ms."""
    client = MagicMock()
    client.probe_health.return_value = 50.0
    return client


@pytest.fixture
def monitor(api_client, clock):
    return ConnectionMonitor(api_client, clock, history_size=10)


@pytest.fixture
def sync_settings(config):
    return SyncSettings(config)


@pytest.fixture
def queue(api_client, monitor, sync_settings, scheduler, clock, config):
    q = OfflineAttendanceQueue(
        client=api_client,
        monitor=monitor,
        sync_settings=sync_settings,
        scheduler=scheduler,
        clock=clock,
        config=config,
    )
    q.start()
    yield q
    q.stop()


@pytest.fixture
def client(queue, monitor):
    """Client HTTP de test branché sur la file factice."""
    app.dependency_overrides[get_queue] = lambda: queue
    app.dependency_overrides[get_monitor] = lambda: monitor
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
