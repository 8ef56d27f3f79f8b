"""
Planificateur APScheduler de l'agent de synchronisation.

Deux usages :
- ApschedulerTaskScheduler : rappels différés ponctuels (synchro immédiate après un scan,
  retry avec backoff, synchro récurrente réarmée après chaque passage)
- start_scheduler / stop_scheduler : tâches périodiques de l'hôte (test de connexion,
  nettoyage de la file, snapshot en base locale)

Le pool d'exécution n'a qu'un seul worker : les rappels s'exécutent l'un après l'autre.
"""

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from attendance_sync.config import settings
from attendance_sync.database import SessionLocal

logger = logging.getLogger(__name__)


class SystemClock:
    """Horloge réelle (UTC). Remplacée par une horloge factice dans les tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


def create_background_scheduler() -> BackgroundScheduler:
    """Planificateur à un seul worker, pour que les rappels ne se chevauchent jamais."""
    return BackgroundScheduler(
        executors={"default": ThreadPoolExecutor(max_workers=1)},
        job_defaults={"coalesce": True, "misfire_grace_time": None},
    )


class ApschedulerTaskScheduler:
    """Rappels différés ponctuels (trigger "date") au-dessus d'un BackgroundScheduler."""

    def __init__(self, background: BackgroundScheduler):
        self._background = background

    def call_later(self, delay: float, func: Callable, *args) -> str:
        """Planifie func(*args) dans `delay` secondes ; retourne l'identifiant du job."""
        job_id = uuid.uuid4().hex
        self._background.add_job(
            func,
            trigger="date",
            run_date=datetime.now(timezone.utc) + timedelta(seconds=delay),
            args=args,
            id=job_id,
        )
        return job_id

    def cancel(self, handle: str) -> None:
        """Annule un job planifié ; sans effet s'il a déjà été exécuté."""
        try:
            self._background.remove_job(handle)
        except JobLookupError:
            logger.debug("Job %s déjà exécuté ou annulé.", handle)


def _save_snapshot_scheduled(queue) -> None:
    """
    Tâche planifiée : enregistre le snapshot de la file en base locale.
    Import local pour éviter les imports circulaires.
    """
    from attendance_sync.services.snapshot_service import save_snapshot

    db = SessionLocal()
    try:
        save_snapshot(db, queue.snapshot())
    except Exception as exc:
        logger.error("Erreur lors de l'enregistrement du snapshot : %s", exc)
    finally:
        db.close()


def _test_connection_scheduled(monitor) -> None:
    """Tâche planifiée : sonde l'API distante pour rafraîchir la qualité de connexion."""
    quality = monitor.test_connection()
    logger.debug("Test de connexion périodique : %s", quality)


def _optimize_queue_scheduled(queue) -> None:
    """Tâche planifiée : bascule en dead-letter les scans expirés."""
    expired = queue.optimize_queue()
    if expired:
        logger.info("Nettoyage de la file : %d scan(s) expiré(s) en dead-letter", expired)


def start_scheduler(runtime) -> None:
    """Enregistre les tâches périodiques et démarre le planificateur (appelé au démarrage)."""
    background = runtime.background
    background.add_job(
        _test_connection_scheduled,
        trigger="interval",
        seconds=settings.CONNECTION_TEST_INTERVAL_SECONDS,
        args=(runtime.monitor,),
        id="connection_test",
        replace_existing=True,
    )
    background.add_job(
        _optimize_queue_scheduled,
        trigger="interval",
        seconds=settings.QUEUE_OPTIMIZE_INTERVAL_SECONDS,
        args=(runtime.queue,),
        id="queue_optimize",
        replace_existing=True,
    )
    background.add_job(
        _save_snapshot_scheduled,
        trigger="interval",
        seconds=settings.SNAPSHOT_INTERVAL_SECONDS,
        args=(runtime.queue,),
        id="queue_snapshot",
        replace_existing=True,
    )
    background.start()
    logger.info(
        "Scheduler démarré — test connexion %ds, nettoyage %ds, snapshot %ds.",
        settings.CONNECTION_TEST_INTERVAL_SECONDS,
        settings.QUEUE_OPTIMIZE_INTERVAL_SECONDS,
        settings.SNAPSHOT_INTERVAL_SECONDS,
    )


def stop_scheduler(runtime) -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'agent)."""
    background = runtime.background
    if background.running:
        background.remove_all_jobs()
        background.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
