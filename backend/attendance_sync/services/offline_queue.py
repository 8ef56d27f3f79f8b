"""
File offline des scans de présence.

Accepte les scans capturés sans réseau, les valide, et les réconcilie avec l'API distante
(retry + backoff exponentiel) sans jamais perdre ni dupliquer une présence confirmée.

Cycle de vie d'un scan :
  pending(retry_count=0)
    → échec transitoire, budget restant → pending(retry_count+1) → …
    → dead-letter (budget épuisé, rejet définitif du serveur ou expiration)
    → retry manuel → pending(retry_count=0)
  Un succès retire le scan de la file (aucun historique conservé ici).

Règles de concurrence :
- un seul sync_batch à la fois (drapeau is_syncing)
- un scan déjà en cours d'envoi n'est jamais renvoyé en parallèle (ensemble _in_flight)
- l'appartenance à pending conditionne l'éligibilité : un scan déjà synchronisé est absent
  de toute sélection ultérieure
- le verrou protège l'état en mémoire ; il n'est jamais tenu pendant un appel réseau
"""

import logging
import threading
import uuid
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set, Union

from pydantic import ValidationError

from attendance_sync.config import Settings, settings as default_settings
from attendance_sync.exceptions import CaptureValidationError, PermanentSyncError, SyncError
from attendance_sync.schemas.offline_queue import (
    AttendanceCapture,
    OfflineAttendanceRecord,
    QueueSnapshot,
    QueueStatusResponse,
    SyncMetrics,
    SyncResult,
    SyncStatus,
)
from attendance_sync.services.sync_strategy import is_same_day, select_batch
from attendance_sync.services.validation import TOO_OLD, is_expired, validate_capture, validate_record

logger = logging.getLogger(__name__)

OFFLINE_ERROR = "Appareil hors ligne"
CONNECTION_LOST_ERROR = "Connexion perdue pendant la synchronisation"
RETRY_EXHAUSTED_ERROR = "Nombre maximal de tentatives atteint"

# Multiplicateur du temps moyen de synchro selon la qualité de connexion
QUALITY_MULTIPLIERS = {"excellent": 1.0, "good": 1.5, "poor": 3.0}


class OfflineAttendanceQueue:
    """
    Service de file offline, construit avec ses collaborateurs injectés :
    client (ScanApiClient), monitor (ConnectionMonitor), sync_settings (SyncSettings),
    scheduler (call_later / cancel) et clock (now / monotonic / sleep).
    """

    def __init__(self, client, monitor, sync_settings, scheduler, clock, config: Settings = default_settings):
        self._client = client
        self._monitor = monitor
        self.settings = sync_settings
        self._scheduler = scheduler
        self._clock = clock

        self.max_age = timedelta(hours=config.OFFLINE_ATTENDANCE_MAX_AGE_HOURS)
        self.retry_base_delay = config.RETRY_BASE_DELAY_SECONDS
        self.retry_max_delay = config.RETRY_MAX_DELAY_SECONDS
        self.inter_item_delay = config.INTER_ITEM_DELAY_SECONDS
        self.poor_inter_item_delay = config.POOR_CONNECTION_INTER_ITEM_DELAY_SECONDS
        self.enqueue_sync_delay = config.ENQUEUE_SYNC_DELAY_SECONDS
        self.reconnect_sync_delay = config.RECONNECT_SYNC_DELAY_SECONDS

        self._lock = threading.RLock()
        # dict : ordre d'insertion conservé, accès O(1) par id
        self._pending: Dict[str, OfflineAttendanceRecord] = {}
        self._dead_lettered: Dict[str, OfflineAttendanceRecord] = {}
        self._in_flight: Set[str] = set()

        self._synced_count = 0
        self._last_sync: Optional[datetime] = None
        self._metrics = SyncMetrics(last_metrics_reset=clock.now())

        self.is_syncing = False
        self._progress = {"total": 0, "completed": 0, "failed": 0, "current_item": None}
        self.last_sync_attempt: Optional[datetime] = None
        self.next_sync_scheduled: Optional[datetime] = None
        self._recurring_handle = None
        self._recurring_active = False
        self._started = False

    # ============================================================
    # Cycle de vie
    # ============================================================

    def start(self) -> None:
        """Abonne la file aux changements de connexion et de réglages, arme la synchro récurrente."""
        if self._started:
            return
        self._started = True
        self._monitor.add_listener(self._on_connection_change)
        self.settings.add_listener(self._on_settings_change)
        if self.settings.auto_sync_enabled:
            self.schedule_recurring_sync()
        logger.info(
            "File offline démarrée — %d en attente, %d en dead-letter",
            len(self._pending), len(self._dead_lettered),
        )

    def stop(self) -> None:
        """Annule le minuteur ; un batch déjà en cours va jusqu'au bout."""
        if not self._started:
            return
        self._started = False
        self.cancel()
        self._monitor.remove_listener(self._on_connection_change)
        self.settings.remove_listener(self._on_settings_change)
        logger.info("File offline arrêtée.")

    def _on_connection_change(self, was_online: bool, online: bool) -> None:
        """Retour en ligne avec des scans en attente → synchro planifiée (sans bloquer l'appelant)."""
        if online and not was_online and self._pending and self.settings.auto_sync_enabled:
            logger.info("Connexion rétablie : synchronisation de %d scan(s) planifiée", len(self._pending))
            self._scheduler.call_later(self.reconnect_sync_delay, self.sync_pending_data)

    def _on_settings_change(self, field: str) -> None:
        if field == "auto_sync_enabled":
            if self.settings.auto_sync_enabled:
                self.schedule_recurring_sync()
            else:
                self.cancel()
        elif field == "sync_interval" and self.settings.auto_sync_enabled:
            self.cancel()
            self.schedule_recurring_sync()
        elif field == "max_retries":
            self._dead_letter_exhausted()

    # ============================================================
    # Ajout dans la file
    # ============================================================

    def enqueue(self, capture: Union[AttendanceCapture, dict]) -> str:
        """
        Valide un scan et l'ajoute à la file ; retourne son identifiant.

        Lève CaptureValidationError (rien n'est ajouté) si :
        - le QR code ne se décode pas en {uuid, student_id}
        - l'horodatage est dans le futur ou plus ancien que l'âge maximal
        - l'identifiant de session est vide

        Si l'appareil est en ligne et la synchro automatique active, une synchro
        de ce seul scan est planifiée immédiatement (l'appelant n'attend pas).
        """
        if not isinstance(capture, AttendanceCapture):
            try:
                capture = AttendanceCapture.model_validate(capture)
            except ValidationError as exc:
                raise CaptureValidationError([err["msg"] for err in exc.errors()]) from exc

        qr, errors = validate_capture(capture, self._clock.now(), self.max_age)
        if errors:
            logger.info("Scan refusé (session %s) : %s", capture.session_id, ", ".join(errors))
            raise CaptureValidationError(errors)

        record = OfflineAttendanceRecord(
            id=str(uuid.uuid4()),
            qr_payload=capture.qr_payload,
            session_id=capture.session_id.strip(),
            student_uuid=str(qr.uuid),
            student_number=qr.student_id,
            captured_at=capture.captured_at,
        )
        with self._lock:
            self._pending[record.id] = record

        logger.info(
            "Scan %s mis en file — élève %s, session %s",
            record.id, record.student_number, record.session_id,
        )

        if self.settings.auto_sync_enabled and self._monitor.can_sync():
            self._scheduler.call_later(self.enqueue_sync_delay, self.sync_one, record)

        return record.id

    # ============================================================
    # Synchronisation
    # ============================================================

    def backoff_delay(self, retry_count: int) -> float:
        """min(base * 2^retry_count, max) : ne dépend que du nombre d'échecs déjà subis."""
        return min(self.retry_base_delay * (2 ** retry_count), self.retry_max_delay)

    def sync_one(self, record: OfflineAttendanceRecord) -> Optional[bool]:
        """
        Tente exactement un aller-retour réseau pour ce scan.

        Retour :
        - True  : scan accepté par le serveur
        - False : tentative en échec (comptée dans retry_count)
        - None  : aucune tentative (scan plus en attente, déjà en cours d'envoi,
                  ou appareil hors ligne)

        Un scan devenu invalide (expiré…) part en dead-letter sans appel réseau (False).
        """
        with self._lock:
            current = self._pending.get(record.id)
            if current is None or current.id in self._in_flight:
                logger.debug("Scan %s absent de la file ou déjà en cours d'envoi", record.id)
                return None
            if not self._monitor.can_sync():
                logger.debug("Synchro du scan %s ignorée : hors ligne", record.id)
                return None

            now = self._clock.now()
            errors = validate_record(current, now, self.max_age)
            if errors:
                current.retry_count += 1
                current.last_attempt_at = now
                current.last_error = ", ".join(errors)
                self._record_failure()
                self._move_to_dead_letter(current.id)
                return False

            current.last_attempt_at = now
            self._in_flight.add(current.id)

        start = self._clock.monotonic()
        error: Optional[SyncError] = None
        try:
            self._client.submit_scan(current)
        except SyncError as exc:
            error = exc
        finally:
            with self._lock:
                self._in_flight.discard(current.id)
        elapsed_ms = (self._clock.monotonic() - start) * 1000

        if error is None:
            return self._handle_success(current, elapsed_ms)
        return self._handle_failure(current, error)

    def _handle_success(self, record: OfflineAttendanceRecord, elapsed_ms: float) -> bool:
        with self._lock:
            self._pending.pop(record.id, None)
            self._synced_count += 1
            self._last_sync = self._clock.now()

            metrics = self._metrics
            metrics.total_synced += 1
            if metrics.total_synced == 1:
                metrics.average_sync_time_ms = elapsed_ms
            else:
                metrics.average_sync_time_ms = (metrics.average_sync_time_ms + elapsed_ms) / 2
            self._update_success_rate()

        logger.info("Scan %s synchronisé (%.0f ms)", record.id, elapsed_ms)
        return True

    def _handle_failure(self, record: OfflineAttendanceRecord, error: SyncError) -> bool:
        with self._lock:
            if record.id not in self._pending:
                # Retiré de la file pendant l'appel (vidage manuel)
                return False

            previous_retries = record.retry_count
            record.retry_count += 1
            record.last_error = error.message
            self._record_failure()

            if isinstance(error, PermanentSyncError):
                logger.warning("Scan %s rejeté par le serveur : %s", record.id, error.message)
                self._move_to_dead_letter(record.id)
                return False

            if record.retry_count >= self.settings.max_retries:
                logger.warning(
                    "Scan %s : %d tentative(s), passage en dead-letter (%s)",
                    record.id, record.retry_count, error.message,
                )
                self._move_to_dead_letter(record.id)
                return False

            delay = self.backoff_delay(previous_retries)

        logger.info(
            "Échec transitoire du scan %s (%s) — nouvel essai dans %.1fs",
            record.id, error.message, delay,
        )
        self._scheduler.call_later(delay, self.sync_one, record)
        return False

    def sync_batch(self) -> SyncResult:
        """
        Synchronise jusqu'à batch_size scans, dans l'ordre de la stratégie configurée.

        Refusé (skipped=True) si un batch est déjà en cours, si l'appareil est hors ligne
        ou si la file est vide. Les échecs individuels ne lèvent jamais d'exception :
        ils sont reportés dans errors et dans les compteurs.
        """
        with self._lock:
            if self.is_syncing:
                logger.debug("Batch ignoré : synchronisation déjà en cours")
                return SyncResult(success=False, synced_count=0, failed_count=0, errors=[], skipped=True)
            if not self._monitor.can_sync():
                return SyncResult(
                    success=False, synced_count=0, failed_count=0, errors=[OFFLINE_ERROR], skipped=True,
                )

            now = self._clock.now()
            self._expire_pending(now)
            if not self._pending:
                return SyncResult(success=False, synced_count=0, failed_count=0, errors=[], skipped=True)

            self.is_syncing = True
            self.last_sync_attempt = now
            batch = select_batch(
                list(self._pending.values()),
                self.settings.sync_strategy,
                self.settings.batch_size,
                now,
            )
            self._progress = {"total": len(batch), "completed": 0, "failed": 0, "current_item": None}

        synced_count = 0
        failed_count = 0
        errors: List[str] = []

        try:
            for index, record in enumerate(batch):
                if not self._monitor.can_sync():
                    errors.append(CONNECTION_LOST_ERROR)
                    break

                self._progress["current_item"] = f"{record.student_number} - {record.session_id}"
                try:
                    success = self.sync_one(record)
                except Exception as exc:
                    success = False
                    logger.error("Erreur inattendue lors de la synchro du scan %s : %s", record.id, exc, exc_info=True)
                    errors.append(f"Erreur inattendue pour l'élève {record.student_number} : {exc}")
                else:
                    if success is False:
                        errors.append(
                            f"Échec de synchronisation pour l'élève {record.student_number} : "
                            f"{record.last_error or 'erreur inconnue'}"
                        )

                # None : aucune tentative (déjà en cours d'envoi ailleurs), ni succès ni échec
                if success:
                    synced_count += 1
                elif success is False:
                    failed_count += 1
                    self._progress["failed"] += 1
                self._progress["completed"] += 1

                # Petite pause entre deux envois, plus longue si la connexion est médiocre
                if index < len(batch) - 1:
                    poor = self._monitor.quality == "poor"
                    self._clock.sleep(self.poor_inter_item_delay if poor else self.inter_item_delay)
        finally:
            with self._lock:
                self.is_syncing = False
                self._progress = {"total": 0, "completed": 0, "failed": 0, "current_item": None}

        logger.info(
            "Batch terminé : %d synchronisé(s), %d échec(s), %d restant(s)",
            synced_count, failed_count, len(self._pending),
        )
        return SyncResult(
            success=synced_count > 0,
            synced_count=synced_count,
            failed_count=failed_count,
            errors=errors,
        )

    def sync_pending_data(self) -> SyncResult:
        """Point d'entrée de la synchro déclenchée au retour en ligne."""
        return self.sync_batch()

    def force_sync_all(self) -> SyncResult:
        """Remet en attente tous les scans dead-letter non expirés, puis lance un batch."""
        now = self._clock.now()
        with self._lock:
            for record_id, record in list(self._dead_lettered.items()):
                if is_expired(record.captured_at, now, self.max_age):
                    continue
                del self._dead_lettered[record_id]
                self._pending[record_id] = self._reset(record)
        return self.sync_batch()

    def retry_dead_lettered(self, record_id: str) -> Optional[bool]:
        """
        Retry manuel : remet le scan en attente (retry_count=0) puis tente une synchro immédiate.

        Retour :
        - False si le scan est introuvable ou expiré : rien n'est déplacé
        - sinon le scan est remis en attente et le résultat de sync_one est retourné :
          True synchronisé, False tentative en échec (retry/backoff ou dead-letter selon
          l'erreur), None aucune tentative (hors ligne) : le scan reste en attente
          et sera repris par la synchro automatique.
        """
        with self._lock:
            record = self._dead_lettered.get(record_id)
            if record is None:
                return False
            if self.is_expired(record):
                logger.warning("Retry refusé pour le scan %s : scan expiré", record_id)
                return False
            del self._dead_lettered[record_id]
            record = self._reset(record)
            self._pending[record_id] = record
        return self.sync_one(record)

    # ============================================================
    # Synchro récurrente
    # ============================================================

    def schedule_recurring_sync(self) -> None:
        """Arme le prochain passage ; sans effet si la synchro auto est coupée ou déjà armée."""
        with self._lock:
            if not self.settings.auto_sync_enabled or self._recurring_handle is not None:
                return
            self._recurring_active = True
            interval = self.settings.sync_interval
            self.next_sync_scheduled = self._clock.now() + timedelta(seconds=interval)
            self._recurring_handle = self._scheduler.call_later(interval, self._run_recurring_sync)

    def _run_recurring_sync(self) -> None:
        with self._lock:
            self._recurring_handle = None
            self.next_sync_scheduled = None
        try:
            if self._pending and self._monitor.can_sync():
                self.sync_batch()
        finally:
            if self._recurring_active and self.settings.auto_sync_enabled:
                self.schedule_recurring_sync()

    def cancel(self) -> None:
        """Empêche les passages futurs ; n'interrompt pas un batch déjà en cours."""
        with self._lock:
            self._recurring_active = False
            handle = self._recurring_handle
            self._recurring_handle = None
            self.next_sync_scheduled = None
        if handle is not None:
            self._scheduler.cancel(handle)

    # ============================================================
    # Gestion des scans
    # ============================================================

    def _reset(self, record: OfflineAttendanceRecord) -> OfflineAttendanceRecord:
        record.retry_count = 0
        record.last_attempt_at = None
        record.last_error = None
        return record

    def _move_to_dead_letter(self, record_id: str) -> None:
        record = self._pending.pop(record_id, None)
        if record is not None:
            self._dead_lettered[record_id] = record

    def _expire_pending(self, now: datetime) -> int:
        expired = [
            record for record in self._pending.values()
            if is_expired(record.captured_at, now, self.max_age)
        ]
        for record in expired:
            record.last_error = TOO_OLD
            self._move_to_dead_letter(record.id)
        if expired:
            logger.warning("%d scan(s) expiré(s) passé(s) en dead-letter", len(expired))
        return len(expired)

    def _dead_letter_exhausted(self) -> None:
        """Après baisse de max_retries : un scan ayant atteint le budget ne reste pas en attente."""
        with self._lock:
            exhausted = [r for r in self._pending.values() if r.retry_count >= self.settings.max_retries]
            for record in exhausted:
                record.last_error = record.last_error or RETRY_EXHAUSTED_ERROR
                self._move_to_dead_letter(record.id)

    def optimize_queue(self) -> int:
        """Bascule en dead-letter les scans en attente expirés ; retourne leur nombre."""
        with self._lock:
            return self._expire_pending(self._clock.now())

    def discard_dead_lettered(self, record_id: str) -> bool:
        with self._lock:
            record = self._dead_lettered.pop(record_id, None)
        if record is None:
            return False
        logger.info("Scan %s abandonné par l'utilisateur", record_id)
        return True

    def clear_pending(self) -> None:
        with self._lock:
            self._pending.clear()

    def clear_dead_lettered(self) -> None:
        with self._lock:
            self._dead_lettered.clear()

    def clear_all(self) -> None:
        with self._lock:
            self._pending.clear()
            self._dead_lettered.clear()
            self._synced_count = 0
            self._last_sync = None

    # ============================================================
    # Lecture de l'état
    # ============================================================

    def pending_records(self) -> List[OfflineAttendanceRecord]:
        """Copies des scans en attente (la file reste seule à modifier ses scans)."""
        with self._lock:
            return [r.model_copy() for r in self._pending.values()]

    def dead_lettered_records(self) -> List[OfflineAttendanceRecord]:
        with self._lock:
            return [r.model_copy() for r in self._dead_lettered.values()]

    def get_pending(self, record_id: str) -> Optional[OfflineAttendanceRecord]:
        with self._lock:
            record = self._pending.get(record_id)
            return record.model_copy() if record else None

    def get_dead_lettered(self, record_id: str) -> Optional[OfflineAttendanceRecord]:
        with self._lock:
            record = self._dead_lettered.get(record_id)
            return record.model_copy() if record else None

    def has_pending_data(self) -> bool:
        return bool(self._pending) or bool(self._dead_lettered)

    def total_pending(self) -> int:
        """Scans non confirmés par le serveur : en attente + dead-letter."""
        return len(self._pending) + len(self._dead_lettered)

    def oldest_pending(self) -> Optional[OfflineAttendanceRecord]:
        with self._lock:
            if not self._pending:
                return None
            return min(self._pending.values(), key=lambda r: r.captured_at).model_copy()

    def pending_by_session(self, session_id: str) -> List[OfflineAttendanceRecord]:
        return [r for r in self.pending_records() if r.session_id == session_id]

    def pending_by_date(self, day: date) -> List[OfflineAttendanceRecord]:
        tz = self._clock.now().tzinfo
        return [r for r in self.pending_records() if r.captured_at.astimezone(tz).date() == day]

    def pending_today(self) -> List[OfflineAttendanceRecord]:
        now = self._clock.now()
        return [r for r in self.pending_records() if is_same_day(r.captured_at, now)]

    def can_sync(self) -> bool:
        return self._monitor.can_sync() and not self.is_syncing

    def sync_progress(self) -> int:
        """Avancement du batch en cours, en pourcentage."""
        total = self._progress["total"]
        if total == 0:
            return 0
        return round(self._progress["completed"] / total * 100)

    def estimated_sync_time(self) -> Optional[float]:
        """Estimation (ms) pour vider la file ; None si hors ligne."""
        multiplier = QUALITY_MULTIPLIERS.get(self._monitor.quality)
        if multiplier is None:
            return None
        base = self._metrics.average_sync_time_ms or 1000.0
        return len(self._pending) * base * multiplier

    def next_sync_time(self) -> Optional[datetime]:
        return self.next_sync_scheduled

    def is_expired(self, record: OfflineAttendanceRecord) -> bool:
        return is_expired(record.captured_at, self._clock.now(), self.max_age)

    def should_retry_sync(self, record: OfflineAttendanceRecord) -> bool:
        return record.retry_count < self.settings.max_retries and not self.is_expired(record)

    def metrics(self) -> SyncMetrics:
        with self._lock:
            return self._metrics.model_copy()

    def reset_metrics(self) -> None:
        with self._lock:
            self._metrics = SyncMetrics(last_metrics_reset=self._clock.now())

    def _record_failure(self) -> None:
        self._metrics.total_failed += 1
        self._update_success_rate()

    def _update_success_rate(self) -> None:
        metrics = self._metrics
        attempts = metrics.total_synced + metrics.total_failed
        metrics.success_rate = metrics.total_synced / attempts * 100 if attempts else 100.0

    def status(self) -> SyncStatus:
        with self._lock:
            return SyncStatus(
                pending=len(self._pending),
                synced=self._synced_count,
                failed=len(self._dead_lettered),
                last_sync=self._last_sync,
                is_online=self._monitor.is_online,
                is_syncing=self.is_syncing,
            )

    def queue_status(self) -> QueueStatusResponse:
        return QueueStatusResponse(
            sync_status=self.status(),
            pending_count=len(self._pending),
            dead_letter_count=len(self._dead_lettered),
            last_sync_attempt=self.last_sync_attempt,
            next_sync_scheduled=self.next_sync_scheduled,
            sync_progress=self.sync_progress(),
            estimated_sync_time_ms=self.estimated_sync_time(),
        )

    # ============================================================
    # Snapshot / restauration
    # ============================================================

    def snapshot(self) -> QueueSnapshot:
        """État à conserver entre deux redémarrages (hors état transitoire)."""
        with self._lock:
            return QueueSnapshot(
                pending=[r.model_copy() for r in self._pending.values()],
                dead_lettered=[r.model_copy() for r in self._dead_lettered.values()],
                sync_status=self.status(),
                metrics=self._metrics.model_copy(),
                config=self.settings.as_config(),
                saved_at=self._clock.now(),
            )

    def restore(self, snapshot: QueueSnapshot) -> None:
        """
        Recharge un snapshot. Les invariants sont réappliqués : un scan présent dans les
        deux ensembles reste en dead-letter, un scan ayant épuisé son budget y est envoyé.
        """
        with self._lock:
            self.settings.load(snapshot.config)
            self._dead_lettered = {r.id: r.model_copy() for r in snapshot.dead_lettered}
            self._pending = {
                r.id: r.model_copy() for r in snapshot.pending if r.id not in self._dead_lettered
            }
            self._synced_count = snapshot.sync_status.synced
            self._last_sync = snapshot.sync_status.last_sync
            self._metrics = snapshot.metrics.model_copy()
        self._dead_letter_exhausted()
        logger.info(
            "Snapshot restauré — %d en attente, %d en dead-letter",
            len(self._pending), len(self._dead_lettered),
        )
