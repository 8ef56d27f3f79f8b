"""
Persistance de la file offline dans la base locale (snapshot / restauration).

Appelé explicitement par l'hôte à des moments définis : restauration au démarrage,
enregistrement à l'arrêt et périodiquement. Seuls les champs durables sont conservés
(scans, compteurs, métriques, réglages) ; is_syncing et la progression ne le sont pas.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from attendance_sync.models.offline_attendance import OfflineAttendanceRow
from attendance_sync.models.sync_state import SyncStateRow
from attendance_sync.schemas.offline_queue import (
    OfflineAttendanceRecord,
    QueueConfig,
    QueueSnapshot,
    SyncMetrics,
    SyncStatus,
)

logger = logging.getLogger(__name__)

PENDING = "PENDING"
DEAD_LETTER = "DEAD_LETTER"


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite rend des datetimes naïfs : on les relit en UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_row(record: OfflineAttendanceRecord, state: str, position: int) -> OfflineAttendanceRow:
    return OfflineAttendanceRow(
        id=record.id,
        state=state,
        position=position,
        qr_payload=record.qr_payload,
        session_id=record.session_id,
        student_uuid=record.student_uuid,
        student_number=record.student_number,
        captured_at=record.captured_at,
        retry_count=record.retry_count,
        last_attempt_at=record.last_attempt_at,
        last_error=record.last_error,
    )


def _to_record(row: OfflineAttendanceRow) -> OfflineAttendanceRecord:
    return OfflineAttendanceRecord(
        id=row.id,
        qr_payload=row.qr_payload,
        session_id=row.session_id,
        student_uuid=row.student_uuid,
        student_number=row.student_number or "",
        captured_at=_utc(row.captured_at),
        retry_count=row.retry_count,
        last_attempt_at=_utc(row.last_attempt_at),
        last_error=row.last_error,
    )


def save_snapshot(db: Session, snapshot: QueueSnapshot) -> None:
    """
    Remplace l'état enregistré par le snapshot, en une seule transaction.

    Étapes :
    1. Supprimer tous les scans enregistrés
    2. Insérer les scans en attente puis ceux en dead-letter (ordre conservé)
    3. Créer ou mettre à jour la ligne d'état unique
    """
    db.execute(delete(OfflineAttendanceRow))

    for position, record in enumerate(snapshot.pending):
        db.add(_to_row(record, PENDING, position))
    for position, record in enumerate(snapshot.dead_lettered):
        db.add(_to_row(record, DEAD_LETTER, position))

    state = db.get(SyncStateRow, 1)
    if state is None:
        state = SyncStateRow(id=1)
        db.add(state)

    state.synced_count = snapshot.sync_status.synced
    state.last_sync_at = snapshot.sync_status.last_sync
    state.total_synced = snapshot.metrics.total_synced
    state.total_failed = snapshot.metrics.total_failed
    state.average_sync_time_ms = snapshot.metrics.average_sync_time_ms
    state.success_rate = snapshot.metrics.success_rate
    state.last_metrics_reset = snapshot.metrics.last_metrics_reset
    state.auto_sync_enabled = snapshot.config.auto_sync_enabled
    state.sync_interval_seconds = snapshot.config.sync_interval_seconds
    state.max_retries = snapshot.config.max_retries
    state.batch_size = snapshot.config.batch_size
    state.sync_strategy = snapshot.config.sync_strategy
    state.saved_at = snapshot.saved_at

    db.commit()
    logger.info(
        "Snapshot enregistré : %d en attente, %d en dead-letter",
        len(snapshot.pending), len(snapshot.dead_lettered),
    )


def load_snapshot(db: Session) -> Optional[QueueSnapshot]:
    """Relit le dernier snapshot ; None si rien n'a encore été enregistré."""
    state = db.get(SyncStateRow, 1)
    if state is None:
        return None

    rows = db.execute(
        select(OfflineAttendanceRow).order_by(OfflineAttendanceRow.position)
    ).scalars().all()

    pending = [_to_record(r) for r in rows if r.state == PENDING]
    dead_lettered = [_to_record(r) for r in rows if r.state == DEAD_LETTER]

    metrics = SyncMetrics(
        success_rate=state.success_rate,
        average_sync_time_ms=state.average_sync_time_ms,
        total_synced=state.total_synced,
        total_failed=state.total_failed,
    )
    if state.last_metrics_reset is not None:
        metrics.last_metrics_reset = _utc(state.last_metrics_reset)

    return QueueSnapshot(
        pending=pending,
        dead_lettered=dead_lettered,
        sync_status=SyncStatus(
            pending=len(pending),
            synced=state.synced_count,
            failed=len(dead_lettered),
            last_sync=_utc(state.last_sync_at),
        ),
        metrics=metrics,
        config=QueueConfig(
            auto_sync_enabled=state.auto_sync_enabled,
            sync_interval_seconds=state.sync_interval_seconds,
            max_retries=state.max_retries,
            batch_size=state.batch_size,
            sync_strategy=state.sync_strategy,
        ),
        saved_at=_utc(state.saved_at),
    )
