"""
Export, import et diagnostic de la file offline.

- Export JSON ou CSV (UTF-8 BOM, séparateur ;) des scans en attente et en dead-letter
- Import de scans exportés par une autre borne (dédupliqués contre la file)
- Rapport de diagnostic : connexion, données, synchronisation, réglages
"""

import csv
import io
import logging
from datetime import timedelta
from typing import Any, Dict, List

from attendance_sync.exceptions import CaptureValidationError
from attendance_sync.schemas.offline_queue import AttendanceCapture, ImportReport, OfflineAttendanceRecord
from attendance_sync.services.validation import decode_qr_payload

logger = logging.getLogger(__name__)

# Deux scans du même élève sur la même session à moins d'une minute d'écart = doublon
DUPLICATE_WINDOW = timedelta(seconds=60)

CSV_COLUMNS = [
    "type", "id", "student_number", "student_uuid", "session_id",
    "captured_at", "retry_count", "last_attempt_at", "last_error",
]


def _export_row(record: OfflineAttendanceRecord, kind: str, exported_at: str) -> Dict[str, Any]:
    row = record.model_dump(mode="json")
    row["type"] = kind
    row["exported_at"] = exported_at
    return row


def export_offline_data(queue, now) -> List[Dict[str, Any]]:
    """Liste des scans non confirmés ; type = pending ou failed (dead-letter)."""
    exported_at = now.isoformat()
    return (
        [_export_row(r, "pending", exported_at) for r in queue.pending_records()]
        + [_export_row(r, "failed", exported_at) for r in queue.dead_lettered_records()]
    )


def export_offline_data_csv(queue) -> str:
    """
    Exporte les scans non confirmés en CSV (UTF-8 BOM, séparateur ;).
    Compatible Excel.
    """
    output = io.StringIO()
    writer = csv.writer(output, delimiter=";")
    writer.writerow(CSV_COLUMNS)

    rows = [("pending", r) for r in queue.pending_records()] + [("failed", r) for r in queue.dead_lettered_records()]
    for kind, record in rows:
        writer.writerow([
            kind,
            record.id,
            record.student_number,
            record.student_uuid,
            record.session_id,
            record.captured_at.isoformat(),
            record.retry_count,
            record.last_attempt_at.isoformat() if record.last_attempt_at else "",
            record.last_error or "",
        ])

    return "\ufeff" + output.getvalue()  # BOM pour compatibilité Excel


def _is_duplicate(queue, capture: AttendanceCapture, student_uuid: str) -> bool:
    for existing in queue.pending_records():
        if (
            existing.student_uuid == student_uuid
            and existing.session_id == capture.session_id.strip()
            and abs(existing.captured_at - capture.captured_at) < DUPLICATE_WINDOW
        ):
            return True
    return False


def import_offline_data(queue, items: List[Dict[str, Any]]) -> ImportReport:
    """
    Importe des scans exportés (format export_offline_data ou AttendanceCapture).

    Règles :
    - Ligne invalide → ajoutée dans errors, l'import continue
    - Doublon d'un scan déjà en attente (même élève, même session, < 60 s) → ignoré silencieusement
    - Les scans importés repartent de zéro (nouvel id, retry_count=0)
    """
    imported = 0
    errors: List[str] = []

    for index, item in enumerate(items, start=1):
        try:
            capture = AttendanceCapture.model_validate(item)
        except ValueError as exc:
            errors.append(f"Ligne {index} invalide : {exc}")
            continue

        qr = decode_qr_payload(capture.qr_payload)
        if qr is not None and _is_duplicate(queue, capture, str(qr.uuid)):
            logger.debug("Ligne %d ignorée : doublon d'un scan en attente", index)
            continue

        try:
            queue.enqueue(capture)
            imported += 1
        except CaptureValidationError as exc:
            errors.append(f"Ligne {index} invalide : {', '.join(exc.reasons)}")

    logger.info("Import offline : %d scan(s) importé(s), %d erreur(s)", imported, len(errors))
    return ImportReport(imported=imported, errors=errors)


def diagnostic_info(queue, monitor, now) -> Dict[str, Any]:
    connection = monitor.status()
    oldest = queue.oldest_pending()
    next_sync = queue.next_sync_time()
    return {
        "connection": {
            "is_online": connection.is_online,
            "quality": connection.quality,
            "rtt_ms": connection.rtt_ms,
            "last_connected": connection.last_connected.isoformat() if connection.last_connected else None,
            "connection_history": [e.model_dump(mode="json") for e in connection.history[-5:]],
        },
        "data": {
            "pending_count": len(queue.pending_records()),
            "failed_count": len(queue.dead_lettered_records()),
            "oldest_pending": oldest.captured_at.isoformat() if oldest else None,
            "has_pending_data": queue.has_pending_data(),
        },
        "sync": {
            "status": queue.status().model_dump(mode="json"),
            "metrics": queue.metrics().model_dump(mode="json"),
            "is_syncing": queue.is_syncing,
            "can_sync": queue.can_sync(),
            "auto_sync_enabled": queue.settings.auto_sync_enabled,
            "next_sync_scheduled": next_sync.isoformat() if next_sync else None,
        },
        "config": queue.settings.as_config().model_dump(mode="json"),
        "timestamp": now.isoformat(),
    }
