"""
Règles de validation des scans capturés hors ligne.

Appliquées à l'ajout dans la file (enqueue) puis revérifiées avant chaque synchronisation :
un scan valide à la capture peut devenir invalide entre-temps (expiration).
"""

import json
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import ValidationError

from attendance_sync.schemas.offline_queue import AttendanceCapture, OfflineAttendanceRecord, QrPayload

INVALID_QR = "Format de QR code invalide"
FUTURE_TIMESTAMP = "L'horodatage du scan est dans le futur"
TOO_OLD = "Le scan est trop ancien pour être synchronisé"
MISSING_SESSION = "Identifiant de session invalide"
STUDENT_MISMATCH = "L'UUID élève ne correspond pas au QR code"


def decode_qr_payload(raw: str) -> Optional[QrPayload]:
    """Décode le contenu JSON d'un QR code élève ; None si illisible ou incomplet."""
    try:
        return QrPayload.model_validate(json.loads(raw))
    except (ValueError, TypeError, ValidationError):
        return None


def is_expired(captured_at: datetime, now: datetime, max_age: timedelta) -> bool:
    return now - captured_at > max_age


def timestamp_errors(captured_at: datetime, now: datetime, max_age: timedelta) -> List[str]:
    """Horodatage dans le futur (aucune tolérance d'horloge) ou plus vieux que max_age."""
    if captured_at > now:
        return [FUTURE_TIMESTAMP]
    if is_expired(captured_at, now, max_age):
        return [TOO_OLD]
    return []


def validate_capture(
    capture: AttendanceCapture,
    now: datetime,
    max_age: timedelta,
) -> tuple[Optional[QrPayload], List[str]]:
    """
    Valide un scan avant son ajout dans la file.
    Retourne le QR décodé et la liste des motifs de refus (vide si valide).
    """
    errors: List[str] = []

    qr = decode_qr_payload(capture.qr_payload)
    if qr is None:
        errors.append(INVALID_QR)
    elif capture.student_uuid and capture.student_uuid.strip().lower() != str(qr.uuid):
        errors.append(STUDENT_MISMATCH)

    errors.extend(timestamp_errors(capture.captured_at, now, max_age))

    if not capture.session_id or not capture.session_id.strip():
        errors.append(MISSING_SESSION)

    return qr, errors


def validate_record(record: OfflineAttendanceRecord, now: datetime, max_age: timedelta) -> List[str]:
    """Revalidation d'un scan déjà en file, juste avant l'appel réseau."""
    errors: List[str] = []
    if decode_qr_payload(record.qr_payload) is None:
        errors.append(INVALID_QR)
    errors.extend(timestamp_errors(record.captured_at, now, max_age))
    if not record.session_id.strip():
        errors.append(MISSING_SESSION)
    return errors
