"""
Tests unitaires des règles de validation des scans offline.
Couverture : décodage du QR code, horodatage futur / trop ancien, session manquante,
cohérence de l'UUID élève, revalidation d'un scan déjà en file.
"""

import json
import uuid
from datetime import datetime, timedelta, timezone

from attendance_sync.schemas.offline_queue import OfflineAttendanceRecord
from attendance_sync.services.validation import (
    FUTURE_TIMESTAMP,
    INVALID_QR,
    MISSING_SESSION,
    STUDENT_MISMATCH,
    TOO_OLD,
    decode_qr_payload,
    is_expired,
    validate_capture,
    validate_record,
)
from conftest import NOW, make_capture, make_qr

MAX_AGE = timedelta(hours=24)


# ============================================================
# decode_qr_payload
# ============================================================

def test_qr_valide_decode():
    student_uuid = uuid.uuid4()
    qr = decode_qr_payload(make_qr(student_uuid, "ELV-042"))

    assert qr is not None
    assert qr.uuid == student_uuid
    assert qr.student_id == "ELV-042"


def test_qr_json_illisible():
    assert decode_qr_payload("pas du json") is None


def test_qr_sans_student_id():
    assert decode_qr_payload(json.dumps({"uuid": str(uuid.uuid4())})) is None


def test_qr_uuid_invalide():
    assert decode_qr_payload(json.dumps({"uuid": "abc", "student_id": "ELV-1"})) is None


def test_qr_student_id_vide():
    assert decode_qr_payload(json.dumps({"uuid": str(uuid.uuid4()), "student_id": "  "})) is None


def test_qr_liste_json():
    """Un JSON valide mais qui n'est pas un objet est refusé."""
    assert decode_qr_payload("[1, 2]") is None


# ============================================================
# is_expired
# ============================================================

def test_expiration_limite_exacte_non_expiree():
    """Exactement 24 h : encore valide (strictement plus vieux = expiré)."""
    assert is_expired(NOW - MAX_AGE, NOW, MAX_AGE) is False


def test_expiration_au_dela():
    assert is_expired(NOW - MAX_AGE - timedelta(seconds=1), NOW, MAX_AGE) is True


# ============================================================
# validate_capture
# ============================================================

def test_capture_valide():
    qr, errors = validate_capture(make_capture(), NOW, MAX_AGE)

    assert errors == []
    assert qr is not None


def test_capture_qr_invalide():
    qr, errors = validate_capture(make_capture(qr_payload="not-json"), NOW, MAX_AGE)

    assert qr is None
    assert errors == [INVALID_QR]


def test_capture_horodatage_futur():
    """Aucune tolérance d'horloge : une seconde dans le futur suffit."""
    _, errors = validate_capture(make_capture(captured_at=NOW + timedelta(seconds=1)), NOW, MAX_AGE)
    assert errors == [FUTURE_TIMESTAMP]


def test_capture_trop_ancienne():
    _, errors = validate_capture(make_capture(captured_at=NOW - timedelta(hours=25)), NOW, MAX_AGE)
    assert errors == [TOO_OLD]


def test_capture_session_vide():
    _, errors = validate_capture(make_capture(session_id="   "), NOW, MAX_AGE)
    assert errors == [MISSING_SESSION]


def test_capture_plusieurs_motifs():
    """Tous les motifs de refus sont rapportés, pas seulement le premier."""
    capture = make_capture(qr_payload="???", session_id="", captured_at=NOW + timedelta(hours=1))
    _, errors = validate_capture(capture, NOW, MAX_AGE)

    assert set(errors) == {INVALID_QR, FUTURE_TIMESTAMP, MISSING_SESSION}


def test_capture_uuid_eleve_coherent():
    student_uuid = uuid.uuid4()
    capture = make_capture(student_uuid=str(student_uuid).upper(), qr_payload=make_qr(student_uuid))

    _, errors = validate_capture(capture, NOW, MAX_AGE)
    assert errors == []


def test_capture_uuid_eleve_incoherent():
    capture = make_capture(student_uuid=str(uuid.uuid4()))

    _, errors = validate_capture(capture, NOW, MAX_AGE)
    assert errors == [STUDENT_MISMATCH]


# ============================================================
# validate_record
# ============================================================

def make_record(captured_at=None, qr_payload=None, session_id="session-1") -> OfflineAttendanceRecord:
    return OfflineAttendanceRecord(
        id=str(uuid.uuid4()),
        qr_payload=qr_payload or make_qr(),
        session_id=session_id,
        student_uuid=str(uuid.uuid4()),
        captured_at=captured_at or NOW - timedelta(minutes=5),
    )


def test_record_valide():
    assert validate_record(make_record(), NOW, MAX_AGE) == []


def test_record_devenu_trop_ancien():
    """Valide à la capture, expiré au moment de la synchro."""
    record = make_record(captured_at=NOW - timedelta(hours=23))
    later = NOW + timedelta(hours=2)

    assert validate_record(record, later, MAX_AGE) == [TOO_OLD]


def test_record_qr_corrompu():
    assert validate_record(make_record(qr_payload="{}"), NOW, MAX_AGE) == [INVALID_QR]


# ============================================================
# Normalisation des horodatages
# ============================================================

def test_horodatage_ramene_en_utc():
    """Un horodatage avec décalage est converti en UTC sans changer d'instant."""
    captured_at = datetime(2026, 3, 15, 11, 30, tzinfo=timezone(timedelta(hours=2)))

    capture = make_capture(captured_at=captured_at)

    assert capture.captured_at == captured_at
    assert capture.captured_at.utcoffset() == timedelta(0)
    assert capture.captured_at.hour == 9


def test_horodatage_naif_considere_utc():
    capture = make_capture(captured_at=datetime(2026, 3, 15, 9, 30))
    assert capture.captured_at == datetime(2026, 3, 15, 9, 30, tzinfo=timezone.utc)
