"""
Tests unitaires de l'export / import et du rapport de diagnostic de la file offline.
"""

from datetime import timedelta

from attendance_sync.exceptions import PermanentSyncError
from attendance_sync.services.diagnostics_service import (
    CSV_COLUMNS,
    diagnostic_info,
    export_offline_data,
    export_offline_data_csv,
    import_offline_data,
)
from conftest import NOW, make_capture, make_qr


# --- Helper ---

def fill_queue(queue, api_client, scheduler):
    """Un scan en dead-letter (ELV-900) puis deux scans en attente."""
    api_client.submit_scan.side_effect = PermanentSyncError("Session clôturée", 422)
    queue.enqueue(make_capture(student_id="ELV-900"))
    scheduler.run_first(queue.sync_one)
    api_client.submit_scan.side_effect = None

    queue.enqueue(make_capture(student_id="ELV-001", session_id="S1"))
    queue.enqueue(make_capture(student_id="ELV-002", session_id="S1"))


# ============================================================
# Export
# ============================================================

def test_export_json(queue, api_client, scheduler):
    fill_queue(queue, api_client, scheduler)

    rows = export_offline_data(queue, NOW)

    assert [r["type"] for r in rows] == ["pending", "pending", "failed"]
    assert rows[2]["student_number"] == "ELV-900"
    assert rows[2]["last_error"] == "Session clôturée"
    assert all(r["exported_at"] == NOW.isoformat() for r in rows)


def test_export_csv_bom_et_separateur(queue, api_client, scheduler):
    fill_queue(queue, api_client, scheduler)

    content = export_offline_data_csv(queue)

    assert content.startswith("\ufeff")
    lines = content.lstrip("\ufeff").strip().splitlines()
    assert lines[0].split(";") == CSV_COLUMNS
    assert len(lines) == 4
    assert lines[3].startswith("failed;")


def test_export_file_vide(queue):
    assert export_offline_data(queue, NOW) == []
    assert export_offline_data_csv(queue).lstrip("\ufeff").strip() == ";".join(CSV_COLUMNS)


# ============================================================
# Import
# ============================================================

def test_import_lignes_valides(queue):
    items = [
        make_capture(student_id="ELV-010").model_dump(mode="json"),
        make_capture(student_id="ELV-011").model_dump(mode="json"),
    ]

    report = import_offline_data(queue, items)

    assert report.imported == 2
    assert report.errors == []
    assert len(queue.pending_records()) == 2


def test_import_depuis_export(queue, api_client, scheduler):
    """Un export relu par une autre borne : le scan dead-letter est réimporté comme nouveau scan."""
    fill_queue(queue, api_client, scheduler)
    rows = export_offline_data(queue, NOW)
    queue.clear_all()

    report = import_offline_data(queue, rows)

    assert report.imported == 3
    assert all(r.retry_count == 0 for r in queue.pending_records())


def test_import_ligne_invalide_continue(queue):
    items = [
        {"session_id": "S1"},
        make_capture(qr_payload="not-json").model_dump(mode="json"),
        make_capture().model_dump(mode="json"),
    ]

    report = import_offline_data(queue, items)

    assert report.imported == 1
    assert len(report.errors) == 2
    assert report.errors[0].startswith("Ligne 1 invalide")
    assert report.errors[1].startswith("Ligne 2 invalide")


def test_import_doublon_ignore(queue):
    qr = make_qr(student_id="ELV-020")
    queue.enqueue(make_capture(qr_payload=qr, session_id="S1", captured_at=NOW - timedelta(minutes=5)))

    duplicate = make_capture(qr_payload=qr, session_id="S1", captured_at=NOW - timedelta(minutes=5, seconds=30))
    distinct = make_capture(qr_payload=qr, session_id="S1", captured_at=NOW - timedelta(minutes=10))

    report = import_offline_data(queue, [duplicate.model_dump(mode="json"), distinct.model_dump(mode="json")])

    assert report.imported == 1
    assert report.errors == []
    assert len(queue.pending_records()) == 2


# ============================================================
# Diagnostic
# ============================================================

def test_diagnostic_sections(queue, monitor, api_client, scheduler):
    fill_queue(queue, api_client, scheduler)
    monitor.set_online_status(False)

    info = diagnostic_info(queue, monitor, NOW)

    assert set(info) == {"connection", "data", "sync", "config", "timestamp"}
    assert info["connection"]["is_online"] is False
    assert info["connection"]["quality"] == "offline"
    assert info["data"]["pending_count"] == 2
    assert info["data"]["failed_count"] == 1
    assert info["data"]["has_pending_data"] is True
    assert info["sync"]["can_sync"] is False
    assert info["config"]["batch_size"] == 10
    assert info["timestamp"] == NOW.isoformat()


def test_diagnostic_historique_limite(queue, monitor):
    for i in range(8):
        monitor.set_online_status(i % 2 == 0)

    info = diagnostic_info(queue, monitor, NOW)
    assert len(info["connection"]["connection_history"]) == 5
