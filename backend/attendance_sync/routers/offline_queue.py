"""
Router de la file offline des scans de présence.
Capture, consultation, synchronisation, dead-letter, réglages, export/import et diagnostic.
"""

import datetime as dt
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from attendance_sync.exceptions import CaptureValidationError
from attendance_sync.runtime import get_monitor, get_queue
from attendance_sync.schemas.offline_queue import (
    AttendanceCapture,
    EnqueueResponse,
    ImportReport,
    OfflineAttendanceRecord,
    OptimizeResponse,
    QueueConfig,
    QueueConfigUpdate,
    QueueStatusResponse,
    RetryResponse,
    SyncMetrics,
    SyncResult,
)
from attendance_sync.services import diagnostics_service

router = APIRouter(prefix="/api/offline", tags=["File offline"])


@router.post("/captures", response_model=EnqueueResponse, status_code=201,
             summary="Mettre un scan en file")
def enqueue_capture(data: AttendanceCapture, queue=Depends(get_queue)):
    """
    Valide un scan capturé par la borne et l'ajoute à la file.

    Refus (422) si :
    - le QR code ne contient pas {uuid, student_id}
    - l'horodatage est dans le futur ou trop ancien
    - l'identifiant de session est vide

    Si l'appareil est en ligne, la synchronisation du scan est lancée en arrière-plan.
    """
    try:
        record_id = queue.enqueue(data)
    except CaptureValidationError as e:
        raise HTTPException(status_code=422, detail=e.reasons)
    return EnqueueResponse(id=record_id)


@router.get("/status", response_model=QueueStatusResponse, summary="État de la file")
def get_status(queue=Depends(get_queue)):
    """Compteurs, dernière tentative, prochaine synchro planifiée et progression."""
    return queue.queue_status()


@router.get("/pending", response_model=List[OfflineAttendanceRecord], summary="Scans en attente")
def list_pending(
    session_id: Optional[str] = None,
    date: Optional[dt.date] = None,
    queue=Depends(get_queue),
):
    """Liste les scans en attente, filtrables par session et/ou par jour de capture."""
    if session_id is not None:
        records = queue.pending_by_session(session_id)
    elif date is not None:
        records = queue.pending_by_date(date)
    else:
        records = queue.pending_records()

    if session_id is not None and date is not None:
        day_ids = {r.id for r in queue.pending_by_date(date)}
        records = [r for r in records if r.id in day_ids]
    return records


@router.delete("/pending", status_code=204, summary="Vider les scans en attente")
def clear_pending(queue=Depends(get_queue)):
    queue.clear_pending()


@router.get("/dead-letter", response_model=List[OfflineAttendanceRecord], summary="Scans en dead-letter")
def list_dead_lettered(queue=Depends(get_queue)):
    """Scans qui ne seront plus retentés automatiquement, avec leur dernière erreur."""
    return queue.dead_lettered_records()


@router.delete("/dead-letter", status_code=204, summary="Vider la dead-letter")
def clear_dead_lettered(queue=Depends(get_queue)):
    queue.clear_dead_lettered()


@router.post("/dead-letter/{record_id}/retry", response_model=RetryResponse,
             summary="Retenter un scan en dead-letter")
def retry_dead_lettered(record_id: str, queue=Depends(get_queue)):
    """
    Remet le scan en attente (compteur de tentatives remis à zéro) et tente une synchro immédiate.
    Un scan expiré ne peut plus être retenté (409).

    status : synced si le serveur a accepté le scan, pending s'il est remis en file
    (hors ligne ou échec transitoire), dead_letter s'il est rejeté à nouveau.
    """
    record = queue.get_dead_lettered(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Scan introuvable.")
    if queue.is_expired(record):
        raise HTTPException(status_code=409, detail="Scan expiré : il ne peut plus être synchronisé.")

    synced = queue.retry_dead_lettered(record_id) is True
    if synced:
        status = "synced"
    elif queue.get_pending(record_id) is not None:
        status = "pending"
    else:
        status = "dead_letter"
    return RetryResponse(record_id=record_id, synced=synced, status=status)


@router.delete("/dead-letter/{record_id}", status_code=204, summary="Abandonner un scan")
def discard_dead_lettered(record_id: str, queue=Depends(get_queue)):
    if not queue.discard_dead_lettered(record_id):
        raise HTTPException(status_code=404, detail="Scan introuvable.")


@router.post("/sync", response_model=SyncResult, summary="Lancer un batch de synchronisation")
def sync_batch(queue=Depends(get_queue)):
    """
    Synchronise jusqu'à batch_size scans selon la stratégie configurée.
    Retourne skipped=true si un batch est déjà en cours, si l'appareil est hors ligne
    ou si la file est vide.
    """
    return queue.sync_batch()


@router.post("/sync/force", response_model=SyncResult, summary="Tout resynchroniser")
def force_sync_all(queue=Depends(get_queue)):
    """Remet en attente les scans dead-letter non expirés puis lance un batch."""
    return queue.force_sync_all()


@router.get("/config", response_model=QueueConfig, summary="Réglages de synchronisation")
def get_config(queue=Depends(get_queue)):
    return queue.settings.as_config()


@router.put("/config", response_model=QueueConfig, summary="Modifier les réglages")
def update_config(data: QueueConfigUpdate, queue=Depends(get_queue)):
    """
    Met à jour les réglages fournis ; les valeurs hors bornes sont ramenées dans les bornes.
    Activer/désactiver la synchro automatique arme/annule le minuteur récurrent.
    """
    return queue.settings.apply(data)


@router.get("/metrics", response_model=SyncMetrics, summary="Métriques de synchronisation")
def get_metrics(queue=Depends(get_queue)):
    return queue.metrics()


@router.post("/metrics/reset", status_code=204, summary="Réinitialiser les métriques")
def reset_metrics(queue=Depends(get_queue)):
    queue.reset_metrics()


@router.post("/optimize", response_model=OptimizeResponse, summary="Écarter les scans expirés")
def optimize_queue(queue=Depends(get_queue)):
    """Bascule en dead-letter les scans en attente devenus trop anciens."""
    return OptimizeResponse(expired_count=queue.optimize_queue())


@router.get("/export", summary="Exporter la file en JSON")
def export_offline_data(queue=Depends(get_queue)) -> List[Dict[str, Any]]:
    return diagnostics_service.export_offline_data(queue, datetime.now(timezone.utc))


@router.get("/export/csv", summary="Exporter la file en CSV")
def export_offline_data_csv(queue=Depends(get_queue)):
    """
    Exporte les scans non confirmés en CSV (UTF-8 BOM, séparateur ;).
    Compatible Excel.
    """
    csv_content = diagnostics_service.export_offline_data_csv(queue)
    return StreamingResponse(
        iter([csv_content]),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": "attachment; filename=scans_offline.csv"},
    )


@router.post("/import", response_model=ImportReport, summary="Importer des scans exportés")
def import_offline_data(items: List[Dict[str, Any]], queue=Depends(get_queue)):
    """
    Importe des scans exportés par une autre borne.
    Les lignes invalides sont reportées dans errors ; les doublons sont ignorés.
    """
    return diagnostics_service.import_offline_data(queue, items)


@router.get("/diagnostics", summary="Rapport de diagnostic")
def get_diagnostics(queue=Depends(get_queue), monitor=Depends(get_monitor)) -> Dict[str, Any]:
    return diagnostics_service.diagnostic_info(queue, monitor, datetime.now(timezone.utc))
