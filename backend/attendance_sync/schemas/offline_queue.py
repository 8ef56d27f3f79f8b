"""
Schémas Pydantic de la file offline des scans de présence.

Un scan capturé sans réseau devient un OfflineAttendanceRecord :
- en attente (pending) tant qu'il est éligible à la synchronisation automatique
- en dead-letter quand le budget de tentatives est épuisé, le scan expiré
  ou rejeté définitivement par le serveur
"""

import uuid as uuid_module
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

SYNC_STRATEGIES = ("fifo", "lifo", "priority")
SyncStrategy = Literal["fifo", "lifo", "priority"]


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    """
    Ramène tout horodatage en UTC (un horodatage sans fuseau est considéré comme UTC).
    La base locale stocke l'heure sans décalage : seul l'UTC y survit tel quel.
    """
    if v is None:
        return v
    return v.astimezone(timezone.utc) if v.tzinfo else v.replace(tzinfo=timezone.utc)


class QrPayload(BaseModel):
    """Contenu décodé d'un QR code élève : {"uuid": ..., "student_id": ...}."""
    uuid: uuid_module.UUID
    student_id: str

    @field_validator("student_id")
    @classmethod
    def student_id_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("L'identifiant élève est obligatoire.")
        return v.strip()


class AttendanceCapture(BaseModel):
    """Scan tel que capturé par la borne, avant validation métier."""

    qr_payload: str
    session_id: str
    captured_at: datetime                 # Horodatage du scan (pas de la synchro)
    student_uuid: Optional[str] = None    # Déduit du QR code si absent

    @field_validator("captured_at")
    @classmethod
    def captured_at_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class OfflineAttendanceRecord(BaseModel):
    """Scan en attente de confirmation par le serveur."""

    id: str = Field(frozen=True)
    qr_payload: str
    session_id: str
    student_uuid: str
    student_number: str = ""
    captured_at: datetime = Field(frozen=True)
    retry_count: int = 0
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @field_validator("captured_at", "last_attempt_at")
    @classmethod
    def timestamps_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class SyncMetrics(BaseModel):
    """Statistiques de synchronisation (diagnostic uniquement, non autoritatives)."""
    success_rate: float = 100.0
    average_sync_time_ms: float = 0.0
    total_synced: int = 0
    total_failed: int = 0
    last_metrics_reset: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SyncStatus(BaseModel):
    """Compteurs agrégés persistés + état courant de la connexion et de la synchro."""
    pending: int = 0
    synced: int = 0
    failed: int = 0
    last_sync: Optional[datetime] = None
    is_online: bool = True
    is_syncing: bool = False


class SyncResult(BaseModel):
    """Rapport d'un batch de synchronisation."""
    success: bool
    synced_count: int
    failed_count: int
    errors: List[str]
    skipped: bool = False   # True si le batch a été refusé (déjà en cours, hors ligne, file vide)


class QueueConfig(BaseModel):
    """Réglages de la synchronisation automatique."""
    auto_sync_enabled: bool
    sync_interval_seconds: int
    max_retries: int
    batch_size: int
    sync_strategy: SyncStrategy


class QueueConfigUpdate(BaseModel):
    """Mise à jour partielle des réglages ; les valeurs hors bornes sont ramenées dans les bornes."""
    auto_sync_enabled: Optional[bool] = None
    sync_interval_seconds: Optional[int] = None
    max_retries: Optional[int] = None
    batch_size: Optional[int] = None
    sync_strategy: Optional[SyncStrategy] = None


class QueueSnapshot(BaseModel):
    """État complet à conserver entre deux redémarrages."""
    pending: List[OfflineAttendanceRecord]
    dead_lettered: List[OfflineAttendanceRecord]
    sync_status: SyncStatus
    metrics: SyncMetrics
    config: QueueConfig
    saved_at: datetime


class QueueStatusResponse(BaseModel):
    """Vue synthétique de la file pour l'interface de la borne."""
    sync_status: SyncStatus
    pending_count: int
    dead_letter_count: int
    last_sync_attempt: Optional[datetime]
    next_sync_scheduled: Optional[datetime]
    sync_progress: int
    estimated_sync_time_ms: Optional[float]   # None si hors ligne


class EnqueueResponse(BaseModel):
    id: str


class RetryResponse(BaseModel):
    """
    Résultat d'un retry manuel : le scan est remis en attente puis une synchro est tentée.
    status donne sa place après cette tentative : synced (accepté), pending (remis en file,
    par exemple hors ligne ou échec transitoire) ou dead_letter (rejeté à nouveau).
    """
    record_id: str
    synced: bool
    status: Literal["synced", "pending", "dead_letter"]


class OptimizeResponse(BaseModel):
    expired_count: int


class ImportReport(BaseModel):
    """Rapport d'import de scans exportés d'une autre borne."""
    imported: int
    errors: List[str]
