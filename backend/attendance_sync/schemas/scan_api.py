"""
Schémas Pydantic du contrat de l'API distante de scan.
Endpoint : POST /api/attendance/scan
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ScanRequest(BaseModel):
    """Corps envoyé lors de la synchronisation d'un scan capturé hors ligne."""

    model_config = ConfigDict(populate_by_name=True)

    qr_data: str = Field(alias="qrData")
    session_id: str = Field(alias="sessionId")
    offline_timestamp: datetime = Field(alias="offlineTimestamp")
    student_uuid: str = Field(alias="studentUuid")
    is_offline_sync: bool = Field(default=True, alias="isOfflineSync")


class ApiEnvelope(BaseModel):
    """Enveloppe de réponse de l'API : {success, data?, error?}."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
