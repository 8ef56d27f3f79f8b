"""
Client HTTP de l'API distante de présences (requests).

Seul point de contact réseau de la file offline :
- submit_scan : POST du scan, classé succès / échec transitoire / échec définitif
- probe_health : HEAD sur l'endpoint de santé, mesure du temps d'aller-retour

Table de classification des échecs :
  exception réseau requests (connexion, DNS, timeout)   → transitoire
  2xx + success=false                                    → définitif
  2xx sans enveloppe lisible                             → transitoire
  401, 403, 408, 425, 429                                → transitoire
  autre 4xx avec enveloppe portant `error`               → définitif
  autre 4xx sans corps structuré                         → transitoire
  5xx (quel que soit le corps)                           → transitoire
"""

import logging
import time
from typing import Optional

import requests
from pydantic import ValidationError

from attendance_sync.exceptions import PermanentSyncError, SyncError, TransientSyncError
from attendance_sync.schemas.offline_queue import OfflineAttendanceRecord
from attendance_sync.schemas.scan_api import ApiEnvelope, ScanRequest

logger = logging.getLogger(__name__)

# Codes 4xx pour lesquels une nouvelle tentative peut réussir (session expirée, rate limit…)
TRANSIENT_CLIENT_STATUS_CODES = {401, 403, 408, 425, 429}


def _parse_envelope(response: requests.Response) -> Optional[ApiEnvelope]:
    """Lit l'enveloppe {success, data, error} ; None si le corps n'en est pas une."""
    try:
        return ApiEnvelope.model_validate(response.json())
    except (ValueError, ValidationError):
        return None


def classify_response(status_code: int, envelope: Optional[ApiEnvelope]) -> Optional[SyncError]:
    """Retourne None si le scan est accepté, sinon l'erreur classée transitoire ou définitive."""
    if 200 <= status_code < 300:
        if envelope is None:
            return TransientSyncError(f"Réponse illisible (HTTP {status_code})", status_code)
        if envelope.success:
            return None
        return PermanentSyncError(envelope.error or "Scan rejeté par le serveur", status_code)

    message = (envelope.error if envelope else None) or f"HTTP {status_code}"

    if status_code >= 500 or status_code in TRANSIENT_CLIENT_STATUS_CODES:
        return TransientSyncError(message, status_code)
    if 400 <= status_code < 500 and envelope is not None and envelope.error:
        return PermanentSyncError(message, status_code)
    return TransientSyncError(message, status_code)


class ScanApiClient:
    """Client de l'API de scan, construit sur une requests.Session réutilisée."""

    def __init__(
        self,
        base_url: str,
        scan_endpoint: str,
        health_endpoint: str,
        timeout: float,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.scan_endpoint = scan_endpoint
        self.health_endpoint = health_endpoint
        self.timeout = timeout
        self.session = session or requests.Session()

    def submit_scan(self, record: OfflineAttendanceRecord) -> ApiEnvelope:
        """
        Envoie un scan capturé hors ligne.
        Lève TransientSyncError ou PermanentSyncError selon la table de classification.
        """
        body = ScanRequest(
            qr_data=record.qr_payload,
            session_id=record.session_id,
            offline_timestamp=record.captured_at,
            student_uuid=record.student_uuid,
        )
        try:
            response = self.session.post(
                self.base_url + self.scan_endpoint,
                json=body.model_dump(mode="json", by_alias=True),
                headers={"X-Offline-Sync": "true"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransientSyncError(f"Erreur réseau : {exc}") from exc

        envelope = _parse_envelope(response)
        error = classify_response(response.status_code, envelope)
        if error is not None:
            raise error
        return envelope

    def probe_health(self) -> float:
        """
        Sonde légère (HEAD) sur l'endpoint de santé.
        Retourne le temps d'aller-retour en millisecondes ; lève requests.RequestException
        en cas d'échec réseau ou de réponse non-2xx.
        """
        start = time.perf_counter()
        response = self.session.head(self.base_url + self.health_endpoint, timeout=self.timeout)
        rtt_ms = (time.perf_counter() - start) * 1000
        response.raise_for_status()
        return rtt_ms
