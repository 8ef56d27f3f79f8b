"""
Taxonomie des erreurs de la file offline.

- CaptureValidationError : scan invalide (QR illisible, horodatage futur ou trop ancien,
  session manquante). Jamais retenté.
- TransientSyncError : erreur réseau, timeout, 5xx. Retenté avec backoff exponentiel.
- PermanentSyncError : rejet explicite du serveur. Le scan part directement en dead-letter.
"""

from typing import List, Optional


class CaptureValidationError(ValueError):
    """Scan refusé par les règles de validation ; `reasons` liste chaque motif."""

    def __init__(self, reasons: List[str]):
        self.reasons = list(reasons)
        super().__init__("Scan de présence invalide : " + ", ".join(self.reasons))


class SyncError(Exception):
    """Échec d'un aller-retour de synchronisation vers l'API distante."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TransientSyncError(SyncError):
    pass


class PermanentSyncError(SyncError):
    pass
