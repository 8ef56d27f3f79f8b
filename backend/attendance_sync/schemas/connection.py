"""
Schémas Pydantic de la surveillance de connexion.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel

ConnectionQuality = Literal["excellent", "good", "poor", "offline"]


class ConnectionEvent(BaseModel):
    """Entrée de l'historique des transitions (diagnostic uniquement)."""
    timestamp: datetime
    is_online: bool
    quality: ConnectionQuality


class ConnectionStatus(BaseModel):
    is_online: bool
    quality: ConnectionQuality
    rtt_ms: Optional[float] = None          # Dernier aller-retour mesuré par la sonde
    last_connected: Optional[datetime] = None
    history: List[ConnectionEvent] = []


class OnlineStatusUpdate(BaseModel):
    """Signal plateforme online/offline (qualité optionnelle)."""
    is_online: bool
    quality: Optional[ConnectionQuality] = None


class ConnectionTestResult(BaseModel):
    quality: ConnectionQuality
