"""
Router de la surveillance de connexion.
Consultation de l'état, signaux plateforme online/offline et sonde manuelle.
"""

from fastapi import APIRouter, Depends

from attendance_sync.runtime import get_monitor
from attendance_sync.schemas.connection import ConnectionStatus, ConnectionTestResult, OnlineStatusUpdate

router = APIRouter(prefix="/api/connection", tags=["Connexion"])


@router.get("", response_model=ConnectionStatus, summary="État de la connexion")
def get_connection_status(monitor=Depends(get_monitor)):
    """is_online, qualité, dernier RTT mesuré et historique récent des transitions."""
    return monitor.status()


@router.put("/status", response_model=ConnectionStatus, summary="Signaler online/offline")
def set_online_status(data: OnlineStatusUpdate, monitor=Depends(get_monitor)):
    """
    Signal de la plateforme hôte (événements réseau du système).
    Le retour en ligne avec des scans en attente déclenche une synchronisation différée.
    """
    monitor.set_online_status(data.is_online, data.quality)
    return monitor.status()


@router.post("/test", response_model=ConnectionTestResult, summary="Tester la connexion")
def test_connection(monitor=Depends(get_monitor)):
    return ConnectionTestResult(quality=monitor.test_connection())
