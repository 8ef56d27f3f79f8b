"""
Surveillance de la connexion vers l'API distante.

Maintient une vue « au mieux » de is_online et de la qualité de connexion
(excellent | good | poor | offline), alimentée par :
- les signaux plateforme online/offline (set_online_status)
- une sonde active HEAD sur l'endpoint de santé (test_connection)

L'historique des transitions est borné et ne sert qu'au diagnostic.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Callable, List, Optional

import requests

from attendance_sync.schemas.connection import ConnectionEvent, ConnectionStatus

logger = logging.getLogger(__name__)

QUALITY_THRESHOLDS_MS = (
    (100, "excellent"),
    (300, "good"),
    (1000, "poor"),
)


def quality_from_rtt(rtt_ms: float) -> str:
    """<100 ms excellent, <300 ms good, <1000 ms poor, au-delà considéré hors ligne."""
    for threshold, quality in QUALITY_THRESHOLDS_MS:
        if rtt_ms < threshold:
            return quality
    return "offline"


class ConnectionMonitor:
    def __init__(self, client, clock, history_size: int = 10, is_online: bool = True):
        self._client = client
        self._clock = clock
        self._lock = threading.RLock()
        self.is_online = is_online
        self.quality = "excellent" if is_online else "offline"
        self.rtt_ms: Optional[float] = None
        self.last_connected: Optional[datetime] = clock.now() if is_online else None
        self.history: deque = deque(maxlen=history_size)
        self._listeners: List[Callable[[bool, bool], None]] = []

    def add_listener(self, callback: Callable[[bool, bool], None]) -> None:
        """callback(was_online, is_online) est appelé à chaque set_online_status."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[bool, bool], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def set_online_status(self, online: bool, quality: Optional[str] = None) -> None:
        """
        Signal plateforme : met à jour l'état et réconcilie la qualité immédiatement
        (offline si hors ligne, excellent par défaut sinon).
        """
        now = self._clock.now()
        with self._lock:
            was_online = self.is_online
            self.is_online = online
            self.quality = "offline" if not online else (quality or "excellent")
            if online:
                self.last_connected = now
            self.history.append(ConnectionEvent(timestamp=now, is_online=online, quality=self.quality))

        if was_online != online:
            logger.info("Connexion %s (qualité : %s)", "rétablie" if online else "perdue", self.quality)

        for listener in list(self._listeners):
            listener(was_online, online)

    def update_connection_quality(self, quality: str) -> None:
        with self._lock:
            self.quality = quality
            if quality == "offline":
                self.is_online = False

    def test_connection(self) -> str:
        """
        Effectue une sonde, met à jour la qualité et la retourne.
        Ne lève jamais : tout échec de la sonde donne "offline".
        """
        try:
            rtt_ms = self._client.probe_health()
        except requests.RequestException as exc:
            logger.warning("Sonde de santé en échec : %s", exc)
            self.rtt_ms = None
            self.set_online_status(False)
            return "offline"

        self.rtt_ms = rtt_ms
        quality = quality_from_rtt(rtt_ms)
        if quality == "offline":
            logger.warning("Sonde de santé trop lente (%.0f ms) : API considérée injoignable", rtt_ms)
            self.set_online_status(False)
        else:
            self.set_online_status(True, quality)
        return quality

    def can_sync(self) -> bool:
        return self.is_online and self.quality != "offline"

    def status(self) -> ConnectionStatus:
        with self._lock:
            return ConnectionStatus(
                is_online=self.is_online,
                quality=self.quality,
                rtt_ms=self.rtt_ms,
                last_connected=self.last_connected,
                history=list(self.history),
            )
