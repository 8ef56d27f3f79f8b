"""
Modèle SQLAlchemy de l'état agrégé de la file (ligne unique id=1) :
compteurs, métriques et réglages modifiables par l'utilisateur.
"""

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String

from attendance_sync.database import Base


class SyncStateRow(Base):
    __tablename__ = "offline_sync_state"

    id = Column(Integer, primary_key=True, default=1)

    # Compteurs
    synced_count = Column(Integer, nullable=False, default=0)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    # Métriques (diagnostic, sauvegardées au mieux)
    total_synced = Column(Integer, nullable=False, default=0)
    total_failed = Column(Integer, nullable=False, default=0)
    average_sync_time_ms = Column(Float, nullable=False, default=0.0)
    success_rate = Column(Float, nullable=False, default=100.0)
    last_metrics_reset = Column(DateTime(timezone=True), nullable=True)

    # Réglages
    auto_sync_enabled = Column(Boolean, nullable=False, default=True)
    sync_interval_seconds = Column(Integer, nullable=False)
    max_retries = Column(Integer, nullable=False)
    batch_size = Column(Integer, nullable=False)
    sync_strategy = Column(String(20), nullable=False)     # fifo, lifo, priority

    saved_at = Column(DateTime(timezone=True), nullable=False)
