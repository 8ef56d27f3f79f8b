"""
Réglages de la synchronisation automatique.

Simple porteur de configuration : chaque valeur est ramenée dans ses bornes à l'écriture
et les abonnés sont prévenus du champ modifié (la file réarme ou annule son minuteur).
Aucune logique réseau ici.
"""

import logging
from typing import Callable, List

from attendance_sync.config import Settings
from attendance_sync.schemas.offline_queue import SYNC_STRATEGIES, QueueConfig, QueueConfigUpdate

logger = logging.getLogger(__name__)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


class SyncSettings:
    def __init__(self, config: Settings):
        self.min_interval = config.MIN_SYNC_INTERVAL_SECONDS
        self.max_interval = config.MAX_SYNC_INTERVAL_SECONDS
        self.max_batch_size = config.MAX_BATCH_SIZE
        self.max_retries_limit = config.MAX_RETRIES_LIMIT

        self.auto_sync_enabled = config.AUTO_SYNC_ENABLED
        self.sync_interval = _clamp(config.DEFAULT_SYNC_INTERVAL_SECONDS, self.min_interval, self.max_interval)
        self.max_retries = _clamp(config.DEFAULT_MAX_RETRIES, 1, self.max_retries_limit)
        self.batch_size = _clamp(config.DEFAULT_BATCH_SIZE, 1, self.max_batch_size)
        self.sync_strategy = config.DEFAULT_SYNC_STRATEGY if config.DEFAULT_SYNC_STRATEGY in SYNC_STRATEGIES else "priority"

        self._listeners: List[Callable[[str], None]] = []

    def add_listener(self, callback: Callable[[str], None]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[str], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, field: str) -> None:
        for listener in list(self._listeners):
            listener(field)

    def set_auto_sync(self, enabled: bool) -> None:
        self.auto_sync_enabled = enabled
        logger.info("Synchronisation automatique %s", "activée" if enabled else "désactivée")
        self._notify("auto_sync_enabled")

    def set_sync_interval(self, seconds: int) -> int:
        self.sync_interval = _clamp(seconds, self.min_interval, self.max_interval)
        self._notify("sync_interval")
        return self.sync_interval

    def set_max_retries(self, retries: int) -> int:
        self.max_retries = _clamp(retries, 1, self.max_retries_limit)
        self._notify("max_retries")
        return self.max_retries

    def set_batch_size(self, size: int) -> int:
        self.batch_size = _clamp(size, 1, self.max_batch_size)
        self._notify("batch_size")
        return self.batch_size

    def set_sync_strategy(self, strategy: str) -> None:
        if strategy not in SYNC_STRATEGIES:
            raise ValueError(f"Stratégie de synchronisation invalide. Valeurs acceptées : {SYNC_STRATEGIES}")
        self.sync_strategy = strategy
        self._notify("sync_strategy")

    def apply(self, update: QueueConfigUpdate) -> QueueConfig:
        """Applique une mise à jour partielle (seuls les champs fournis sont modifiés)."""
        if update.sync_interval_seconds is not None:
            self.set_sync_interval(update.sync_interval_seconds)
        if update.max_retries is not None:
            self.set_max_retries(update.max_retries)
        if update.batch_size is not None:
            self.set_batch_size(update.batch_size)
        if update.sync_strategy is not None:
            self.set_sync_strategy(update.sync_strategy)
        if update.auto_sync_enabled is not None:
            self.set_auto_sync(update.auto_sync_enabled)
        return self.as_config()

    def load(self, config: QueueConfig) -> None:
        """Restaure les réglages d'un snapshot, sans prévenir les abonnés."""
        self.auto_sync_enabled = config.auto_sync_enabled
        self.sync_interval = _clamp(config.sync_interval_seconds, self.min_interval, self.max_interval)
        self.max_retries = _clamp(config.max_retries, 1, self.max_retries_limit)
        self.batch_size = _clamp(config.batch_size, 1, self.max_batch_size)
        self.sync_strategy = config.sync_strategy

    def as_config(self) -> QueueConfig:
        return QueueConfig(
            auto_sync_enabled=self.auto_sync_enabled,
            sync_interval_seconds=self.sync_interval,
            max_retries=self.max_retries,
            batch_size=self.batch_size,
            sync_strategy=self.sync_strategy,
        )
