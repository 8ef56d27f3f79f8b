"""
Tests unitaires des réglages de synchronisation.
Couverture : valeurs par défaut, bornes, stratégie invalide, mise à jour partielle, abonnés.
"""

from unittest.mock import MagicMock

import pytest

from attendance_sync.config import Settings
from attendance_sync.schemas.offline_queue import QueueConfig, QueueConfigUpdate
from attendance_sync.services.sync_settings import SyncSettings


def test_valeurs_par_defaut(sync_settings):
    assert sync_settings.as_config() == QueueConfig(
        auto_sync_enabled=True,
        sync_interval_seconds=30,
        max_retries=3,
        batch_size=10,
        sync_strategy="priority",
    )


def test_defauts_hors_bornes_ramenes():
    s = SyncSettings(Settings(DEFAULT_SYNC_INTERVAL_SECONDS=1, DEFAULT_BATCH_SIZE=500, DEFAULT_SYNC_STRATEGY="random"))

    assert s.sync_interval == 5
    assert s.batch_size == 50
    assert s.sync_strategy == "priority"


@pytest.mark.parametrize("value, expected", [(1, 5), (5, 5), (120, 120), (300, 300), (3600, 300)])
def test_intervalle_borne(sync_settings, value, expected):
    assert sync_settings.set_sync_interval(value) == expected


@pytest.mark.parametrize("value, expected", [(-2, 1), (0, 1), (4, 4), (11, 10)])
def test_max_retries_borne(sync_settings, value, expected):
    assert sync_settings.set_max_retries(value) == expected


@pytest.mark.parametrize("value, expected", [(0, 1), (25, 25), (51, 50)])
def test_batch_size_borne(sync_settings, value, expected):
    assert sync_settings.set_batch_size(value) == expected


def test_strategie_invalide(sync_settings):
    with pytest.raises(ValueError):
        sync_settings.set_sync_strategy("random")
    assert sync_settings.sync_strategy == "priority"


def test_mise_a_jour_partielle(sync_settings):
    config = sync_settings.apply(QueueConfigUpdate(batch_size=20, sync_strategy="lifo"))

    assert config.batch_size == 20
    assert config.sync_strategy == "lifo"
    assert config.sync_interval_seconds == 30
    assert config.max_retries == 3


def test_abonnes_prevenus_du_champ(sync_settings):
    listener = MagicMock()
    sync_settings.add_listener(listener)

    sync_settings.apply(QueueConfigUpdate(sync_interval_seconds=60, auto_sync_enabled=False))

    assert [c.args[0] for c in listener.call_args_list] == ["sync_interval", "auto_sync_enabled"]


def test_chargement_sans_notification(sync_settings):
    listener = MagicMock()
    sync_settings.add_listener(listener)

    sync_settings.load(QueueConfig(
        auto_sync_enabled=False,
        sync_interval_seconds=1000,
        max_retries=0,
        batch_size=5,
        sync_strategy="fifo",
    ))

    listener.assert_not_called()
    assert sync_settings.auto_sync_enabled is False
    assert sync_settings.sync_interval == 300
    assert sync_settings.max_retries == 1
    assert sync_settings.sync_strategy == "fifo"
