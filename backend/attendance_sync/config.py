"""
Configuration centrale de l'agent de synchronisation via variables d'environnement.
Charger depuis un fichier .env en développement.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Base locale (snapshot de la file offline)
    DATABASE_URL: str = "sqlite:///./offline_queue.db"

    # API distante de présences
    API_BASE_URL: str = "http://localhost:3000"
    SCAN_ENDPOINT: str = "/api/attendance/scan"
    HEALTH_ENDPOINT: str = "/api/health"
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # Réglages de synchronisation (valeurs par défaut + bornes)
    AUTO_SYNC_ENABLED: bool = True
    DEFAULT_SYNC_STRATEGY: str = "priority"
    DEFAULT_SYNC_INTERVAL_SECONDS: int = 30
    MIN_SYNC_INTERVAL_SECONDS: int = 5
    MAX_SYNC_INTERVAL_SECONDS: int = 300
    DEFAULT_MAX_RETRIES: int = 3
    MAX_RETRIES_LIMIT: int = 10
    DEFAULT_BATCH_SIZE: int = 10
    MAX_BATCH_SIZE: int = 50

    # Règles métier
    OFFLINE_ATTENDANCE_MAX_AGE_HOURS: int = 24

    # Backoff exponentiel : min(base * 2^retry_count, max)
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 30.0

    # Délais entre deux scans d'un même batch
    INTER_ITEM_DELAY_SECONDS: float = 0.1
    POOR_CONNECTION_INTER_ITEM_DELAY_SECONDS: float = 1.0

    # Délais des synchronisations déclenchées automatiquement
    ENQUEUE_SYNC_DELAY_SECONDS: float = 0.5
    RECONNECT_SYNC_DELAY_SECONDS: float = 1.0

    # Surveillance de la connexion
    CONNECTION_HISTORY_SIZE: int = 10

    # Tâches périodiques de l'hôte
    CONNECTION_TEST_INTERVAL_SECONDS: int = 60
    QUEUE_OPTIMIZE_INTERVAL_SECONDS: int = 300
    SNAPSHOT_INTERVAL_SECONDS: int = 60

    # Environnement
    ENV: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
