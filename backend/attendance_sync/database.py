"""
Configuration de la base locale SQLite.
Elle ne sert qu'à conserver le snapshot de la file offline entre deux redémarrages.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from attendance_sync.config import settings


def _engine_options(url: str) -> dict:
    """Options SQLite : accès multi-threads (scheduler + handlers) et base mémoire partagée."""
    if not url.startswith("sqlite"):
        return {}
    options = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # Une seule connexion, sinon chaque connexion voit sa propre base vide
        options["poolclass"] = StaticPool
    return options


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
